import math

import numpy as np
import pytest

from afmix.calibration import calibration_cases, run_case, run_selftest
from afmix.config import CallerConfig
from afmix.estimator import AlleleFrequencyEstimator, estimate_allele_frequency, q_grid, rank_mixtures
from afmix.models import Locus, MixtureHypothesis, PileupRecord


def _rows(base_index: int, count: int, p: float = 0.999) -> np.ndarray:
    rows = np.full((count, 4), (1.0 - p) / 3.0)
    rows[:, base_index] = p
    return rows


def _record(ref_reads: int, alt_reads: int, *, alt_base="C", position: int = 10) -> PileupRecord:
    probs = np.vstack([_rows(0, ref_reads), _rows(1, alt_reads)])
    return PileupRecord(
        locus=Locus("chr1", position),
        ref_base="A",
        alt_base=alt_base,
        probabilities=probs,
        base_counts=(ref_reads, alt_reads, 0, 0),
    )


def test_q_grid() -> None:
    grid = q_grid(0.001)
    assert len(grid) == 1001
    assert grid[0] == 0.0
    assert grid[-1] == 1.0
    assert grid.max() <= 1.0
    assert grid[500] == pytest.approx(0.5, abs=1e-15)

    assert np.allclose(q_grid(0.3), [0.0, 0.3, 0.6, 0.9, 1.0])
    assert np.allclose(q_grid(1.0), [0.0, 1.0])
    assert np.allclose(q_grid(0.25), [0.0, 0.25, 0.5, 0.75, 1.0])


@pytest.mark.parametrize("n", [1, 2, 3, 10])
def test_scores_n_plus_one_hypotheses(n: int) -> None:
    est = AlleleFrequencyEstimator(CallerConfig(n_chromosomes=n))
    hyps = est.score_mixtures(_record(12, 4))
    assert len(hyps) == n + 1
    assert hyps[0].qstar == 0.0 and hyps[0].qhat == 0.0
    assert [h.qstar_index for h in hyps] == list(range(n + 1))
    assert hyps[-1].qstar == 1.0

    result = est.estimate(_record(12, 4))
    assert result.qstar in {h.qstar for h in hyps}
    assert result.n_chromosomes == n


def test_rank_mixtures_is_stable() -> None:
    a = MixtureHypothesis(1, 0.5, 0.4, -3.0)
    b = MixtureHypothesis(2, 1.0, 0.9, -3.0)
    c = MixtureHypothesis(0, 0.0, 0.0, -1.0)
    assert rank_mixtures([a, b, c]) == [c, a, b]


def test_heterozygous_calibration_case() -> None:
    est = estimate_allele_frequency(_record(10, 10), CallerConfig(n_chromosomes=2))
    assert est.qstar == pytest.approx(0.5)
    assert est.qhat == pytest.approx(0.5, abs=0.01)
    assert 20.0 < est.lod_vs_ref < 30.0
    assert est.lod_best_vs_next_best > 5.0
    assert est.genotype == "het"
    assert est.ref == "A" and est.alt == "C"
    assert est.depth == 20
    assert est.notes == "A:10 C:10 G:0 T:0"


def test_low_fraction_calibration_case_with_ten_chromosomes() -> None:
    est = estimate_allele_frequency(_record(90, 10), CallerConfig(n_chromosomes=10))
    assert est.qstar == pytest.approx(0.1)
    assert est.qhat == pytest.approx(0.1, abs=0.01)
    assert est.lod_vs_ref > 5.0
    # All mixed genotypes share one prior, so they tie and the first wins.
    assert est.lod_best_vs_next_best == 0.0


def test_selftest_cases_pass() -> None:
    result = run_selftest()
    assert result["ok"] is True
    for case in calibration_cases():
        assert run_case(case).qstar == pytest.approx(case.expected_qstar)


def test_all_reference_pileup_is_confidently_reference() -> None:
    est = estimate_allele_frequency(_record(20, 0), CallerConfig())
    assert est.lod_vs_ref < -5.0
    assert est.qstar == 0.0
    assert est.genotype == "ref"


def test_homozygous_pileup() -> None:
    est = estimate_allele_frequency(_record(0, 20), CallerConfig())
    assert est.qstar == 1.0
    assert est.genotype == "hom"
    assert est.lod_vs_ref > 5.0


@pytest.mark.parametrize("n", [1, 2])
def test_zero_depth_locus(n: int) -> None:
    rec = PileupRecord(Locus("chr1", 1), "G", np.zeros((0, 4)))
    est = estimate_allele_frequency(rec, CallerConfig(n_chromosomes=n))
    # Only the genotype priors remain; the best non-reference one is het (N=2) or hom (N=1).
    best_nonref = -3.0 if n == 2 else -5.0
    assert est.lod_vs_ref == pytest.approx(best_nonref - math.log10(0.999))
    assert est.depth == 0
    assert est.alt == "A"
    assert est.qstar == 0.0


def test_estimate_is_deterministic() -> None:
    estimator = AlleleFrequencyEstimator(CallerConfig())
    rec = _record(7, 5)
    assert estimator.estimate(rec) == estimator.estimate(rec)
    assert estimator(rec) == estimator.estimate(rec)


@pytest.mark.parametrize("n", [2, 4])
def test_lod_is_monotone_in_alternate_reads(n: int) -> None:
    estimator = AlleleFrequencyEstimator(CallerConfig(n_chromosomes=n, q_step=0.01))
    lods = [estimator.estimate(_record(20 - k, k)).lod_vs_ref for k in range(21)]
    for prev, cur in zip(lods, lods[1:]):
        assert cur >= prev - 1e-9


def test_best_vs_next_is_non_negative() -> None:
    estimator = AlleleFrequencyEstimator(CallerConfig(n_chromosomes=3, q_step=0.01))
    for k in range(0, 16, 3):
        assert estimator.estimate(_record(15 - k, k)).lod_best_vs_next_best >= 0.0


def test_alt_derived_from_counts_when_missing() -> None:
    probs = np.vstack([_rows(0, 4), _rows(3, 3), _rows(2, 3)])
    rec = PileupRecord(Locus("chr2", 5), "A", probs, base_counts=(4, 0, 3, 3))
    est = estimate_allele_frequency(rec, CallerConfig())
    assert est.alt == "G"


def test_variant_gff_line() -> None:
    est = estimate_allele_frequency(_record(10, 10, position=42), CallerConfig())
    fields = est.as_gff_line().split("\t")
    assert fields[:5] == ["chr1", "CALLER", "VARIANT", "42", "42"]
    assert fields[5] == f"{est.lod_vs_ref:f}"
    assert fields[6:8] == [".", "."]
    attrs = fields[8].split(";")
    assert attrs[0] == "REF A"
    assert attrs[1] == "ALT C"
    assert attrs[2] == "QHAT 0.500000"
    assert attrs[3] == "QSTAR 0.500000"
    assert attrs[5] == "DEPTH 20"
    assert attrs[6] == "GENOTYPE het"
    assert attrs[7] == "NOTES A:10 C:10 G:0 T:0"
