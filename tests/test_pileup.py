import numpy as np
import pytest

from afmix.errors import MalformedPileup
from afmix.models import Locus, PileupRecord, ReadObservation, SecondaryCall
from afmix.pileup import (
    base_count_notes,
    choose_alt_allele,
    decode_secondary_quality,
    encode_secondary_quality,
    read_probabilities,
    summarize_pileup,
)

LOCUS = Locus("chr1", 100)


def test_read_probabilities_single_base() -> None:
    row = read_probabilities(ReadObservation(base="G", quality=30))
    assert row[2] == pytest.approx(0.999)
    for b in (0, 1, 3):
        assert row[b] == pytest.approx(0.001 / 3.0)
    assert row.sum() == pytest.approx(1.0)


def test_read_probabilities_with_secondary_call() -> None:
    obs = ReadObservation(base="A", quality=10, secondary=SecondaryCall(base_index=3, probability=0.05))
    row = read_probabilities(obs)
    assert row[0] == pytest.approx(0.9)
    assert row[3] == pytest.approx(0.05)
    assert row[1] == pytest.approx(0.025)
    assert row[2] == pytest.approx(0.025)

    # Forced single-base mode ignores the annotation.
    row = read_probabilities(obs, force_single_base=True)
    assert row[3] == pytest.approx(0.1 / 3.0)


def test_secondary_call_on_called_base_is_ignored() -> None:
    obs = ReadObservation(base="C", quality=20, secondary=SecondaryCall(base_index=1, probability=0.3))
    row = read_probabilities(obs)
    assert row[1] == pytest.approx(0.99)
    assert row[0] == pytest.approx(0.01 / 3.0)


def test_decode_secondary_quality_remaps_actg_order() -> None:
    # Low bits index A, C, T, G; the canonical order is A, C, G, T.
    assert decode_secondary_quality((25 << 2) | 0) == SecondaryCall(0, 0.25)
    assert decode_secondary_quality((25 << 2) | 1) == SecondaryCall(1, 0.25)
    assert decode_secondary_quality((25 << 2) | 2) == SecondaryCall(3, 0.25)
    assert decode_secondary_quality((25 << 2) | 3) == SecondaryCall(2, 0.25)


def test_decode_secondary_quality_accepts_signed_bytes() -> None:
    # 0xF6 read back as a signed Java-style byte.
    assert decode_secondary_quality(-10) == decode_secondary_quality(0xF6)
    assert decode_secondary_quality(0xF6).probability == pytest.approx(0.61)


def test_encode_secondary_quality() -> None:
    value = encode_secondary_quality("G", 0.12)
    assert value == (12 << 2) | 3
    assert decode_secondary_quality(value) == SecondaryCall(2, 0.12)
    assert encode_secondary_quality("T", 0.99) >> 2 == 63
    with pytest.raises(ValueError):
        encode_secondary_quality("N", 0.1)


def test_choose_alt_allele_ties_follow_acgt_order() -> None:
    assert choose_alt_allele([10, 3, 3, 0], 0) == 1
    assert choose_alt_allele([0, 4, 2, 4], 1) == 3
    assert choose_alt_allele([5, 0, 0, 5], 3) == 0
    # Zero depth still yields the first non-reference base.
    assert choose_alt_allele([0, 0, 0, 0], 0) == 1
    assert choose_alt_allele([0, 0, 0, 0], 2) == 0


def test_summarize_pileup_counts_and_matrix() -> None:
    obs = [
        ReadObservation("A", 30),
        ReadObservation("A", 30),
        ReadObservation("T", 20),
        ReadObservation("N", 0, is_deletion=True),
        ReadObservation("N", 25),
    ]
    rec = summarize_pileup(LOCUS, "a", obs)
    assert rec.ref_base == "A"
    assert rec.depth == 3
    assert rec.base_counts == (2, 0, 0, 1)
    assert rec.alt_base == "T"
    assert rec.probabilities.shape == (3, 4)
    assert np.allclose(rec.probabilities.sum(axis=1), 1.0)
    assert base_count_notes(rec.base_counts) == "A:2 C:0 G:0 T:1"


def test_summarize_empty_pileup() -> None:
    rec = summarize_pileup(LOCUS, "C", [])
    assert rec.depth == 0
    assert rec.probabilities.shape == (0, 4)
    assert rec.base_counts == (0, 0, 0, 0)
    assert rec.alt_base == "A"


def test_summarize_pileup_rejects_non_acgt_reference() -> None:
    with pytest.raises(MalformedPileup):
        summarize_pileup(LOCUS, "N", [ReadObservation("A", 30)])


def test_downsampling_is_deterministic_per_locus() -> None:
    obs = [ReadObservation("A" if i % 3 else "G", 10 + (i % 30)) for i in range(200)]
    a = summarize_pileup(LOCUS, "A", obs, downsample=50, seed=3)
    b = summarize_pileup(LOCUS, "A", list(obs), downsample=50, seed=3)
    assert a.depth == 50
    assert np.array_equal(a.probabilities, b.probabilities)
    assert a.base_counts == b.base_counts

    other = summarize_pileup(Locus("chr1", 101), "A", obs, downsample=50, seed=3)
    assert other.depth == 50

    # Shallower loci are untouched.
    shallow = summarize_pileup(LOCUS, "A", obs[:20], downsample=50, seed=3)
    assert shallow.depth == 20


def test_pileup_record_rejects_bad_rows() -> None:
    good = [0.97, 0.01, 0.01, 0.01]
    with pytest.raises(MalformedPileup) as excinfo:
        PileupRecord(LOCUS, "A", np.array([good, [0.5, 0.2, 0.1, 0.1]]))
    assert excinfo.value.read_index == 1
    assert "chr1:100" in str(excinfo.value)

    with pytest.raises(MalformedPileup):
        PileupRecord(LOCUS, "A", np.array([[1.1, -0.1, 0.0, 0.0]]))
    with pytest.raises(MalformedPileup):
        PileupRecord(LOCUS, "A", np.array([[0.5, 0.5, 0.0]]))
    with pytest.raises(MalformedPileup):
        PileupRecord(LOCUS, "A", np.array([good]), base_counts=(1, 0, 0))
    with pytest.raises(MalformedPileup):
        PileupRecord(LOCUS, "A", np.array([good]), alt_base="A")


def test_pileup_record_copies_and_freezes_matrix() -> None:
    probs = np.array([[0.97, 0.01, 0.01, 0.01]])
    rec = PileupRecord(LOCUS, "A", probs)
    probs[0, 0] = 0.0
    assert rec.probabilities[0, 0] == pytest.approx(0.97)
    with pytest.raises(ValueError):
        rec.probabilities[0, 0] = 0.5
