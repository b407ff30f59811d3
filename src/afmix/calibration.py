"""Built-in calibration pileups for a quick sanity check of the estimator.

``afmix selftest`` evaluates these and prints one line per case, along with a
few reference binomial probabilities.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

import numpy as np

from .config import CallerConfig
from .estimator import AlleleFrequencyEstimator
from .mixture import binomial_prob
from .models import AlleleFrequencyEstimate, Locus, PileupRecord

logger = logging.getLogger(__name__)

BINOMIAL_CHECKS: Tuple[Tuple[int, int, float], ...] = (
    (5, 10, 0.5),
    (50, 100, 0.5),
    (1500, 2965, 0.508065),
)


@dataclass(frozen=True)
class CalibrationCase:
    name: str
    n_chromosomes: int
    record: PileupRecord
    expected_qstar: float


def _confident_rows(base_index: int, count: int, p: float = 0.999) -> np.ndarray:
    rows = np.full((count, 4), (1.0 - p) / 3.0, dtype=np.float64)
    rows[:, base_index] = p
    return rows


def _record(name: str, ref_reads: int, alt_reads: int) -> PileupRecord:
    # Reference A (index 0), alternate C (index 1).
    probs = np.vstack([_confident_rows(0, ref_reads), _confident_rows(1, alt_reads)])
    return PileupRecord(
        locus=Locus(name, 1),
        ref_base="A",
        alt_base="C",
        probabilities=probs,
        base_counts=(ref_reads, alt_reads, 0, 0),
    )


def calibration_cases() -> List[CalibrationCase]:
    return [
        CalibrationCase(
            name="50% Het",
            n_chromosomes=2,
            record=_record("het50", ref_reads=10, alt_reads=10),
            expected_qstar=0.5,
        ),
        CalibrationCase(
            name="10% Het",
            n_chromosomes=10,
            record=_record("het10", ref_reads=90, alt_reads=10),
            expected_qstar=0.1,
        ),
    ]


def run_case(case: CalibrationCase, *, q_step: float = 0.001) -> AlleleFrequencyEstimate:
    config = CallerConfig(n_chromosomes=case.n_chromosomes, q_step=q_step)
    return AlleleFrequencyEstimator(config).estimate(case.record)


def run_selftest(*, q_step: float = 0.001) -> Dict[str, object]:
    """Evaluate every calibration case; ``ok`` is False if any qstar misses its expectation."""
    binomials = [
        {"k": k, "n": n, "p": p, "probability": binomial_prob(k, n, p)} for k, n, p in BINOMIAL_CHECKS
    ]
    cases = []
    ok = True
    for case in calibration_cases():
        est = run_case(case, q_step=q_step)
        passed = abs(est.qstar - case.expected_qstar) < 1e-9 and est.lod_vs_ref > 0.0
        if not passed:
            logger.warning(
                "Calibration case %s gave qstar=%f (expected %f)", case.name, est.qstar, case.expected_qstar
            )
        ok = ok and passed
        cases.append({"case": case, "estimate": est, "passed": passed})
    return {"binomials": binomials, "cases": cases, "ok": ok}


def format_selftest(result: Dict[str, object]) -> str:
    lines = []
    for b in result["binomials"]:  # type: ignore[union-attr]
        lines.append(f"binomialProb({b['k']}, {b['n']}, {b['p']}) = {b['probability']:.6g}")
    for c in result["cases"]:  # type: ignore[union-attr]
        est: AlleleFrequencyEstimate = c["estimate"]
        status = "ok" if c["passed"] else "FAILED"
        lines.append(
            f"{c['case'].name} : {est.ref} {est.alt} {est.qhat:f} {est.qstar:f} "
            f"{est.lod_vs_ref:f} {est.depth} [{status}]"
        )
    return "\n".join(lines)
