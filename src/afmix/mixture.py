"""Mixture posterior model.

Three log10-space terms make up the posterior of a (q, qstar) hypothesis:

- the data likelihood given a fraction ``q`` of alternate signal,
- the mixture prior ``P(q | qstar)`` (binomial, only for the diploid case),
- a fixed genotype prior over the qstar grid index.

``q`` and the rounded alternate count may be numpy arrays so the estimator can
evaluate a whole q grid in one call.
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Union

import numpy as np

ArrayOrFloat = Union[float, np.ndarray]

LOG10_PRIOR_REF = math.log10(0.999)
LOG10_PRIOR_HOM = math.log10(1e-5)
LOG10_PRIOR_HET = math.log10(1e-3)


# Upper bound on (q, read) cells materialised at once by log_likelihood_data.
LIKELIHOOD_BLOCK_CELLS = 1 << 20


def _collapse_reads(p_ref: np.ndarray, p_alt: np.ndarray):
    # Reads with equal qualities share a (P[ref], P[alt]) pair; score each pair once.
    pairs, weights = np.unique(np.column_stack([p_ref, p_alt]), axis=0, return_counts=True)
    return pairs[:, 0], pairs[:, 1], weights.astype(np.float64)


def log_likelihood_data(probs: np.ndarray, q: ArrayOrFloat, ref_idx: int, alt_idx: int) -> ArrayOrFloat:
    """Sum over reads of ``log10((1 - q) * P[read][ref] + q * P[read][alt])``.

    Zero reads give 0.0 (log of an empty product). Identical read rows are
    weighted rather than repeated, and the q grid is scored in blocks of at most
    ``LIKELIHOOD_BLOCK_CELLS`` cells, so memory does not grow with depth.
    """
    probs = np.asarray(probs, dtype=np.float64)
    q_arr = np.asarray(q, dtype=np.float64)
    if probs.shape[0] == 0:
        return 0.0 if q_arr.ndim == 0 else np.zeros(q_arr.shape, dtype=np.float64)

    p_ref, p_alt, weights = _collapse_reads(probs[:, ref_idx], probs[:, alt_idx])

    with np.errstate(divide="ignore"):
        if q_arr.ndim == 0:
            qf = float(q_arr)
            return float((weights * np.log10((1.0 - qf) * p_ref + qf * p_alt)).sum())

        out = np.zeros(q_arr.shape[0], dtype=np.float64)
        block = max(1, LIKELIHOOD_BLOCK_CELLS // max(1, q_arr.shape[0]))
        for start in range(0, p_ref.shape[0], block):
            stop = start + block
            mix = (1.0 - q_arr)[:, None] * p_ref[None, start:stop] + q_arr[:, None] * p_alt[None, start:stop]
            out += np.log10(mix) @ weights[start:stop]
        return out


def rounded_count(q: ArrayOrFloat, depth: int) -> Union[int, np.ndarray]:
    """Alternate read count implied by ``q`` at this depth, rounded half up."""
    k = np.floor(np.asarray(q, dtype=np.float64) * depth + 0.5).astype(np.int64)
    if k.ndim == 0:
        return int(k)
    return k


def log_prior_mixture(n_chromosomes: int, qstar: float, count: Union[int, np.ndarray], depth: int) -> ArrayOrFloat:
    """log10 P(q | qstar).

    Only the diploid single-sample case (N = 2) is modelled, as a binomial with
    ``count`` successes out of ``depth`` trials; any other N is uninformative.
    """
    if n_chromosomes != 2:
        if np.ndim(count) == 0:
            return 0.0
        return np.zeros(np.shape(count), dtype=np.float64)
    return binomial_log10_pmf(count, depth, qstar)


def log_prior_genotype(n_chromosomes: int, qstar_index: int) -> float:
    """Hand-tuned prior over the qstar grid index (reference, homozygous, or in between)."""
    if qstar_index == 0:
        return LOG10_PRIOR_REF
    if qstar_index == n_chromosomes:
        return LOG10_PRIOR_HOM
    return LOG10_PRIOR_HET


@lru_cache(maxsize=128)
def _log10_binomial_coefficients(n: int) -> np.ndarray:
    # log10 C(n, k) for k = 0..n via cumulative log ratios; exact up to rounding
    # and free of the overflow a direct product hits for large n.
    steps = np.log10(np.arange(n, 0, -1, dtype=np.float64)) - np.log10(np.arange(1, n + 1, dtype=np.float64))
    coef = np.concatenate(([0.0], np.cumsum(steps)))
    coef.setflags(write=False)
    return coef


def binomial_log10_pmf(k: Union[int, np.ndarray], n: int, p: float) -> ArrayOrFloat:
    """log10 of the binomial probability of ``k`` successes in ``n`` trials.

    Both the small-count regime (``n*p < 5`` and ``n*(1-p) < 5``) and the
    large-count regime return the exact value; no normal approximation is used.
    Impossible outcomes give ``-inf``.
    """
    if n < 0:
        raise ValueError(f"number of trials must be >= 0, got {n}")
    k_arr = np.asarray(k, dtype=np.int64)
    inside = (k_arr >= 0) & (k_arr <= n)
    kk = np.clip(k_arr, 0, n)

    if p <= 0.0:
        out = np.where(kk == 0, 0.0, -np.inf)
    elif p >= 1.0:
        out = np.where(kk == n, 0.0, -np.inf)
    else:
        coef = _log10_binomial_coefficients(int(n))
        out = coef[kk] + kk * math.log10(p) + (n - kk) * math.log10(1.0 - p)

    out = np.where(inside, out, -np.inf)
    if out.ndim == 0:
        return float(out)
    return out


def binomial_prob(k: int, n: int, p: float) -> float:
    """Binomial probability mass (linear space)."""
    return 10.0 ** binomial_log10_pmf(k, n, p)
