from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from .config import CallerConfig
from .mixture import log_likelihood_data, log_prior_genotype, log_prior_mixture, rounded_count
from .models import NUCLEOTIDES, AlleleFrequencyEstimate, MixtureHypothesis, PileupRecord
from .pileup import AltPolicy, base_count_notes, choose_alt_allele, resolve_alt_index

logger = logging.getLogger(__name__)


def q_grid(step: float) -> np.ndarray:
    """Hypothetical mixture fractions 0, step, 2*step, ... up to and including 1.0.

    Grid points are exact multiples of ``step`` (no accumulated drift) and the
    last point is always exactly 1.0.
    """
    n = int(math.floor(1.0 / step + 1e-9))
    grid = np.minimum(np.arange(n + 1, dtype=np.float64) * step, 1.0)
    if 1.0 - grid[-1] <= step * 1e-6:
        grid[-1] = 1.0
    else:
        grid = np.append(grid, 1.0)
    return grid


def rank_mixtures(hypotheses: Sequence[MixtureHypothesis]) -> List[MixtureHypothesis]:
    """Order hypotheses by descending posterior; equal posteriors keep their input order."""
    return sorted(hypotheses, key=lambda h: h.posterior, reverse=True)


class AlleleFrequencyEstimator:
    """Grid-search estimator of the non-reference allele fraction at one locus.

    The estimator holds no per-locus state: :meth:`estimate` is a pure function
    of the record, so loci can be evaluated in any order or in parallel.
    """

    def __init__(self, config: CallerConfig, *, alt_policy: AltPolicy = choose_alt_allele) -> None:
        self.config = config
        self.alt_policy = alt_policy
        self._q = q_grid(config.q_step)
        self._q.setflags(write=False)

    @property
    def q_values(self) -> np.ndarray:
        return self._q

    def score_mixtures(self, record: PileupRecord, alt_index: Optional[int] = None) -> List[MixtureHypothesis]:
        """Return the N+1 best mixtures, one per qstar grid index (index 0 = null)."""
        n = self.config.n_chromosomes
        depth = record.depth
        ref_idx = record.ref_index
        if alt_index is None:
            alt_index = resolve_alt_index(record, self.alt_policy)
        probs = record.probabilities

        null_posterior = (
            log_likelihood_data(probs, 0.0, ref_idx, alt_index)
            + log_prior_mixture(n, 0.0, 0, depth)
            + log_prior_genotype(n, 0)
        )
        hypotheses = [MixtureHypothesis(qstar_index=0, qstar=0.0, qhat=0.0, posterior=float(null_posterior))]

        q = self._q
        data_term = log_likelihood_data(probs, q, ref_idx, alt_index)
        counts = rounded_count(q, depth)

        for j in range(1, n + 1):
            qstar = j / n
            posterior = data_term + log_prior_mixture(n, qstar, counts, depth) + log_prior_genotype(n, j)
            # argmax returns the first maximum, i.e. the lowest q on ties.
            best = int(np.argmax(posterior))
            hypotheses.append(
                MixtureHypothesis(qstar_index=j, qstar=qstar, qhat=float(q[best]), posterior=float(posterior[best]))
            )
        return hypotheses

    def estimate(self, record: PileupRecord) -> AlleleFrequencyEstimate:
        alt_index = resolve_alt_index(record, self.alt_policy)
        hypotheses = self.score_mixtures(record, alt_index)

        # How confident are we in the best variant mixture versus pure reference?
        null_posterior = hypotheses[0].posterior
        lod_vs_ref = max(h.posterior for h in hypotheses[1:]) - null_posterior

        # How confident are we in the best mixture versus the runner-up?
        ranked = rank_mixtures(hypotheses)
        lod_best_vs_next_best = ranked[0].posterior - ranked[1].posterior
        winner = ranked[0]

        estimate = AlleleFrequencyEstimate(
            locus=record.locus,
            ref=record.ref_base,
            alt=NUCLEOTIDES[alt_index],
            n_chromosomes=self.config.n_chromosomes,
            qhat=winner.qhat,
            qstar=winner.qstar,
            lod_vs_ref=lod_vs_ref,
            lod_best_vs_next_best=lod_best_vs_next_best,
            depth=record.depth,
            notes=base_count_notes(record.base_counts),
        )
        logger.debug("%s => %s", record.locus, estimate)
        return estimate

    __call__ = estimate


def estimate_allele_frequency(record: PileupRecord, config: CallerConfig) -> AlleleFrequencyEstimate:
    """One-shot convenience wrapper around :class:`AlleleFrequencyEstimator`."""
    return AlleleFrequencyEstimator(config).estimate(record)
