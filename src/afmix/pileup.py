"""Pileup summarization: read observations -> base counts + probability matrix."""

from __future__ import annotations

import logging
import zlib
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from .errors import MalformedPileup
from .models import BASE_INDEX, NUCLEOTIDES, Locus, PileupRecord, ReadObservation, SecondaryCall
from .utils import phred_to_prob

logger = logging.getLogger(__name__)

# Secondary-quality annotations index bases as A, C, T, G. This table is the
# only place that convention is translated to the canonical A, C, G, T order.
SECONDARY_TO_CANONICAL: Tuple[int, int, int, int] = (
    BASE_INDEX["A"],
    BASE_INDEX["C"],
    BASE_INDEX["T"],
    BASE_INDEX["G"],
)
CANONICAL_TO_SECONDARY: Tuple[int, ...] = tuple(SECONDARY_TO_CANONICAL.index(i) for i in range(4))

AltPolicy = Callable[[Sequence[int], int], int]


def decode_secondary_quality(value: int) -> SecondaryCall:
    """Decode one compressed secondary-quality byte.

    The low two bits name the second-best base (A, C, T, G convention); the
    upper six bits hold ``round(100 * p)``.
    """
    value = int(value) & 0xFF
    return SecondaryCall(
        base_index=SECONDARY_TO_CANONICAL[value & 0x3],
        probability=(value >> 2) / 100.0,
    )


def encode_secondary_quality(base: str, probability: float) -> int:
    """Inverse of :func:`decode_secondary_quality` (probability is rounded to 0.01 and capped at 0.63)."""
    if base not in BASE_INDEX:
        raise ValueError(f"base must be one of A/C/G/T, got {base!r}")
    scaled = min(int(round(probability * 100.0)), 63)
    if scaled < 0:
        raise ValueError(f"probability must be non-negative, got {probability}")
    return (scaled << 2) | CANONICAL_TO_SECONDARY[BASE_INDEX[base]]


def choose_alt_allele(base_counts: Sequence[int], ref_index: int) -> int:
    """Pick the alternate allele: most frequent non-reference base.

    Ties go to the first base in A, C, G, T order. A zero-depth locus still gets
    an alternate (the first non-reference base).
    """
    best = -1
    best_count = -1
    for b, count in enumerate(base_counts):
        if b != ref_index and count > best_count:
            best = b
            best_count = count
    return best


def read_probabilities(obs: ReadObservation, *, force_single_base: bool = False) -> np.ndarray:
    """Per-read probability vector over A, C, G, T."""
    called = BASE_INDEX[obs.base]
    p_called = phred_to_prob(obs.quality)
    probs = np.empty(len(NUCLEOTIDES), dtype=np.float64)

    secondary = None if force_single_base else obs.secondary
    if secondary is not None and secondary.base_index == called:
        logger.debug("Secondary call repeats the called base %s; ignoring it", obs.base)
        secondary = None

    if secondary is None:
        probs[:] = (1.0 - p_called) / 3.0
        probs[called] = p_called
        return probs

    probs[:] = (1.0 - p_called - secondary.probability) / 2.0
    probs[called] = p_called
    probs[secondary.base_index] = secondary.probability
    return probs


def _locus_rng(locus: Locus, seed: int) -> np.random.Generator:
    # Seeded per locus so downsampling does not depend on processing order.
    return np.random.default_rng([int(seed), zlib.crc32(locus.contig.encode("utf-8")), int(locus.position)])


def summarize_pileup(
    locus: Locus,
    ref_base: str,
    observations: Sequence[ReadObservation],
    *,
    force_single_base_probs: bool = False,
    downsample: int = 0,
    seed: int = 0,
    alt_policy: AltPolicy = choose_alt_allele,
) -> PileupRecord:
    """Summarize the reads at one locus into a :class:`PileupRecord`.

    Deletions and reads whose base is not A/C/G/T are dropped. An empty pileup
    gives a zero-depth record.
    """
    ref_base = ref_base.upper()
    if ref_base not in BASE_INDEX:
        raise MalformedPileup(f"reference base must be one of A/C/G/T, got {ref_base!r}", locus=str(locus))

    usable = [o for o in observations if not o.is_deletion and o.base in BASE_INDEX]

    if downsample and len(usable) > downsample:
        keep = np.sort(_locus_rng(locus, seed).choice(len(usable), size=downsample, replace=False))
        logger.debug("Downsampling %s from %d to %d reads", locus, len(usable), downsample)
        usable = [usable[i] for i in keep]

    counts = [0, 0, 0, 0]
    rows = np.empty((len(usable), len(NUCLEOTIDES)), dtype=np.float64)
    for i, obs in enumerate(usable):
        counts[BASE_INDEX[obs.base]] += 1
        rows[i] = read_probabilities(obs, force_single_base=force_single_base_probs)

    ref_index = BASE_INDEX[ref_base]
    alt_index = alt_policy(counts, ref_index)

    return PileupRecord(
        locus=locus,
        ref_base=ref_base,
        probabilities=rows,
        base_counts=(counts[0], counts[1], counts[2], counts[3]),
        alt_base=NUCLEOTIDES[alt_index],
    )


def base_count_notes(base_counts: Sequence[int]) -> str:
    return " ".join(f"{b}:{int(c)}" for b, c in zip(NUCLEOTIDES, base_counts))


def resolve_alt_index(record: PileupRecord, alt_policy: Optional[AltPolicy] = None) -> int:
    """Alternate index of a record, derived from its counts if not given."""
    if record.alt_base is not None:
        return BASE_INDEX[record.alt_base]
    policy = alt_policy or choose_alt_allele
    return policy(record.base_counts, record.ref_index)
