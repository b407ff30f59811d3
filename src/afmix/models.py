from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from .errors import MalformedPileup

# Canonical nucleotide order for count vectors and probability columns.
NUCLEOTIDES: Tuple[str, str, str, str] = ("A", "C", "G", "T")
BASE_INDEX = {b: i for i, b in enumerate(NUCLEOTIDES)}

# Absolute tolerance on the per-read probability sum.
PROB_SUM_TOLERANCE = 1e-6


@dataclass(frozen=True)
class Locus:
    """A genomic coordinate: contig name and 1-based position."""

    contig: str
    position: int

    def __str__(self) -> str:
        return f"{self.contig}:{self.position}"


@dataclass(frozen=True)
class SecondaryCall:
    """Second-best base for one read position, in canonical (A,C,G,T) index space."""

    base_index: int
    probability: float


@dataclass(frozen=True)
class ReadObservation:
    """One read overlapping one locus.

    Attributes
    ----------
    base:
        Called base at the locus (uppercase).
    quality:
        Phred base quality of the called base.
    secondary:
        Optional second-best base call decoded from the read's annotation.
    is_deletion:
        True if the read has a deletion (or reference skip) at the locus.
    """

    base: str
    quality: int
    secondary: Optional[SecondaryCall] = None
    is_deletion: bool = False


def validate_probability_matrix(probs: np.ndarray, *, locus: Optional[str] = None) -> None:
    """Reject probability matrices that are not n x 4 with rows summing to 1.

    Rows are never renormalized: a bad row points at an upstream decoding bug.
    """
    if probs.ndim != 2 or probs.shape[1] != len(NUCLEOTIDES):
        raise MalformedPileup(f"probability matrix must have shape (n, 4), got {probs.shape}", locus=locus)
    if probs.shape[0] == 0:
        return

    bad_values = ~np.isfinite(probs).all(axis=1) | (probs < 0.0).any(axis=1)
    if bad_values.any():
        i = int(np.flatnonzero(bad_values)[0])
        raise MalformedPileup(
            f"read {i} has a negative or non-finite probability: {probs[i].tolist()}",
            locus=locus,
            read_index=i,
        )

    sums = probs.sum(axis=1)
    bad_sums = np.abs(sums - 1.0) > PROB_SUM_TOLERANCE
    if bad_sums.any():
        i = int(np.flatnonzero(bad_sums)[0])
        raise MalformedPileup(
            f"read {i} probabilities sum to {sums[i]:.6g}, expected 1.0",
            locus=locus,
            read_index=i,
        )


@dataclass(frozen=True, eq=False)
class PileupRecord:
    """Summarized pileup at one locus.

    ``probabilities`` has one row per read and one column per nucleotide in
    ``NUCLEOTIDES`` order. ``alt_base`` may be left as None, in which case the
    estimator derives it from ``base_counts``.
    """

    locus: Locus
    ref_base: str
    probabilities: np.ndarray
    base_counts: Tuple[int, int, int, int] = (0, 0, 0, 0)
    alt_base: Optional[str] = None

    def __post_init__(self) -> None:
        where = str(self.locus)
        if self.ref_base not in BASE_INDEX:
            raise MalformedPileup(f"reference base must be one of A/C/G/T, got {self.ref_base!r}", locus=where)
        if self.alt_base is not None:
            if self.alt_base not in BASE_INDEX:
                raise MalformedPileup(f"alternate base must be one of A/C/G/T, got {self.alt_base!r}", locus=where)
            if self.alt_base == self.ref_base:
                raise MalformedPileup("alternate base equals the reference base", locus=where)
        if len(self.base_counts) != len(NUCLEOTIDES):
            raise MalformedPileup(f"base_counts must have 4 entries, got {len(self.base_counts)}", locus=where)

        probs = np.array(self.probabilities, dtype=np.float64)
        if probs.size == 0:
            probs = probs.reshape(0, len(NUCLEOTIDES))
        validate_probability_matrix(probs, locus=where)
        probs.setflags(write=False)
        object.__setattr__(self, "probabilities", probs)
        object.__setattr__(self, "base_counts", tuple(int(c) for c in self.base_counts))

    @property
    def depth(self) -> int:
        return int(self.probabilities.shape[0])

    @property
    def ref_index(self) -> int:
        return BASE_INDEX[self.ref_base]


@dataclass(frozen=True)
class MixtureHypothesis:
    """Best-supported mixture for one qstar grid point.

    Index 0 is the null (pure reference) hypothesis with qstar = qhat = 0.
    """

    qstar_index: int
    qstar: float
    qhat: float
    posterior: float


@dataclass(frozen=True)
class AlleleFrequencyEstimate:
    """Result of evaluating one locus."""

    locus: Locus
    ref: str
    alt: str
    n_chromosomes: int
    qhat: float
    qstar: float
    lod_vs_ref: float
    lod_best_vs_next_best: float
    depth: int
    notes: str = ""

    @property
    def genotype(self) -> str:
        # Nearest qstar grid index; endpoints are pure genotypes.
        k = int(np.floor(self.qstar * self.n_chromosomes + 0.5))
        if k <= 0:
            return "ref"
        if k >= self.n_chromosomes:
            return "hom"
        return "het"

    def as_gff_line(self) -> str:
        attrs = ";".join(
            [
                f"REF {self.ref}",
                f"ALT {self.alt}",
                f"QHAT {self.qhat:f}",
                f"QSTAR {self.qstar:f}",
                f"LOD_BEST_VS_NEXT {self.lod_best_vs_next_best:f}",
                f"DEPTH {self.depth}",
                f"GENOTYPE {self.genotype}",
                f"NOTES {self.notes}",
            ]
        )
        pos = self.locus.position
        return f"{self.locus.contig}\tCALLER\tVARIANT\t{pos}\t{pos}\t{self.lod_vs_ref:f}\t.\t.\t{attrs}"


@dataclass(frozen=True)
class ReferenceInterval:
    """A closed run of contiguous confidently-reference loci."""

    contig: str
    start: int
    end: int
    mean_lod: float
    length: int

    def as_gff_line(self) -> str:
        return (
            f"{self.contig}\tCALLER\tREFERENCE\t{self.start}\t{self.end}\t"
            f"{self.mean_lod:f}\t.\t.\tLENGTH {self.length}"
        )


@dataclass
class ConfidentInterval:
    """The reducer's open interval (mutable, owned by a single reducer)."""

    contig: str
    start: int
    end: int
    lod_sum: float
    length: int = 1

    def accepts(self, locus: Locus) -> bool:
        return locus.contig == self.contig and locus.position == self.end + 1

    def extend(self, locus: Locus, lod: float) -> None:
        self.end = locus.position
        self.lod_sum += lod
        self.length += 1

    def close(self) -> ReferenceInterval:
        return ReferenceInterval(
            contig=self.contig,
            start=self.start,
            end=self.end,
            mean_lod=self.lod_sum / self.length,
            length=self.length,
        )


@dataclass
class ReducerState:
    """Everything the reducer carries from one estimate to the next."""

    interval: Optional[ConfidentInterval] = None
    last_locus: Optional[Locus] = None
    finished_contigs: set = field(default_factory=set)
