"""Read pileups from an indexed BAM and a reference FASTA with pysam."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import pysam

from .errors import InvalidConfiguration
from .models import BASE_INDEX, Locus, ReadObservation, SecondaryCall
from .pileup import decode_secondary_quality

logger = logging.getLogger(__name__)

SECONDARY_QUALITY_TAG = "SQ"

_REGION_RE = re.compile(r"^(?P<contig>[^:]+)(?::(?P<start>[\d,]+)(?:-(?P<end>[\d,]+))?)?$")

Region = Tuple[str, Optional[int], Optional[int]]


@dataclass(frozen=True)
class PileupFilters:
    """Read-level filters applied before a read reaches the summarizer.

    QC-failed and unmapped reads are always skipped.
    """

    min_baseq: int = 0
    min_mapq: int = 0
    skip_duplicates: bool = True
    include_secondary: bool = False
    include_supplementary: bool = False

    def __post_init__(self) -> None:
        if self.min_baseq < 0:
            raise InvalidConfiguration(f"min_baseq must be >= 0, got {self.min_baseq}")
        if self.min_mapq < 0:
            raise InvalidConfiguration(f"min_mapq must be >= 0, got {self.min_mapq}")


def parse_region(region: str) -> Region:
    """Parse ``contig[:start[-end]]`` (1-based, inclusive) into a 0-based half-open range.

    >>> parse_region("chr1:1,001-2,000")
    ('chr1', 1000, 2000)
    """
    m = _REGION_RE.match(region.strip())
    if m is None:
        raise InvalidConfiguration(f"Cannot parse region: {region!r}")
    contig = m.group("contig")
    start = m.group("start")
    end = m.group("end")
    start0 = int(start.replace(",", "")) - 1 if start else None
    end0 = int(end.replace(",", "")) if end else None
    if start0 is not None and start0 < 0:
        raise InvalidConfiguration(f"Region start must be >= 1: {region!r}")
    if start0 is not None and end0 is not None and end0 <= start0:
        raise InvalidConfiguration(f"Region end must not precede start: {region!r}")
    return contig, start0, end0


def secondary_call_at(read: pysam.AlignedSegment, qpos: int) -> Optional[SecondaryCall]:
    """Decode the secondary-quality annotation of ``read`` at query offset ``qpos``."""
    if not read.has_tag(SECONDARY_QUALITY_TAG):
        return None
    value = read.get_tag(SECONDARY_QUALITY_TAG)
    if isinstance(value, str):
        # Hex-encoded byte array (SAM type H).
        byte = value[2 * qpos : 2 * qpos + 2]
        if len(byte) != 2:
            return None
        return decode_secondary_quality(int(byte, 16))
    if qpos >= len(value):
        return None
    return decode_secondary_quality(value[qpos])


class _ReferenceWindow:
    """Caches one window of reference sequence so each locus is not a FASTA fetch."""

    def __init__(self, fasta: pysam.FastaFile, size: int = 100_000) -> None:
        self.fasta = fasta
        self.size = size
        self.references = set(fasta.references)
        self.contig: Optional[str] = None
        self.start0 = 0
        self.seq = ""

    def base(self, contig: str, pos0: int) -> str:
        if contig not in self.references:
            return "N"
        if contig != self.contig or not (self.start0 <= pos0 < self.start0 + len(self.seq)):
            self.contig = contig
            self.start0 = pos0
            self.seq = self.fasta.fetch(contig, pos0, pos0 + self.size).upper()
        offset = pos0 - self.start0
        if offset >= len(self.seq):
            return "N"
        return self.seq[offset]


class PileupSource:
    """Iterate ``(locus, ref_base, observations)`` over a BAM in coordinate order.

    Positions are reported 1-based. Loci whose reference base is not A/C/G/T
    are skipped. ``counts`` accumulates per-locus and per-observation
    bookkeeping while iterating.
    """

    def __init__(
        self,
        bam_path: str,
        fasta_path: str,
        *,
        region: Optional[str] = None,
        filters: PileupFilters = PileupFilters(),
        max_depth: int = 100_000,
    ) -> None:
        self.bam_path = str(bam_path)
        self.fasta_path = str(fasta_path)
        self.region = parse_region(region) if region else None
        self.filters = filters
        self.max_depth = int(max_depth)
        self.counts: Dict[str, int] = {
            "loci_seen": 0,
            "loci_skipped_ref_base": 0,
            "obs_skipped_unmapped_or_qcfail": 0,
            "obs_skipped_secondary": 0,
            "obs_skipped_supplementary": 0,
            "obs_skipped_duplicates": 0,
            "obs_skipped_mapq": 0,
            "obs_skipped_baseq": 0,
        }

    def _keep_read(self, read: pysam.AlignedSegment) -> bool:
        f = self.filters
        if read.is_unmapped or read.is_qcfail:
            self.counts["obs_skipped_unmapped_or_qcfail"] += 1
            return False
        if read.is_secondary and not f.include_secondary:
            self.counts["obs_skipped_secondary"] += 1
            return False
        if read.is_supplementary and not f.include_supplementary:
            self.counts["obs_skipped_supplementary"] += 1
            return False
        if f.skip_duplicates and read.is_duplicate:
            self.counts["obs_skipped_duplicates"] += 1
            return False
        if read.mapping_quality < f.min_mapq:
            self.counts["obs_skipped_mapq"] += 1
            return False
        return True

    def _observation(self, pr: pysam.PileupRead) -> Optional[ReadObservation]:
        read = pr.alignment
        if not self._keep_read(read):
            return None
        if pr.is_del or pr.is_refskip:
            return ReadObservation(base="N", quality=0, is_deletion=True)

        qpos = pr.query_position
        seq = read.query_sequence
        if qpos is None or seq is None:
            return None
        quals = read.query_qualities
        bq = int(quals[qpos]) if quals is not None else 0
        if bq < self.filters.min_baseq:
            self.counts["obs_skipped_baseq"] += 1
            return None
        return ReadObservation(
            base=seq[qpos].upper(),
            quality=bq,
            secondary=secondary_call_at(read, qpos),
        )

    def _columns(self, bam: pysam.AlignmentFile) -> Iterator[pysam.PileupColumn]:
        kwargs = dict(
            stepper="nofilter",
            min_base_quality=0,
            ignore_overlaps=False,
            ignore_orphans=False,
            compute_baq=False,
            max_depth=self.max_depth,
        )
        if self.region is None:
            return bam.pileup(**kwargs)
        contig, start0, end0 = self.region
        return bam.pileup(contig, start0, end0, truncate=True, **kwargs)

    def __iter__(self) -> Iterator[Tuple[Locus, str, List[ReadObservation]]]:
        with pysam.AlignmentFile(self.bam_path, "rb") as bam, pysam.FastaFile(self.fasta_path) as fasta:
            ref = _ReferenceWindow(fasta)
            for column in self._columns(bam):
                contig = column.reference_name
                pos0 = column.reference_pos
                self.counts["loci_seen"] += 1

                ref_base = ref.base(contig, pos0)
                if ref_base not in BASE_INDEX:
                    self.counts["loci_skipped_ref_base"] += 1
                    continue

                observations = []
                for pr in column.pileups:
                    obs = self._observation(pr)
                    if obs is not None:
                        observations.append(obs)
                yield Locus(contig, pos0 + 1), ref_base, observations
