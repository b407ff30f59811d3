from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

import pysam

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"


def check_bam_index(bam_path: str | Path) -> None:
    """Ensure a BAM has an index; raise ValueError with fix instructions."""
    bam = Path(bam_path)
    bai1 = bam.with_suffix(bam.suffix + ".bai")
    bai2 = bam.with_suffix(".bai")
    csi = bam.with_suffix(bam.suffix + ".csi")
    if bai1.exists() or bai2.exists() or csi.exists():
        return
    raise ValueError(
        "BAM is not indexed. Run: samtools index " + str(bam)
    )


def check_fasta_index(fasta_path: str | Path) -> None:
    """Ensure a reference FASTA has a .fai index; raise ValueError with fix instructions."""
    fa = Path(fasta_path)
    fai = fa.with_suffix(fa.suffix + ".fai")
    if not fai.exists():
        raise ValueError("Reference FASTA is not indexed. Run: samtools faidx " + str(fa))


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def bam_contigs(bam_path: str | Path) -> List[str]:
    with pysam.AlignmentFile(str(bam_path), "rb") as bam:
        return list(bam.header.references)


def fasta_contigs(fasta_path: str | Path) -> List[str]:
    with pysam.FastaFile(str(fasta_path)) as fa:
        return list(fa.references)


def check_contigs(bam_names: List[str], ref_names: List[str], *, region_contig: Optional[str] = None) -> List[str]:
    """Return the contigs shared by BAM and reference; raise ValueError if there are none.

    If ``region_contig`` is given it must be present in both.
    """
    ref_set = set(ref_names)
    shared = [c for c in bam_names if c in ref_set]
    if not shared:
        raise ValueError(
            "Contig mismatch between BAM and reference (BAM style: "
            f"{detect_contig_style(bam_names)}, reference style: {detect_contig_style(ref_names)}). "
            "Align against the same reference you pass with --ref."
        )
    missing = [c for c in bam_names if c not in ref_set]
    if missing:
        logger.warning("%d BAM contig(s) are absent from the reference, e.g. %s", len(missing), missing[0])
    if region_contig is not None and region_contig not in shared:
        raise ValueError(f"Region contig {region_contig!r} is not present in both BAM and reference.")
    return shared
