from __future__ import annotations

import array
import random
from pathlib import Path
from typing import Dict, List

import pysam

from .pileup import encode_secondary_quality
from .pileup_source import SECONDARY_QUALITY_TAG
from .utils import ensure_outdir, write_json

TOY_CONTIG = "chr1"
TOY_LENGTH = 400
TOY_READ_LENGTH = 50
TOY_HET_POS0 = 120
TOY_HOM_POS0 = 280
TOY_N_POS0 = 200


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def _make_read(
    name: str,
    start0: int,
    seq: str,
    *,
    baseq: int = 40,
    mapq: int = 60,
    flag: int = 0,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = flag
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array(chr(baseq + 33) * len(seq))
    return a


def _add_secondary_tag(read: pysam.AlignedSegment) -> None:
    # Called base at Q20 (0.99) plus a 0.01 second-best call keeps every row summing to 1.
    seq = read.query_sequence or ""
    values = [encode_secondary_quality(_mutate_base(b), 0.01) for b in seq]
    read.set_tag(SECONDARY_QUALITY_TAG, array.array("B", values))


def make_toy_data(*, outdir: str | Path, n_reads: int = 260, seed: int = 7) -> Dict[str, object]:
    """Create a tiny reference and BAM suitable for quick demos/tests.

    The BAM carries a heterozygous SNV, a homozygous SNV, a reference ``N``, a
    few duplicate reads and some reads with secondary-quality annotations.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - toy.bam (+ .bai)

    Returns
    -------
    dict
        Paths to the generated files and the 1-based positions of the planted sites.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(seed)

    ref_seq_list = [rng.choice("ACGT") for _ in range(TOY_LENGTH)]
    ref_seq_list[TOY_N_POS0] = "N"
    ref_seq = "".join(ref_seq_list)

    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, TOY_CONTIG, ref_seq)
    pysam.faidx(str(ref_fa))

    het_alt = _mutate_base(ref_seq[TOY_HET_POS0])
    hom_alt = _mutate_base(ref_seq[TOY_HOM_POS0])

    bam_path = outdir_p / "toy.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": TOY_CONTIG, "LN": TOY_LENGTH}],
    }

    reads: List[pysam.AlignedSegment] = []
    for i in range(n_reads):
        start0 = rng.randrange(0, TOY_LENGTH - TOY_READ_LENGTH + 1)
        seq = [b if b != "N" else rng.choice("ACGT") for b in ref_seq[start0 : start0 + TOY_READ_LENGTH]]

        rel = TOY_HET_POS0 - start0
        if 0 <= rel < len(seq) and rng.random() < 0.5:
            seq[rel] = het_alt
        rel = TOY_HOM_POS0 - start0
        if 0 <= rel < len(seq):
            seq[rel] = hom_alt

        with_secondary = i % 5 == 0
        read = _make_read(f"r{i}", start0, "".join(seq), baseq=20 if with_secondary else 40)
        if with_secondary:
            _add_secondary_tag(read)
        reads.append(read)

    # Duplicates carrying the alternate allele at the heterozygous site; skipped by default.
    dup_start0 = TOY_HET_POS0 - TOY_READ_LENGTH // 2
    for i in range(3):
        seq = [b if b != "N" else "A" for b in ref_seq[dup_start0 : dup_start0 + TOY_READ_LENGTH]]
        seq[TOY_HET_POS0 - dup_start0] = het_alt
        reads.append(_make_read(f"dup{i}", dup_start0, "".join(seq), flag=1024))

    reads.sort(key=lambda r: r.reference_start)

    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)

    pysam.index(str(bam_path))

    summary = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "outdir": str(outdir_p),
        "contig": TOY_CONTIG,
        "het_site": TOY_HET_POS0 + 1,
        "het_alt": het_alt,
        "hom_site": TOY_HOM_POS0 + 1,
        "hom_alt": hom_alt,
        "ref_n_site": TOY_N_POS0 + 1,
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
