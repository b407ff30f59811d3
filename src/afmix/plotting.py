from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def plot_lod_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    ref_lod_threshold: Optional[float] = None,
    variant_lod_threshold: Optional[float] = None,
    title: str = "LOD vs reference per locus",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    plt.bar(centers, counts, width=widths, align="center")
    if ref_lod_threshold is not None:
        plt.axvline(ref_lod_threshold, color="tab:green", linestyle="--", label="reference threshold")
    if variant_lod_threshold is not None:
        plt.axvline(variant_lod_threshold, color="tab:red", linestyle="--", label="variant threshold")
    if ref_lod_threshold is not None or variant_lod_threshold is not None:
        plt.legend()
    plt.yscale("symlog")
    plt.xlabel("LOD vs reference (edge bins include clipped values)")
    plt.ylabel("Locus count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_call_counts(
    *,
    counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Locus outcomes",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["Confident ref", "No call", "Variant (het)", "Variant (hom)"]
    values = [
        int(counts.get("loci_confident_ref", 0)),
        int(counts.get("loci_no_call", 0)),
        int(counts.get("genotype_het", 0)),
        int(counts.get("genotype_hom", 0)),
    ]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Locus count")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_depth_hist(
    *,
    depth_hist: Dict[int, int],
    out_png: str | Path,
    title: str = "Read depth per locus",
    max_bin: int = 60,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    # Collapse tail into max_bin+
    xs = list(range(0, max_bin + 1))
    ys = [0] * len(xs)
    tail = 0
    for k, v in depth_hist.items():
        k = int(k)
        if k <= max_bin:
            ys[k] += int(v)
        else:
            tail += int(v)

    xticklabels = [str(x) if x % 10 == 0 else "" for x in range(0, max_bin + 1)]
    if tail > 0:
        xs.append(max_bin + 1)
        ys.append(tail)
        xticklabels.append(f"{max_bin + 1}+")

    plt.figure()
    plt.bar(range(len(xs)), ys)
    plt.xlabel("Usable reads at locus")
    plt.ylabel("Locus count")
    plt.title(title)
    plt.xticks(range(len(xs)), xticklabels, rotation=0)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
