from __future__ import annotations

import logging
import math
from typing import Dict, Optional

import numpy as np

from .config import CallerConfig
from .models import AlleleFrequencyEstimate, ReferenceInterval

logger = logging.getLogger(__name__)

LOD_HIST_RANGE = (-50.0, 50.0)
LOD_HIST_BINS = 100


class CallMetrics:
    """Streaming run statistics for a call: counters plus LOD/depth/qhat histograms.

    LODs outside ``LOD_HIST_RANGE`` are clipped into the edge bins; NaN LODs are
    counted but not binned.
    """

    def __init__(self) -> None:
        self.counts: Dict[str, int] = {
            "loci_evaluated": 0,
            "loci_zero_depth": 0,
            "loci_confident_ref": 0,
            "loci_no_call": 0,
            "loci_nan_lod": 0,
            "reference_intervals": 0,
            "variants": 0,
            "genotype_het": 0,
            "genotype_hom": 0,
        }
        self.lod_bin_edges = np.linspace(LOD_HIST_RANGE[0], LOD_HIST_RANGE[1], LOD_HIST_BINS + 1)
        self.lod_counts = np.zeros(LOD_HIST_BINS, dtype=np.int64)
        self.qhat_bin_edges = np.linspace(0.0, 1.0, 21)
        self.qhat_counts = np.zeros(20, dtype=np.int64)
        self.depth_hist: Dict[int, int] = {}
        self.longest_interval: Optional[ReferenceInterval] = None

    def observe_estimate(self, est: AlleleFrequencyEstimate, config: CallerConfig) -> None:
        self.counts["loci_evaluated"] += 1
        if est.depth == 0:
            self.counts["loci_zero_depth"] += 1
        self.depth_hist[est.depth] = self.depth_hist.get(est.depth, 0) + 1

        lod = est.lod_vs_ref
        if math.isnan(lod):
            self.counts["loci_nan_lod"] += 1
            return
        clipped = min(max(lod, LOD_HIST_RANGE[0]), LOD_HIST_RANGE[1])
        self.lod_counts += np.histogram([clipped], bins=self.lod_bin_edges)[0]

        if lod <= config.ref_lod_threshold:
            self.counts["loci_confident_ref"] += 1
        elif lod < config.variant_lod_threshold:
            self.counts["loci_no_call"] += 1

    def observe_record(self, record: object) -> None:
        if isinstance(record, ReferenceInterval):
            self.counts["reference_intervals"] += 1
            if self.longest_interval is None or record.length > self.longest_interval.length:
                self.longest_interval = record
            return
        if isinstance(record, AlleleFrequencyEstimate):
            self.counts["variants"] += 1
            genotype = record.genotype
            key = f"genotype_{genotype}"
            self.counts[key] = self.counts.get(key, 0) + 1
            self.qhat_counts += np.histogram([record.qhat], bins=self.qhat_bin_edges)[0]
            return
        raise TypeError(f"Unexpected call record type: {type(record).__name__}")

    def to_dict(self) -> Dict[str, object]:
        longest = None
        if self.longest_interval is not None:
            iv = self.longest_interval
            longest = {"contig": iv.contig, "start": iv.start, "end": iv.end, "length": iv.length}
        return {
            "counts": dict(self.counts),
            "lod_hist": {
                "bin_edges": self.lod_bin_edges.tolist(),
                "counts": self.lod_counts.tolist(),
            },
            "variant_qhat_hist": {
                "bin_edges": self.qhat_bin_edges.tolist(),
                "counts": self.qhat_counts.tolist(),
            },
            "depth_hist": {str(k): v for k, v in sorted(self.depth_hist.items())},
            "longest_reference_interval": longest,
        }
