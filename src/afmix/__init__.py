"""afmix: per-locus allele-frequency estimation from read pileups.

Each locus is scored by a discretized Bayesian grid search over the
alternate-allele mixture fraction; the per-locus estimates are then streamed
into variant calls and confident-reference intervals. Most users should use
the CLI:

    afmix call --bam sample.bam --ref ref.fa --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
