from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict

from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)

DEFAULT_REF_LOD_THRESHOLD = -5.0
DEFAULT_VARIANT_LOD_THRESHOLD = 5.0
DEFAULT_Q_STEP = 0.001


@dataclass(frozen=True)
class CallerConfig:
    """Immutable settings shared by the estimator and the reducer.

    Attributes
    ----------
    n_chromosomes:
        Number of chromosomes in the data (ploidy x samples). The qstar grid has
        ``n_chromosomes + 1`` points.
    ref_lod_threshold:
        Loci with ``lod_vs_ref <= ref_lod_threshold`` are confidently reference.
    variant_lod_threshold:
        Loci with ``lod_vs_ref >= variant_lod_threshold`` are emitted as variants.
    q_step:
        Step of the hypothetical mixture-fraction grid over [0, 1].
    downsample:
        If > 0, loci deeper than this are randomly downsampled to this many reads.
    force_single_base_probs:
        Ignore secondary-base annotations and only use the called base quality.
    seed:
        Seed for per-locus downsampling.
    """

    n_chromosomes: int = 2
    ref_lod_threshold: float = DEFAULT_REF_LOD_THRESHOLD
    variant_lod_threshold: float = DEFAULT_VARIANT_LOD_THRESHOLD
    q_step: float = DEFAULT_Q_STEP
    downsample: int = 0
    force_single_base_probs: bool = False
    seed: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.n_chromosomes, bool) or not isinstance(self.n_chromosomes, int):
            raise InvalidConfiguration(f"n_chromosomes must be an integer, got {self.n_chromosomes!r}")
        if self.n_chromosomes < 1:
            raise InvalidConfiguration(f"n_chromosomes must be at least 1, got {self.n_chromosomes}")

        if not math.isfinite(self.q_step) or self.q_step <= 0.0:
            raise InvalidConfiguration(f"q_step must be positive, got {self.q_step}")
        if self.q_step > 1.0:
            raise InvalidConfiguration(f"q_step must not exceed 1.0, got {self.q_step}")

        for name in ("ref_lod_threshold", "variant_lod_threshold"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise InvalidConfiguration(f"{name} must be finite, got {value}")
        if self.ref_lod_threshold >= self.variant_lod_threshold:
            raise InvalidConfiguration(
                "ref_lod_threshold must be below variant_lod_threshold "
                f"({self.ref_lod_threshold} >= {self.variant_lod_threshold})"
            )

        if self.downsample < 0:
            raise InvalidConfiguration(f"downsample must be >= 0, got {self.downsample}")
        if self.seed < 0:
            raise InvalidConfiguration(f"seed must be >= 0, got {self.seed}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
