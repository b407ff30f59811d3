from __future__ import annotations

import logging
import sys
import time
from collections import deque
from concurrent.futures import Future, ProcessPoolExecutor
from dataclasses import asdict
from pathlib import Path
from typing import Deque, Dict, Iterable, Iterator, List, Optional, Sequence, TextIO, Tuple

from tqdm import tqdm

from .config import CallerConfig
from .estimator import AlleleFrequencyEstimator
from .metrics import CallMetrics
from .models import AlleleFrequencyEstimate, Locus, ReadObservation
from .pileup import summarize_pileup
from .pileup_source import PileupFilters, PileupSource
from .reducer import CallRecord, ConfidentRegionReducer
from .utils import chunked, ensure_outdir, open_textmaybe_gzip, write_json

logger = logging.getLogger(__name__)

PileupItem = Tuple[Locus, str, Sequence[ReadObservation]]


def _evaluate(item: PileupItem, config: CallerConfig, estimator: AlleleFrequencyEstimator) -> AlleleFrequencyEstimate:
    locus, ref_base, observations = item
    record = summarize_pileup(
        locus,
        ref_base,
        observations,
        force_single_base_probs=config.force_single_base_probs,
        downsample=config.downsample,
        seed=config.seed,
    )
    return estimator.estimate(record)


def _estimate_batch(batch: List[PileupItem], config: CallerConfig) -> List[AlleleFrequencyEstimate]:
    estimator = AlleleFrequencyEstimator(config)
    return [_evaluate(item, config, estimator) for item in batch]


def estimate_stream(
    pileups: Iterable[PileupItem],
    config: CallerConfig,
    *,
    workers: int = 1,
    chunk_size: int = 512,
    max_pending: Optional[int] = None,
) -> Iterator[AlleleFrequencyEstimate]:
    """Estimate every locus of ``pileups``, yielding results in input order.

    With ``workers > 1`` batches of ``chunk_size`` loci are evaluated in a process
    pool. At most ``max_pending`` batches (default ``4 * workers``) are in flight,
    and results are consumed in submission order.
    """
    if workers <= 1:
        estimator = AlleleFrequencyEstimator(config)
        for item in pileups:
            yield _evaluate(item, config, estimator)
        return

    window = max_pending if max_pending is not None else 4 * workers
    with ProcessPoolExecutor(max_workers=workers) as pool:
        pending: Deque[Future] = deque()
        for batch in chunked(pileups, chunk_size):
            pending.append(pool.submit(_estimate_batch, batch, config))
            if len(pending) >= window:
                yield from pending.popleft().result()
        while pending:
            yield from pending.popleft().result()


def call_loci(
    pileups: Iterable[PileupItem],
    config: CallerConfig,
    *,
    workers: int = 1,
    metrics: Optional[CallMetrics] = None,
) -> Iterator[CallRecord]:
    """Estimate and reduce a pileup stream into reference intervals and variants."""
    reducer = ConfidentRegionReducer(config)
    for est in estimate_stream(pileups, config, workers=workers):
        if metrics is not None:
            metrics.observe_estimate(est, config)
        for rec in reducer.push(est):
            if metrics is not None:
                metrics.observe_record(rec)
            yield rec
    for rec in reducer.finish():
        if metrics is not None:
            metrics.observe_record(rec)
        yield rec


def _open_calls_output(out_path: str) -> Tuple[TextIO, bool]:
    if out_path == "-":
        return sys.stdout, False
    Path(out_path).parent.mkdir(parents=True, exist_ok=True)
    return open_textmaybe_gzip(out_path, "wt"), True


def call_variants(
    *,
    bam_path: str,
    ref_path: str,
    outdir: str | Path,
    config: CallerConfig = CallerConfig(),
    filters: PileupFilters = PileupFilters(),
    region: Optional[str] = None,
    out_path: Optional[str] = None,
    workers: int = 1,
    progress: bool = True,
) -> Dict[str, object]:
    """Main workhorse: pileup a BAM, estimate every locus, write calls, and return a summary dict."""
    t0 = time.time()
    outdir_path = ensure_outdir(outdir)

    if out_path is None:
        out_path = str(outdir_path / "calls.gff")

    source = PileupSource(bam_path, ref_path, region=region, filters=filters)
    metrics = CallMetrics()

    it: Iterable[PileupItem] = source
    if progress:
        it = tqdm(it, unit="locus", desc="Calling loci")

    logger.info(
        "Calling %s against %s (N=%d, region=%s, workers=%d)",
        bam_path,
        ref_path,
        config.n_chromosomes,
        region or "all",
        workers,
    )

    out_fh, close_out = _open_calls_output(out_path)
    try:
        for rec in call_loci(it, config, workers=workers, metrics=metrics):
            out_fh.write(rec.as_gff_line() + "\n")
    finally:
        if close_out:
            out_fh.close()
        else:
            out_fh.flush()

    dt = time.time() - t0
    m = metrics.to_dict()

    summary = {
        "bam_path": str(bam_path),
        "ref_path": str(ref_path),
        "region": region,
        "calls_path": out_path,
        "workers": int(workers),
        "config": config.to_dict(),
        "filters": asdict(filters),
        "source_counts": dict(source.counts),
        "counts": m["counts"],
        "lod_hist": m["lod_hist"],
        "variant_qhat_hist": m["variant_qhat_hist"],
        "depth_hist": m["depth_hist"],
        "longest_reference_interval": m["longest_reference_interval"],
        "runtime_seconds": float(dt),
    }

    write_json(outdir_path / "summary.json", summary)
    logger.info(
        "Evaluated %d loci: %d reference intervals, %d variants (%.1fs)",
        metrics.counts["loci_evaluated"],
        metrics.counts["reference_intervals"],
        metrics.counts["variants"],
        dt,
    )
    return summary
