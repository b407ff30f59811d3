"""Fold per-locus estimates into reference intervals and variant records.

The reducer walks estimates in locus order. Contiguous runs of confidently
reference loci (``lod_vs_ref <= ref_lod_threshold``) are merged into one
:class:`~afmix.models.ReferenceInterval`; loci with
``lod_vs_ref >= variant_lod_threshold`` are emitted individually. Loci in
between are neither. A locus that closes an interval, by breaking contiguity
or by leaving the reference threshold, is consumed by the close and does not
open the next interval.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Union

from .config import CallerConfig
from .errors import NonMonotonicLocus
from .models import AlleleFrequencyEstimate, ConfidentInterval, Locus, ReducerState, ReferenceInterval

logger = logging.getLogger(__name__)

CallRecord = Union[ReferenceInterval, AlleleFrequencyEstimate]


class ConfidentRegionReducer:
    """Single-threaded state machine; not safe to share between threads."""

    def __init__(self, config: CallerConfig) -> None:
        self.config = config
        self.state = ReducerState()

    def _check_order(self, locus: Locus) -> None:
        last = self.state.last_locus
        if last is None:
            return
        if locus.contig == last.contig:
            if locus.position <= last.position:
                raise NonMonotonicLocus(
                    f"locus {locus} does not follow {last}",
                    previous=str(last),
                    current=str(locus),
                )
            return
        if locus.contig in self.state.finished_contigs:
            raise NonMonotonicLocus(
                f"contig {locus.contig} reappears after {last}",
                previous=str(last),
                current=str(locus),
            )
        self.state.finished_contigs.add(last.contig)

    def _open(self, est: AlleleFrequencyEstimate) -> None:
        self.state.interval = ConfidentInterval(
            contig=est.locus.contig,
            start=est.locus.position,
            end=est.locus.position,
            lod_sum=est.lod_vs_ref,
        )

    def push(self, est: AlleleFrequencyEstimate) -> List[CallRecord]:
        """Consume one estimate; return the records it completes, in output order."""
        self._check_order(est.locus)
        out: List[CallRecord] = []

        confident_ref = est.lod_vs_ref <= self.config.ref_lod_threshold
        interval = self.state.interval
        if interval is None:
            if confident_ref:
                self._open(est)
        elif confident_ref and interval.accepts(est.locus):
            interval.extend(est.locus, est.lod_vs_ref)
        else:
            # The locus that closes an interval never starts the next one.
            closed = interval.close()
            logger.debug("Closing reference interval %s:%d-%d", closed.contig, closed.start, closed.end)
            out.append(closed)
            self.state.interval = None

        if est.lod_vs_ref >= self.config.variant_lod_threshold:
            out.append(est)

        self.state.last_locus = est.locus
        return out

    def finish(self) -> List[CallRecord]:
        """Flush the open interval, if any. The reducer can keep going afterwards."""
        interval = self.state.interval
        if interval is None:
            return []
        self.state.interval = None
        return [interval.close()]


def reduce_estimates(estimates: Iterable[AlleleFrequencyEstimate], config: CallerConfig) -> Iterator[CallRecord]:
    reducer = ConfidentRegionReducer(config)
    for est in estimates:
        yield from reducer.push(est)
    yield from reducer.finish()
