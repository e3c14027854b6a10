"""Orquestación de consultas: fetch, normalización y estadísticas (última gana)."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import tzinfo

from glyco_report.agp import PercentileCurves, percentile_curves
from glyco_report.basal import ScheduleTimeline
from glyco_report.metrics import DerivedStatistics, compute_statistics
from glyco_report.model import Period
from glyco_report.normalize import NormalizedData, default_tz, normalize
from glyco_report.sources.base import DataSource

logger = logging.getLogger(__name__)


class QueryCancelled(RuntimeError):
    """A newer query superseded the running one."""


@dataclass(frozen=True)
class QueryResult:
    """Everything the report needs for one period."""

    period: Period
    data: NormalizedData
    timeline: ScheduleTimeline
    statistics: DerivedStatistics
    curves: PercentileCurves
    generation: int
    cancelled: threading.Event = field(
        default_factory=threading.Event, compare=False, repr=False
    )


class QueryRunner:
    """Runs period queries against a source; only the latest one may publish.

    Each ``run`` bumps a generation counter and sets the cancellation event
    of the previous run. A run whose generation is no longer current returns
    None instead of a result.
    """

    def __init__(self, source: DataSource, tzinfo: tzinfo | None = None) -> None:
        self._source = source
        self._tzinfo = tzinfo if tzinfo is not None else default_tz()
        self._lock = threading.Lock()
        self._generation = 0
        self._cancel = threading.Event()

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def cancel(self) -> None:
        """Cancel whatever run is in flight."""
        with self._lock:
            self._generation += 1
            self._cancel.set()

    def _start(self) -> tuple[int, threading.Event]:
        """Supersede the previous run and return the new generation and event."""
        with self._lock:
            self._cancel.set()
            self._generation += 1
            self._cancel = threading.Event()
            return self._generation, self._cancel

    def run(self, period: Period) -> QueryResult | None:
        """Fetch and compute for ``period``.

        Returns:
            The result, or None when a newer query started meanwhile.

        Raises:
            SourceError: If the source fails.
        """
        generation, cancelled = self._start()
        batch = self._source.fetch(period)
        if cancelled.is_set() or not self.is_current(generation):
            logger.info("Discarding stale query #%d", generation)
            return None

        data = normalize(batch.samples, batch.events, period, self._tzinfo)
        statistics = compute_statistics(data, batch.timeline)
        curves = percentile_curves(data.samples, data.tzinfo)
        if cancelled.is_set() or not self.is_current(generation):
            logger.info("Discarding stale query #%d", generation)
            return None
        return QueryResult(
            period=period,
            data=data,
            timeline=batch.timeline,
            statistics=statistics,
            curves=curves,
            generation=generation,
            cancelled=cancelled,
        )
