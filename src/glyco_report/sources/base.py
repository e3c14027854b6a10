"""Clases base para fuentes de datos."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from glyco_report.basal import ScheduleTimeline
from glyco_report.model import GlucoseSample, Period, TreatmentEvent


class SourceError(RuntimeError):
    """A data source could not fetch or decode its collections."""


@dataclass(frozen=True)
class SourcePaths:
    """Container for source directories."""

    root: Path


@dataclass(frozen=True)
class SourceBatch:
    """The three collections the core needs, all resolved (possibly empty)."""

    samples: tuple[GlucoseSample, ...]
    events: tuple[TreatmentEvent, ...]
    timeline: ScheduleTimeline


class DataSource(ABC):
    """Abstract data source."""

    @abstractmethod
    def validate(self) -> None:
        """Validate that the source is reachable / its files exist.

        Raises:
            FileNotFoundError: If required files are missing.
            SourceError: If the source is misconfigured.
        """

    @abstractmethod
    def fetch(self, period: Period) -> SourceBatch:
        """Fetch samples, treatments and basal profile for a period.

        Raises:
            SourceError: If any collection cannot be fetched or decoded.
        """
