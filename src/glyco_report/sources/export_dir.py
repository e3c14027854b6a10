"""Lectura de exportaciones JSON de Nightscout guardadas en disco."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from glyco_report.basal import ScheduleTimeline
from glyco_report.model import Period, TreatmentEvent
from glyco_report.sources.base import DataSource, SourceBatch, SourceError, SourcePaths
from glyco_report.sources.nightscout import (
    parse_entries,
    parse_profile,
    parse_treatments,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportDirPaths(SourcePaths):
    """Folder with entries.json (required), treatments.json, profile.json."""

    @property
    def entries(self) -> Path:
        return self.root / "entries.json"

    @property
    def treatments(self) -> Path:
        return self.root / "treatments.json"

    @property
    def profile(self) -> Path:
        return self.root / "profile.json"


class ExportDirSource(DataSource):
    """Offline source reading the three API payloads from files."""

    def __init__(self, paths: ExportDirPaths) -> None:
        self._paths = paths

    def validate(self) -> None:
        """Validate that the export directory and entries.json exist."""
        if not self._paths.root.exists():
            raise FileNotFoundError(str(self._paths.root))
        if not self._paths.entries.exists():
            raise FileNotFoundError(f"No entries.json in {self._paths.root}")

    def fetch(self, period: Period) -> SourceBatch:
        """Load the files and keep the records inside ``period``."""
        self.validate()
        try:
            samples = parse_entries(_read_json(self._paths.entries))
            events: list[TreatmentEvent] = []
            if self._paths.treatments.exists():
                events = parse_treatments(_read_json(self._paths.treatments))
            timeline = ScheduleTimeline()
            if self._paths.profile.exists():
                timeline = parse_profile(_read_json(self._paths.profile))
        except ValueError as exc:
            raise SourceError(f"Invalid export in {self._paths.root}: {exc}") from exc

        logger.info(
            "Loaded %d entries, %d treatments from %s",
            len(samples),
            len(events),
            self._paths.root,
        )
        return SourceBatch(
            samples=tuple(s for s in samples if period.contains(s.timestamp_ms)),
            events=tuple(e for e in events if period.contains(e.timestamp_ms)),
            timeline=timeline,
        )


def _extract_json(text: str) -> Any:
    """Extract the JSON payload, tolerating leading non-JSON (e.g. log lines)."""
    starts = [i for i in (text.find("["), text.find("{")) if i >= 0]
    if starts:
        return json.loads(text[min(starts) :])
    return json.loads(text)


def _read_json(path: Path) -> Any:
    return _extract_json(path.read_text(encoding="utf-8"))
