"""Normalización de series: filtros por periodo, deduplicación y agrupación diaria."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from typing import TypeVar

import pandas as pd
from dateutil import tz
from dateutil.relativedelta import relativedelta

from glyco_report.model import GlucoseSample, Period, TreatmentEvent

logger = logging.getLogger(__name__)

_T = TypeVar("_T", GlucoseSample, TreatmentEvent)

PRESETS: dict[str, relativedelta] = {
    "1d": relativedelta(days=0),
    "2d": relativedelta(days=1),
    "1w": relativedelta(weeks=1),
    "2w": relativedelta(weeks=2),
    "1m": relativedelta(months=1),
    "2m": relativedelta(months=2),
}


def default_tz() -> tzinfo:
    """Zona horaria local de quien mira el informe."""
    return tz.tzlocal()


def is_valid_value(value: object) -> bool:
    """True for a finite, positive number (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value) and value > 0


def local_datetime(timestamp_ms: int, tzinfo: tzinfo) -> datetime:
    """Epoch ms a datetime en la zona indicada."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=tzinfo)


def day_of(timestamp_ms: int, tzinfo: tzinfo) -> date:
    """Día calendario local de un instante."""
    return local_datetime(timestamp_ms, tzinfo).date()


def day_start_ms(day: date, tzinfo: tzinfo) -> int:
    """Epoch ms de la medianoche local de ``day``."""
    start = datetime.combine(day, time.min).replace(tzinfo=tzinfo)
    return int(start.timestamp() * 1000)


def minute_of_day(timestamp_ms: int, tzinfo: tzinfo) -> int:
    """Minuto de reloj local (0-1439) de un instante."""
    dt = local_datetime(timestamp_ms, tzinfo)
    return dt.hour * 60 + dt.minute


def filter_samples(
    samples: Iterable[GlucoseSample], period: Period
) -> list[GlucoseSample]:
    """Keep valid samples inside the period, sorted by time."""
    kept: list[GlucoseSample] = []
    dropped = 0
    for sample in samples:
        if not period.contains(sample.timestamp_ms):
            continue
        if not is_valid_value(sample.mg_dl):
            dropped += 1
            continue
        kept.append(sample)
    if dropped:
        logger.debug("Dropped %d samples with invalid values", dropped)
    kept.sort(key=lambda s: s.timestamp_ms)
    return kept


def filter_events(
    events: Iterable[TreatmentEvent], period: Period
) -> list[TreatmentEvent]:
    """Keep events inside the period, in input order."""
    return [e for e in events if period.contains(e.timestamp_ms)]


def dedupe_events(events: Iterable[TreatmentEvent]) -> list[TreatmentEvent]:
    """Collapse events sharing a dedupe key; the first occurrence wins.

    Events without a key are always kept.
    """
    seen: set[str] = set()
    out: list[TreatmentEvent] = []
    for event in events:
        key = event.dedupe_key
        if key:
            if key in seen:
                continue
            seen.add(key)
        out.append(event)
    return out


def group_by_day(items: Iterable[_T], tzinfo: tzinfo) -> dict[date, list[_T]]:
    """Agrupa por día calendario local, con claves ordenadas."""
    groups: dict[date, list[_T]] = {}
    for item in items:
        groups.setdefault(day_of(item.timestamp_ms, tzinfo), []).append(item)
    return {day: groups[day] for day in sorted(groups)}


def samples_to_frame(
    samples: Sequence[GlucoseSample], tzinfo: tzinfo
) -> pd.DataFrame:
    """Convert samples to a DataFrame with local date/time columns."""
    rows = []
    for s in samples:
        dt = local_datetime(s.timestamp_ms, tzinfo)
        rows.append(
            {
                "timestamp_ms": s.timestamp_ms,
                "datetime": dt,
                "date": dt.date(),
                "minute_of_day": dt.hour * 60 + dt.minute,
                "mg_dl": float(s.mg_dl),
            }
        )
    df = pd.DataFrame(
        rows, columns=["timestamp_ms", "datetime", "date", "minute_of_day", "mg_dl"]
    )
    if df.empty:
        return df
    return df.sort_values("timestamp_ms").reset_index(drop=True)


def calendar_days(period: Period, tzinfo: tzinfo) -> list[date]:
    """Every local calendar day touched by the period, inclusive."""
    first = day_of(period.from_ms, tzinfo)
    last = day_of(period.to_ms, tzinfo)
    days = pd.date_range(start=first, end=last, freq="D")
    return list(days.date)


def preset_period(preset: str, anchor: date, tzinfo: tzinfo) -> Period:
    """Window ending at the end of ``anchor`` (1d, 2d, 1w, 2w, 1m, 2m).

    Raises:
        ValueError: If the preset is unknown.
    """
    try:
        delta = PRESETS[preset]
    except KeyError as exc:
        known = ", ".join(PRESETS)
        raise ValueError(f"Unknown period preset {preset!r} ({known})") from exc
    return Period.from_days(anchor - delta, anchor, tzinfo)


@dataclass(frozen=True)
class NormalizedData:
    """Samples and events of one period, partitioned by local day."""

    period: Period
    tzinfo: tzinfo
    samples: tuple[GlucoseSample, ...]
    events: tuple[TreatmentEvent, ...]
    samples_by_day: dict[date, list[GlucoseSample]] = field(compare=False)
    events_by_day: dict[date, list[TreatmentEvent]] = field(compare=False)

    @property
    def evaluated_days(self) -> tuple[date, ...]:
        """Distinct days with at least one valid sample."""
        return tuple(self.samples_by_day)

    def day_window(self, day: date) -> tuple[int, int]:
        """``[start, end)`` epoch ms of a local day."""
        start = day_start_ms(day, self.tzinfo)
        return start, day_start_ms(day + timedelta(days=1), self.tzinfo)


def normalize(
    samples: Iterable[GlucoseSample],
    events: Iterable[TreatmentEvent],
    period: Period,
    tzinfo: tzinfo | None = None,
) -> NormalizedData:
    """Filter, dedupe and partition raw collections for one period."""
    zone = tzinfo if tzinfo is not None else default_tz()
    kept_samples = filter_samples(samples, period)
    windowed = filter_events(events, period)
    # Deduplicar antes de ordenar: gana el primero en orden de llegada.
    kept_events = dedupe_events(windowed)
    if len(kept_events) != len(windowed):
        logger.debug(
            "Collapsed %d duplicate treatments", len(windowed) - len(kept_events)
        )
    kept_events.sort(key=lambda e: e.timestamp_ms)
    return NormalizedData(
        period=period,
        tzinfo=zone,
        samples=tuple(kept_samples),
        events=tuple(kept_events),
        samples_by_day=group_by_day(kept_samples, zone),
        events_by_day=group_by_day(kept_events, zone),
    )
