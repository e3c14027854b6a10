"""Reconstrucción de la basal administrada: perfil programado + basales temporales."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta, tzinfo

from glyco_report.model import BasalSchedule, Period, TreatmentEvent
from glyco_report.normalize import calendar_days, day_start_ms, minute_of_day

MS_PER_MINUTE = 60_000


@dataclass(frozen=True)
class ScheduleVersion:
    """A basal schedule effective from a given instant on."""

    effective_from_ms: int
    schedule: BasalSchedule


@dataclass(frozen=True)
class TempBasalInterval:
    """Tramo [start_ms, end_ms) con una tasa temporal en U/h."""

    start_ms: int
    end_ms: int
    units_per_hour: float

    def covers(self, instant_ms: int) -> bool:
        """True when the instant falls inside the interval."""
        return self.start_ms <= instant_ms < self.end_ms


class ScheduleTimeline:
    """Ordered schedule versions; picks the one in force for each day."""

    def __init__(self, versions: Iterable[ScheduleVersion] = ()) -> None:
        self._versions = sorted(versions, key=lambda v: v.effective_from_ms)

    @classmethod
    def single(cls, schedule: BasalSchedule) -> ScheduleTimeline:
        """Timeline con un único perfil vigente desde siempre."""
        return cls([ScheduleVersion(effective_from_ms=0, schedule=schedule)])

    @property
    def versions(self) -> tuple[ScheduleVersion, ...]:
        return tuple(self._versions)

    def __bool__(self) -> bool:
        return bool(self._versions)

    def __len__(self) -> int:
        return len(self._versions)

    def schedule_for(self, day_end_ms: int) -> BasalSchedule | None:
        """Latest version effective on or before the day; else the earliest."""
        if not self._versions:
            return None
        chosen = self._versions[0]
        for version in self._versions:
            if version.effective_from_ms > day_end_ms:
                break
            chosen = version
        return chosen.schedule


def temp_basal_intervals(events: Iterable[TreatmentEvent]) -> list[TempBasalInterval]:
    """Active temp basal intervals, earliest start first (stable)."""
    out: list[TempBasalInterval] = []
    for event in events:
        interval = event.active_interval()
        if interval is None or event.rate_units_per_hour is None:
            continue
        if not math.isfinite(event.rate_units_per_hour):
            continue
        out.append(
            TempBasalInterval(
                start_ms=interval[0],
                end_ms=interval[1],
                units_per_hour=max(event.rate_units_per_hour, 0.0),
            )
        )
    out.sort(key=lambda i: i.start_ms)
    return out


def _rate(
    schedule: BasalSchedule | None,
    intervals: Sequence[TempBasalInterval],
    instant_ms: int,
    wall_minute: int,
) -> float:
    """Temp basal activa en el instante; si no, la tasa programada del minuto."""
    for interval in intervals:
        if interval.covers(instant_ms):
            return interval.units_per_hour
    if schedule is None:
        return 0.0
    return schedule.rate_at(wall_minute)


def effective_rate(
    schedule: BasalSchedule,
    temp_basals: Iterable[TreatmentEvent],
    instant_ms: int,
    tzinfo: tzinfo,
) -> float:
    """U/h delivered at an instant: an active temp basal wins over the schedule."""
    intervals = temp_basal_intervals(temp_basals)
    return _rate(schedule, intervals, instant_ms, minute_of_day(instant_ms, tzinfo))


def minute_rates(
    day: date,
    timeline: ScheduleTimeline,
    intervals: Sequence[TempBasalInterval],
    tzinfo: tzinfo,
) -> list[float]:
    """Per-minute U/h values for every real minute of the local ``day``.

    1440 values on a regular day; 1380 or 1500 when the clock changes for
    daylight saving. The schedule is looked up by the wall-clock minute of
    each instant, temp basals by the instant itself.
    """
    start = day_start_ms(day, tzinfo)
    end = day_start_ms(day + timedelta(days=1), tzinfo)
    schedule = timeline.schedule_for(end - 1)
    todays = [i for i in intervals if i.start_ms < end and i.end_ms > start]
    return [
        _rate(schedule, todays, instant, minute_of_day(instant, tzinfo))
        for instant in range(start, end, MS_PER_MINUTE)
    ]


def daily_basal_total(
    day: date,
    timeline: ScheduleTimeline,
    temp_basals: Iterable[TreatmentEvent],
    tzinfo: tzinfo,
) -> float:
    """Units delivered over one day, integrated at 1-minute resolution."""
    rates = minute_rates(day, timeline, temp_basal_intervals(temp_basals), tzinfo)
    # Sumar U/h y dividir una vez: 1440 x 1.0 / 60 da 24.0 exacto.
    return math.fsum(rates) / 60


def basal_per_day(
    period: Period,
    timeline: ScheduleTimeline,
    events: Iterable[TreatmentEvent],
    tzinfo: tzinfo,
) -> float:
    """Average daily delivered basal over every calendar day of the period."""
    days = calendar_days(period, tzinfo)
    if not days:
        return 0.0
    intervals = temp_basal_intervals(events)
    totals = [
        math.fsum(minute_rates(day, timeline, intervals, tzinfo)) / 60 for day in days
    ]
    return math.fsum(totals) / len(days)
