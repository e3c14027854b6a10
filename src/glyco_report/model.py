"""Modelos tipados para glucemias, tratamientos, perfiles basales y periodos."""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from enum import Enum


class TreatmentKind(Enum):
    """Closed set of treatment kinds understood by the statistics core."""

    MEAL_BOLUS = "meal_bolus"
    CORRECTION_BOLUS = "correction_bolus"
    TEMP_BASAL = "temp_basal"
    CARB_INTAKE = "carb_intake"
    SITE_CHANGE = "site_change"
    SENSOR_CHANGE = "sensor_change"
    OTHER = "other"

    @property
    def is_bolus(self) -> bool:
        return self in (TreatmentKind.MEAL_BOLUS, TreatmentKind.CORRECTION_BOLUS)


@dataclass(frozen=True)
class GlucoseSample:
    """One sensor glucose value (sgv)."""

    timestamp_ms: int
    mg_dl: float


@dataclass(frozen=True)
class TreatmentEvent:
    """One treatment record (bolus, carbs, temp basal, device change...)."""

    timestamp_ms: int
    kind: TreatmentKind
    insulin_units: float | None = None
    carbs_grams: float | None = None
    duration_minutes: float | None = None
    rate_units_per_hour: float | None = None
    dedupe_key: str | None = None
    event_type: str = ""

    def active_interval(self) -> tuple[int, int] | None:
        """Return ``[start, end)`` in epoch ms for a temp basal, else None."""
        if self.kind is not TreatmentKind.TEMP_BASAL:
            return None
        if self.duration_minutes is None or self.rate_units_per_hour is None:
            return None
        if self.duration_minutes <= 0:
            return None
        end = self.timestamp_ms + int(round(self.duration_minutes * 60_000))
        return self.timestamp_ms, end


@dataclass(frozen=True)
class BasalBreakpoint:
    """Basal rate in force from ``minute_of_day`` on."""

    minute_of_day: int
    units_per_hour: float

    @classmethod
    def parse(cls, time_of_day: str, units_per_hour: float) -> BasalBreakpoint:
        """Build a breakpoint from an ``HH:MM`` string.

        Raises:
            ValueError: If the time is not a valid ``HH:MM`` value.
        """
        parts = str(time_of_day).strip().split(":")
        if len(parts) < 2:
            raise ValueError(f"Invalid basal time {time_of_day!r}, expected HH:MM")
        try:
            hours, minutes = int(parts[0]), int(parts[1])
        except ValueError as exc:
            raise ValueError(
                f"Invalid basal time {time_of_day!r}, expected HH:MM"
            ) from exc
        if not (0 <= hours < 24 and 0 <= minutes < 60):
            raise ValueError(f"Invalid basal time {time_of_day!r}, expected HH:MM")
        return cls(minute_of_day=hours * 60 + minutes, units_per_hour=units_per_hour)


@dataclass(frozen=True)
class BasalSchedule:
    """Cyclical 24h basal profile, breakpoints sorted by time of day."""

    breakpoints: tuple[BasalBreakpoint, ...]

    def __post_init__(self) -> None:
        if not self.breakpoints:
            raise ValueError("Basal schedule must have at least one breakpoint")
        ordered = tuple(sorted(self.breakpoints, key=lambda b: b.minute_of_day))
        object.__setattr__(self, "breakpoints", ordered)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, float]]) -> BasalSchedule:
        """Build a schedule from ``(HH:MM, U/h)`` pairs."""
        return cls(tuple(BasalBreakpoint.parse(t, float(v)) for t, v in pairs))

    def rate_at(self, minute_of_day: int) -> float:
        """Scheduled U/h at a wall-clock minute (0-1439).

        Before the first breakpoint the last one of the previous day applies.
        """
        minutes = [b.minute_of_day for b in self.breakpoints]
        idx = bisect_right(minutes, minute_of_day) - 1
        return self.breakpoints[idx].units_per_hour


@dataclass(frozen=True)
class Period:
    """Inclusive query window in epoch milliseconds."""

    from_ms: int
    to_ms: int

    def __post_init__(self) -> None:
        if self.from_ms > self.to_ms:
            raise ValueError("Period start must not be after its end")

    def contains(self, timestamp_ms: int) -> bool:
        return self.from_ms <= timestamp_ms <= self.to_ms

    @classmethod
    def from_days(cls, first: date, last: date, tzinfo: tzinfo) -> Period:
        """Period from local midnight of ``first`` to the last ms of ``last``."""
        start = datetime.combine(first, time.min).replace(tzinfo=tzinfo)
        end = datetime.combine(last, time.max).replace(tzinfo=tzinfo)
        return cls(
            from_ms=int(start.timestamp() * 1000),
            to_ms=int(end.timestamp() * 1000),
        )


@dataclass(frozen=True)
class PatientInfo:
    """Datos del paciente que encabezan el informe."""

    last_name: str
    first_name: str
    birth_date: str = ""
    insulin_regimen: str = ""
    diabetic_since: str = ""

    def validate(self) -> None:
        """Raise ValueError naming the first empty required field."""
        for name in (
            "last_name",
            "first_name",
            "birth_date",
            "insulin_regimen",
            "diabetic_since",
        ):
            if not str(getattr(self, name)).strip():
                raise ValueError(f"Patient field {name!r} is required")

    def display_name(self) -> str:
        """Nombre capitalizado y apellido en mayúsculas."""
        first = self.first_name.strip()
        first = first[:1].upper() + first[1:]
        return f"{first} {self.last_name.strip().upper()}".strip()


@dataclass(frozen=True)
class ReportOptions:
    """Which optional sections the report includes."""

    include_charts: bool = False
    include_variability_chart: bool = False
