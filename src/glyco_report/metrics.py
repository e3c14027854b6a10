"""Motor de estadísticas glucémicas: rangos, variabilidad, PGS, HbA1c y tratamientos.

Todas las funciones son puras: reciben series ya normalizadas y devuelven
valores nuevos. Una serie vacía nunca produce NaN: los conteos y porcentajes
caen a 0 y las medidas de tendencia central a 0 o ``"-"`` según el campo.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, tzinfo

import pandas as pd

from glyco_report.basal import ScheduleTimeline, basal_per_day, daily_basal_total
from glyco_report.model import GlucoseSample, TreatmentEvent, TreatmentKind
from glyco_report.normalize import (
    NormalizedData,
    dedupe_events,
    is_valid_value,
    local_datetime,
)

LOW_LIMIT = 70.0
HIGH_LIMIT = 180.0
VERY_HIGH_LIMIT = 240.0

# (umbral, puntaje): el primer escalón que se cumple gana.
TIR_LADDER: tuple[tuple[float, int], ...] = ((70, 5), (55, 4), (40, 3), (25, 2), (10, 1))
TAR_LADDER: tuple[tuple[float, int], ...] = ((25, 5), (40, 4), (55, 3), (70, 2), (90, 1))
TBR_LADDER: tuple[tuple[float, int], ...] = ((4, 5), (10, 4), (15, 3), (25, 2), (40, 1))
CV_LADDER: tuple[tuple[float, int], ...] = ((25, 5), (33, 4), (40, 3), (50, 2), (60, 1))
MEAN_LADDER: tuple[tuple[float, int], ...] = (
    (120, 5),
    (145, 4),
    (170, 3),
    (200, 2),
    (250, 1),
)

BUSIEST_WINDOW_HOURS = 4


@dataclass(frozen=True)
class RangeBucket:
    count: int
    percent: int


@dataclass(frozen=True)
class RangeBuckets:
    """Target-zone breakdown; percents are rounded independently."""

    below_70: RangeBucket
    in_range: RangeBucket
    high_180_240: RangeBucket
    above_240: RangeBucket

    def top_down(self) -> list[tuple[str, RangeBucket]]:
        """Buckets in display order, highest glucose first."""
        return [
            (">240 mg/dL", self.above_240),
            ("180–240 mg/dL", self.high_180_240),
            ("70–180 mg/dL", self.in_range),
            ("<70 mg/dL", self.below_70),
        ]


@dataclass(frozen=True)
class DerivedStatistics:
    """Clinical metrics of one period. Never mutated, always recomputed."""

    days_evaluated: int
    measurement_count: int
    site_changes: int
    sensor_changes: int
    buckets: RangeBuckets
    min_mg_dl: float | None
    max_mg_dl: float | None
    mean: float
    std: float
    gvi: float
    pgs: float
    hba1c: str
    total_carbs: float
    total_bolus: float
    carbs_per_day: float
    bolus_per_day: float
    real_basal_per_day: float
    total_insulin_per_day: float

    @property
    def pct_below(self) -> int:
        return self.buckets.below_70.percent

    @property
    def pct_in(self) -> int:
        return self.buckets.in_range.percent

    @property
    def pct_180_240(self) -> int:
        return self.buckets.high_180_240.percent

    @property
    def pct_above_240(self) -> int:
        return self.buckets.above_240.percent


@dataclass(frozen=True)
class DayStatistics:
    """Resumen de un día (página diaria y planilla)."""

    day: date
    count: int
    mean: float | None
    min_mg_dl: float | None
    max_mg_dl: float | None
    tir_percent: int
    carbs: float
    bolus: float
    insulin: float
    basal: float | None


@dataclass(frozen=True)
class TreatmentInsights:
    busiest_hour: int
    busiest_hour_count: int
    busiest_window_start: int
    busiest_window_end: int


def round_half_up(value: float) -> int:
    """Redondeo comercial (0.5 hacia arriba), no el bancario de round()."""
    return int(math.floor(value + 0.5))


def percent(part: int, total: int) -> int:
    """Rounded percentage; 0 when the denominator is 0."""
    if total <= 0:
        return 0
    return round_half_up(part / total * 100)


def valid_values(values: Iterable[object]) -> list[float]:
    """Valores numéricos válidos como float."""
    return [float(v) for v in values if is_valid_value(v)]  # type: ignore[arg-type]


def mean_and_std(values: Sequence[float]) -> tuple[float, float]:
    """Mean and population standard deviation; (0, 0) when empty."""
    if not values:
        return 0.0, 0.0
    n = len(values)
    mean = math.fsum(values) / n
    variance = math.fsum((v - mean) ** 2 for v in values) / n
    return mean, math.sqrt(variance)


def range_buckets(values: Sequence[float]) -> RangeBuckets:
    """Cuenta y porcentaje de lecturas en cada rango de glucemia."""
    total = len(values)
    below = sum(1 for v in values if v < LOW_LIMIT)
    in_range = sum(1 for v in values if LOW_LIMIT <= v <= HIGH_LIMIT)
    high = sum(1 for v in values if HIGH_LIMIT < v <= VERY_HIGH_LIMIT)
    very_high = sum(1 for v in values if v > VERY_HIGH_LIMIT)
    return RangeBuckets(
        below_70=RangeBucket(below, percent(below, total)),
        in_range=RangeBucket(in_range, percent(in_range, total)),
        high_180_240=RangeBucket(high, percent(high, total)),
        above_240=RangeBucket(very_high, percent(very_high, total)),
    )


def gvi(mean: float, std: float) -> float:
    """Glycemic variability index (std / mean * 100); 0 when mean is 0."""
    if not mean:
        return 0.0
    return std / mean * 100


def _score_at_least(value: float, ladder: Sequence[tuple[float, int]]) -> int:
    """Puntos del primer escalón cuyo umbral alcanza el valor."""
    for threshold, score in ladder:
        if value >= threshold:
            return score
    return 0


def _score_below(value: float, ladder: Sequence[tuple[float, int]]) -> int:
    """Puntos del primer escalón cuyo umbral supera el valor."""
    for threshold, score in ladder:
        if value < threshold:
            return score
    return 0


def pgs(values: Sequence[float]) -> float:
    """Patient glycemic status, a weighted 0-5 composite of five sub-scores."""
    if not values:
        return 0.0
    total = len(values)
    mean, std = mean_and_std(values)
    tir = sum(1 for v in values if LOW_LIMIT <= v <= HIGH_LIMIT) / total * 100
    tar = sum(1 for v in values if v > HIGH_LIMIT) / total * 100
    tbr = sum(1 for v in values if v < LOW_LIMIT) / total * 100
    cv = gvi(mean, std)

    tir_score = _score_at_least(tir, TIR_LADDER)
    tar_score = _score_below(tar, TAR_LADDER)
    tbr_score = _score_below(tbr, TBR_LADDER)
    cv_score = _score_below(cv, CV_LADDER)
    mean_score = _score_below(mean, MEAN_LADDER)
    return (tir_score * 2 + tar_score + tbr_score + cv_score + mean_score) / 6


def estimated_hba1c(mean: float | None) -> str:
    """Estimated HbA1c (%) to one decimal, ``"-"`` without a mean."""
    if not mean:
        return "-"
    return f"{(mean + 46.7) / 28.7:.1f}"


def control_label(gvi_value: float) -> str:
    """Etiqueta de control según el GVI."""
    if gvi_value < 25:
        return "excellent"
    if gvi_value < 33:
        return "good"
    if gvi_value < 40:
        return "medium"
    return "poor"


def pgs_label(pgs_value: float) -> str:
    """Etiqueta de control según el PGS."""
    if pgs_value >= 4.5:
        return "excellent"
    if pgs_value >= 3.5:
        return "good"
    if pgs_value >= 2.5:
        return "medium"
    return "poor"


def count_device_changes(events: Iterable[TreatmentEvent]) -> tuple[int, int]:
    """Return (site changes, sensor changes)."""
    site = sensor = 0
    for event in events:
        if event.kind is TreatmentKind.SITE_CHANGE:
            site += 1
        elif event.kind is TreatmentKind.SENSOR_CHANGE:
            sensor += 1
    return site, sensor


def total_carbs(events: Iterable[TreatmentEvent]) -> float:
    """Grams of carbs, duplicates collapsed by dedupe key."""
    return math.fsum(
        e.carbs_grams
        for e in dedupe_events(events)
        if e.carbs_grams is not None and is_valid_value(e.carbs_grams)
    )


def total_bolus(events: Iterable[TreatmentEvent]) -> float:
    """Units of bolus insulin, duplicates collapsed by dedupe key."""
    return math.fsum(
        e.insulin_units
        for e in dedupe_events(events)
        if e.kind.is_bolus
        and e.insulin_units is not None
        and is_valid_value(e.insulin_units)
    )


def total_insulin(events: Iterable[TreatmentEvent]) -> float:
    """Insulin of every event that carries some, whatever its kind."""
    return math.fsum(
        e.insulin_units
        for e in dedupe_events(events)
        if e.insulin_units is not None and is_valid_value(e.insulin_units)
    )


def compute_statistics(
    data: NormalizedData, timeline: ScheduleTimeline | None = None
) -> DerivedStatistics:
    """Compute every summary metric for a normalized period.

    Args:
        data: Samples and events already filtered to the period.
        timeline: Basal schedule versions; without one, only temp basals
            contribute to the delivered basal.

    Returns:
        A fresh DerivedStatistics value.
    """
    values = valid_values(s.mg_dl for s in data.samples)
    days_evaluated = len(data.evaluated_days)
    divisor = max(days_evaluated, 1)
    mean, std = mean_and_std(values)
    site, sensor = count_device_changes(data.events)
    carbs = total_carbs(data.events)
    bolus = total_bolus(data.events)
    basal = basal_per_day(
        data.period, timeline or ScheduleTimeline(), data.events, data.tzinfo
    )
    bolus_per_day = bolus / divisor
    return DerivedStatistics(
        days_evaluated=days_evaluated,
        measurement_count=len(values),
        site_changes=site,
        sensor_changes=sensor,
        buckets=range_buckets(values),
        min_mg_dl=min(values) if values else None,
        max_mg_dl=max(values) if values else None,
        mean=mean,
        std=std,
        gvi=gvi(mean, std),
        pgs=pgs(values),
        hba1c=estimated_hba1c(mean),
        total_carbs=carbs,
        total_bolus=bolus,
        carbs_per_day=carbs / divisor,
        bolus_per_day=bolus_per_day,
        real_basal_per_day=basal,
        total_insulin_per_day=bolus_per_day + basal,
    )


def day_statistics(
    day: date,
    samples: Sequence[GlucoseSample],
    events: Sequence[TreatmentEvent],
    basal: float | None = None,
) -> DayStatistics:
    """Estadísticas de un día a partir de sus lecturas y tratamientos."""
    values = valid_values(s.mg_dl for s in samples)
    mean, _ = mean_and_std(values)
    in_range = sum(1 for v in values if LOW_LIMIT <= v <= HIGH_LIMIT)
    return DayStatistics(
        day=day,
        count=len(values),
        mean=mean if values else None,
        min_mg_dl=min(values) if values else None,
        max_mg_dl=max(values) if values else None,
        tir_percent=percent(in_range, len(values)),
        carbs=total_carbs(events),
        bolus=total_bolus(events),
        insulin=total_insulin(events),
        basal=basal,
    )


def daily_statistics(
    data: NormalizedData, timeline: ScheduleTimeline | None = None
) -> list[DayStatistics]:
    """One DayStatistics per evaluated day, in date order.

    The day's basal uses every event of the period, so a temp basal started
    the evening before still counts for the minutes it covers.
    """
    out: list[DayStatistics] = []
    for day, samples in data.samples_by_day.items():
        basal = None
        if timeline is not None:
            basal = daily_basal_total(day, timeline, data.events, data.tzinfo)
        out.append(
            day_statistics(day, samples, data.events_by_day.get(day, []), basal)
        )
    return out


def daily_summary_frame(days: Sequence[DayStatistics]) -> pd.DataFrame:
    """Tabla diaria (una fila por día) para exportar."""
    columns = [
        "date",
        "count",
        "mean_mg_dl",
        "min_mg_dl",
        "max_mg_dl",
        "tir_pct",
        "carbs_g",
        "bolus_u",
        "basal_u",
    ]
    rows = [
        {
            "date": d.day,
            "count": d.count,
            "mean_mg_dl": round(d.mean, 1) if d.mean is not None else pd.NA,
            "min_mg_dl": d.min_mg_dl if d.min_mg_dl is not None else pd.NA,
            "max_mg_dl": d.max_mg_dl if d.max_mg_dl is not None else pd.NA,
            "tir_pct": d.tir_percent,
            "carbs_g": d.carbs,
            "bolus_u": round(d.bolus, 2),
            "basal_u": round(d.basal, 2) if d.basal is not None else pd.NA,
        }
        for d in days
    ]
    return pd.DataFrame(rows, columns=columns)


def hourly_treatment_counts(
    events: Iterable[TreatmentEvent], tzinfo: tzinfo
) -> list[int]:
    """Tratamientos por hora local (24 contadores)."""
    counts = [0] * 24
    for event in events:
        counts[local_datetime(event.timestamp_ms, tzinfo).hour] += 1
    return counts


def treatment_insights(
    events: Iterable[TreatmentEvent], tzinfo: tzinfo
) -> TreatmentInsights:
    """Busiest treatment hour and busiest 4-hour window (earliest on ties)."""
    counts = hourly_treatment_counts(events, tzinfo)
    best_hour, best_count = 0, 0
    for hour, count in enumerate(counts):
        if count > best_count:
            best_hour, best_count = hour, count
    best_start, best_sum = 0, 0
    for start in range(24 - BUSIEST_WINDOW_HOURS + 1):
        window = sum(counts[start : start + BUSIEST_WINDOW_HOURS])
        if window > best_sum:
            best_start, best_sum = start, window
    return TreatmentInsights(
        busiest_hour=best_hour,
        busiest_hour_count=best_count,
        busiest_window_start=best_start,
        busiest_window_end=best_start + BUSIEST_WINDOW_HOURS,
    )
