from __future__ import annotations

from datetime import date, timedelta

import pytest
from dateutil import tz

from glyco_report.basal import ScheduleTimeline
from glyco_report.metrics import (
    compute_statistics,
    control_label,
    count_device_changes,
    daily_statistics,
    daily_summary_frame,
    estimated_hba1c,
    gvi,
    pgs,
    pgs_label,
    range_buckets,
    total_bolus,
    total_carbs,
    total_insulin,
    treatment_insights,
)
from glyco_report.model import (
    BasalSchedule,
    GlucoseSample,
    Period,
    TreatmentEvent,
    TreatmentKind,
)
from glyco_report.normalize import day_start_ms, normalize

HOUR_MS = 3_600_000
FIVE_MIN_MS = 300_000
FIRST = date(2025, 3, 1)


def _constant_days(days: int, value: float) -> list[GlucoseSample]:
    start = day_start_ms(FIRST, tz.UTC)
    return [
        GlucoseSample(start + i * FIVE_MIN_MS, value) for i in range(days * 288)
    ]


def _event(ts: int, kind: TreatmentKind, **kwargs: object) -> TreatmentEvent:
    return TreatmentEvent(timestamp_ms=ts, kind=kind, **kwargs)  # type: ignore[arg-type]


def test_fourteen_days_constant_100() -> None:
    period = Period.from_days(FIRST, FIRST + timedelta(days=13), tz.UTC)
    data = normalize(_constant_days(14, 100), [], period, tz.UTC)

    stats = compute_statistics(data)

    assert stats.days_evaluated == 14
    assert stats.measurement_count == 14 * 288
    assert stats.pct_in == 100
    assert stats.pct_below == stats.pct_180_240 == stats.pct_above_240 == 0
    assert stats.mean == 100
    assert stats.std == 0
    assert stats.gvi == 0
    assert stats.hba1c == "5.1"
    assert stats.pgs == pytest.approx(5.0)
    assert stats.min_mg_dl == stats.max_mg_dl == 100


def test_empty_period_degrades_to_zero_and_placeholders() -> None:
    period = Period.from_days(FIRST, FIRST, tz.UTC)
    stats = compute_statistics(normalize([], [], period, tz.UTC))

    assert stats.days_evaluated == 0
    assert stats.measurement_count == 0
    assert [b.percent for _, b in stats.buckets.top_down()] == [0, 0, 0, 0]
    assert stats.hba1c == "-"
    assert stats.min_mg_dl is None
    assert stats.max_mg_dl is None
    assert stats.mean == 0
    assert stats.gvi == 0
    assert stats.pgs == 0
    assert stats.carbs_per_day == 0
    assert stats.real_basal_per_day == 0


def test_bucket_boundaries_and_percent_sum() -> None:
    buckets = range_buckets([69.9, 70, 180, 180.1, 240, 240.1])
    assert buckets.below_70.count == 1
    assert buckets.in_range.count == 2
    assert buckets.high_180_240.count == 2
    assert buckets.above_240.count == 1

    for values in ([50, 100, 150, 200, 250, 60, 300], [71, 72, 181], [300]):
        total = sum(b.percent for _, b in range_buckets(values).top_down())
        assert abs(total - 100) <= 4


def test_gvi_pgs_and_labels() -> None:
    assert gvi(0, 12) == 0
    assert gvi(100, 20) == pytest.approx(20.0)
    for values in ([40.0], [100.0, 300.0, 55.0], [400.0] * 10, [65.0, 70.0, 250.0]):
        assert 0 <= pgs(values) <= 5
    assert pgs([]) == 0

    assert control_label(24.9) == "excellent"
    assert control_label(25) == "good"
    assert control_label(33) == "medium"
    assert control_label(40) == "poor"
    assert pgs_label(4.5) == "excellent"
    assert pgs_label(3.5) == "good"
    assert pgs_label(2.5) == "medium"
    assert pgs_label(2.49) == "poor"

    assert estimated_hba1c(154) == "7.0"
    assert estimated_hba1c(None) == "-"


def test_treatment_totals_dedupe_and_kinds() -> None:
    events = [
        _event(1, TreatmentKind.CARB_INTAKE, carbs_grams=20, dedupe_key="abc"),
        _event(2, TreatmentKind.CARB_INTAKE, carbs_grams=20, dedupe_key="abc"),
        _event(3, TreatmentKind.MEAL_BOLUS, insulin_units=4, carbs_grams=30),
        _event(4, TreatmentKind.CORRECTION_BOLUS, insulin_units=1.5),
        _event(5, TreatmentKind.OTHER, insulin_units=2),
        _event(6, TreatmentKind.SITE_CHANGE),
        _event(7, TreatmentKind.SENSOR_CHANGE),
        _event(8, TreatmentKind.SENSOR_CHANGE),
    ]
    assert total_carbs(events) == 50
    assert total_bolus(events) == 5.5
    assert total_insulin(events) == 7.5
    assert count_device_changes(events) == (1, 2)


def test_per_day_rates_use_evaluated_days() -> None:
    period = Period.from_days(FIRST, FIRST + timedelta(days=1), tz.UTC)
    start = day_start_ms(FIRST, tz.UTC)
    events = [
        _event(start + 8 * HOUR_MS, TreatmentKind.MEAL_BOLUS, insulin_units=4),
        _event(start + 32 * HOUR_MS, TreatmentKind.MEAL_BOLUS, insulin_units=6),
    ]
    timeline = ScheduleTimeline.single(BasalSchedule.from_pairs([("00:00", 1.0)]))
    data = normalize(_constant_days(2, 120), events, period, tz.UTC)

    stats = compute_statistics(data, timeline)

    assert stats.bolus_per_day == 5
    assert stats.real_basal_per_day == 24.0
    assert stats.total_insulin_per_day == 29.0


def test_daily_statistics_and_frame() -> None:
    period = Period.from_days(FIRST, FIRST + timedelta(days=1), tz.UTC)
    timeline = ScheduleTimeline.single(BasalSchedule.from_pairs([("00:00", 1.0)]))
    data = normalize(_constant_days(2, 150), [], period, tz.UTC)

    days = daily_statistics(data, timeline)

    assert [d.day for d in days] == [FIRST, FIRST + timedelta(days=1)]
    assert days[0].count == 288
    assert days[0].tir_percent == 100
    assert days[0].basal == 24.0

    frame = daily_summary_frame(days)
    assert list(frame.columns) == [
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
    assert frame.iloc[1]["mean_mg_dl"] == 150.0


def test_treatment_insights() -> None:
    start = day_start_ms(FIRST, tz.UTC)
    hours = [8, 8, 12, 13, 14, 15]
    events = [_event(start + h * HOUR_MS, TreatmentKind.CARB_INTAKE) for h in hours]

    insights = treatment_insights(events, tz.UTC)

    assert insights.busiest_hour == 8
    assert insights.busiest_hour_count == 2
    assert (insights.busiest_window_start, insights.busiest_window_end) == (12, 16)

    empty = treatment_insights([], tz.UTC)
    assert (empty.busiest_hour, empty.busiest_window_start) == (0, 0)
