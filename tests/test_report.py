from __future__ import annotations

import threading
from datetime import date, timedelta

import pytest
from dateutil import tz

from glyco_report.agp import percentile_curves
from glyco_report.basal import ScheduleTimeline
from glyco_report.layout import (
    CHART_AREA,
    MEAL_BOLUS,
    CARBS,
    Circle,
    Line,
    Polygon,
)
from glyco_report.metrics import compute_statistics
from glyco_report.model import (
    BasalSchedule,
    GlucoseSample,
    PatientInfo,
    Period,
    ReportOptions,
    TreatmentEvent,
    TreatmentKind,
)
from glyco_report.normalize import NormalizedData, day_start_ms, normalize
from glyco_report.query import QueryCancelled
from glyco_report.report import build_report, compose_report, long_date

FIRST = date(2025, 3, 3)
HOUR_MS = 3_600_000
PATIENT = PatientInfo(
    last_name="Dupont",
    first_name="Jean",
    birth_date="1980-05-17",
    insulin_regimen="Bomba",
    diabetic_since="1995-09",
)
ALL_PAGES = ReportOptions(include_charts=True, include_variability_chart=True)


def _two_days() -> NormalizedData:
    start = day_start_ms(FIRST, tz.UTC)
    samples = [
        GlucoseSample(start + 8 * HOUR_MS, 110),
        GlucoseSample(start + 9 * HOUR_MS, 350),
        GlucoseSample(start + 10 * HOUR_MS, 160),
        GlucoseSample(start + 32 * HOUR_MS, 90),
        GlucoseSample(start + 33 * HOUR_MS, 130),
    ]
    events = [
        TreatmentEvent(
            start + 8 * HOUR_MS,
            TreatmentKind.MEAL_BOLUS,
            insulin_units=2,
            carbs_grams=30,
        ),
    ]
    period = Period.from_days(FIRST, FIRST + timedelta(days=1), tz.UTC)
    return normalize(samples, events, period, tz.UTC)


def _compose(data: NormalizedData, options: ReportOptions, **kwargs: object):
    stats = compute_statistics(data)
    curves = percentile_curves(data.samples, data.tzinfo)
    return compose_report(PATIENT, stats, data, curves, options, **kwargs)  # type: ignore[arg-type]


def test_empty_period_still_produces_a_summary() -> None:
    period = Period.from_days(FIRST, FIRST, tz.UTC)
    data = normalize([], [], period, tz.UTC)

    document = _compose(data, ALL_PAGES)

    assert [p.kind for p in document.pages] == ["summary", "variability"]
    texts = document.pages[0].texts()
    assert "Jean DUPONT" in texts
    assert texts.count("0 %") == 4
    assert "- %" in texts
    assert "17 05 1980" in texts
    assert not document.pages[1].of_type(Polygon)


def test_page_order_follows_options() -> None:
    data = _two_days()
    assert [p.kind for p in _compose(data, ReportOptions()).pages] == ["summary"]
    assert [p.kind for p in _compose(data, ALL_PAGES).pages] == [
        "summary",
        "day",
        "day",
        "variability",
    ]


def test_day_page_draws_in_domain_samples_and_markers() -> None:
    document = _compose(_two_days(), ReportOptions(include_charts=True))
    first_day = document.pages[1]

    assert first_day.title == long_date(FIRST) == "Lunes 3 de marzo de 2025"
    # 350 mg/dL queda fuera del dominio 40-300
    assert len(first_day.of_type(Circle)) == 2

    lines = [s for s in first_day.of_type(Line) if isinstance(s, Line)]
    base = CHART_AREA.y_for(40)
    bolus = [ln for ln in lines if ln.color == MEAL_BOLUS and ln.y1 == base]
    carbs = [ln for ln in lines if ln.color == CARBS and ln.y1 == base]
    assert bolus[0].y2 == pytest.approx(base - 12)
    assert carbs[0].y2 == pytest.approx(base - 18)
    assert "2U" in first_day.texts()
    assert "30g" in first_day.texts()

    dashed = {round(ln.y1, 3) for ln in lines if ln.dash}
    assert round(CHART_AREA.y_for(70), 3) in dashed
    assert round(CHART_AREA.y_for(180), 3) in dashed


def test_legend_only_on_first_day_page() -> None:
    document = _compose(_two_days(), ReportOptions(include_charts=True))
    first, second = document.pages_of_kind("day")
    assert "Glucosa" in first.texts()
    assert "Glucosa" not in second.texts()


def test_variability_page_has_bands_and_insights() -> None:
    document = _compose(_two_days(), ReportOptions(include_variability_chart=True))
    page = document.pages_of_kind("variability")[0]
    assert len(page.of_type(Polygon)) == 2
    assert any("Hora más activa: 8h00" in t for t in page.texts())


def test_progress_and_cancellation() -> None:
    calls: list[tuple[int, int]] = []
    _compose(_two_days(), ALL_PAGES, progress=lambda d, t: calls.append((d, t)))
    assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]

    cancel = threading.Event()
    cancel.set()
    with pytest.raises(QueryCancelled):
        _compose(_two_days(), ALL_PAGES, cancel=cancel)


def test_missing_patient_name_is_rejected() -> None:
    data = _two_days()
    with pytest.raises(ValueError, match="last_name"):
        build_report(PatientInfo(last_name="", first_name="Jean"), data, ALL_PAGES)
    with pytest.raises(ValueError, match="birth_date"):
        build_report(PatientInfo("Doe", "Ana"), data, ALL_PAGES)


def test_build_report_with_basal_timeline() -> None:
    timeline = ScheduleTimeline.single(BasalSchedule.from_pairs([("00:00", 1.0)]))
    document = build_report(PATIENT, _two_days(), ALL_PAGES, timeline)
    day_texts = document.pages_of_kind("day")[0].texts()
    assert "• Basal administrada: 24.0U" in day_texts
