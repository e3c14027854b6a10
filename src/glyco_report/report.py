"""Composición del informe clínico paginado (resumen, días, variabilidad)."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import date

from glyco_report.agp import PercentileCurves, percentile_curves
from glyco_report.basal import ScheduleTimeline, daily_basal_total
from glyco_report.layout import (
    BAND_10_90,
    BAND_25_75,
    BLUE,
    CARBS,
    CARBS_MARKER_SCALE,
    CHART_AREA,
    CORRECTION_BOLUS,
    FRAME,
    GLUCOSE_LINE,
    GRID,
    GREY,
    HOUR_TICKS,
    INSULIN_MARKER_SCALE,
    MEAL_BOLUS,
    MEAN_CURVE,
    RED,
    SEPARATOR,
    TARGET_BAND,
    TARGET_HIGH,
    TARGET_LOW,
    Y_TICKS,
    ZONE_BAR_WIDTH,
    ZONE_BAR_X,
    ZONE_COLORS,
    ChartArea,
    Circle,
    Line,
    Page,
    Polygon,
    Rect,
    ReportDocument,
    Text,
    zone_bar_segments,
)
from glyco_report.metrics import (
    DayStatistics,
    DerivedStatistics,
    compute_statistics,
    control_label,
    day_statistics,
    pgs_label,
    treatment_insights,
)
from glyco_report.model import (
    GlucoseSample,
    PatientInfo,
    ReportOptions,
    TreatmentEvent,
    TreatmentKind,
)
from glyco_report.normalize import NormalizedData, local_datetime
from glyco_report.query import QueryCancelled

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

REPORT_TITLE = "Análisis glucémico"
SUBTITLE = "Informe de monitoreo continuo de glucosa"

_CONTROL_LABELS: dict[str, str] = {
    "excellent": "Control excelente",
    "good": "Buen control",
    "medium": "Control medio",
    "poor": "Control deficiente",
}
_DAY_NAMES: tuple[str, ...] = (
    "Lunes",
    "Martes",
    "Miércoles",
    "Jueves",
    "Viernes",
    "Sábado",
    "Domingo",
)
_MONTH_NAMES: tuple[str, ...] = (
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
)
DASH_PATTERN = (1.0, 1.0)


def long_date(day: date) -> str:
    """``Lunes 3 de marzo de 2025``."""
    return (
        f"{_DAY_NAMES[day.weekday()]} {day.day} de "
        f"{_MONTH_NAMES[day.month - 1]} de {day.year}"
    )


def format_mg_dl(value: float | None) -> str:
    """Valor en mg/dL sin decimales, o "-" cuando no hay dato."""
    if value is None:
        return "-"
    return f"{value:.0f} mg/dL"


def _period_label(data: NormalizedData) -> str:
    start = local_datetime(data.period.from_ms, data.tzinfo).strftime("%d/%m/%Y")
    end = local_datetime(data.period.to_ms, data.tzinfo).strftime("%d/%m/%Y")
    return f"{start} hasta {end}"


def _reverse_iso(value: str, sep: str) -> str:
    """Invierte una fecha ISO (YYYY-MM-DD) usando ``sep``; "-" si está vacía."""
    parts = [p for p in value.strip().split("-") if p]
    return sep.join(reversed(parts)) if parts else "-"


def _separator(page: Page, y: float) -> None:
    page.add(Line(15, y, 195, y, color=SEPARATOR, width=0.3))


# --- resumen ---


def _add_header(page: Page, data: NormalizedData) -> float:
    y = 18.0
    page.add(Text(12, y, REPORT_TITLE, size=28, color=BLUE))
    page.add(Text(12, y + 6, SUBTITLE, size=10))
    page.add(Text(198, y + 6, _period_label(data), size=10, align="right"))
    page.add(Line(12, y + 9, 198, y + 9, color=BLUE, width=2))
    return y + 22


def _add_patient(page: Page, patient: PatientInfo, y: float) -> float:
    page.add(Text(105, y, patient.display_name(), size=22, align="center"))
    y += 10
    page.add(Text(40, y, "Fecha de nacimiento", size=12))
    page.add(
        Text(80, y, _reverse_iso(patient.birth_date, " "), size=12, color=BLUE)
    )
    page.add(Text(120, y, "Diabético desde", size=12))
    page.add(
        Text(160, y, _reverse_iso(patient.diabetic_since, " "), size=12, color=BLUE)
    )
    y += 7
    page.add(Text(40, y, "Insulina", size=12))
    page.add(Text(80, y, patient.insulin_regimen or "-", size=12, color=BLUE))
    return y + 10


def _add_basic_counts(page: Page, stats: DerivedStatistics, y: float) -> float:
    rows = [
        ("Días evaluados", stats.days_evaluated, 60),
        ("Número de mediciones de glucosa", stats.measurement_count, 90),
        ("Cambios de catéter / reservorio", stats.site_changes, 90),
        ("Cambios de sensor", stats.sensor_changes, 90),
    ]
    for offset, (label, value, value_x) in enumerate(rows):
        page.add(Text(20, y + offset * 6, label, size=11))
        page.add(Text(value_x, y + offset * 6, str(value), size=11))
    _separator(page, y + 28)
    return y + 36


def _add_target_zone(page: Page, stats: DerivedStatistics, y: float) -> float:
    page.add(Text(20, y, "Zona objetivo estándar", size=11))
    y += 6
    legend_y = y
    for label, bucket in stats.buckets.top_down():
        page.add(Rect(22, legend_y - 4, 4, 4, fill=ZONE_COLORS[label]))
        page.add(Text(28, legend_y, label))
        page.add(Text(60, legend_y, f"{bucket.percent} %"))
        page.add(Text(80, legend_y, f"{bucket.count} valores"))
        legend_y += 12
    for segment in zone_bar_segments(stats.buckets, top=y - 10):
        if segment.height <= 0:
            continue
        page.add(
            Rect(
                ZONE_BAR_X,
                segment.top,
                ZONE_BAR_WIDTH,
                segment.height,
                fill=segment.color,
            )
        )
    return legend_y


def _add_period_stats(page: Page, stats: DerivedStatistics, y: float) -> float:
    _separator(page, y)
    y += 8
    page.add(Text(20, y, "Período", size=11))
    rows: list[tuple[str, str, str]] = [
        ("Valor más bajo del período", format_mg_dl(stats.min_mg_dl), ""),
        ("Valor más alto del período", format_mg_dl(stats.max_mg_dl), ""),
        ("Desviación estándar", f"{stats.std:.1f} mg/dL", ""),
        ("GVI", f"{stats.gvi:.2f}", _CONTROL_LABELS[control_label(stats.gvi)]),
        ("PGS", f"{stats.pgs:.2f}", _CONTROL_LABELS[pgs_label(stats.pgs)]),
        ("Glucemia media", f"{stats.mean:.0f} mg/dL", ""),
        ("HbA1c estimada", f"{stats.hba1c} %", ""),
    ]
    for label, value, note in rows:
        y += 6
        page.add(Text(22, y, label))
        page.add(Text(90, y, value))
        if note and stats.measurement_count:
            page.add(Text(120, y, note))
    return y + 8


def _add_treatments(page: Page, stats: DerivedStatistics, y: float) -> float:
    _separator(page, y)
    y += 8
    page.add(Text(20, y, "Tratamientos", size=11))
    rows = [
        ("Carbohidratos medios por día", f"{stats.carbs_per_day:.1f} g"),
        ("Insulina media por día", f"{stats.total_insulin_per_day:.1f} U"),
        ("Bolo medio por día", f"{stats.bolus_per_day:.1f} U"),
        ("Basal real media por día", f"{stats.real_basal_per_day:.1f} U"),
    ]
    for label, value in rows:
        y += 6
        page.add(Text(22, y, label))
        page.add(Text(90, y, value))
    return y


def summary_page(
    patient: PatientInfo, stats: DerivedStatistics, data: NormalizedData
) -> Page:
    page = Page(kind="summary", title=REPORT_TITLE)
    y = _add_header(page, data)
    y = _add_patient(page, patient, y)
    y = _add_basic_counts(page, stats, y)
    y = _add_target_zone(page, stats, y)
    y = _add_period_stats(page, stats, y)
    _add_treatments(page, stats, y)
    return page


# --- páginas diarias ---


def _add_grid(page: Page, chart: ChartArea) -> None:
    for value in Y_TICKS:
        y = chart.y_for(value)
        page.add(Line(chart.x, y, chart.right, y, color=GRID, width=0.3))
        page.add(Text(chart.x - 15, y + 2, str(value), size=8, color=GREY))
    for hour in HOUR_TICKS:
        x = chart.x_for_hour(hour)
        page.add(Line(x, chart.y, x, chart.bottom, color=GRID, width=0.3))
        page.add(
            Text(x - 8, chart.bottom + 8, f"{hour:02d}:00", size=8, color=GREY)
        )


def _add_axis_labels(page: Page, chart: ChartArea, x_label: str) -> None:
    page.add(Text(5, chart.y + chart.height / 2, "mg/dL", angle=90))
    page.add(Text(chart.x + chart.width / 2 - 10, chart.bottom + 20, x_label))


def glucose_points(
    samples: Sequence[GlucoseSample], chart: ChartArea, data: NormalizedData
) -> list[tuple[float, float]]:
    """Chart coordinates of a day's samples inside the value domain."""
    points: list[tuple[float, float]] = []
    for sample in samples:
        if not chart.contains_value(sample.mg_dl):
            continue
        dt = local_datetime(sample.timestamp_ms, data.tzinfo)
        hour = dt.hour + dt.minute / 60
        points.append((chart.x_for_hour(hour), chart.y_for(sample.mg_dl)))
    points.sort(key=lambda p: p[0])
    return points


def _add_glucose_line(
    page: Page, points: Sequence[tuple[float, float]]
) -> None:
    for (x1, y1), (x2, y2) in zip(points, points[1:]):
        page.add(Line(x1, y1, x2, y2, color=GLUCOSE_LINE, width=0.4))
    for x, y in points:
        page.add(Circle(x, y, 0.6, fill=GLUCOSE_LINE))


def _add_treatment_markers(
    page: Page,
    events: Sequence[TreatmentEvent],
    chart: ChartArea,
    data: NormalizedData,
) -> None:
    base_y = chart.y_for(chart.domain_min)
    for event in events:
        dt = local_datetime(event.timestamp_ms, data.tzinfo)
        x = chart.x_for_hour(dt.hour + dt.minute / 60)
        if event.insulin_units and event.insulin_units > 0:
            top = base_y - event.insulin_units * INSULIN_MARKER_SCALE
            color = (
                MEAL_BOLUS if event.kind is TreatmentKind.MEAL_BOLUS else CORRECTION_BOLUS
            )
            page.add(Line(x, base_y, x, top, color=color, width=1.0))
            page.add(
                Text(x + 2, top - 2, f"{event.insulin_units:g}U", size=8, color=color)
            )
        if event.carbs_grams and event.carbs_grams > 0:
            top = base_y - event.carbs_grams * CARBS_MARKER_SCALE
            page.add(Line(x, base_y, x, top, color=CARBS, width=1.0))
            page.add(
                Text(x + 2, top - 2, f"{event.carbs_grams:g}g", size=8, color=CARBS)
            )


def _add_day_statistics(page: Page, day_stats: DayStatistics, y: float) -> None:
    page.add(Text(22, y, "Estadísticas del día:", size=10))
    lines = [
        f"• Glucemia media: {format_mg_dl(day_stats.mean)}",
        f"• Mín: {format_mg_dl(day_stats.min_mg_dl)} - "
        f"Máx: {format_mg_dl(day_stats.max_mg_dl)}",
        f"• Tiempo en rango (70-180): {day_stats.tir_percent}%",
        f"• Carbohidratos totales: {day_stats.carbs:g}g",
        f"• Insulina total: {day_stats.insulin:.1f}U",
    ]
    if day_stats.basal is not None:
        lines.append(f"• Basal administrada: {day_stats.basal:.1f}U")
    y += 2
    for line in lines:
        y += 6
        page.add(Text(25, y, line, size=9))


def _add_day_legend(page: Page, y: float) -> None:
    legend_y = y + 10
    page.add(Line(25, legend_y, 40, legend_y, color=GLUCOSE_LINE, width=0.7))
    page.add(Text(45, legend_y + 2, "Glucosa"))
    for x, color, label in (
        (95, MEAL_BOLUS, "Bolo comida"),
        (165, CORRECTION_BOLUS, "Bolo corrección"),
    ):
        page.add(Line(x, legend_y - 3, x, legend_y + 3, color=color, width=0.7))
        page.add(Text(x + 5, legend_y + 2, label))
    second = legend_y + 15
    page.add(Line(25, second - 3, 25, second + 3, color=CARBS, width=0.7))
    page.add(Text(30, second + 2, "Carbohidratos"))
    page.add(Line(95, second, 110, second, color=RED, width=0.4, dash=DASH_PATTERN))
    page.add(Text(115, second + 2, "Objetivo (70-180 mg/dL)"))


def day_page(
    day: date,
    data: NormalizedData,
    timeline: ScheduleTimeline | None = None,
    with_legend: bool = False,
) -> Page:
    """One day's glucose trace with treatment markers and day statistics."""
    samples = data.samples_by_day.get(day, [])
    events = data.events_by_day.get(day, [])
    page = Page(kind="day", title=long_date(day))
    page.add(Text(20, 20, "Tendencia glucémica", size=18, color=BLUE))
    page.add(Text(20, 35, long_date(day), size=14))

    chart = CHART_AREA
    page.add(Rect(chart.x, chart.y, chart.width, chart.height, stroke=FRAME))
    _add_grid(page, chart)
    for value in (TARGET_LOW, TARGET_HIGH):
        y = chart.y_for(value)
        page.add(
            Line(chart.x, y, chart.right, y, color=RED, width=0.4, dash=DASH_PATTERN)
        )
    _add_glucose_line(page, glucose_points(samples, chart, data))
    _add_treatment_markers(page, events, chart, data)

    basal = None
    if timeline is not None:
        basal = daily_basal_total(day, timeline, data.events, data.tzinfo)
    stats_y = chart.bottom + 30
    _add_day_statistics(page, day_statistics(day, samples, events, basal), stats_y)
    if with_legend:
        _add_day_legend(page, stats_y + 40)
    _add_axis_labels(page, chart, "Hora")
    return page


# --- variabilidad ---


def _band(
    chart: ChartArea,
    upper: Sequence[float | None],
    lower: Sequence[float | None],
) -> tuple[tuple[float, float], ...]:
    bins = [i for i, value in enumerate(upper) if value is not None]
    top = [(chart.x_for_bin(i), chart.y_for(upper[i])) for i in bins]  # type: ignore[arg-type]
    bottom = [(chart.x_for_bin(i), chart.y_for(lower[i])) for i in bins]  # type: ignore[arg-type]
    return tuple(top + bottom[::-1])


def _add_percentile_bands(
    page: Page, chart: ChartArea, curves: PercentileCurves
) -> None:
    if len(curves.filled_bins()) < 2:
        return
    page.add(Polygon(_band(chart, curves.p90, curves.p10), fill=BAND_10_90))
    page.add(Polygon(_band(chart, curves.p75, curves.p25), fill=BAND_25_75))
    points = [
        (chart.x_for_bin(i), chart.y_for(curves.mean[i]))  # type: ignore[arg-type]
        for i in curves.filled_bins()
    ]
    for (x1, y1), (x2, y2) in zip(points, points[1:]):
        page.add(Line(x1, y1, x2, y2, color=MEAN_CURVE, width=0.5))
    # un punto por hora (12 franjas de 5 min)
    for idx, (x, y) in enumerate(points):
        if idx % 12 == 0:
            page.add(Circle(x, y, 0.5, fill=MEAN_CURVE))


def _add_variability_insights(
    page: Page, stats: DerivedStatistics, data: NormalizedData, y: float
) -> None:
    insights = treatment_insights(data.events, data.tzinfo)
    page.add(Text(22, y, "Análisis de variabilidad:", size=11))
    lines = [
        f"• Hora más activa: {insights.busiest_hour}h00 "
        f"({insights.busiest_hour_count} tratamientos)",
        f"• Insulina media por día: {stats.total_insulin_per_day:.1f}U",
        f"• Carbohidratos medios por día: {stats.carbs_per_day:.0f}g",
        f"• Período más cargado: {insights.busiest_window_start}h-"
        f"{insights.busiest_window_end}h",
    ]
    y += 4
    for line in lines:
        y += 6
        page.add(Text(25, y, line, size=9))


def _add_variability_legend(page: Page, y: float) -> None:
    page.add(Text(22, y, "Leyenda:", size=10))
    y += 8
    page.add(Line(25, y, 40, y, color=MEAN_CURVE, width=0.7))
    page.add(Circle(32, y, 1.5, fill=MEAN_CURVE))
    page.add(Text(45, y + 2, "Curva de glucemia media (5 min)", size=9))
    for color, stroke, label in (
        (BAND_10_90, BAND_10_90, "Zona de variabilidad (10%-90%)"),
        (BAND_25_75, BAND_25_75, "Zona de variabilidad (25%-75%)"),
        (TARGET_BAND, (100, 100, 100), "Zona objetivo (70-180 mg/dL)"),
    ):
        y += 10
        page.add(Rect(25, y - 2, 15, 4, fill=color, stroke=stroke))
        page.add(Text(45, y + 2, label, size=9))


def variability_page(
    stats: DerivedStatistics, data: NormalizedData, curves: PercentileCurves
) -> Page:
    """AGP-style percentile bands over a shaded target zone, plus insights."""
    page = Page(kind="variability", title="Perfil de variabilidad glucémica")
    page.add(Text(20, 20, page.title, size=18, color=BLUE))
    page.add(Text(20, 35, f"Período: {_period_label(data)}", size=10))

    chart = CHART_AREA
    page.add(Rect(chart.x, chart.y, chart.width, chart.height, stroke=FRAME))
    top = chart.y_for(TARGET_HIGH)
    page.add(
        Rect(chart.x, top, chart.width, chart.y_for(TARGET_LOW) - top, fill=TARGET_BAND)
    )
    _add_percentile_bands(page, chart, curves)
    _add_grid(page, chart)

    y = chart.bottom + 20
    _add_variability_insights(page, stats, data, y)
    _add_variability_legend(page, y + 40)
    _add_axis_labels(page, chart, "Hora del día")
    return page


# --- documento ---


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise QueryCancelled("Report composition cancelled")


def compose_report(
    patient: PatientInfo,
    stats: DerivedStatistics,
    data: NormalizedData,
    curves: PercentileCurves,
    options: ReportOptions,
    *,
    timeline: ScheduleTimeline | None = None,
    progress: ProgressCallback | None = None,
    cancel: threading.Event | None = None,
) -> ReportDocument:
    """Assemble the fixed-order report.

    Page order: summary, one page per evaluated day (``include_charts``),
    the variability page (``include_variability_chart``).

    Args:
        patient: Header identity; last and first name are required.
        stats: Period statistics.
        data: Normalized samples/events partitioned by day.
        curves: Percentile curves of the period.
        options: Optional sections.
        timeline: Basal schedule, used for each day's delivered basal.
        progress: Called as ``progress(done, total)`` after each page.
        cancel: When set, composition stops with QueryCancelled.

    Raises:
        ValueError: If a required patient field is empty.
        QueryCancelled: If ``cancel`` is set before the document is done.
    """
    patient.validate()
    days = list(data.evaluated_days) if options.include_charts else []
    total = 1 + len(days) + (1 if options.include_variability_chart else 0)
    document = ReportDocument(title=f"{REPORT_TITLE} - {patient.display_name()}")

    def _done(page: Page) -> None:
        document.pages.append(page)
        logger.debug("Report page %d/%d (%s)", len(document.pages), total, page.kind)
        if progress is not None:
            progress(len(document.pages), total)

    _check_cancel(cancel)
    _done(summary_page(patient, stats, data))
    for idx, day in enumerate(days):
        _check_cancel(cancel)
        _done(day_page(day, data, timeline, with_legend=idx == 0))
    if options.include_variability_chart:
        _check_cancel(cancel)
        _done(variability_page(stats, data, curves))
    return document


def build_report(
    patient: PatientInfo,
    data: NormalizedData,
    options: ReportOptions,
    timeline: ScheduleTimeline | None = None,
    *,
    progress: ProgressCallback | None = None,
    cancel: threading.Event | None = None,
) -> ReportDocument:
    """Compute statistics and curves, then compose the report."""
    stats = compute_statistics(data, timeline)
    curves = percentile_curves(data.samples, data.tzinfo)
    return compose_report(
        patient,
        stats,
        data,
        curves,
        options,
        timeline=timeline,
        progress=progress,
        cancel=cancel,
    )
