"""CLI para generar el informe glucémico (PDF) y el resumen diario (Excel)."""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from datetime import date, datetime, tzinfo
from pathlib import Path

from dateutil import tz

from glyco_report.excel_writer import ExcelLayout, write_daily_xlsx
from glyco_report.metrics import daily_statistics, daily_summary_frame
from glyco_report.model import Period
from glyco_report.normalize import PRESETS, default_tz, preset_period
from glyco_report.pdf_writer import write_pdf
from glyco_report.query import QueryRunner
from glyco_report.report import compose_report
from glyco_report.sources.base import DataSource
from glyco_report.sources.export_dir import ExportDirPaths, ExportDirSource
from glyco_report.sources.nightscout import NightscoutSource
from glyco_report.storage import Settings, SQLiteSettingsStore
from glyco_report.units import format_glucose, parse_unit

logger = logging.getLogger(__name__)

DEFAULT_PRESET = "2w"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed argparse namespace.
    """
    parser = argparse.ArgumentParser(
        description="Informe glucémico (PDF) a partir de datos de Nightscout."
    )
    source = parser.add_argument_group("origen de datos")
    source.add_argument("--url", help="URL del sitio Nightscout.")
    source.add_argument("--token", help="Token de acceso de Nightscout.")
    source.add_argument(
        "--export-dir",
        help="Carpeta con entries.json / treatments.json / profile.json.",
    )

    period = parser.add_argument_group("período")
    period.add_argument("--from", dest="from_date", help="Primer día (YYYY-MM-DD).")
    period.add_argument("--to", dest="to_date", help="Último día (YYYY-MM-DD).")
    period.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        help=f"Período predefinido hasta --day (default: {DEFAULT_PRESET}).",
    )
    period.add_argument("--day", help="Día de referencia del preset (default: hoy).")
    period.add_argument("--tz", help="Zona horaria IANA (default: la local).")

    patient = parser.add_argument_group("paciente")
    patient.add_argument("--last-name", help="Apellido.")
    patient.add_argument("--first-name", help="Nombre.")
    patient.add_argument("--birth-date", help="Fecha de nacimiento (YYYY-MM-DD).")
    patient.add_argument("--insulin", help="Esquema de insulina.")
    patient.add_argument("--diabetic-since", help="Diabético desde (YYYY-MM).")

    report = parser.add_argument_group("informe")
    report.add_argument(
        "--charts",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Incluir una página por día.",
    )
    report.add_argument(
        "--variability",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Incluir la página de variabilidad.",
    )
    report.add_argument("--out", help="Ruta del PDF (default: ./salidas/...).")
    report.add_argument("--xlsx", help="Ruta opcional del Excel con el resumen diario.")
    report.add_argument("--unit", help="Unidad para mostrar: mg/dL o mmol/L.")

    parser.add_argument(
        "--settings-db",
        default=str(Path.home() / ".glyco_report" / "settings.sqlite3"),
        help="Base SQLite de configuración.",
    )
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Guardar URL, paciente y opciones para la próxima vez.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log INFO.")
    return parser.parse_args(argv)


def merge_settings(stored: Settings, ns: argparse.Namespace) -> Settings:
    """CLI arguments override stored settings field by field."""
    patient = stored.patient
    for attr, value in (
        ("last_name", ns.last_name),
        ("first_name", ns.first_name),
        ("birth_date", ns.birth_date),
        ("insulin_regimen", ns.insulin),
        ("diabetic_since", ns.diabetic_since),
    ):
        if value is not None:
            patient = replace(patient, **{attr: value})
    options = stored.options
    if ns.charts is not None:
        options = replace(options, include_charts=ns.charts)
    if ns.variability is not None:
        options = replace(options, include_variability_chart=ns.variability)
    return replace(
        stored,
        nightscout_url=ns.url if ns.url is not None else stored.nightscout_url,
        nightscout_token=ns.token if ns.token is not None else stored.nightscout_token,
        glucose_unit=parse_unit(ns.unit) if ns.unit else stored.glucose_unit,
        timezone=ns.tz if ns.tz is not None else stored.timezone,
        patient=patient,
        options=options,
    )


def resolve_tz(name: str) -> tzinfo:
    """IANA zone by name; the machine's local zone when empty.

    Raises:
        ValueError: If the zone name is unknown.
    """
    if not name:
        return default_tz()
    zone = tz.gettz(name)
    if zone is None:
        raise ValueError(f"Unknown timezone {name!r}")
    return zone


def period_from_args(ns: argparse.Namespace, zone: tzinfo) -> Period:
    """Período explícito (--from/--to) o preset anclado en --day."""
    today = datetime.now(tz=zone).date()
    if ns.from_date:
        first = date.fromisoformat(ns.from_date)
        last = date.fromisoformat(ns.to_date) if ns.to_date else today
        return Period.from_days(first, last, zone)
    anchor = date.fromisoformat(ns.day) if ns.day else today
    return preset_period(ns.preset or DEFAULT_PRESET, anchor, zone)


def build_source(ns: argparse.Namespace, settings: Settings) -> DataSource:
    """Export folder when given, else the configured Nightscout site.

    Raises:
        ValueError: If neither is configured.
    """
    if ns.export_dir:
        root = Path(ns.export_dir).expanduser().resolve()
        return ExportDirSource(ExportDirPaths(root=root))
    if settings.nightscout_url:
        return NightscoutSource(settings.nightscout_url, settings.nightscout_token)
    raise ValueError("No data source: pass --url or --export-dir")


def main(argv: list[str] | None = None) -> int:
    """Run the report CLI.

    Returns:
        Exit code (0 on success).
    """
    ns = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if ns.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = SQLiteSettingsStore(Path(ns.settings_db).expanduser())
    settings = merge_settings(store.load(), ns)
    settings.patient.validate()
    if ns.save_settings:
        store.save(settings)

    zone = resolve_tz(settings.timezone)
    period = period_from_args(ns, zone)
    source = build_source(ns, settings)
    source.validate()

    result = QueryRunner(source, zone).run(period)
    if result is None:
        logger.warning("Query superseded, nothing to write")
        return 1

    document = compose_report(
        settings.patient,
        result.statistics,
        result.data,
        result.curves,
        settings.options,
        timeline=result.timeline,
        cancel=result.cancelled,
    )
    if ns.out:
        out_path = Path(ns.out).expanduser()
    else:
        ts = datetime.now(tz=zone).strftime("%Y-%m-%d_%H-%M-%S")
        out_path = Path.cwd() / "salidas" / f"informe_glucemico_{ts}.pdf"
    write_pdf(document, out_path)

    stats = result.statistics
    mean = stats.mean if stats.measurement_count else None
    print(f"OK: Days evaluated: {stats.days_evaluated}")
    print(f"OK: Mean glucose: {format_glucose(mean, settings.glucose_unit)}")
    print(f"OK: Time in range: {stats.pct_in} %")
    print(f"OK: Output: {out_path}")

    if ns.xlsx:
        xlsx_path = Path(ns.xlsx).expanduser()
        days = daily_statistics(result.data, result.timeline)
        write_daily_xlsx(daily_summary_frame(days), xlsx_path, ExcelLayout())
        print(f"OK: Daily summary: {xlsx_path}")
    return 0
