"""Generación de Excel formateado con el resumen diario para entrega médica."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.styles import Alignment, Border, Font, Side

logger = logging.getLogger(__name__)

_DIA_SEMANA: tuple[str, ...] = ("lun", "mar", "mie", "jue", "vie", "sab", "dom")

_HEADER_MAP: dict[str, str] = {
    "weekday": "Día",
    "date": "Fecha",
    "count": "Mediciones",
    "mean_mg_dl": "Media\n(mg/dL)",
    "min_mg_dl": "Mín\n(mg/dL)",
    "max_mg_dl": "Máx\n(mg/dL)",
    "tir_pct": "En rango\n(%)",
    "carbs_g": "Carbohidratos\n(g)",
    "bolus_u": "Bolo (U)",
    "basal_u": "Basal (U)",
}

_WIDTHS: tuple[tuple[str, int], ...] = (
    ("Día", 6),
    ("Fecha", 12),
    ("Mediciones", 12),
    ("Media\n(mg/dL)", 10),
    ("Mín\n(mg/dL)", 10),
    ("Máx\n(mg/dL)", 10),
    ("En rango\n(%)", 10),
    ("Carbohidratos\n(g)", 14),
    ("Bolo (U)", 10),
    ("Basal (U)", 10),
)

_NUMBER_FORMATS: dict[str, str] = {
    "Fecha": "dd/mm/yyyy",
    "Mediciones": "#,##0",
    "Media\n(mg/dL)": "0.0",
    "Mín\n(mg/dL)": "0",
    "Máx\n(mg/dL)": "0",
    "En rango\n(%)": "0",
    "Carbohidratos\n(g)": "#,##0",
    "Bolo (U)": "0.00",
    "Basal (U)": "0.00",
}


@dataclass(frozen=True)
class ExcelLayout:
    """Layout/formatting configuration for the daily sheet."""

    sheet_name: str = "Resumen diario"


def _weekday_label(i: object) -> str:
    """Convierte índice 0-6 (lunes-domingo) a etiqueta de 3 letras."""
    try:
        if i is None or (isinstance(i, float) and pd.isna(i)):
            return ""
        if isinstance(i, int | float):
            idx = int(i)
            return _DIA_SEMANA[idx] if 0 <= idx < 7 else ""
        return ""
    except (ValueError, TypeError):
        return ""


def _add_weekday_column(export_df: pd.DataFrame) -> pd.DataFrame:
    """Añade columna weekday (Día) a partir de date."""
    if "date" not in export_df.columns or export_df.empty:
        return export_df
    export_df = export_df.copy()
    export_df["date"] = pd.to_datetime(export_df["date"], errors="coerce")
    export_df["weekday"] = export_df["date"].dt.weekday.map(_weekday_label)
    cols = ["weekday"] + [c for c in export_df.columns if c != "weekday"]
    return export_df[cols]


def write_daily_xlsx(df: pd.DataFrame, out_path: Path, layout: ExcelLayout) -> None:
    """Write the per-day summary as a formatted Excel file suitable for printing.

    Args:
        df: One row per evaluated day (see ``metrics.daily_summary_frame``).
        out_path: Output path for the XLSX file.
        layout: Excel layout parameters.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)

    export_df = _add_weekday_column(df)
    export_df = export_df.rename(columns=_HEADER_MAP)

    with pd.ExcelWriter(out_path, engine="openpyxl") as writer:
        export_df.to_excel(writer, index=False, sheet_name=layout.sheet_name)
        ws = writer.book[layout.sheet_name]
        _format_sheet(ws)
    logger.info("Wrote %d day rows to %s", len(export_df), out_path)


def _style_header_row(ws: Any) -> None:
    """Aplica fuente negrita, alineación y borde a la fila de cabecera."""
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    header_font = Font(bold=True)
    center = Alignment(horizontal="center", vertical="center", wrap_text=True)
    for cell in ws[1]:
        cell.font = header_font
        cell.alignment = center
        cell.border = border


def _style_body_rows(ws: Any) -> None:
    """Aplica alineación, borde y altura fija a las filas de datos."""
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    center = Alignment(horizontal="center", vertical="center")
    for row in ws.iter_rows(min_row=2):
        for cell in row:
            cell.alignment = center
            cell.border = border
        ws.row_dimensions[row[0].row].height = 15


def _get_header_col_index(ws: Any) -> dict[str, int]:
    """Devuelve mapa nombre de cabecera -> índice de columna (1-based)."""
    headers = [str(cell.value) for cell in ws[1]]
    return {name: idx + 1 for idx, name in enumerate(headers)}


def _apply_column_widths(ws: Any, col_index: dict[str, int]) -> None:
    """Aplica anchos de columna fijos por cabecera."""
    for header, width in _WIDTHS:
        idx = col_index.get(header)
        if idx is not None:
            letter = ws.cell(row=1, column=idx).column_letter
            ws.column_dimensions[letter].width = width


def _apply_number_formats(ws: Any, col_index: dict[str, int]) -> None:
    """Aplica formatos numéricos por cabecera a las filas de datos."""
    for row in ws.iter_rows(min_row=2):
        for header, fmt in _NUMBER_FORMATS.items():
            idx = col_index.get(header)
            if idx is not None:
                row[idx - 1].number_format = fmt


def _format_sheet(ws: Any) -> None:
    """Apply borders, widths and number formats to a worksheet.

    Args:
        ws: openpyxl worksheet.
    """
    _style_header_row(ws)
    _style_body_rows(ws)
    col_index = _get_header_col_index(ws)
    _apply_column_widths(ws, col_index)
    _apply_number_formats(ws, col_index)
