"""Unidades de glucemia para mostrar (mg/dL o mmol/L)."""

from __future__ import annotations

from enum import Enum

MG_DL_PER_MMOL_L = 18.0


class GlucoseUnit(str, Enum):
    MG_DL = "mg/dL"
    MMOL_L = "mmol/L"


def parse_unit(raw: str) -> GlucoseUnit:
    """Accept ``mg/dL``/``mmol/L`` in any case, also ``mgdl``/``mmol``.

    Raises:
        ValueError: If the text names no known unit.
    """
    key = raw.strip().lower().replace("/", "").replace(" ", "")
    if key in ("mgdl", "mg"):
        return GlucoseUnit.MG_DL
    if key in ("mmoll", "mmol"):
        return GlucoseUnit.MMOL_L
    raise ValueError(f"Unknown glucose unit {raw!r}")


def convert(mg_dl: float, unit: GlucoseUnit) -> float:
    if unit is GlucoseUnit.MMOL_L:
        return mg_dl / MG_DL_PER_MMOL_L
    return mg_dl


def to_mg_dl(value: float, unit: GlucoseUnit) -> float:
    if unit is GlucoseUnit.MMOL_L:
        return value * MG_DL_PER_MMOL_L
    return value


def format_glucose(mg_dl: float | None, unit: GlucoseUnit = GlucoseUnit.MG_DL) -> str:
    """``"123 mg/dL"`` or ``"6.8 mmol/L"``; ``"-"`` when there is no value."""
    if mg_dl is None:
        return "-"
    if unit is GlucoseUnit.MMOL_L:
        return f"{convert(mg_dl, unit):.1f} {unit.value}"
    return f"{mg_dl:.0f} {unit.value}"
