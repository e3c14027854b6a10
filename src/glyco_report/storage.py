"""Persistencia SQLite de la configuración (servidor, paciente, opciones)."""

from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from glyco_report.model import PatientInfo, ReportOptions
from glyco_report.units import GlucoseUnit, parse_unit

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


@dataclass(frozen=True)
class Settings:
    """Configuracion persistida de la app."""

    nightscout_url: str = ""
    nightscout_token: str = ""
    glucose_unit: GlucoseUnit = GlucoseUnit.MG_DL
    timezone: str = ""
    patient: PatientInfo = field(default_factory=lambda: PatientInfo("", ""))
    options: ReportOptions = field(default_factory=ReportOptions)


class SettingsRepository(ABC):
    """Where settings are loaded from and saved to."""

    @abstractmethod
    def load(self) -> Settings:
        """Devuelve configuracion guardada o defaults."""

    @abstractmethod
    def save(self, settings: Settings) -> None:
        """Guarda la configuracion."""


class SQLiteSettingsStore(SettingsRepository):
    """Repositorio SQLite (tabla key/value)."""

    def __init__(self, db_path: Path) -> None:
        """Create store and ensure schema exists."""
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()

    def load(self) -> Settings:
        defaults = _payload(Settings())
        with self._connect() as conn:
            rows = conn.execute("SELECT key, value FROM app_config").fetchall()
        values = {row["key"]: row["value"] for row in rows}
        merged = {**defaults, **values}
        try:
            unit = parse_unit(merged["glucose_unit"])
        except ValueError:
            unit = GlucoseUnit.MG_DL
        return Settings(
            nightscout_url=merged["nightscout_url"],
            nightscout_token=merged["nightscout_token"],
            glucose_unit=unit,
            timezone=merged["timezone"],
            patient=_parse_patient(merged["patient"]),
            options=_parse_options(merged["options"]),
        )

    def save(self, settings: Settings) -> None:
        """Guarda la configuracion en tabla key/value."""
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO app_config(key, value) VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                _payload(settings).items(),
            )
            conn.commit()


def _payload(settings: Settings) -> dict[str, str]:
    return {
        "nightscout_url": settings.nightscout_url,
        "nightscout_token": settings.nightscout_token,
        "glucose_unit": settings.glucose_unit.value,
        "timezone": settings.timezone,
        "patient": json.dumps(asdict(settings.patient)),
        "options": json.dumps(asdict(settings.options)),
    }


def _parse_json_dict(raw: str) -> dict[str, Any]:
    try:
        parsed: Any = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _parse_patient(raw: str) -> PatientInfo:
    data = _parse_json_dict(raw)
    return PatientInfo(
        last_name=str(data.get("last_name", "")),
        first_name=str(data.get("first_name", "")),
        birth_date=str(data.get("birth_date", "")),
        insulin_regimen=str(data.get("insulin_regimen", "")),
        diabetic_since=str(data.get("diabetic_since", "")),
    )


def _parse_options(raw: str) -> ReportOptions:
    data = _parse_json_dict(raw)
    return ReportOptions(
        include_charts=bool(data.get("include_charts", False)),
        include_variability_chart=bool(data.get("include_variability_chart", False)),
    )
