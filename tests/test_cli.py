"""Tests for CLI entrypoints."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from openpyxl import load_workbook

from glyco_report import cli
from glyco_report.model import PatientInfo, ReportOptions
from glyco_report.storage import Settings, SQLiteSettingsStore
from glyco_report.units import GlucoseUnit

T0 = 1_740_787_200_000  # 2025-03-01T00:00:00Z
PATIENT_DETAILS = [
    "--birth-date",
    "1980-05-17",
    "--insulin",
    "Bomba",
    "--diabetic-since",
    "1995-09",
]
STORED_PATIENT = PatientInfo("D", "J", "1980-05-17", "Bomba", "1995-09")


def _export_dir(root: Path) -> Path:
    root.mkdir(parents=True)
    entries = [{"date": T0 + i * 300_000, "sgv": 100 + i % 50} for i in range(2 * 288)]
    (root / "entries.json").write_text(json.dumps(entries), encoding="utf-8")
    treatments = [
        {"created_at": "2025-03-01T08:00:00Z", "eventType": "Meal Bolus", "insulin": 3}
    ]
    (root / "treatments.json").write_text(json.dumps(treatments), encoding="utf-8")
    return root


def test_parse_args_custom_values() -> None:
    ns = cli.parse_args(
        ["--url", "https://ns.example.org", "--preset", "1w", "--charts", "--tz", "UTC"]
    )
    assert ns.url == "https://ns.example.org"
    assert ns.preset == "1w"
    assert ns.charts is True
    assert ns.variability is None
    assert ns.tz == "UTC"


def test_merge_settings_cli_overrides_stored() -> None:
    stored = Settings(
        nightscout_url="https://old.example.org",
        patient=PatientInfo("Dupont", "Jean", insulin_regimen="Pompe"),
        options=ReportOptions(include_charts=True),
    )
    ns = cli.parse_args(["--first-name", "Marie", "--no-charts", "--unit", "mmol/L"])

    merged = cli.merge_settings(stored, ns)

    assert merged.nightscout_url == "https://old.example.org"
    assert merged.patient == PatientInfo("Dupont", "Marie", insulin_regimen="Pompe")
    assert merged.options.include_charts is False
    assert merged.glucose_unit is GlucoseUnit.MMOL_L


def test_resolve_tz_rejects_unknown_zone() -> None:
    with pytest.raises(ValueError, match="Unknown timezone"):
        cli.resolve_tz("Mars/Olympus_Mons")


def test_main_happy_path(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    export = _export_dir(tmp_path / "export")
    out = tmp_path / "salidas" / "informe.pdf"
    xlsx = tmp_path / "salidas" / "diario.xlsx"
    db = tmp_path / "settings.sqlite3"

    code = cli.main(
        [
            "--export-dir",
            str(export),
            "--from",
            "2025-03-01",
            "--to",
            "2025-03-02",
            "--tz",
            "UTC",
            "--last-name",
            "Dupont",
            "--first-name",
            "Jean",
            *PATIENT_DETAILS,
            "--charts",
            "--variability",
            "--out",
            str(out),
            "--xlsx",
            str(xlsx),
            "--settings-db",
            str(db),
            "--save-settings",
        ]
    )

    assert code == 0
    assert out.read_bytes().startswith(b"%PDF")
    ws = load_workbook(xlsx).active
    assert ws.max_row == 3
    printed = capsys.readouterr().out
    assert "OK: Days evaluated: 2" in printed
    assert f"OK: Output: {out}" in printed

    saved = SQLiteSettingsStore(db).load()
    assert saved.patient.last_name == "Dupont"
    assert saved.timezone == "UTC"
    assert saved.options.include_variability_chart is True


def test_main_uses_stored_source_and_default_output(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    db = tmp_path / "settings.sqlite3"
    SQLiteSettingsStore(db).save(
        Settings(nightscout_url="https://ns.example.org", patient=STORED_PATIENT)
    )
    captured: dict[str, Any] = {}

    class _Source:
        def __init__(self, url: str, token: str) -> None:
            captured["url"] = url

        def validate(self) -> None:
            return None

        def fetch(self, period: Any) -> Any:
            from glyco_report.sources.export_dir import ExportDirPaths, ExportDirSource

            return ExportDirSource(ExportDirPaths(root=export)).fetch(period)

    def _write_pdf(document: Any, out_path: Path) -> Path:
        captured["pages"] = len(document.pages)
        captured["out_path"] = out_path
        return out_path

    export = _export_dir(tmp_path / "export")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "NightscoutSource", _Source)
    monkeypatch.setattr(cli, "write_pdf", _write_pdf)

    code = cli.main(
        ["--settings-db", str(db), "--preset", "2d", "--day", "2025-03-02", "--tz", "UTC"]
    )

    assert code == 0
    assert captured["url"] == "https://ns.example.org"
    assert captured["pages"] == 1
    out_path = captured["out_path"]
    assert out_path.parent == tmp_path / "salidas"
    assert out_path.name.startswith("informe_glucemico_")


def test_main_propagates_validation_error(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        cli.main(
            [
                "--export-dir",
                str(tmp_path / "missing"),
                "--last-name",
                "Dupont",
                "--first-name",
                "Jean",
                *PATIENT_DETAILS,
                "--settings-db",
                str(tmp_path / "s.sqlite3"),
            ]
        )


def test_main_requires_patient_name(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="last_name"):
        cli.main(["--settings-db", str(tmp_path / "s.sqlite3")])
