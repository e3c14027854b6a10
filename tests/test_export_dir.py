from __future__ import annotations

import json
from pathlib import Path

import pytest

from glyco_report.model import Period
from glyco_report.sources.base import SourceError
from glyco_report.sources.export_dir import ExportDirPaths, ExportDirSource

T0 = 1_740_787_200_000  # 2025-03-01T00:00:00Z
PERIOD = Period(T0, T0 + 86_399_999)


def _write(root: Path, name: str, payload: object, prefix: str = "") -> None:
    root.mkdir(parents=True, exist_ok=True)
    (root / name).write_text(prefix + json.dumps(payload), encoding="utf-8")


def test_fetch_reads_files_and_filters_period(tmp_path: Path) -> None:
    _write(
        tmp_path,
        "entries.json",
        [{"date": T0 + 60_000, "sgv": 110}, {"date": T0 - 60_000, "sgv": 90}],
        prefix="curl: descargando...\n",
    )
    _write(
        tmp_path,
        "treatments.json",
        [{"created_at": "2025-03-01T12:00:00Z", "eventType": "Meal Bolus", "insulin": 3}],
    )
    _write(
        tmp_path,
        "profile.json",
        {"defaultProfile": "D", "store": {"D": {"basal": [{"time": "00:00", "value": 1}]}}},
    )

    batch = ExportDirSource(ExportDirPaths(root=tmp_path)).fetch(PERIOD)

    assert [s.mg_dl for s in batch.samples] == [110]
    assert len(batch.events) == 1
    assert len(batch.timeline) == 1


def test_optional_files_may_be_missing(tmp_path: Path) -> None:
    _write(tmp_path, "entries.json", [])
    batch = ExportDirSource(ExportDirPaths(root=tmp_path)).fetch(PERIOD)
    assert batch.samples == ()
    assert batch.events == ()
    assert not batch.timeline


def test_missing_root_or_entries_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ExportDirSource(ExportDirPaths(root=tmp_path / "nope")).validate()
    with pytest.raises(FileNotFoundError, match="entries.json"):
        ExportDirSource(ExportDirPaths(root=tmp_path)).validate()


def test_invalid_json_is_a_source_error(tmp_path: Path) -> None:
    (tmp_path / "entries.json").write_text("[{roto", encoding="utf-8")
    with pytest.raises(SourceError, match="Invalid export"):
        ExportDirSource(ExportDirPaths(root=tmp_path)).fetch(PERIOD)
