"""Punto de entrada: ``python -m glyco_report``."""

from __future__ import annotations

from glyco_report.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
