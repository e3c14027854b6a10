"""Perfil ambulatorio de glucosa: percentiles por franja de 5 minutos."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import tzinfo

from glyco_report.model import GlucoseSample
from glyco_report.normalize import is_valid_value, samples_to_frame

BIN_MINUTES = 5
BIN_COUNT = 24 * 60 // BIN_MINUTES

Curve = tuple[float | None, ...]


@dataclass(frozen=True)
class PercentileCurves:
    """Five parallel 288-bin curves; None marks a bin without samples."""

    mean: Curve
    p10: Curve
    p25: Curve
    p75: Curve
    p90: Curve

    def filled_bins(self) -> list[int]:
        return [i for i, value in enumerate(self.mean) if value is not None]

    @property
    def is_empty(self) -> bool:
        return not self.filled_bins()


def bin_index(minute_of_day: int) -> int:
    """Bin de 5 minutos (0-287) de un minuto del día."""
    return minute_of_day // BIN_MINUTES


def nearest_rank(sorted_values: Sequence[float], fraction: float) -> float:
    """Value at ``floor(n * fraction)``, clamped to the last index."""
    if not sorted_values:
        raise ValueError("nearest_rank needs at least one value")
    idx = min(int(math.floor(len(sorted_values) * fraction)), len(sorted_values) - 1)
    return sorted_values[max(idx, 0)]


def empty_curves() -> PercentileCurves:
    """Curvas sin datos (todos los bins en None)."""
    blank: Curve = (None,) * BIN_COUNT
    return PercentileCurves(mean=blank, p10=blank, p25=blank, p75=blank, p90=blank)


def percentile_curves(
    samples: Sequence[GlucoseSample], tzinfo: tzinfo
) -> PercentileCurves:
    """Stack every sample of the period on one 24h axis and summarize each bin."""
    valid = [s for s in samples if is_valid_value(s.mg_dl)]
    frame = samples_to_frame(valid, tzinfo)
    if frame.empty:
        return empty_curves()

    frame["bin"] = frame["minute_of_day"] // BIN_MINUTES
    mean: list[float | None] = [None] * BIN_COUNT
    p10: list[float | None] = [None] * BIN_COUNT
    p25: list[float | None] = [None] * BIN_COUNT
    p75: list[float | None] = [None] * BIN_COUNT
    p90: list[float | None] = [None] * BIN_COUNT
    for bin_idx, group in frame.groupby("bin"):
        idx = int(bin_idx)
        values = sorted(group["mg_dl"].tolist())
        mean[idx] = math.fsum(values) / len(values)
        p10[idx] = nearest_rank(values, 0.10)
        p25[idx] = nearest_rank(values, 0.25)
        p75[idx] = nearest_rank(values, 0.75)
        p90[idx] = nearest_rank(values, 0.90)
    return PercentileCurves(
        mean=tuple(mean),
        p10=tuple(p10),
        p25=tuple(p25),
        p75=tuple(p75),
        p90=tuple(p90),
    )
