from __future__ import annotations

import pytest
from dateutil import tz

from glyco_report.agp import BIN_COUNT, bin_index, nearest_rank, percentile_curves
from glyco_report.model import GlucoseSample

T0 = 1_740_787_200_000  # 2025-03-01T00:00:00Z
DAY_MS = 86_400_000


def test_single_sample_fills_one_bin() -> None:
    sample = GlucoseSample(T0 + (8 * 60 + 7) * 60_000, 123)

    curves = percentile_curves([sample], tz.UTC)

    assert bin_index(8 * 60 + 7) == 97
    assert curves.filled_bins() == [97]
    for curve in (curves.mean, curves.p10, curves.p25, curves.p75, curves.p90):
        assert len(curve) == BIN_COUNT
        assert curve[97] == 123
        assert sum(v is not None for v in curve) == 1


def test_samples_from_different_days_stack_on_one_axis() -> None:
    samples = [
        GlucoseSample(T0 + 8 * 3_600_000, 100),
        GlucoseSample(T0 + DAY_MS + 8 * 3_600_000 + 2 * 60_000, 200),
    ]

    curves = percentile_curves(samples, tz.UTC)

    assert curves.mean[96] == 150
    assert curves.p10[96] == 100
    assert curves.p90[96] == 200


def test_nearest_rank() -> None:
    values = [float(v) for v in range(1, 11)]
    assert nearest_rank(values, 0.10) == 2
    assert nearest_rank(values, 0.90) == 10
    assert nearest_rank([5.0], 0.99) == 5
    with pytest.raises(ValueError):
        nearest_rank([], 0.5)


def test_invalid_and_missing_samples_give_empty_curves() -> None:
    curves = percentile_curves([GlucoseSample(T0, float("nan"))], tz.UTC)
    assert curves.is_empty
    assert percentile_curves([], tz.UTC).is_empty
