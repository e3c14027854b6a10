from __future__ import annotations

import pytest

from glyco_report.layout import (
    CHART_AREA,
    ZONE_BAR_HEIGHT,
    Circle,
    Page,
    Text,
    zone_bar_segments,
)
from glyco_report.metrics import RangeBucket, RangeBuckets


def test_value_mapping_on_the_day_chart() -> None:
    assert CHART_AREA.y_for(300) == pytest.approx(55)
    assert CHART_AREA.y_for(40) == pytest.approx(195)
    assert CHART_AREA.y_for(170) == pytest.approx(125)
    assert CHART_AREA.x_for_hour(0) == 20
    assert CHART_AREA.x_for_hour(12) == pytest.approx(105)
    assert CHART_AREA.x_for_bin(288) == pytest.approx(190)
    assert CHART_AREA.contains_value(40)
    assert not CHART_AREA.contains_value(301)


def test_zone_bar_stacks_top_down() -> None:
    buckets = RangeBuckets(
        below_70=RangeBucket(1, 10),
        in_range=RangeBucket(6, 60),
        high_180_240=RangeBucket(2, 20),
        above_240=RangeBucket(1, 10),
    )

    segments = zone_bar_segments(buckets, top=100)

    assert [s.label for s in segments] == [
        ">240 mg/dL",
        "180–240 mg/dL",
        "70–180 mg/dL",
        "<70 mg/dL",
    ]
    assert [s.height for s in segments] == [5, 10, 30, 5]
    assert [s.top for s in segments] == [100, 105, 115, 145]
    assert sum(s.height for s in segments) == ZONE_BAR_HEIGHT


def test_page_display_list_helpers() -> None:
    page = Page(kind="summary")
    page.add(Text(10, 10, "hola"))
    page.add(Circle(1, 1, 0.5))
    assert page.texts() == ["hola"]
    assert len(page.of_type(Circle)) == 1
