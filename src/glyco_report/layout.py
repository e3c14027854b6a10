"""Geometría del informe: áreas de gráfico, escalas y primitivas de dibujo.

Coordenadas en milímetros sobre A4 con origen arriba a la izquierda: una
glucemia mayor queda más arriba en la página, es decir con Y menor.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from glyco_report.agp import BIN_COUNT
from glyco_report.metrics import RangeBuckets

PAGE_WIDTH_MM = 210.0
PAGE_HEIGHT_MM = 297.0

GLUCOSE_MIN = 40.0
GLUCOSE_MAX = 300.0
TARGET_LOW = 70.0
TARGET_HIGH = 180.0
Y_TICKS: tuple[int, ...] = (40, 80, 120, 160, 200, 240, 280, 300)
HOUR_TICKS: tuple[int, ...] = tuple(range(0, 25, 2))

# mm de altura por unidad de insulina / por gramo de carbohidratos
INSULIN_MARKER_SCALE = 6.0
CARBS_MARKER_SCALE = 0.6

ZONE_BAR_X = 150.0
ZONE_BAR_WIDTH = 8.0
ZONE_BAR_HEIGHT = 50.0

Color = tuple[int, int, int]

BLACK: Color = (0, 0, 0)
GREY: Color = (120, 120, 120)
GRID: Color = (240, 240, 240)
FRAME: Color = (200, 200, 200)
SEPARATOR: Color = (150, 150, 150)
BLUE: Color = (0, 102, 204)
RED: Color = (255, 0, 0)
GLUCOSE_LINE: Color = (59, 130, 246)
MEAL_BOLUS: Color = (190, 24, 93)
CORRECTION_BOLUS: Color = (16, 185, 129)
CARBS: Color = (245, 158, 11)
BAND_10_90: Color = (0, 51, 153)
BAND_25_75: Color = (173, 216, 230)
TARGET_BAND: Color = (144, 238, 144)
MEAN_CURVE: Color = (255, 69, 0)

ZONE_COLORS: dict[str, Color] = {
    ">240 mg/dL": (255, 137, 4),
    "180–240 mg/dL": (252, 200, 0),
    "70–180 mg/dL": (124, 207, 0),
    "<70 mg/dL": (251, 44, 54),
}


@dataclass(frozen=True)
class ChartArea:
    """Rectangle on the page plus the value domain mapped onto its height."""

    x: float
    y: float
    width: float
    height: float
    domain_min: float = GLUCOSE_MIN
    domain_max: float = GLUCOSE_MAX

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def y_for(self, value: float) -> float:
        """Linear value-to-page mapping; domain_max lands on the top edge."""
        span = self.domain_max - self.domain_min
        return self.y + self.height - (value - self.domain_min) / span * self.height

    def x_for_hour(self, hour: float) -> float:
        return self.x + hour / 24 * self.width

    def x_for_bin(self, bin_idx: int) -> float:
        return self.x + bin_idx / BIN_COUNT * self.width

    def contains_value(self, value: float) -> bool:
        return self.domain_min <= value <= self.domain_max


CHART_AREA = ChartArea(x=20.0, y=55.0, width=170.0, height=140.0)


@dataclass(frozen=True)
class BarSegment:
    label: str
    top: float
    height: float
    color: Color


def zone_bar_segments(buckets: RangeBuckets, top: float) -> list[BarSegment]:
    """Stacked vertical bar, >240 on top down to <70, heights ∝ percents."""
    segments: list[BarSegment] = []
    current = top
    for label, bucket in buckets.top_down():
        height = ZONE_BAR_HEIGHT * bucket.percent / 100
        segments.append(BarSegment(label, current, height, ZONE_COLORS[label]))
        current += height
    return segments


@dataclass(frozen=True)
class Text:
    x: float
    y: float
    text: str
    size: float = 10
    color: Color = BLACK
    align: str = "left"
    angle: float = 0


@dataclass(frozen=True)
class Line:
    x1: float
    y1: float
    x2: float
    y2: float
    color: Color = BLACK
    width: float = 0.3
    dash: tuple[float, ...] = ()


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float
    fill: Color | None = None
    stroke: Color | None = None
    line_width: float = 0.3


@dataclass(frozen=True)
class Circle:
    x: float
    y: float
    radius: float
    fill: Color = BLACK


@dataclass(frozen=True)
class Polygon:
    points: tuple[tuple[float, float], ...]
    fill: Color = BLACK


Shape = Text | Line | Rect | Circle | Polygon


@dataclass
class Page:
    """Display list of one fixed-layout page."""

    kind: str
    title: str = ""
    shapes: list[Shape] = field(default_factory=list)

    def add(self, shape: Shape) -> None:
        self.shapes.append(shape)

    def texts(self) -> list[str]:
        return [s.text for s in self.shapes if isinstance(s, Text)]

    def of_type(self, shape_type: type) -> list[Shape]:
        return [s for s in self.shapes if isinstance(s, shape_type)]


@dataclass
class ReportDocument:
    title: str
    pages: list[Page] = field(default_factory=list)

    def pages_of_kind(self, kind: str) -> list[Page]:
        return [p for p in self.pages if p.kind == kind]
