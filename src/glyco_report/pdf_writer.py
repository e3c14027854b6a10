"""Render del informe compuesto a PDF (A4) con reportlab."""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, BinaryIO

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from glyco_report.layout import (
    PAGE_HEIGHT_MM,
    Circle,
    Color,
    Line,
    Page,
    Polygon,
    Rect,
    ReportDocument,
    Shape,
    Text,
)

logger = logging.getLogger(__name__)

FONT = "Helvetica"


def _rgb(color: Color) -> tuple[float, float, float]:
    r, g, b = color
    return r / 255, g / 255, b / 255


def _px(value_mm: float) -> float:
    return value_mm * mm


def _py(value_mm: float) -> float:
    """Top-left millimetres to reportlab's bottom-left points."""
    return (PAGE_HEIGHT_MM - value_mm) * mm


def _draw_text(c: Any, shape: Text) -> None:
    c.setFont(FONT, shape.size)
    c.setFillColorRGB(*_rgb(shape.color))
    x, y = _px(shape.x), _py(shape.y)
    if shape.angle:
        c.saveState()
        c.translate(x, y)
        c.rotate(shape.angle)
        c.drawString(0, 0, shape.text)
        c.restoreState()
    elif shape.align == "center":
        c.drawCentredString(x, y, shape.text)
    elif shape.align == "right":
        c.drawRightString(x, y, shape.text)
    else:
        c.drawString(x, y, shape.text)


def _draw_line(c: Any, shape: Line) -> None:
    c.setStrokeColorRGB(*_rgb(shape.color))
    c.setLineWidth(_px(shape.width))
    c.setDash([_px(d) for d in shape.dash] if shape.dash else [])
    c.line(_px(shape.x1), _py(shape.y1), _px(shape.x2), _py(shape.y2))
    c.setDash([])


def _draw_rect(c: Any, shape: Rect) -> None:
    if shape.fill is not None:
        c.setFillColorRGB(*_rgb(shape.fill))
    if shape.stroke is not None:
        c.setStrokeColorRGB(*_rgb(shape.stroke))
        c.setLineWidth(_px(shape.line_width))
    c.rect(
        _px(shape.x),
        _py(shape.y + shape.height),
        _px(shape.width),
        _px(shape.height),
        stroke=int(shape.stroke is not None),
        fill=int(shape.fill is not None),
    )


def _draw_circle(c: Any, shape: Circle) -> None:
    c.setFillColorRGB(*_rgb(shape.fill))
    c.circle(_px(shape.x), _py(shape.y), _px(shape.radius), stroke=0, fill=1)


def _draw_polygon(c: Any, shape: Polygon) -> None:
    if len(shape.points) < 3:
        return
    c.setFillColorRGB(*_rgb(shape.fill))
    path = c.beginPath()
    first, *rest = shape.points
    path.moveTo(_px(first[0]), _py(first[1]))
    for x, y in rest:
        path.lineTo(_px(x), _py(y))
    path.close()
    c.drawPath(path, stroke=0, fill=1)


def _draw_shape(c: Any, shape: Shape) -> None:
    """Dispatch one display-list shape to its drawing function."""
    if isinstance(shape, Text):
        _draw_text(c, shape)
    elif isinstance(shape, Line):
        _draw_line(c, shape)
    elif isinstance(shape, Rect):
        _draw_rect(c, shape)
    elif isinstance(shape, Circle):
        _draw_circle(c, shape)
    elif isinstance(shape, Polygon):
        _draw_polygon(c, shape)
    else:
        raise TypeError(f"Unsupported shape {type(shape).__name__}")


def _draw_page(c: Any, page: Page) -> None:
    for shape in page.shapes:
        _draw_shape(c, shape)
    c.showPage()


def _render(document: ReportDocument, target: str | BinaryIO) -> None:
    """Draw every page of the document onto a canvas bound to ``target``."""
    c = canvas.Canvas(target, pagesize=A4)
    c.setTitle(document.title)
    for page in document.pages:
        _draw_page(c, page)
    c.save()


def render_pdf_bytes(document: ReportDocument) -> bytes:
    """Render the document in memory."""
    buffer = io.BytesIO()
    _render(document, buffer)
    return buffer.getvalue()


def write_pdf(document: ReportDocument, out_path: Path) -> Path:
    """Write the document to ``out_path`` (parent folders are created).

    Args:
        document: Composed report.
        out_path: Output path for the PDF file.

    Returns:
        The written path.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)
    _render(document, str(out_path))
    logger.info("Wrote %d page(s) to %s", len(document.pages), out_path)
    return out_path
