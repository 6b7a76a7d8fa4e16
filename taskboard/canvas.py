"""
Vector drawing model for task sketches.

A drawing is an ordered tuple of shapes. Each shape kind is its own frozen
dataclass carrying only the fields it needs; ``Shape`` is the closed union of
them. The editor keeps a linear snapshot history for undo/redo: every
mutation records the full shape tuple, discarding any redo future.

Selection only works on rectangles, circles and text. Lines and freehand
strokes are never hit by the select tool.
"""
import base64
import json
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple, Union
from xml.sax.saxutils import quoteattr, escape

from .errors import ValidationError
from .schema import _iso, make_id, parse_datetime, utc_now

# Approximate text box used for hit-testing (not real glyph bounds)
TEXT_HIT_WIDTH = 100.0
TEXT_HIT_HALF_HEIGHT = 20.0

PREVIEW_WIDTH = 800
PREVIEW_HEIGHT = 600


def new_shape_id() -> str:
    return uuid.uuid4().hex[:9]


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True, kw_only=True)
class _ShapeBase:
    id: str = field(default_factory=new_shape_id)
    stroke_color: str = "#000000"
    fill_color: str = "transparent"
    stroke_width: float = 2.0


@dataclass(frozen=True, kw_only=True)
class Rectangle(_ShapeBase):
    kind: ClassVar[str] = "rectangle"
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True, kw_only=True)
class Circle(_ShapeBase):
    kind: ClassVar[str] = "circle"
    x: float
    y: float
    radius: float


@dataclass(frozen=True, kw_only=True)
class Line(_ShapeBase):
    kind: ClassVar[str] = "line"
    x: float
    y: float
    end_x: float
    end_y: float


@dataclass(frozen=True, kw_only=True)
class Text(_ShapeBase):
    kind: ClassVar[str] = "text"
    x: float
    y: float
    text: str
    font_size: float = 16.0


@dataclass(frozen=True, kw_only=True)
class Freehand(_ShapeBase):
    kind: ClassVar[str] = "freehand"
    path: Tuple[Point, ...] = ()


Shape = Union[Rectangle, Circle, Line, Text, Freehand]


# ── Hit-testing ──────────────────────────────────────────────────────────────

def hit_test(shape: Shape, point: Point) -> bool:
    """True when ``point`` selects ``shape``."""
    if isinstance(shape, Rectangle):
        left, right = sorted((shape.x, shape.x + shape.width))
        top, bottom = sorted((shape.y, shape.y + shape.height))
        return left <= point.x <= right and top <= point.y <= bottom
    if isinstance(shape, Circle):
        return math.hypot(point.x - shape.x, point.y - shape.y) <= shape.radius
    if isinstance(shape, Text):
        return (
            shape.x <= point.x <= shape.x + TEXT_HIT_WIDTH
            and shape.y - TEXT_HIT_HALF_HEIGHT <= point.y <= shape.y + TEXT_HIT_HALF_HEIGHT
        )
    # Lines and freehand strokes are not selectable
    return False


# ── History & editor ─────────────────────────────────────────────────────────

class ShapeHistory:
    """Linear list of shape-tuple snapshots with a cursor."""

    def __init__(self, initial: Sequence[Shape] = ()):
        self._snapshots: List[Tuple[Shape, ...]] = [tuple(initial)]
        self._cursor = 0

    @property
    def current(self) -> Tuple[Shape, ...]:
        return self._snapshots[self._cursor]

    def __len__(self) -> int:
        return len(self._snapshots)

    def record(self, shapes: Sequence[Shape]) -> None:
        del self._snapshots[self._cursor + 1:]
        self._snapshots.append(tuple(shapes))
        self._cursor = len(self._snapshots) - 1

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._snapshots) - 1

    def undo(self) -> Optional[Tuple[Shape, ...]]:
        if not self.can_undo():
            return None
        self._cursor -= 1
        return self.current

    def redo(self) -> Optional[Tuple[Shape, ...]]:
        if not self.can_redo():
            return None
        self._cursor += 1
        return self.current


class CanvasEditor:
    """Editing session over one drawing."""

    def __init__(self, shapes: Sequence[Shape] = ()):
        self.history = ShapeHistory(shapes)
        self.selected_id: Optional[str] = None

    @property
    def shapes(self) -> Tuple[Shape, ...]:
        return self.history.current

    def _commit(self, shapes: Sequence[Shape]) -> None:
        self.history.record(shapes)
        if self.selected_id and not any(s.id == self.selected_id for s in shapes):
            self.selected_id = None

    def add(self, shape: Shape) -> Shape:
        if any(s.id == shape.id for s in self.shapes):
            raise ValidationError(f"Duplicate shape id: {shape.id}")
        self._commit(self.shapes + (shape,))
        return shape

    def select_at(self, point: Point) -> Optional[str]:
        """Select the first shape in drawing order under ``point``."""
        hit = next((s for s in self.shapes if hit_test(s, point)), None)
        self.selected_id = hit.id if hit else None
        return self.selected_id

    def delete_selected(self) -> bool:
        if not self.selected_id:
            return False
        self._commit(tuple(s for s in self.shapes if s.id != self.selected_id))
        self.selected_id = None
        return True

    def clear(self) -> None:
        self._commit(())
        self.selected_id = None

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    def undo(self) -> bool:
        if self.history.undo() is None:
            return False
        self._drop_stale_selection()
        return True

    def redo(self) -> bool:
        if self.history.redo() is None:
            return False
        self._drop_stale_selection()
        return True

    def _drop_stale_selection(self) -> None:
        if self.selected_id and not any(s.id == self.selected_id for s in self.shapes):
            self.selected_id = None


# ── Serialization ────────────────────────────────────────────────────────────

def shape_to_dict(shape: Shape) -> Dict[str, Any]:
    data: Dict[str, Any] = {"id": shape.id, "type": shape.kind}
    if isinstance(shape, Rectangle):
        data.update(x=shape.x, y=shape.y, width=shape.width, height=shape.height)
    elif isinstance(shape, Circle):
        data.update(x=shape.x, y=shape.y, radius=shape.radius)
    elif isinstance(shape, Line):
        data.update(x=shape.x, y=shape.y, endX=shape.end_x, endY=shape.end_y)
    elif isinstance(shape, Text):
        data.update(x=shape.x, y=shape.y, text=shape.text, fontSize=shape.font_size)
    elif isinstance(shape, Freehand):
        data["path"] = [{"x": p.x, "y": p.y} for p in shape.path]
    data.update(
        strokeColor=shape.stroke_color,
        fillColor=shape.fill_color,
        strokeWidth=shape.stroke_width,
    )
    return data


def _num(data: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Shape field '{key}' must be a number")
    return float(value)


def shape_from_dict(data: Dict[str, Any]) -> Shape:
    if not isinstance(data, dict):
        raise ValidationError("Shape must be an object")
    kind = data.get("type")
    common = {
        "id": str(data.get("id") or new_shape_id()),
        "stroke_color": str(data.get("strokeColor", "#000000")),
        "fill_color": str(data.get("fillColor", "transparent")),
        "stroke_width": _num(data, "strokeWidth", 2.0),
    }
    if kind == "rectangle":
        return Rectangle(x=_num(data, "x"), y=_num(data, "y"),
                         width=_num(data, "width", 0.0), height=_num(data, "height", 0.0), **common)
    if kind == "circle":
        return Circle(x=_num(data, "x"), y=_num(data, "y"), radius=_num(data, "radius", 0.0), **common)
    if kind == "line":
        return Line(x=_num(data, "x"), y=_num(data, "y"),
                    end_x=_num(data, "endX"), end_y=_num(data, "endY"), **common)
    if kind == "text":
        return Text(x=_num(data, "x"), y=_num(data, "y"), text=str(data.get("text", "")),
                    font_size=_num(data, "fontSize", 16.0), **common)
    if kind == "freehand":
        path = data.get("path") or []
        if not isinstance(path, list) or not all(isinstance(p, dict) for p in path):
            raise ValidationError("Freehand path must be a list of points")
        return Freehand(path=tuple(Point(_num(p, "x"), _num(p, "y")) for p in path), **common)
    raise ValidationError(f"Unknown shape type: {kind!r}")


def serialize_shapes(shapes: Sequence[Shape]) -> str:
    return json.dumps({"elements": [shape_to_dict(s) for s in shapes]})


def deserialize_shapes(data: str) -> Tuple[Shape, ...]:
    try:
        doc = json.loads(data)
    except (TypeError, json.JSONDecodeError):
        raise ValidationError("Drawing data is not valid JSON")
    elements = doc.get("elements") if isinstance(doc, dict) else doc
    if not isinstance(elements, list):
        raise ValidationError("Drawing data must hold an 'elements' list")
    return tuple(shape_from_dict(e) for e in elements)


def shapes_from_payload(payload: Dict[str, Any]) -> Tuple[Shape, ...]:
    """Accept either ``shapes`` (list of shape objects) or ``data`` (serialized string)."""
    if isinstance(payload.get("shapes"), list):
        return tuple(shape_from_dict(s) for s in payload["shapes"])
    if isinstance(payload.get("data"), str):
        return deserialize_shapes(payload["data"])
    raise ValidationError("Drawing needs 'shapes' or 'data'")


# ── Preview ──────────────────────────────────────────────────────────────────

def _svg_style(shape: Shape, fill: bool = True) -> str:
    fill_color = shape.fill_color if fill else "none"
    return (
        f"stroke={quoteattr(shape.stroke_color)} fill={quoteattr(fill_color)} "
        f'stroke-width="{shape.stroke_width:g}"'
    )


def render_preview(shapes: Sequence[Shape], width: int = PREVIEW_WIDTH, height: int = PREVIEW_HEIGHT) -> str:
    """Render shapes to an SVG data URI. Regenerable at any time."""
    parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}">',
        f'<rect width="{width}" height="{height}" fill="white"/>',
    ]
    for s in shapes:
        if isinstance(s, Rectangle):
            x, y = min(s.x, s.x + s.width), min(s.y, s.y + s.height)
            parts.append(f'<rect x="{x:g}" y="{y:g}" width="{abs(s.width):g}" '
                         f'height="{abs(s.height):g}" {_svg_style(s)}/>')
        elif isinstance(s, Circle):
            parts.append(f'<circle cx="{s.x:g}" cy="{s.y:g}" r="{s.radius:g}" {_svg_style(s)}/>')
        elif isinstance(s, Line):
            parts.append(f'<line x1="{s.x:g}" y1="{s.y:g}" x2="{s.end_x:g}" y2="{s.end_y:g}" '
                         f'{_svg_style(s, fill=False)}/>')
        elif isinstance(s, Text):
            parts.append(f'<text x="{s.x:g}" y="{s.y:g}" font-size="{s.font_size:g}" '
                         f'font-family="Arial" fill={quoteattr(s.stroke_color)}>{escape(s.text)}</text>')
        elif isinstance(s, Freehand) and s.path:
            points = " ".join(f"{p.x:g},{p.y:g}" for p in s.path)
            parts.append(f'<polyline points="{points}" {_svg_style(s, fill=False)} '
                         f'stroke-linecap="round" stroke-linejoin="round"/>')
    parts.append("</svg>")
    encoded = base64.b64encode("".join(parts).encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


# ── Persisted record ─────────────────────────────────────────────────────────

@dataclass
class CanvasDrawing:
    """A saved drawing, optionally attached to a task."""

    drawing_id: str
    owner_id: str
    name: str
    shapes: Tuple[Shape, ...] = ()
    task_id: Optional[str] = None
    preview: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(cls, owner_id: str, name: Any, shapes: Sequence[Shape],
               task_id: Optional[str] = None, preview: Optional[str] = None) -> "CanvasDrawing":
        return cls(
            drawing_id=make_id("drawing"),
            owner_id=owner_id,
            name=clean_drawing_name(name),
            shapes=tuple(shapes),
            task_id=task_id or None,
            preview=preview or render_preview(shapes),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.drawing_id,
            "owner_id": self.owner_id,
            "task_id": self.task_id,
            "name": self.name,
            "shapes": [shape_to_dict(s) for s in self.shapes],
            "preview": self.preview,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, data: Dict[str, Any]) -> "CanvasDrawing":
        return cls(
            drawing_id=data["drawing_id"],
            owner_id=data["owner_id"],
            name=data["name"],
            shapes=deserialize_shapes(data["data"]),
            task_id=data.get("task_id"),
            preview=data.get("preview"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


def clean_drawing_name(value: Any) -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError("name is required")
    return name
