"""Canvas geometry: output rectangles, magnetic snapping and overlap checks.

Everything here is a pure function of its arguments.  Canvas coordinates are
logical coordinates multiplied by a zoom factor and shifted by the canvas
origin (pan offset); positions handed back to the model are always integer
logical coordinates.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from .errors import InvalidValue
from .models import Output


# Snap distance in canvas pixels
SNAP_DISTANCE = 15
MIN_ZOOM = 0.05
MAX_ZOOM = 3.0
# Gap between the enabled layout and parked disabled outputs (logical px)
PARK_GAP = 200
PARK_SPACING = 100

_EPSILON = 1e-6


@dataclass(frozen=True)
class CanvasRect:
    """Axis-aligned rectangle of one output on the canvas."""

    name: str
    x: float
    y: float
    width: float
    height: float

    @property
    def left(self) -> float:
        return self.x

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def top(self) -> float:
        return self.y

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2


def _check_zoom(zoom: float) -> None:
    if not zoom > 0 or math.isinf(zoom):
        raise InvalidValue(f"zoom must be a positive finite number, got {zoom!r}")


def rect_for(output: Output, zoom: float = 1.0, origin: tuple[float, float] = (0.0, 0.0)) -> CanvasRect:
    """Canvas rectangle of *output* at *zoom*, width/height swapped for 90°/270°."""
    _check_zoom(zoom)
    ox, oy = origin
    return CanvasRect(
        output.name,
        output.x * zoom + ox,
        output.y * zoom + oy,
        output.logical_width * zoom,
        output.logical_height * zoom,
    )


def logical_rect(output: Output) -> CanvasRect:
    """Rectangle in compositor logical space."""
    return rect_for(output, 1.0)


def canvas_to_logical(point: tuple[float, float], zoom: float = 1.0,
                      origin: tuple[float, float] = (0.0, 0.0)) -> tuple[float, float]:
    _check_zoom(zoom)
    return (point[0] - origin[0]) / zoom, (point[1] - origin[1]) / zoom


def logical_to_canvas(point: tuple[float, float], zoom: float = 1.0,
                      origin: tuple[float, float] = (0.0, 0.0)) -> tuple[float, float]:
    _check_zoom(zoom)
    return point[0] * zoom + origin[0], point[1] * zoom + origin[1]


def _round(v: float) -> int:
    return math.floor(v + 0.5)


def round_to_grid(v: float, grid: int) -> int:
    """Round half up to the nearest multiple of *grid* (whole pixels below 2)."""
    if grid <= 1:
        return _round(v)
    return _round(v / grid) * grid


# ── Overlap ──────────────────────────────────────────────────────────────

def overlaps(a: CanvasRect, b: CanvasRect) -> bool:
    """Strict intersection test; rectangles that only touch do not overlap."""
    if a.width <= 0 or a.height <= 0 or b.width <= 0 or b.height <= 0:
        return False
    return (a.left < b.right and b.left < a.right
            and a.top < b.bottom and b.top < a.bottom)


def would_overlap_any(candidate: CanvasRect, others: Iterable[CanvasRect]) -> bool:
    return any(overlaps(candidate, o) for o in others)


def overlapping_pairs(outputs: Iterable[Output]) -> list[tuple[str, str]]:
    """Name pairs of enabled outputs that overlap, in name order."""
    rects = sorted((logical_rect(o) for o in outputs if o.enabled), key=lambda r: r.name)
    pairs: list[tuple[str, str]] = []
    for i, a in enumerate(rects):
        for b in rects[i + 1:]:
            if overlaps(a, b):
                pairs.append((a.name, b.name))
    return pairs


# ── Snapping ─────────────────────────────────────────────────────────────

def _snap_axis(start: float, size: float, neighbors: list[tuple[float, float, float]],
               threshold: float) -> float | None:
    """Best new start coordinate on one axis, or None when nothing is in range.

    *neighbors* holds (low edge, center, high edge) per neighbor, already in
    name order; only a strictly smaller distance replaces the current best,
    so the first neighbor wins ties.
    """
    anchors = (0.0, size / 2, size)
    best_dist = None
    best_start = None
    for targets in neighbors:
        for anchor in anchors:
            for t in targets:
                d = abs(start + anchor - t)
                if d <= threshold + _EPSILON and (best_dist is None or d < best_dist - _EPSILON):
                    best_dist = d
                    best_start = t - anchor
    return best_start


def snap(
    moving: Output,
    candidate: tuple[float, float],
    others: Iterable[CanvasRect],
    threshold_px: float = SNAP_DISTANCE,
    *,
    zoom: float = 1.0,
    origin: tuple[float, float] = (0.0, 0.0),
    grid: int = 1,
) -> tuple[int, int]:
    """Resolve a drag candidate (canvas top-left of *moving*) to a logical position.

    Left/center/right of the moving rectangle are tested against the
    left/center/right of every other rectangle, and likewise top/center/bottom
    on the vertical axis.  Each axis snaps independently to its closest match
    within *threshold_px* canvas pixels; an axis without a match keeps the raw
    candidate, rounded to *grid* logical pixels.
    """
    _check_zoom(zoom)
    if threshold_px < 0:
        raise InvalidValue(f"snap threshold must not be negative, got {threshold_px!r}")
    cx, cy = candidate
    w = moving.logical_width * zoom
    h = moving.logical_height * zoom

    neighbors = sorted(others, key=lambda r: r.name)
    snapped_x = _snap_axis(cx, w, [(r.left, r.center_x, r.right) for r in neighbors], threshold_px)
    snapped_y = _snap_axis(cy, h, [(r.top, r.center_y, r.bottom) for r in neighbors], threshold_px)

    ox, oy = origin
    if snapped_x is not None:
        x = _round((snapped_x - ox) / zoom)
    else:
        x = round_to_grid((cx - ox) / zoom, grid)
    if snapped_y is not None:
        y = _round((snapped_y - oy) / zoom)
    else:
        y = round_to_grid((cy - oy) / zoom, grid)
    return x, y


# ── Drag fallback ────────────────────────────────────────────────────────

def _axis_interval(start: float, delta: float, size: float, lo: float, hi: float) -> tuple[float, float]:
    """Open interval of t where [start + delta*t, +size] intersects (lo, hi)."""
    if delta == 0:
        if lo - size < start < hi:
            return -math.inf, math.inf
        return math.inf, -math.inf
    a = (lo - size - start) / delta
    b = (hi - start) / delta
    return (a, b) if a < b else (b, a)


def _blocked_interval(px: float, py: float, w: float, h: float, dx: float, dy: float,
                      other: CanvasRect) -> tuple[float, float] | None:
    x0, x1 = _axis_interval(px, dx, w, other.left, other.right)
    y0, y1 = _axis_interval(py, dy, h, other.top, other.bottom)
    lo, hi = max(x0, y0), min(x1, y1)
    if lo >= hi:
        return None
    return lo, hi


def _toward(v: float, anchor: float) -> int:
    """Integer nearest to *v* without passing it when moving away from *anchor*."""
    r = _round(v)
    if abs(v - r) < _EPSILON:
        return r
    return math.floor(v) if v >= anchor else math.ceil(v)


def resolve_drag(
    moving: Output,
    previous: tuple[int, int],
    target: tuple[int, int],
    others: Iterable[CanvasRect],
) -> tuple[int, int]:
    """Return *target*, or the furthest free position on the way there.

    Works in logical space.  When the target rectangle overlaps a neighbor,
    the position walks back along the vector from *previous* to *target*
    until it only touches; if that is not possible the previous position is
    returned unchanged.
    """
    others = list(others)
    w, h = moving.logical_width, moving.logical_height
    tx, ty = target
    if not would_overlap_any(CanvasRect(moving.name, tx, ty, w, h), others):
        return target

    px, py = previous
    dx, dy = tx - px, ty - py
    intervals = []
    for o in others:
        iv = _blocked_interval(px, py, w, h, dx, dy, o)
        if iv is not None:
            intervals.append(iv)

    t = 1.0
    changed = True
    while changed:
        changed = False
        for lo, hi in intervals:
            if lo < t < hi:
                t = lo
                changed = True
    if t <= 0:
        return previous

    x = _toward(px + dx * t, px)
    y = _toward(py + dy * t, py)
    if would_overlap_any(CanvasRect(moving.name, x, y, w, h), others):
        return previous
    return x, y


# ── Layout helpers ───────────────────────────────────────────────────────

def fit_view(
    outputs: Iterable[Output],
    width: float,
    height: float,
    margin: float = 80,
    min_zoom: float = MIN_ZOOM,
    max_zoom: float = MAX_ZOOM,
) -> tuple[float, tuple[float, float]] | None:
    """Zoom and origin that center all outputs in a *width* x *height* view."""
    outputs = list(outputs)
    shown = [o for o in outputs if o.enabled] or outputs
    if not shown:
        return None
    min_x = min(o.x for o in shown)
    min_y = min(o.y for o in shown)
    max_x = max(o.x + o.logical_width for o in shown)
    max_y = max(o.y + o.logical_height for o in shown)

    span_x = max_x - min_x
    span_y = max_y - min_y
    if span_x <= 0 or span_y <= 0:
        return None

    zoom_x = (width - margin * 2) / span_x
    zoom_y = (height - margin * 2) / span_y
    zoom = max(min_zoom, min(max_zoom, min(zoom_x, zoom_y)))

    cx = (min_x + max_x) / 2
    cy = (min_y + max_y) / 2
    return zoom, (width / 2 - cx * zoom, height / 2 - cy * zoom)


def normalize_positions(outputs: Iterable[Output]) -> bool:
    """Shift every output so the enabled layout has no negative coordinate.

    Returns True if anything moved.
    """
    outputs = list(outputs)
    enabled = [o for o in outputs if o.enabled]
    if not enabled:
        return False
    offset_x = max(0, -min(o.x for o in enabled))
    offset_y = max(0, -min(o.y for o in enabled))
    if not offset_x and not offset_y:
        return False
    for o in outputs:
        o.set_position(o.x + offset_x, o.y + offset_y)
    return True


def place_beside(output: Output, others: Iterable[Output]) -> tuple[int, int]:
    """Position right of the rightmost enabled output, top-aligned with it."""
    enabled = [o for o in others if o.enabled and o.name != output.name]
    if not enabled:
        return 0, 0
    rightmost = max(enabled, key=lambda o: (o.x + o.logical_width, o.name))
    return rightmost.x + rightmost.logical_width, rightmost.y


def park_disabled(outputs: Iterable[Output]) -> None:
    """Position disabled outputs below the enabled layout so they're visible."""
    outputs = list(outputs)
    enabled = [o for o in outputs if o.enabled]
    disabled = [o for o in outputs if not o.enabled]
    if not disabled:
        return

    if enabled:
        max_y = max(o.y + o.logical_height for o in enabled)
        min_x = min(o.x for o in enabled)
    else:
        max_y = 0
        min_x = 0

    x_cursor = min_x
    for o in disabled:
        o.set_position(x_cursor, max_y + PARK_GAP)
        x_cursor += o.logical_width + PARK_SPACING
