"""
Unit tests for canvas geometry: rectangles, snapping and overlap resolution.
"""

import random

import pytest

from mangodisplay.errors import InvalidValue
from mangodisplay.geometry import (
    CanvasRect,
    PARK_GAP,
    canvas_to_logical,
    fit_view,
    logical_to_canvas,
    normalize_positions,
    overlapping_pairs,
    overlaps,
    park_disabled,
    place_beside,
    rect_for,
    resolve_drag,
    snap,
    would_overlap_any,
)
from mangodisplay.models import Output


def rect(name, x, y, w=1920, h=1080):
    return CanvasRect(name, x, y, w, h)


class TestRects:
    """rect_for and coordinate conversion."""

    def test_rect_for_applies_zoom_and_origin(self):
        out = Output(name="DP-1", width=3840, height=2160, x=100, y=50, scale=2.0)
        r = rect_for(out, zoom=0.1, origin=(20, 30))
        assert (r.x, r.y, r.width, r.height) == pytest.approx((30, 35, 192, 108))

    def test_rect_for_swaps_rotated(self):
        out = Output(name="DP-1", width=1920, height=1080)
        out.set_rotation(270)
        r = rect_for(out)
        assert (r.width, r.height) == (1080, 1920)

    def test_rect_for_rejects_bad_zoom(self):
        with pytest.raises(InvalidValue):
            rect_for(Output(name="DP-1"), zoom=0)

    def test_canvas_logical_conversion(self):
        p = logical_to_canvas((1920, -40), zoom=0.25, origin=(10, 10))
        assert p == (490, 0)
        assert canvas_to_logical(p, zoom=0.25, origin=(10, 10)) == (1920, -40)


class TestOverlap:
    """Strict intersection semantics."""

    def test_touching_edges_do_not_overlap(self):
        assert not overlaps(rect("a", 0, 0), rect("b", 1920, 0))
        assert not overlaps(rect("a", 0, 0), rect("b", 0, 1080))

    def test_intersection_overlaps(self):
        assert overlaps(rect("a", 0, 0), rect("b", 1919, 1079))

    def test_zero_area_never_overlaps(self):
        assert not overlaps(rect("a", 0, 0), rect("b", 10, 10, 0, 100))

    def test_would_overlap_any(self):
        others = [rect("a", 0, 0), rect("b", 1920, 0)]
        assert would_overlap_any(rect("c", 1000, 500), others)
        assert not would_overlap_any(rect("c", 0, 1080), others)

    def test_overlapping_pairs_ignores_disabled(self):
        outs = [
            Output(name="B"),
            Output(name="A", x=100),
            Output(name="C", x=200, enabled=False),
        ]
        assert overlapping_pairs(outs) == [("A", "B")]


class TestSnap:
    """Magnetic edge and center snapping."""

    def test_snaps_flush_to_right_edge(self):
        moving = Output(name="HDMI-1", x=3000)
        assert snap(moving, (1930, 0), [rect("DP-1", 0, 0)], 15) == (1920, 0)

    def test_axes_snap_independently(self):
        moving = Output(name="M", width=1000, height=500)
        others = [rect("A", 0, 0, 1000, 1000), rect("B", 3000, 2000, 1000, 1000)]
        # x: left edge near A's right (1000); y: top near B's bottom (3000)
        assert snap(moving, (1008, 2990), others, 15) == (1000, 3000)

    def test_no_match_keeps_raw_candidate(self):
        moving = Output(name="M")
        assert snap(moving, (5000.4, 3000.6), [rect("A", 0, 0)], 15) == (5000, 3001)

    def test_grid_rounding_when_unsnapped(self):
        moving = Output(name="M")
        assert snap(moving, (5004, 3006), [rect("A", 0, 0)], 15, grid=10) == (5000, 3010)

    def test_center_alignment(self):
        moving = Output(name="M", width=1000, height=500)
        # moving center x (candidate + 500) near A's center 960
        assert snap(moving, (455, 2000), [rect("A", 0, 0)], 15) == (460, 2000)

    def test_tie_breaks_on_lower_name(self):
        moving = Output(name="M", width=100, height=100)
        # Left edge at 1010 is 10px from both A's right (1000) and B's left (1020)
        others = [rect("B", 1020, 5000, 500, 500), rect("A", 0, 5000, 1000, 500)]
        for _ in range(5):
            x, _y = snap(moving, (1010, 0), list(others), 15)
            assert x == 1000
            others.reverse()

    def test_threshold_is_in_canvas_pixels(self):
        moving = Output(name="M")
        # At zoom 0.1 the 50px logical gap is only 5 canvas px
        neighbor = rect_for(Output(name="A"), zoom=0.1)
        x, _ = snap(moving, (197, 500), [neighbor], 15, zoom=0.1)
        assert x == 1920

    def test_negative_threshold_rejected(self):
        with pytest.raises(InvalidValue):
            snap(Output(name="M"), (0, 0), [], -1)


class TestResolveDrag:
    """Fallback to the nearest free position along the movement vector."""

    def test_free_target_is_returned(self):
        moving = Output(name="M")
        assert resolve_drag(moving, (1920, 0), (1920, 500), [rect("A", 0, 0)]) == (1920, 500)

    def test_stops_at_neighbor_edge(self):
        moving = Output(name="M")
        assert resolve_drag(moving, (3000, 0), (1500, 0), [rect("A", 0, 0)]) == (1920, 0)

    def test_diagonal_walk_back(self):
        moving = Output(name="M", width=100, height=100)
        others = [rect("A", 0, 0, 1000, 1000)]
        x, y = resolve_drag(moving, (1200, 1200), (800, 800), others)
        assert not would_overlap_any(CanvasRect("M", x, y, 100, 100), others)
        assert (x, y) == (1000, 1000)

    def test_blocked_start_returns_previous(self):
        moving = Output(name="M")
        others = [rect("A", 1920, 0)]
        assert resolve_drag(moving, (0, 0), (2000, 0), others) == (0, 0)

    def test_random_drags_never_overlap(self):
        rng = random.Random(1234)
        others = [rect("A", 0, 0), rect("B", 1920, 0), rect("C", 0, 1080, 2560, 1440)]
        moving = Output(name="M", width=1280, height=1024)
        pos = (5000, 5000)
        for _ in range(300):
            target = (rng.randint(-3000, 6000), rng.randint(-3000, 6000))
            pos = resolve_drag(moving, pos, target, others)
            assert not would_overlap_any(CanvasRect("M", pos[0], pos[1], 1280, 1024), others)


class TestLayoutHelpers:
    """Normalization, placement and view fitting."""

    def test_normalize_positions_shifts_negative_layout(self):
        outs = [Output(name="A", x=-1920, y=-100), Output(name="B", x=0, y=0)]
        assert normalize_positions(outs)
        assert [o.position for o in outs] == [(0, 0), (1920, 100)]

    def test_normalize_positions_noop(self):
        outs = [Output(name="A", x=10, y=0)]
        assert not normalize_positions(outs)
        assert outs[0].position == (10, 0)

    def test_normalize_ignores_disabled_minimum(self):
        outs = [Output(name="A"), Output(name="B", x=-5000, enabled=False)]
        assert not normalize_positions(outs)

    def test_place_beside(self):
        outs = [Output(name="A"), Output(name="B", x=1920, y=200)]
        new = Output(name="C")
        assert place_beside(new, outs) == (3840, 200)
        assert place_beside(new, []) == (0, 0)

    def test_park_disabled_below_layout(self):
        outs = [
            Output(name="A"),
            Output(name="B", enabled=False),
            Output(name="C", width=1280, height=1024, enabled=False),
        ]
        park_disabled(outs)
        assert outs[1].position == (0, 1080 + PARK_GAP)
        assert outs[2].y == 1080 + PARK_GAP
        assert outs[2].x > outs[1].x + outs[1].logical_width

    def test_fit_view_centers_layout(self):
        outs = [Output(name="A"), Output(name="B", x=1920)]
        zoom, origin = fit_view(outs, 1000, 600, margin=0)
        assert zoom == pytest.approx(1000 / 3840)
        cx = origin[0] + 1920 * zoom
        assert cx == pytest.approx(500)

    def test_fit_view_empty(self):
        assert fit_view([], 800, 600) is None
