"""Layout session controller: drag, edit, preview and save a set of outputs."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable

from .errors import ConfigIOError, InvalidValue, MalformedRule, OperationInProgress, OverlapError
from .geometry import (
    CanvasRect,
    canvas_to_logical,
    logical_rect,
    normalize_positions,
    overlapping_pairs,
    park_disabled,
    place_beside,
    rect_for,
    resolve_drag,
    round_to_grid,
    snap,
    would_overlap_any,
)
from .models import LayoutSession, Output, Transform, hz_to_mhz
from .rules import ensure_source_include, load_rules, render_block, write_config
from .tasks import BackgroundRunner, Completion
from .utils import AppSettings
from .wlr_randr import WlrRandr

log = logging.getLogger(__name__)


@dataclass
class _DragState:
    name: str
    start: tuple[int, int]       # position at begin_drag
    last: tuple[int, int]        # last committed, non-overlapping position
    dirty: bool                  # session.dirty at begin_drag


class SessionController:
    """Owns the LayoutSession and keeps its invariants.

    All mutation goes through this class; background work only ever sees a
    snapshot, and a refreshed session replaces the old one in one step.
    """

    def __init__(
        self,
        settings: AppSettings | None = None,
        adapter: WlrRandr | None = None,
        runner: BackgroundRunner | None = None,
    ) -> None:
        self.settings = settings or AppSettings()
        self.adapter = adapter or WlrRandr(timeout=self.settings.query_timeout)
        self.runner = runner or BackgroundRunner()
        self.session = LayoutSession()
        self.load_errors: list[MalformedRule] = []
        self._drag: _DragState | None = None

    # ── Session lifecycle ────────────────────────────────────────────

    def _ensure_idle(self) -> None:
        if self.runner.busy:
            raise OperationInProgress(f"{self.runner.current} is still running")

    def start_session(self) -> LayoutSession:
        """Query the detected outputs and build a fresh session."""
        self._ensure_idle()
        outputs = self.adapter.query_outputs()
        self._replace_session(self._build_session(outputs))
        return self.session

    def refresh_async(self, on_done: Completion) -> None:
        """Like start_session, but the query runs on the background runner."""

        def _done(result: Any, error: BaseException | None) -> None:
            if error is not None:
                on_done(None, error)
                return
            self._replace_session(self._build_session(result))
            on_done(self.session, None)

        self.runner.submit("query", self.adapter.query_outputs, _done)

    def _replace_session(self, session: LayoutSession) -> None:
        self.session = session
        self._drag = None

    def _build_session(self, outputs: list[Output]) -> LayoutSession:
        session = LayoutSession()
        for out in outputs:
            if out.name in session:
                log.warning("Ignoring duplicate output %s", out.name)
                continue
            session.add(out)

        self._separate_overlaps(session)
        self.load_errors = []
        if self.settings.merge_saved_rules:
            self._merge_saved(session)
        park_disabled(session)

        ordered = session.sorted_outputs()
        session.selected = ordered[0].name if ordered else None
        session.dirty = False
        log.info(
            "Session started with %d output(s) (%d enabled)",
            len(session), len(session.enabled_outputs()),
        )
        return session

    @staticmethod
    def _separate_overlaps(session: LayoutSession) -> None:
        """Move enabled outputs that overlap (e.g. mirrored) beside the layout."""
        placed: list[Output] = []
        for out in session.enabled_outputs():
            if would_overlap_any(logical_rect(out), [logical_rect(o) for o in placed]):
                x, y = place_beside(out, placed)
                log.info("%s overlaps another output, moving it to %d,%d", out.name, x, y)
                out.set_position(x, y)
            placed.append(out)

    def _merge_saved(self, session: LayoutSession) -> None:
        """Add outputs from the saved rules that are not connected right now."""
        path = self.settings.monitors_file
        try:
            saved, errors = load_rules(path)
        except ConfigIOError as e:
            log.warning("Cannot read saved rules: %s", e)
            return
        self.load_errors = errors
        for out in saved:
            if out.name in session:
                continue
            rects = [logical_rect(o) for o in session.enabled_outputs()]
            if would_overlap_any(logical_rect(out), rects):
                log.info("Planned output %s overlaps the current layout, adding it disabled", out.name)
                out.enabled = False
            session.add(out)
            log.info("Added planned output %s from %s", out.name, path)

    # ── Selection and membership ─────────────────────────────────────

    def select(self, name: str | None) -> None:
        self.session.select(name)

    def add_output(
        self,
        name: str,
        width: int = 1920,
        height: int = 1080,
        refresh_hz=60,
        scale=1.0,
        *,
        enabled: bool = False,
    ) -> Output:
        """Add a virtual output for planning a layout with absent hardware."""
        out = Output(
            name=name,
            width=width,
            height=height,
            refresh_mhz=hz_to_mhz(refresh_hz),
            scale=scale,
            enabled=enabled,
            custom_mode=True,
            connected=False,
        )
        if enabled:
            out.set_position(*place_beside(out, self.session.enabled_outputs()))
        self.session.add(out)
        if not enabled:
            park_disabled(self.session)
        self.session.dirty = True
        log.info("Added virtual output %s (%dx%d)", name, width, height)
        return out

    def remove_output(self, name: str) -> Output:
        if self._drag is not None and self._drag.name == name:
            self._drag = None
        out = self.session.remove(name)
        self.session.dirty = True
        return out

    # ── Dragging ─────────────────────────────────────────────────────

    def begin_drag(self, name: str) -> None:
        out = self.session[name]
        self.session.select(name)
        self._drag = _DragState(name, out.position, out.position, self.session.dirty)

    @property
    def dragging(self) -> str | None:
        return self._drag.name if self._drag else None

    def _other_rects(self, out: Output, zoom: float = 1.0,
                     origin: tuple[float, float] = (0.0, 0.0)) -> list[CanvasRect]:
        return [rect_for(o, zoom, origin) for o in self.session.enabled_outputs() if o.name != out.name]

    def update_drag(
        self,
        candidate: tuple[float, float],
        *,
        zoom: float = 1.0,
        origin: tuple[float, float] = (0.0, 0.0),
    ) -> tuple[int, int]:
        """Move the dragged output toward *candidate* (canvas top-left).

        Returns the position actually committed.  A position that would
        overlap another enabled output is never stored; the last valid
        position is returned instead.
        """
        if self._drag is None:
            raise InvalidValue("No drag in progress")
        drag = self._drag
        out = self.session[drag.name]

        if not out.enabled:
            lx, ly = canvas_to_logical(candidate, zoom, origin)
            grid = self.settings.grid_size
            resolved = (round_to_grid(lx, grid), round_to_grid(ly, grid))
        else:
            target = snap(
                out, candidate, self._other_rects(out, zoom, origin),
                self.settings.snap_threshold,
                zoom=zoom, origin=origin, grid=self.settings.grid_size,
            )
            others = self._other_rects(out)
            resolved = resolve_drag(out, drag.last, target, others)
            w, h = out.logical_width, out.logical_height
            if would_overlap_any(CanvasRect(out.name, resolved[0], resolved[1], w, h), others):
                return drag.last

        if resolved != out.position:
            out.set_position(*resolved)
            self.session.dirty = True
        drag.last = resolved
        return resolved

    def end_drag(self) -> bool:
        """Finish the drag. Returns True if the output actually moved."""
        if self._drag is None:
            return False
        drag = self._drag
        self._drag = None
        out = self.session.outputs.get(drag.name)
        return out is not None and out.position != drag.start

    def cancel_drag(self) -> None:
        """Put the dragged output back where the drag started.

        The dirty flag goes back to what it was before the drag.
        """
        if self._drag is None:
            return
        drag = self._drag
        self._drag = None
        out = self.session.outputs.get(drag.name)
        if out is not None and out.position != drag.start:
            out.set_position(*drag.start)
        self.session.dirty = drag.dirty

    # ── Attribute edits ──────────────────────────────────────────────

    def _edit(self, name: str, mutate: Callable[[Output], Any]) -> Output:
        """Apply *mutate* to an output, undoing it if it creates an overlap."""
        out = self.session[name]
        before = copy.copy(out)
        mutate(out)
        if out.enabled:
            others = self._other_rects(out)
            if would_overlap_any(logical_rect(out), others):
                vars(out).update(vars(before))
                raise OverlapError(f"{name} would overlap another output")
        if out != before:
            self.session.dirty = True
        return out

    def set_resolution(self, name: str, width: int, height: int, refresh_hz=None) -> Output:
        return self._edit(name, lambda o: o.set_resolution(width, height, refresh_hz))

    def select_mode(self, name: str, index: int) -> Output:
        return self._edit(name, lambda o: o.select_mode(index))

    def set_refresh(self, name: str, hz) -> Output:
        return self._edit(name, lambda o: o.set_refresh(hz))

    def set_scale(self, name: str, factor) -> Output:
        return self._edit(name, lambda o: o.set_scale(factor))

    def set_rotation(self, name: str, degrees: int, flipped: bool = False) -> Output:
        return self._edit(name, lambda o: o.set_rotation(degrees, flipped))

    def set_transform(self, name: str, value: Transform | str | int) -> Output:
        return self._edit(name, lambda o: o.set_transform(value))

    def set_position(self, name: str, x: int, y: int) -> Output:
        return self._edit(name, lambda o: o.set_position(x, y))

    def nudge(self, name: str, dx: int, dy: int) -> Output:
        out = self.session[name]
        return self.set_position(name, out.x + dx, out.y + dy)

    def set_enabled(self, name: str, enabled: bool) -> Output:
        """Enable or disable an output.

        The last enabled output cannot be disabled.  An output enabled at a
        spot that is already taken is placed beside the layout.
        """
        out = self.session[name]
        if enabled == out.enabled:
            return out
        if not enabled:
            if [o.name for o in self.session.enabled_outputs()] == [name]:
                raise InvalidValue("At least one output must stay enabled")
            out.enabled = False
        else:
            if would_overlap_any(logical_rect(out), self._other_rects(out)):
                x, y = place_beside(out, self.session.enabled_outputs())
                log.info("Placing %s at %d,%d", name, x, y)
                out.set_position(x, y)
            out.enabled = True
        self.session.dirty = True
        return out

    # ── Commit ───────────────────────────────────────────────────────

    def overlapping(self) -> list[tuple[str, str]]:
        return overlapping_pairs(self.session)

    def _commit_snapshot(self) -> LayoutSession:
        """Normalized copy of the session, checked for overlaps."""
        pairs = self.overlapping()
        if pairs:
            desc = ", ".join(f"{a}/{b}" for a, b in pairs)
            raise OverlapError(f"Outputs overlap: {desc}")
        snap_session = self.session.snapshot()
        normalize_positions(snap_session)
        return snap_session

    def rules_text(self) -> str:
        """The block save() would write."""
        return render_block(self._commit_snapshot())

    def preview(self) -> None:
        """Apply the current layout live; nothing is persisted or changed."""
        self._ensure_idle()
        self.adapter.apply_live(self._commit_snapshot())

    def preview_async(self, on_done: Completion) -> None:
        snapshot = self._commit_snapshot()
        self.runner.submit("preview", lambda: self.adapter.apply_live(snapshot), on_done)

    def save(self) -> bool:
        """Write the rules file (and the source include, if enabled).

        Clears the dirty flag only when everything was written.  Returns
        whether the rules file changed.
        """
        self._ensure_idle()
        snapshot = self._commit_snapshot()
        changed = write_config(snapshot, self.settings.monitors_file)
        if self.settings.auto_append_source:
            ensure_source_include(self.settings.config_path, self.settings.monitors_path)

        # Keep the normalized positions that were written
        for out in snapshot:
            live = self.session.outputs.get(out.name)
            if live is not None and live.position != out.position:
                live.set_position(*out.position)
        self.session.dirty = False
        log.info("Saved layout to %s", self.settings.monitors_file)
        return changed
