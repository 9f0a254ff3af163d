"""wlr-randr communication: parse output listings, build and run apply commands."""

from __future__ import annotations

import json
import logging
import re
import shlex
import subprocess
from dataclasses import dataclass, field

from .errors import InvalidValue, PreviewApplyFailed, QueryFailed, QueryTimeout
from .models import (
    LayoutSession,
    Mode,
    Output,
    Transform,
    format_scale,
    hz_to_mhz,
    normalize_scale,
)

log = logging.getLogger(__name__)

DEFAULT_BINARY = "wlr-randr"
DEFAULT_TIMEOUT = 5.0

# Used when the current mode cannot be determined at all
FALLBACK_MODE = Mode(1920, 1080, 60000)

_HEADER_RE = re.compile(r'^(\S+)(?:\s+"(.*)")?\s*$')
_MODE_RE = re.compile(r"^\s+(\d+)x(\d+)\s+px,\s+([\d.]+)\s+Hz(?:\s+\((.*)\))?\s*$")
_PROP_RE = re.compile(r"^\s+([A-Za-z][A-Za-z ]*):\s*(.*)$")
_SIZE_RE = re.compile(r"^(\d+)x(\d+)\s*mm$")
_POS_RE = re.compile(r"^(-?\d+)\s*,\s*(-?\d+)$")


# ── Intermediate record ──────────────────────────────────────────────────

@dataclass
class RandrRecord:
    """One output as reported by wlr-randr.

    Every field except ``name`` is optional: ``None`` means wlr-randr did not
    report it or the value could not be parsed.
    """

    name: str
    description: str | None = None
    make: str | None = None
    model: str | None = None
    serial: str | None = None
    physical_size: tuple[int, int] | None = None
    enabled: bool | None = None
    modes: list[Mode] = field(default_factory=list)
    current_mode: Mode | None = None
    position: tuple[int, int] | None = None
    transform: Transform | None = None
    scale: float | None = None
    adaptive_sync: bool | None = None

    def to_output(self) -> Output:
        """Build an Output, substituting safe defaults for missing fields.

        A substituted value flags the output ``mode_unknown`` instead of
        rejecting it.
        """
        unknown = False

        mode = self.current_mode
        if mode is None:
            unknown = True
            preferred = [m for m in self.modes if m.preferred]
            mode = (preferred or self.modes or [FALLBACK_MODE])[0]

        position = self.position
        if position is None:
            unknown = True
            position = (0, 0)

        scale = self.scale
        if scale is None:
            unknown = True
            scale = 1.0

        transform = self.transform
        if transform is None:
            unknown = True
            transform = Transform.NORMAL

        enabled = self.enabled if self.enabled is not None else self.current_mode is not None

        out = Output(
            name=self.name,
            width=mode.width,
            height=mode.height,
            refresh_mhz=mode.refresh_mhz,
            x=position[0],
            y=position[1],
            scale=scale,
            transform=transform,
            enabled=enabled,
            description=self.description or "",
            make=self.make or "",
            model=self.model or "",
            serial=self.serial or "",
            physical_size=self.physical_size,
            adaptive_sync=self.adaptive_sync,
            modes=_unique_modes(self.modes),
            mode_unknown=unknown,
        )
        if unknown:
            log.info("Incomplete information for %s, using defaults where needed", self.name)
        return out


def _unique_modes(modes: list[Mode]) -> list[Mode]:
    seen: set[tuple[int, int, int]] = set()
    result: list[Mode] = []
    for m in modes:
        key = (m.width, m.height, m.refresh_mhz)
        if key not in seen:
            seen.add(key)
            result.append(m)
    return result


def _optional_scale(raw) -> float | None:
    try:
        return normalize_scale(raw)
    except InvalidValue:
        return None


def _optional_transform(raw) -> Transform | None:
    if not isinstance(raw, str):
        return None
    try:
        return Transform.from_name(raw)
    except InvalidValue:
        return None


def _mode(width, height, refresh, preferred=False) -> Mode | None:
    """Build a Mode from raw values, or None if any of them is unusable."""
    try:
        w, h = int(width), int(height)
        mhz = hz_to_mhz(refresh)
    except (InvalidValue, TypeError, ValueError):
        return None
    if w <= 0 or h <= 0:
        return None
    return Mode(w, h, mhz, bool(preferred))


# ── JSON listing (wlr-randr --json) ──────────────────────────────────────

def parse_json(text: str) -> list[RandrRecord]:
    """Parse ``wlr-randr --json`` output."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise QueryFailed(f"wlr-randr returned invalid JSON: {e}") from e
    if not isinstance(data, list):
        raise QueryFailed("wlr-randr JSON output is not a list")

    records: list[RandrRecord] = []
    for entry in data:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str) or not entry["name"]:
            log.warning("Skipping wlr-randr entry without a name: %r", entry)
            continue
        records.append(_record_from_json(entry))
    return records


def _record_from_json(entry: dict) -> RandrRecord:
    rec = RandrRecord(name=entry["name"])

    for key in ("description", "make", "model", "serial"):
        value = entry.get(key)
        if isinstance(value, str):
            setattr(rec, key, value)

    phys = entry.get("physical_size")
    if isinstance(phys, dict):
        pw, ph = phys.get("width"), phys.get("height")
        if all(isinstance(v, int) and not isinstance(v, bool) and v > 0 for v in (pw, ph)):
            rec.physical_size = (pw, ph)

    if isinstance(entry.get("enabled"), bool):
        rec.enabled = entry["enabled"]

    modes = entry.get("modes")
    if not isinstance(modes, list):
        if modes is not None:
            log.debug("Ignoring modes %r on %s: not a list", modes, rec.name)
        modes = []
    for raw in modes:
        if not isinstance(raw, dict):
            continue
        mode = _mode(raw.get("width"), raw.get("height"), raw.get("refresh"), raw.get("preferred", False))
        if mode is None:
            log.debug("Ignoring unparseable mode %r on %s", raw, rec.name)
            continue
        rec.modes.append(mode)
        if raw.get("current"):
            rec.current_mode = mode

    pos = entry.get("position")
    if isinstance(pos, dict):
        px, py = pos.get("x"), pos.get("y")
        if all(isinstance(v, int) and not isinstance(v, bool) for v in (px, py)):
            rec.position = (px, py)

    rec.transform = _optional_transform(entry.get("transform"))
    if entry.get("scale") is not None:
        rec.scale = _optional_scale(entry.get("scale"))
    if isinstance(entry.get("adaptive_sync"), bool):
        rec.adaptive_sync = entry["adaptive_sync"]
    return rec


# ── Text listing (plain wlr-randr) ───────────────────────────────────────

def parse_text(text: str) -> list[RandrRecord]:
    """Parse the human-readable ``wlr-randr`` listing.

    Each output starts with an unindented ``NAME "description"`` line,
    followed by indented ``Key: value`` properties.  Mode lines
    (``1920x1080 px, 60.000000 Hz (preferred, current)``) follow ``Modes:``.
    """
    records: list[RandrRecord] = []
    rec: RandrRecord | None = None

    for line in text.splitlines():
        if not line.strip():
            continue
        if not line[0].isspace():
            m = _HEADER_RE.match(line)
            if m is None:
                log.warning("Unrecognized wlr-randr line: %r", line)
                rec = None
                continue
            rec = RandrRecord(name=m.group(1), description=m.group(2))
            records.append(rec)
            continue
        if rec is None:
            continue

        mm = _MODE_RE.match(line)
        if mm is not None:
            flags = {f.strip() for f in (mm.group(4) or "").split(",")}
            mode = _mode(mm.group(1), mm.group(2), mm.group(3), "preferred" in flags)
            if mode is None:
                continue
            rec.modes.append(mode)
            if "current" in flags:
                rec.current_mode = mode
            continue

        pm = _PROP_RE.match(line)
        if pm is None:
            log.debug("Ignoring wlr-randr line for %s: %r", rec.name, line)
            continue
        _apply_property(rec, pm.group(1).strip().lower(), pm.group(2).strip())

    return records


def _apply_property(rec: RandrRecord, key: str, value: str) -> None:
    if key in ("make", "model", "serial"):
        setattr(rec, key, value)
    elif key == "physical size":
        m = _SIZE_RE.match(value)
        if m and int(m.group(1)) > 0 and int(m.group(2)) > 0:
            rec.physical_size = (int(m.group(1)), int(m.group(2)))
    elif key == "enabled":
        rec.enabled = value.lower() == "yes"
    elif key == "position":
        m = _POS_RE.match(value)
        if m:
            rec.position = (int(m.group(1)), int(m.group(2)))
    elif key == "transform":
        rec.transform = _optional_transform(value)
    elif key == "scale":
        rec.scale = _optional_scale(value)
    elif key == "adaptive sync":
        rec.adaptive_sync = value.lower() == "enabled"


def parse_outputs(text: str) -> list[RandrRecord]:
    """Parse either listing format, picked by content."""
    if text.lstrip().startswith("["):
        return parse_json(text)
    return parse_text(text)


# ── Apply directives ─────────────────────────────────────────────────────

def output_directive(out: Output) -> list[str]:
    """wlr-randr arguments configuring a single output."""
    if not out.enabled:
        return ["--output", out.name, "--off"]
    mode_flag = "--mode" if out.current_mode is not None and not out.custom_mode else "--custom-mode"
    return [
        "--output", out.name,
        "--on",
        mode_flag, out.mode_token,
        "--pos", f"{out.x},{out.y}",
        "--scale", format_scale(out.scale),
        "--transform", out.transform.wayland_name,
    ]


def build_apply_arguments(session: LayoutSession, *, connected_only: bool = False) -> list[list[str]]:
    """One directive per output, in output name order.

    Disabled outputs get ``--off``.  With *connected_only*, planned outputs
    that wlr-randr does not know about are left out.
    """
    directives: list[list[str]] = []
    for out in session.sorted_outputs():
        if connected_only and not out.connected:
            continue
        directives.append(output_directive(out))
    return directives


class WlrRandr:
    """Query and configure outputs through the wlr-randr command."""

    def __init__(self, binary: str = DEFAULT_BINARY, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.binary = binary
        self.timeout = timeout

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        log.debug("Running %s", shlex.join(cmd))
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )

    def command_line(self, session: LayoutSession, *, connected_only: bool = True) -> list[str]:
        """Full argv that would apply *session*."""
        cmd = [self.binary]
        for directive in build_apply_arguments(session, connected_only=connected_only):
            cmd.extend(directive)
        return cmd

    def query_outputs(self) -> list[Output]:
        """Query all outputs (including disabled) as Output list."""
        try:
            result = self._run(["--json"])
            if result.returncode != 0:
                # wlr-randr before 0.4 has no --json
                log.info("%s --json failed, falling back to text listing", self.binary)
                result = self._run([])
        except subprocess.TimeoutExpired as e:
            raise QueryTimeout(f"{self.binary} did not answer within {self.timeout:g}s") from e
        except OSError as e:
            raise QueryFailed(f"Cannot run {self.binary}: {e}") from e

        if result.returncode != 0:
            raise QueryFailed(
                f"{self.binary} exited with status {result.returncode}: {result.stderr.strip()}"
            )

        outputs: list[Output] = []
        for rec in parse_outputs(result.stdout):
            try:
                outputs.append(rec.to_output())
            except InvalidValue as e:
                log.warning("Skipping output %s: %s", rec.name, e)
        log.info("Detected %d output(s): %s", len(outputs), ", ".join(o.name for o in outputs))
        return outputs

    def apply_live(self, session: LayoutSession) -> None:
        """Apply *session* immediately without persisting it.

        Works on a snapshot; the session itself is never modified.
        """
        cmd = self.command_line(session.snapshot())
        if len(cmd) == 1:
            log.info("Nothing to apply")
            return

        log.info("Applying preview: %s", shlex.join(cmd))
        try:
            result = self._run(cmd[1:])
        except subprocess.TimeoutExpired as e:
            raise PreviewApplyFailed(
                f"{self.binary} did not finish within {self.timeout:g}s",
                diagnostic=_decode(e.stderr),
            ) from e
        except OSError as e:
            raise PreviewApplyFailed(f"Cannot run {self.binary}: {e}", diagnostic=str(e)) from e

        stderr = (result.stderr or "").strip()
        if result.returncode != 0:
            raise PreviewApplyFailed(
                f"{self.binary} exited with status {result.returncode}",
                diagnostic=stderr,
                returncode=result.returncode,
            )
        if re.search(r"fail|cancel", stderr, re.IGNORECASE):
            raise PreviewApplyFailed(
                f"{self.binary} did not accept the configuration",
                diagnostic=stderr,
                returncode=result.returncode,
            )
        if stderr:
            log.warning("%s: %s", self.binary, stderr)


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace").strip()
    return str(data).strip()
