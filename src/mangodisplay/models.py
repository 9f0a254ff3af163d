"""Data models: Transform, Mode, Output, LayoutSession."""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Iterator

from .errors import DuplicateOutput, InvalidValue, UnknownOutput, UnsupportedMode


MIN_SCALE = 0.1
SCALE_PLACES = 6
# Two refresh rates closer than this are the same mode (59.95 vs 59.951 Hz)
REFRESH_TOLERANCE_MHZ = 10
# Keys of a monitorrule= line; anything else is kept in Output.extra
RULE_FIELDS = ("name", "width", "height", "refresh", "x", "y", "scale", "rr")


# ── Numeric helpers ──────────────────────────────────────────────────────

def _to_decimal(value, what: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidValue(f"{what} must be a number, got {value!r}")
    try:
        d = Decimal(value) if isinstance(value, (int, str, Decimal)) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidValue(f"{what} must be a number, got {value!r}") from None
    if not d.is_finite():
        raise InvalidValue(f"{what} must be finite, got {value!r}")
    return d


def hz_to_mhz(value) -> int:
    """Convert a refresh rate in Hz (number or decimal string) to integer millihertz."""
    d = _to_decimal(value, "refresh rate")
    mhz = int((d * 1000).to_integral_value(rounding=ROUND_HALF_UP))
    if mhz <= 0:
        raise InvalidValue(f"refresh rate must be positive, got {value!r}")
    return mhz


def format_mhz(mhz: int, places: int = 6) -> str:
    """Render millihertz as a fixed-point Hz string (``144000`` -> ``144.000000``)."""
    quantum = Decimal(1).scaleb(-places)
    return str((Decimal(mhz) / 1000).quantize(quantum, rounding=ROUND_HALF_UP))


def normalize_scale(value) -> float:
    """Validate a scale factor and round it to six decimal places."""
    d = _to_decimal(value, "scale")
    d = d.quantize(Decimal(1).scaleb(-SCALE_PLACES), rounding=ROUND_HALF_UP)
    if d < Decimal(str(MIN_SCALE)):
        raise InvalidValue(f"scale must be at least {MIN_SCALE}, got {value!r}")
    return float(d)


def format_scale(scale: float) -> str:
    return f"{scale:.{SCALE_PLACES}f}"


def _positive_int(value, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        else:
            raise InvalidValue(f"{what} must be an integer, got {value!r}")
    if value <= 0:
        raise InvalidValue(f"{what} must be positive, got {value!r}")
    return value


def _coordinate(value, what: str) -> int:
    if isinstance(value, bool):
        raise InvalidValue(f"{what} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    raise InvalidValue(f"{what} must be a finite integer, got {value!r}")


# ── Enums ────────────────────────────────────────────────────────────────

class Transform(Enum):
    NORMAL = 0
    ROTATE_90 = 1
    ROTATE_180 = 2
    ROTATE_270 = 3
    FLIPPED = 4
    FLIPPED_90 = 5
    FLIPPED_180 = 6
    FLIPPED_270 = 7

    @property
    def wayland_name(self) -> str:
        """Name used by wlr-randr (``normal``, ``90``, ``flipped-270`` ...)."""
        return _WAYLAND_NAMES[self.value]

    @property
    def rotation(self) -> int:
        """Rotation in degrees, ignoring the flip."""
        return (self.value % 4) * 90

    @property
    def flipped(self) -> bool:
        return self.value >= 4

    @property
    def is_rotated(self) -> bool:
        """True if width/height are swapped (90° or 270° variants)."""
        return self.value in (1, 3, 5, 7)

    @classmethod
    def from_rotation(cls, degrees: int, flipped: bool = False) -> Transform:
        if isinstance(degrees, bool) or degrees not in (0, 90, 180, 270):
            raise InvalidValue(f"rotation must be one of 0, 90, 180, 270; got {degrees!r}")
        return cls(degrees // 90 + (4 if flipped else 0))

    @classmethod
    def from_name(cls, name: str) -> Transform:
        """Parse a wlr-randr transform name."""
        try:
            return cls(_WAYLAND_NAMES_INV[name.strip().lower()])
        except KeyError:
            raise InvalidValue(f"unknown transform: {name!r}") from None


_WAYLAND_NAMES: dict[int, str] = {
    0: "normal",
    1: "90",
    2: "180",
    3: "270",
    4: "flipped",
    5: "flipped-90",
    6: "flipped-180",
    7: "flipped-270",
}

_WAYLAND_NAMES_INV: dict[str, int] = {v: k for k, v in _WAYLAND_NAMES.items()}


# ── Mode ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Mode:
    """A supported (width, height, refresh) triple reported for an output."""

    width: int
    height: int
    refresh_mhz: int
    preferred: bool = field(default=False, compare=False)

    @property
    def refresh_rate(self) -> float:
        return self.refresh_mhz / 1000.0

    @property
    def token(self) -> str:
        """``WxH@R.RRRRRRHz`` as accepted by ``wlr-randr --mode``."""
        return f"{self.width}x{self.height}@{format_mhz(self.refresh_mhz)}Hz"

    def matches(self, width: int, height: int, refresh_mhz: int | None = None) -> bool:
        if (self.width, self.height) != (width, height):
            return False
        if refresh_mhz is None:
            return True
        return abs(self.refresh_mhz - refresh_mhz) <= REFRESH_TOLERANCE_MHZ

    def __str__(self) -> str:
        return f"{self.width}x{self.height}@{format_mhz(self.refresh_mhz, 3)}Hz"


# ── Output ───────────────────────────────────────────────────────────────

@dataclass
class Output:
    """One physical or virtual display.

    Only the fields written to a rule line take part in equality; the
    informational fields reported by wlr-randr do not.
    """

    # Identity
    name: str

    # Current mode
    width: int = 1920
    height: int = 1080
    refresh_mhz: int = 60000

    # Position in compositor logical space (may be negative)
    x: int = 0
    y: int = 0

    scale: float = 1.0
    transform: Transform = Transform.NORMAL
    enabled: bool = True

    # Unknown rule fields, re-emitted verbatim
    extra: dict[str, str] = field(default_factory=dict)

    # Informational (from wlr-randr)
    description: str = field(default="", compare=False)
    make: str = field(default="", compare=False)
    model: str = field(default="", compare=False)
    serial: str = field(default="", compare=False)
    physical_size: tuple[int, int] | None = field(default=None, compare=False)
    adaptive_sync: bool | None = field(default=None, compare=False)

    # Supported modes; empty when the hardware list is not known
    modes: list[Mode] = field(default_factory=list, compare=False)
    custom_mode: bool = field(default=False, compare=False)
    mode_unknown: bool = field(default=False, compare=False)
    # False for planned outputs that wlr-randr did not report
    connected: bool = field(default=True, compare=False)

    def __post_init__(self) -> None:
        self.name = validate_name(self.name)
        self.width = _positive_int(self.width, "width")
        self.height = _positive_int(self.height, "height")
        self.refresh_mhz = _positive_int(self.refresh_mhz, "refresh")
        self.x = _coordinate(self.x, "x")
        self.y = _coordinate(self.y, "y")
        self.scale = normalize_scale(self.scale)
        if not isinstance(self.transform, Transform):
            self.transform = Transform(self.transform)
        self.extra = validate_extra(self.extra)

    # ── Derived geometry ─────────────────────────────────────────────

    @property
    def refresh_rate(self) -> float:
        """Refresh rate in Hz."""
        return self.refresh_mhz / 1000.0

    @property
    def rotation(self) -> int:
        return self.transform.rotation

    @property
    def flipped(self) -> bool:
        return self.transform.flipped

    @property
    def position(self) -> tuple[int, int]:
        return self.x, self.y

    @property
    def physical_size_rotated(self) -> tuple[int, int]:
        """Pixel dimensions accounting for rotation (no scale)."""
        w, h = self.width, self.height
        if self.transform.is_rotated:
            w, h = h, w
        return w, h

    @property
    def logical_width(self) -> int:
        """Width in logical pixels (accounting for scale and rotation)."""
        return int(self.physical_size_rotated[0] / self.scale)

    @property
    def logical_height(self) -> int:
        """Height in logical pixels (accounting for scale and rotation)."""
        return int(self.physical_size_rotated[1] / self.scale)

    @property
    def current_mode(self) -> Mode | None:
        """The entry of ``modes`` matching the current width/height/refresh."""
        for m in self.modes:
            if m.matches(self.width, self.height, self.refresh_mhz):
                return m
        return None

    @property
    def mode_token(self) -> str:
        return f"{self.width}x{self.height}@{format_mhz(self.refresh_mhz)}Hz"

    # ── Validated mutation ───────────────────────────────────────────

    def set_resolution(self, width: int, height: int, refresh_hz=None) -> None:
        """Switch to ``width``x``height``, optionally at a given refresh rate.

        With a known mode list the size (and rate, when given) must be in
        it; without one the mode is taken as-is and marked custom.
        """
        width = _positive_int(width, "width")
        height = _positive_int(height, "height")
        refresh_mhz = hz_to_mhz(refresh_hz) if refresh_hz is not None else None

        if self.modes:
            candidates = [m for m in self.modes if m.matches(width, height, refresh_mhz)]
            if not candidates:
                raise UnsupportedMode(
                    self.name, width, height,
                    float(refresh_hz) if refresh_hz is not None else None,
                )
            target = refresh_mhz if refresh_mhz is not None else self.refresh_mhz
            best = min(candidates, key=lambda m: (abs(m.refresh_mhz - target), -m.refresh_mhz))
            self.width, self.height, self.refresh_mhz = best.width, best.height, best.refresh_mhz
            self.custom_mode = False
        else:
            self.width, self.height = width, height
            if refresh_mhz is not None:
                self.refresh_mhz = refresh_mhz
            self.custom_mode = True
        self.mode_unknown = False

    def set_refresh(self, hz) -> None:
        """Set the refresh rate in Hz, snapping to a known mode when one is close."""
        mhz = hz_to_mhz(hz)
        for m in self.modes:
            if m.matches(self.width, self.height, mhz):
                self.refresh_mhz = m.refresh_mhz
                self.custom_mode = False
                return
        self.refresh_mhz = mhz
        self.custom_mode = bool(self.modes) or self.custom_mode

    def set_scale(self, factor) -> None:
        self.scale = normalize_scale(factor)

    def set_rotation(self, degrees: int, flipped: bool = False) -> None:
        if not isinstance(flipped, bool):
            raise InvalidValue(f"flipped must be a boolean, got {flipped!r}")
        self.transform = Transform.from_rotation(degrees, flipped)

    def set_transform(self, value: Transform | str | int) -> None:
        """Set the transform from an enum member, a wlr-randr name or a 0..7 code."""
        if isinstance(value, Transform):
            self.transform = value
        elif isinstance(value, str):
            self.transform = Transform.from_name(value)
        elif isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 7:
            self.transform = Transform(value)
        else:
            raise InvalidValue(f"invalid transform: {value!r}")

    def set_position(self, x: int, y: int) -> None:
        self.x = _coordinate(x, "x")
        self.y = _coordinate(y, "y")

    def select_mode(self, index: int) -> Mode:
        """Make ``modes[index]`` the current mode."""
        try:
            mode = self.modes[index]
        except (IndexError, TypeError):
            raise InvalidValue(f"{self.name} has no mode #{index}") from None
        self.width, self.height, self.refresh_mhz = mode.width, mode.height, mode.refresh_mhz
        self.custom_mode = False
        self.mode_unknown = False
        return mode


def validate_name(name) -> str:
    """Output names end up inside comma-separated rule lines."""
    if not isinstance(name, str) or not name.strip():
        raise InvalidValue(f"output name must be a non-empty string, got {name!r}")
    name = name.strip()
    if any(c in name for c in ",\n\r"):
        raise InvalidValue(f"output name may not contain commas or newlines: {name!r}")
    return name


def validate_extra(extra) -> dict[str, str]:
    """Check that extra rule fields survive being written as ``key:value``."""
    if not isinstance(extra, dict):
        raise InvalidValue(f"extra rule fields must be a dict, got {extra!r}")
    for key, value in extra.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise InvalidValue(f"extra rule field {key!r} must map a string to a string")
        if not key or key != key.strip() or any(c in key for c in ",:\n\r"):
            raise InvalidValue(f"invalid extra rule field name {key!r}")
        if key in RULE_FIELDS:
            raise InvalidValue(f"extra rule field {key!r} clashes with a standard field")
        if value != value.strip() or any(c in value for c in ",\n\r"):
            raise InvalidValue(f"invalid value {value!r} for extra rule field {key!r}")
    return extra


# ── LayoutSession ────────────────────────────────────────────────────────

@dataclass
class LayoutSession:
    """All outputs known to one editing session, keyed by name."""

    outputs: dict[str, Output] = field(default_factory=dict)
    selected: str | None = None
    dirty: bool = False

    def __post_init__(self) -> None:
        for key, out in self.outputs.items():
            if key != out.name:
                raise InvalidValue(f"session key {key!r} does not match output {out.name!r}")
        if self.selected is not None and self.selected not in self.outputs:
            self.selected = None

    @classmethod
    def from_outputs(cls, outputs: list[Output]) -> LayoutSession:
        session = cls()
        for out in outputs:
            session.add(out)
        return session

    def __contains__(self, name: object) -> bool:
        return name in self.outputs

    def __iter__(self) -> Iterator[Output]:
        return iter(self.outputs.values())

    def __len__(self) -> int:
        return len(self.outputs)

    def __getitem__(self, name: str) -> Output:
        try:
            return self.outputs[name]
        except KeyError:
            raise UnknownOutput(name) from None

    def add(self, output: Output) -> None:
        if output.name in self.outputs:
            raise DuplicateOutput(f"Output {output.name} already exists")
        self.outputs[output.name] = output

    def remove(self, name: str) -> Output:
        out = self[name]
        del self.outputs[name]
        if self.selected == name:
            self.selected = None
        return out

    def select(self, name: str | None) -> None:
        if name is not None and name not in self.outputs:
            raise UnknownOutput(name)
        self.selected = name

    def sorted_outputs(self) -> list[Output]:
        return sorted(self.outputs.values(), key=lambda o: o.name)

    def enabled_outputs(self) -> list[Output]:
        """Enabled outputs in name order."""
        return [o for o in self.sorted_outputs() if o.enabled]

    def snapshot(self) -> LayoutSession:
        """Deep copy for background work, so it never reads a half-edited set."""
        return copy.deepcopy(self)
