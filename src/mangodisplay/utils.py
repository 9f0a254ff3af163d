"""Utility helpers: XDG paths, file I/O, app configuration."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, asdict, fields
from pathlib import Path

log = logging.getLogger(__name__)

APP_ID = "mangodisplay"
VERSION = "0.3.0"


def xdg_config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def config_dir() -> Path:
    """Return ~/.config/mangodisplay, creating it if needed."""
    d = xdg_config_home() / APP_ID
    d.mkdir(parents=True, exist_ok=True)
    return d


def mango_config_dir() -> Path:
    """Return the mango compositor config directory."""
    return xdg_config_home() / "mango"


def expand_path(path: str | Path) -> Path:
    """Expand ``~`` and environment variables in a user-supplied path."""
    return Path(os.path.expandvars(os.path.expanduser(str(path))))


def read_json(path: Path) -> dict | list | None:
    """Read and parse a JSON file, returning None on failure."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None


def write_json(path: Path, data: dict | list) -> None:
    """Write data as formatted JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _current_umask() -> int:
    # os.umask can only be read by setting it
    mask = os.umask(0)
    os.umask(mask)
    return mask


def write_text_atomic(path: Path, text: str, errors: str = "strict") -> None:
    """Replace *path* with *text* in one step.

    The content goes to a temporary file in the same directory which is then
    renamed over the target, so readers see either the old or the new file.
    The previous file mode is kept; a new file follows the umask.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        mode = path.stat().st_mode & 0o7777
    except FileNotFoundError:
        mode = 0o666 & ~_current_umask()

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors=errors, newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def backup_file(path: Path) -> Path | None:
    """Create a .bak copy of a file. Returns backup path or None."""
    if not path.exists():
        return None
    bak = path.with_suffix(path.suffix + ".bak")
    bak.write_bytes(path.read_bytes())
    return bak


def parse_bool(value: str | bool) -> bool:
    """Parse a yes/no style flag as typed on the command line."""
    if isinstance(value, bool):
        return value
    v = value.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# ── Settings ─────────────────────────────────────────────────────────────

def _default_monitors_path() -> str:
    return str(mango_config_dir() / "monitors.conf")


def _default_config_path() -> str:
    return str(mango_config_dir() / "config.conf")


@dataclass
class AppSettings:
    """Preferences consumed by the session controller.

    Loaded once and passed in explicitly; nothing reads the settings file
    behind the controller's back.
    """

    monitors_path: str = ""
    config_path: str = ""
    auto_append_source: bool = False
    snap_threshold: int = 15        # canvas pixels
    grid_size: int = 1              # logical pixels, for unsnapped drags
    query_timeout: float = 5.0      # seconds
    merge_saved_rules: bool = True

    def __post_init__(self) -> None:
        if not self.monitors_path:
            self.monitors_path = _default_monitors_path()
        if not self.config_path:
            self.config_path = _default_config_path()

    @property
    def monitors_file(self) -> Path:
        return expand_path(self.monitors_path)

    @property
    def config_file(self) -> Path:
        return expand_path(self.config_path)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> AppSettings:
        """Build settings from a parsed settings.json, dropping bad values."""
        known = {f.name: f for f in fields(cls)}
        kwargs = {}
        for key, value in d.items():
            f = known.get(key)
            if f is None:
                continue
            default = getattr(cls, key)
            if isinstance(default, bool):
                if not isinstance(value, bool):
                    log.warning("Ignoring setting %s=%r: expected a boolean", key, value)
                    continue
            elif isinstance(default, (int, float)):
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                    log.warning("Ignoring setting %s=%r: expected a positive number", key, value)
                    continue
                value = type(default)(value)
            elif not isinstance(value, str):
                log.warning("Ignoring setting %s=%r: expected a string", key, value)
                continue
            kwargs[key] = value
        return cls(**kwargs)


def settings_path() -> Path:
    """Return the path to the global app settings file."""
    return config_dir() / "settings.json"


def load_app_settings(path: Path | None = None) -> AppSettings:
    """Load global application settings, falling back to defaults."""
    data = read_json(path or settings_path())
    if not isinstance(data, dict):
        return AppSettings()
    return AppSettings.from_dict(data)


def save_app_settings(settings: AppSettings, path: Path | None = None) -> None:
    """Save global application settings."""
    write_json(path or settings_path(), settings.to_dict())
