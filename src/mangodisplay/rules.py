"""Persisted ``monitorrule=`` lines: serialize, parse and write them into mango config files."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from .errors import ConfigIOError, InvalidValue, MalformedRule
from .models import (
    RULE_FIELDS,
    LayoutSession,
    Output,
    Transform,
    format_mhz,
    format_scale,
    hz_to_mhz,
    normalize_scale,
)
from .utils import backup_file, expand_path, write_text_atomic

log = logging.getLogger(__name__)

RULE_KEY = "monitorrule"

BLOCK_BEGIN = "# >>> mangodisplay monitors >>>"
BLOCK_END = "# <<< mangodisplay monitors <<<"

_RULE_RE = re.compile(r"^\s*monitorrule\s*=\s*(.*)$")
# Exactly what serialize() writes, extra fields included
_CANONICAL_RE = re.compile(
    r"^monitorrule=name:[^,\r\n]+,width:\d+,height:\d+,refresh:\d+\.\d{6},"
    r"x:-?\d+,y:-?\d+,scale:\d+\.\d{6},rr:[0-7](?:,[^,:\r\n]+:[^,\r\n]*)*\r?\n?$"
)
_INT_RE = re.compile(r"^[+-]?\d+$")
_SOURCE_RE = re.compile(r"^source\s*=\s*(.+?)\s*$")


# ── Single lines ─────────────────────────────────────────────────────────

def serialize(output: Output) -> str:
    """Render one enabled output as a ``monitorrule=`` line (no newline)."""
    if not output.enabled:
        raise InvalidValue(f"{output.name} is disabled and has no rule line")
    fields = [
        ("name", output.name),
        ("width", str(output.width)),
        ("height", str(output.height)),
        ("refresh", format_mhz(output.refresh_mhz)),
        ("x", str(output.x)),
        ("y", str(output.y)),
        ("scale", format_scale(output.scale)),
        ("rr", str(output.transform.value)),
    ]
    fields.extend(output.extra.items())
    return f"{RULE_KEY}=" + ",".join(f"{k}:{v}" for k, v in fields)


def _int_field(values: dict[str, str], key: str) -> int:
    raw = values[key]
    if not _INT_RE.match(raw):
        raise InvalidValue(f"{key} must be an integer, got {raw!r}")
    return int(raw)


def deserialize(line: str, line_number: int | None = None) -> Output:
    """Parse a ``monitorrule=`` line.

    Fields are matched by key, so their order does not matter.  Unknown keys
    are kept in ``Output.extra`` and written back unchanged.
    """
    m = _RULE_RE.match(line.rstrip("\r\n"))
    if m is None:
        raise MalformedRule("not a monitorrule line", line, line_number)

    values: dict[str, str] = {}
    extra: dict[str, str] = {}
    for part in m.group(1).split(","):
        part = part.strip()
        key, sep, value = part.partition(":")
        key, value = key.strip(), value.strip()
        if not sep or not key:
            raise MalformedRule(f"field {part!r} is not key:value", line, line_number)
        if key in values or key in extra:
            raise MalformedRule(f"duplicate field {key!r}", line, line_number)
        if key in RULE_FIELDS:
            values[key] = value
        else:
            extra[key] = value

    missing = [k for k in RULE_FIELDS if k not in values]
    if missing:
        raise MalformedRule(f"missing field(s): {', '.join(missing)}", line, line_number)

    try:
        rr = _int_field(values, "rr")
        if not 0 <= rr <= 7:
            raise InvalidValue(f"rr must be between 0 and 7, got {rr}")
        return Output(
            name=values["name"],
            width=_int_field(values, "width"),
            height=_int_field(values, "height"),
            refresh_mhz=hz_to_mhz(values["refresh"]),
            x=_int_field(values, "x"),
            y=_int_field(values, "y"),
            scale=normalize_scale(values["scale"]),
            transform=Transform(rr),
            extra=extra,
            custom_mode=True,
            connected=False,
        )
    except InvalidValue as e:
        raise MalformedRule(str(e), line, line_number) from None


# ── Whole files ──────────────────────────────────────────────────────────

def parse_rules(text: str) -> tuple[list[Output], list[MalformedRule]]:
    """Parse every rule line in *text*.

    Other lines are ignored.  Malformed rules are skipped and returned
    alongside the outputs that did load; a later rule for the same name
    replaces an earlier one.
    """
    by_name: dict[str, Output] = {}
    errors: list[MalformedRule] = []
    for number, line in enumerate(text.splitlines(), start=1):
        if not _RULE_RE.match(line):
            continue
        try:
            out = deserialize(line, number)
        except MalformedRule as e:
            log.warning("Skipping malformed rule: %s", e)
            errors.append(e)
            continue
        if out.name in by_name:
            log.info("Rule for %s on line %d replaces an earlier one", out.name, number)
            del by_name[out.name]
        by_name[out.name] = out
    return list(by_name.values()), errors


def _read_config(path: Path) -> str:
    """Read a config file keeping line endings and undecodable bytes intact."""
    try:
        with open(path, encoding="utf-8", errors="surrogateescape", newline="") as f:
            return f.read()
    except FileNotFoundError:
        return ""


def load_rules(path: str | Path) -> tuple[list[Output], list[MalformedRule]]:
    """Load rules from a file; a missing file has no rules."""
    path = expand_path(path)
    try:
        text = _read_config(path)
    except OSError as e:
        raise ConfigIOError(f"Cannot read {path}: {e.strerror or e}", path) from e
    return parse_rules(text)


def render_block(session: LayoutSession) -> str:
    """Marker-delimited block with one rule per enabled output, by name."""
    lines = [BLOCK_BEGIN]
    lines.extend(serialize(o) for o in session.enabled_outputs())
    lines.append(BLOCK_END)
    return "\n".join(lines) + "\n"


def _find_block(lines: list[str]) -> tuple[int, int] | None:
    """Line range [begin, end] of our block, markers included."""
    begin = None
    for i, line in enumerate(lines):
        stripped = line.strip()
        if begin is None and stripped == BLOCK_BEGIN:
            begin = i
        elif begin is not None and stripped == BLOCK_END:
            return begin, i
    if begin is None:
        return None
    # Begin marker without an end: take the rule lines right after it
    end = begin
    while end + 1 < len(lines) and _CANONICAL_RE.match(lines[end + 1]):
        end += 1
    return begin, end


def update_config_text(text: str, block: str) -> str:
    """Put *block* into *text*, leaving every other line untouched.

    An existing marked block is replaced in place.  Without markers, bare
    rule lines in exactly our format are taken as an older block: they are
    removed and the block goes where the first of them was.  Otherwise the
    block is appended.
    """
    lines = text.splitlines(keepends=True)

    found = _find_block(lines)
    if found is not None:
        begin, end = found
        return "".join(lines[:begin]) + block + "".join(lines[end + 1:])

    rule_idx = [i for i, line in enumerate(lines) if _CANONICAL_RE.match(line)]
    if rule_idx:
        first = rule_idx[0]
        drop = set(rule_idx)
        kept = [line for i, line in enumerate(lines) if i not in drop]
        return "".join(kept[:first]) + block + "".join(kept[first:])

    if not text:
        return block
    if not text.endswith("\n"):
        text += "\n"
    return text + "\n" + block


def write_config(session: LayoutSession, target_path: str | Path) -> bool:
    """Write the session's rules into *target_path*.

    The file is replaced atomically, so it is never left half-written.
    Returns False when the content was already up to date.
    """
    path = expand_path(target_path)
    try:
        old = _read_config(path)
        new = update_config_text(old, render_block(session))
        if new == old and path.exists():
            log.info("%s is already up to date", path)
            return False
        backup_file(path)
        write_text_atomic(path, new, errors="surrogateescape")
    except OSError as e:
        raise ConfigIOError(f"Cannot write {path}: {e.strerror or e}", path) from e
    log.info("Wrote %d rule(s) to %s", len(session.enabled_outputs()), path)
    return True


def _same_file(a: Path, b: Path) -> bool:
    return os.path.normpath(os.path.abspath(a)) == os.path.normpath(os.path.abspath(b))


def has_source_include(text: str, config_path: Path, monitors_path: Path) -> bool:
    """True if an active ``source=`` line in *text* points at *monitors_path*."""
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        m = _SOURCE_RE.match(stripped)
        if m is None:
            continue
        target = expand_path(m.group(1))
        if not target.is_absolute():
            target = config_path.parent / target
        if _same_file(target, monitors_path):
            return True
    return False


def ensure_source_include(config_path: str | Path, monitors_path: str | Path) -> bool:
    """Make sure *config_path* sources *monitors_path* exactly once.

    Returns True if the config file was modified.
    """
    cfg = expand_path(config_path)
    target = expand_path(monitors_path)
    try:
        text = _read_config(cfg)
        if has_source_include(text, cfg, target):
            return False
        if text and not text.endswith("\n"):
            text += "\n"
        text += f"source={monitors_path}\n"
        backup_file(cfg)
        write_text_atomic(cfg, text, errors="surrogateescape")
    except OSError as e:
        raise ConfigIOError(f"Cannot update {cfg}: {e.strerror or e}", cfg) from e
    log.info("Added source=%s to %s", monitors_path, cfg)
    return True
