"""
Unit tests for the wlr-randr adapter: listing parsers, directives and process handling.
"""

import json
import subprocess
from unittest.mock import patch

import pytest

from mangodisplay.errors import PreviewApplyFailed, QueryFailed, QueryTimeout
from mangodisplay.models import LayoutSession, Mode, Output, Transform
from mangodisplay.wlr_randr import (
    FALLBACK_MODE,
    RandrRecord,
    WlrRandr,
    build_apply_arguments,
    output_directive,
    parse_json,
    parse_outputs,
    parse_text,
)


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(["wlr-randr"], returncode, stdout, stderr)


class TestParseText:
    """Plain wlr-randr listing."""

    def test_parses_all_outputs(self, randr_plain_text):
        records = parse_text(randr_plain_text)
        assert [r.name for r in records] == ["DP-1", "HDMI-A-1"]

    def test_enabled_output(self, randr_plain_text):
        rec = parse_text(randr_plain_text)[0]
        assert rec.description == "Dell Inc. DELL U2720Q ABC123 (DP-1)"
        assert rec.make == "Dell Inc."
        assert rec.physical_size == (600, 340)
        assert rec.enabled is True
        assert len(rec.modes) == 4
        assert rec.current_mode == Mode(3840, 2160, 60000)
        assert rec.modes[1].refresh_mhz == 59951
        assert rec.position == (0, 0)
        assert rec.transform is Transform.NORMAL
        assert rec.scale == 2.0
        assert rec.adaptive_sync is False

    def test_disabled_output_without_current_mode(self, randr_plain_text):
        out = parse_text(randr_plain_text)[1].to_output()
        assert not out.enabled
        assert out.mode_unknown
        assert (out.width, out.height, out.refresh_mhz) == (1920, 1080, 60000)
        assert out.transform is Transform.ROTATE_90
        assert out.position == (1920, 0)
        assert out.serial == ""

    def test_logical_size_from_scale(self, randr_plain_text):
        out = parse_text(randr_plain_text)[0].to_output()
        assert (out.logical_width, out.logical_height) == (1920, 1080)
        assert not out.mode_unknown

    def test_garbage_values_fall_back(self):
        text = (
            "DP-2\n"
            "  Enabled: yes\n"
            "  Modes:\n"
            "    1920x1080 px, 60.000000 Hz (current)\n"
            "  Position: here\n"
            "  Transform: sideways\n"
            "  Scale: 0\n"
        )
        out = parse_text(text)[0].to_output()
        assert out.position == (0, 0)
        assert out.transform is Transform.NORMAL
        assert out.scale == 1.0
        assert out.mode_unknown


class TestParseJson:
    """wlr-randr --json listing."""

    def test_parses_outputs(self, randr_json_text):
        outs = [r.to_output() for r in parse_json(randr_json_text)]
        edp, dp3 = outs
        assert edp.name == "eDP-1"
        assert edp.refresh_mhz == 59999
        assert edp.scale == 1.5
        assert edp.physical_size == (310, 170)
        assert dp3.refresh_mhz == 59951
        assert dp3.transform is Transform.FLIPPED_270
        assert dp3.position == (1504, -200)
        assert dp3.adaptive_sync is True
        assert (dp3.logical_width, dp3.logical_height) == (1440, 2560)

    def test_invalid_json(self):
        with pytest.raises(QueryFailed):
            parse_json("[{")

    def test_entries_without_name_are_skipped(self):
        assert [r.name for r in parse_json('[{"enabled": true}, {"name": "DP-1"}]')] == ["DP-1"]

    def test_wrongly_typed_fields_fall_back(self):
        text = json.dumps([
            {"name": "DP-1", "modes": 5, "enabled": True, "position": [0, 0],
             "physical_size": "600x340", "transform": 90, "scale": "big"},
            {"name": "DP-2", "modes": ["1920x1080", {"width": "wide"}], "position": {"x": True, "y": 0}},
            {"name": "DP-3", "modes": {"width": 1920}, "description": 7},
        ])
        outs = [r.to_output() for r in parse_json(text)]
        assert [o.name for o in outs] == ["DP-1", "DP-2", "DP-3"]
        dp1 = outs[0]
        assert dp1.enabled
        assert dp1.modes == []
        assert dp1.position == (0, 0)
        assert dp1.physical_size is None
        assert dp1.transform is Transform.NORMAL
        assert dp1.scale == 1.0
        assert all(o.mode_unknown for o in outs)
        assert outs[2].description == ""

    def test_format_detection(self, randr_json_text, randr_plain_text):
        assert parse_outputs(randr_json_text)[0].name == "eDP-1"
        assert parse_outputs(randr_plain_text)[0].name == "DP-1"


class TestRecordDefaults:
    """Missing fields become safe defaults instead of errors."""

    def test_empty_record(self):
        out = RandrRecord(name="DP-9").to_output()
        assert (out.width, out.height, out.refresh_mhz) == (
            FALLBACK_MODE.width, FALLBACK_MODE.height, FALLBACK_MODE.refresh_mhz,
        )
        assert out.mode_unknown
        assert not out.enabled

    def test_preferred_mode_used_when_no_current(self):
        rec = RandrRecord(name="DP-9", enabled=True, modes=[Mode(1280, 720, 60000), Mode(2560, 1440, 144000, True)])
        out = rec.to_output()
        assert (out.width, out.height) == (2560, 1440)


class TestDirectives:
    """Apply-command vocabulary."""

    def test_enabled_output_with_known_mode(self, dp1):
        assert output_directive(dp1) == [
            "--output", "DP-1", "--on",
            "--mode", "1920x1080@144.000000Hz",
            "--pos", "0,0",
            "--scale", "1.000000",
            "--transform", "normal",
        ]

    def test_custom_mode_and_flip(self):
        out = Output(name="VIRTUAL-1", width=2560, height=1080, refresh_mhz=75000, x=-2560, scale=1.25)
        out.set_rotation(180, flipped=True)
        args = output_directive(out)
        assert args[3:5] == ["--custom-mode", "2560x1080@75.000000Hz"]
        assert args[5:] == ["--pos", "-2560,0", "--scale", "1.250000", "--transform", "flipped-180"]

    def test_disabled_output(self):
        assert output_directive(Output(name="DP-2", enabled=False)) == ["--output", "DP-2", "--off"]

    def test_directives_sorted_by_name(self, dp1, hdmi1):
        session = LayoutSession.from_outputs([hdmi1, Output(name="DP-2", enabled=False), dp1])
        names = [d[1] for d in build_apply_arguments(session)]
        assert names == ["DP-1", "DP-2", "HDMI-1"]

    def test_command_line_skips_planned_outputs(self, session):
        session.add(Output(name="DP-5", x=3840, connected=False))
        cmd = WlrRandr(binary="/usr/bin/wlr-randr").command_line(session)
        assert cmd[0] == "/usr/bin/wlr-randr"
        assert "DP-5" not in cmd
        assert "HDMI-1" in cmd


class TestQueryOutputs:
    """Running the query command."""

    def test_json_listing(self, randr_json_text):
        with patch("mangodisplay.wlr_randr.subprocess.run", return_value=completed(stdout=randr_json_text)) as run:
            outs = WlrRandr(timeout=2).query_outputs()
        assert [o.name for o in outs] == ["eDP-1", "DP-3"]
        args, kwargs = run.call_args
        assert args[0] == ["wlr-randr", "--json"]
        assert kwargs["timeout"] == 2

    def test_falls_back_to_text_listing(self, randr_plain_text):
        results = [completed(1, stderr="unknown option --json"), completed(stdout=randr_plain_text)]
        with patch("mangodisplay.wlr_randr.subprocess.run", side_effect=results) as run:
            outs = WlrRandr().query_outputs()
        assert [o.name for o in outs] == ["DP-1", "HDMI-A-1"]
        assert run.call_args_list[1].args[0] == ["wlr-randr"]

    def test_timeout(self):
        err = subprocess.TimeoutExpired(["wlr-randr", "--json"], 5)
        with patch("mangodisplay.wlr_randr.subprocess.run", side_effect=err):
            with pytest.raises(QueryTimeout):
                WlrRandr().query_outputs()

    def test_missing_binary(self):
        with patch("mangodisplay.wlr_randr.subprocess.run", side_effect=FileNotFoundError("wlr-randr")):
            with pytest.raises(QueryFailed):
                WlrRandr().query_outputs()

    def test_failing_tool(self):
        with patch("mangodisplay.wlr_randr.subprocess.run", return_value=completed(1, stderr="no display")):
            with pytest.raises(QueryFailed, match="no display"):
                WlrRandr().query_outputs()


class TestApplyLive:
    """Live preview through wlr-randr."""

    def test_success_runs_full_command(self, session):
        with patch("mangodisplay.wlr_randr.subprocess.run", return_value=completed()) as run:
            WlrRandr().apply_live(session)
        cmd = run.call_args.args[0]
        assert cmd[:4] == ["wlr-randr", "--output", "DP-1", "--on"]
        assert cmd.count("--output") == 2

    def test_non_zero_exit_leaves_session_unchanged(self, session):
        before = repr(session)
        with patch("mangodisplay.wlr_randr.subprocess.run",
                   return_value=completed(1, stderr="failed to apply output configuration")):
            with pytest.raises(PreviewApplyFailed) as exc:
                WlrRandr().apply_live(session)
        assert exc.value.returncode == 1
        assert "failed to apply" in exc.value.diagnostic
        assert repr(session) == before

    def test_cancelled_configuration_with_zero_exit(self, session):
        with patch("mangodisplay.wlr_randr.subprocess.run",
                   return_value=completed(0, stderr="output configuration cancelled")):
            with pytest.raises(PreviewApplyFailed):
                WlrRandr().apply_live(session)

    def test_timeout(self, session):
        err = subprocess.TimeoutExpired(["wlr-randr"], 5, stderr=b"waiting")
        with patch("mangodisplay.wlr_randr.subprocess.run", side_effect=err):
            with pytest.raises(PreviewApplyFailed) as exc:
                WlrRandr().apply_live(session)
        assert exc.value.diagnostic == "waiting"

    def test_empty_session_runs_nothing(self):
        with patch("mangodisplay.wlr_randr.subprocess.run") as run:
            WlrRandr().apply_live(LayoutSession())
        run.assert_not_called()
