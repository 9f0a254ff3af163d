"""
Pytest configuration and fixtures for mangodisplay tests.
"""

import copy
import json

import pytest

from mangodisplay.models import LayoutSession, Mode, Output
from mangodisplay.session import SessionController
from mangodisplay.tasks import BackgroundRunner, call_directly
from mangodisplay.utils import AppSettings


WLR_RANDR_TEXT = """\
DP-1 "Dell Inc. DELL U2720Q ABC123 (DP-1)"
  Make: Dell Inc.
  Model: DELL U2720Q
  Serial: ABC123
  Physical size: 600x340 mm
  Enabled: yes
  Modes:
    3840x2160 px, 60.000000 Hz (preferred, current)
    2560x1440 px, 59.951000 Hz
    1920x1080 px, 60.000000 Hz
    1920x1080 px, 50.000000 Hz
  Position: 0,0
  Transform: normal
  Scale: 2.000000
  Adaptive Sync: disabled
HDMI-A-1 "Samsung SyncMaster (HDMI-A-1)"
  Make: Samsung
  Model: SyncMaster
  Serial:
  Physical size: 530x300 mm
  Enabled: no
  Modes:
    1920x1080 px, 60.000000 Hz (preferred)
    1280x1024 px, 75.025000 Hz
  Position: 1920,0
  Transform: 90
  Scale: 1.000000
  Adaptive Sync: disabled
"""


WLR_RANDR_JSON = [
    {
        "name": "eDP-1",
        "description": "BOE 0x0BCA (eDP-1)",
        "make": "BOE",
        "model": "0x0BCA",
        "serial": "",
        "physical_size": {"width": 310, "height": 170},
        "enabled": True,
        "modes": [
            {"width": 2256, "height": 1504, "refresh": 59.999, "preferred": True, "current": True},
            {"width": 1920, "height": 1200, "refresh": 59.885, "preferred": False, "current": False},
        ],
        "position": {"x": 0, "y": 0},
        "transform": "normal",
        "scale": 1.5,
        "adaptive_sync": False,
    },
    {
        "name": "DP-3",
        "description": "LG Electronics LG ULTRAGEAR (DP-3)",
        "make": "LG Electronics",
        "model": "LG ULTRAGEAR",
        "serial": "0x0001",
        "physical_size": {"width": 600, "height": 340},
        "enabled": True,
        "modes": [
            {"width": 2560, "height": 1440, "refresh": 143.933, "preferred": True, "current": False},
            {"width": 2560, "height": 1440, "refresh": 59.951, "preferred": False, "current": True},
        ],
        "position": {"x": 1504, "y": -200},
        "transform": "flipped-270",
        "scale": 1.0,
        "adaptive_sync": True,
    },
]


class FakeAdapter:
    """Stands in for WlrRandr: serves canned outputs and records applies."""

    def __init__(self, outputs=None):
        self.outputs = outputs or []
        self.applied = []
        self.query_error = None
        self.apply_error = None

    def query_outputs(self):
        if self.query_error is not None:
            raise self.query_error
        return copy.deepcopy(self.outputs)

    def apply_live(self, session):
        if self.apply_error is not None:
            raise self.apply_error
        self.applied.append(session.snapshot())


@pytest.fixture(autouse=True)
def xdg_config_home(tmp_path, monkeypatch):
    """Keep settings.json and default paths out of the real home directory."""
    home = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home))
    return home


@pytest.fixture
def settings(tmp_path):
    return AppSettings(
        monitors_path=str(tmp_path / "mango" / "monitors.conf"),
        config_path=str(tmp_path / "mango" / "config.conf"),
    )


@pytest.fixture
def dp1():
    return Output(
        name="DP-1",
        width=1920,
        height=1080,
        refresh_mhz=144000,
        modes=[Mode(1920, 1080, 144000, preferred=True), Mode(1920, 1080, 60000), Mode(1280, 720, 60000)],
    )


@pytest.fixture
def hdmi1():
    return Output(
        name="HDMI-1",
        width=1920,
        height=1080,
        x=1920,
        modes=[Mode(1920, 1080, 60000, preferred=True), Mode(2560, 1440, 59951)],
    )


@pytest.fixture
def session(dp1, hdmi1):
    return LayoutSession.from_outputs([dp1, hdmi1])


@pytest.fixture
def adapter(dp1, hdmi1):
    return FakeAdapter([dp1, hdmi1])


@pytest.fixture
def controller(settings, adapter):
    ctl = SessionController(settings, adapter, BackgroundRunner(dispatch=call_directly))
    ctl.start_session()
    return ctl


@pytest.fixture
def randr_json_text():
    return json.dumps(WLR_RANDR_JSON)


@pytest.fixture
def randr_plain_text():
    return WLR_RANDR_TEXT
