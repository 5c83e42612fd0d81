"""Shared test fixtures for linux-helper tests."""

import os
import sys
from datetime import datetime, timezone

import pytest

# Add project root to path so `linux_helper` is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from linux_helper.models import CapturedFrame, PointerPosition, ScreenBounds  # noqa: E402


@pytest.fixture
def sample_config_dict():
    """Minimal daemon.json document using the camelCase keys."""
    return {
        "socketPath": "/tmp/test-linux-helper.sock",
        "logLevel": "debug",
        "hotkey": "MiddleClick",
        "autoStart": False,
        "popup": {"enabled": True, "followCursor": False, "width": 420},
    }


@pytest.fixture
def tmp_config_file(tmp_path, sample_config_dict):
    """Write a temporary daemon.json and return its path."""
    import json
    config_path = tmp_path / "daemon.json"
    config_path.write_text(json.dumps(sample_config_dict))
    return str(config_path)


@pytest.fixture
def sample_frame(tmp_path):
    raw = b"\x89PNG\r\n\x1a\nfake-image-bytes"
    path = tmp_path / "linux-helper-2024-01-01T00-00-00-000Z.png"
    path.write_bytes(raw)
    import base64
    return CapturedFrame(
        data_url="data:image/png;base64," + base64.b64encode(raw).decode(),
        filename=path.name,
        filepath=str(path),
        size=len(raw),
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def sample_position():
    return PointerPosition(100, 200, ScreenBounds(0, 0, 1920, 1080))


@pytest.fixture
def short_tmp():
    """A short directory for Unix socket paths (tmp_path can exceed the 108-byte limit)."""
    import shutil
    import tempfile
    path = tempfile.mkdtemp(prefix="lh-")
    yield path
    shutil.rmtree(path, ignore_errors=True)
