"""Thin wrappers around the X11 command-line utilities the daemon relies on."""

import re
import shutil
import subprocess
from typing import Optional

from linux_helper.models import ScreenBounds

QUERY_TIMEOUT = 5

_XRANDR_MONITOR = re.compile(
    r"^(\S+)\s+connected\s+(?:primary\s+)?(\d+)x(\d+)\+(\d+)\+(\d+)"
)
_XDPYINFO_DIMENSIONS = re.compile(r"dimensions:\s+(\d+)x(\d+)")
_XWININFO_WIDTH = re.compile(r"^\s*Width:\s+(\d+)", re.MULTILINE)
_XWININFO_HEIGHT = re.compile(r"^\s*Height:\s+(\d+)", re.MULTILINE)


def has_tool(name: str) -> bool:
    """Check whether an executable is on PATH."""
    return shutil.which(name) is not None


def run_query(args: list[str], timeout: float = QUERY_TIMEOUT) -> Optional[str]:
    """Run a query tool and return stdout, or None if it is missing or failed."""
    try:
        result = subprocess.run(
            args, capture_output=True, text=True, timeout=timeout,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def parse_mouse_location(output: str) -> Optional[tuple[int, int]]:
    """Parse ``xdotool getmouselocation --shell`` output into (x, y)."""
    values = {}
    for line in output.strip().splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()
    try:
        return int(values["X"]), int(values["Y"])
    except (KeyError, ValueError):
        return None


def parse_xrandr_monitors(output: str) -> list[ScreenBounds]:
    """Parse connected monitors (with a mode) from ``xrandr --query``."""
    monitors = []
    for line in output.splitlines():
        match = _XRANDR_MONITOR.match(line)
        if match:
            _, width, height, x, y = match.groups()
            monitors.append(ScreenBounds(int(x), int(y), int(width), int(height)))
    return monitors


def parse_xdpyinfo_dimensions(output: str) -> Optional[tuple[int, int]]:
    match = _XDPYINFO_DIMENSIONS.search(output)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def parse_xwininfo_geometry(output: str) -> Optional[tuple[int, int]]:
    width = _XWININFO_WIDTH.search(output)
    height = _XWININFO_HEIGHT.search(output)
    if not width or not height:
        return None
    return int(width.group(1)), int(height.group(1))


def monitor_at(monitors: list[ScreenBounds], x: int, y: int) -> Optional[ScreenBounds]:
    """Return the monitor containing the point, if any."""
    for monitor in monitors:
        if monitor.contains(x, y):
            return monitor
    return None


def query_mouse_location() -> Optional[tuple[int, int]]:
    output = run_query(["xdotool", "getmouselocation", "--shell"])
    return parse_mouse_location(output) if output else None


def query_monitors() -> list[ScreenBounds]:
    output = run_query(["xrandr", "--query"])
    return parse_xrandr_monitors(output) if output else []


def query_display_dimensions() -> Optional[tuple[int, int]]:
    output = run_query(["xdpyinfo"])
    return parse_xdpyinfo_dimensions(output) if output else None


def query_root_geometry() -> Optional[tuple[int, int]]:
    output = run_query(["xwininfo", "-root"])
    return parse_xwininfo_geometry(output) if output else None


def active_monitor() -> Optional[ScreenBounds]:
    """Bounds of the monitor under the pointer, or None on a single/unknown layout."""
    location = query_mouse_location()
    if location is None:
        return None
    return monitor_at(query_monitors(), *location)
