"""Screenshot capture through whichever external utility is installed.

Tools are probed once, in priority order, when the manager is built:

    gnome-screenshot > import (ImageMagick) > scrot > xwd (+ convert)

Each capture writes a PNG into the capture directory and returns a
CapturedFrame carrying the file as a base64 data URL. Failures never raise:
the caller gets None and the reason is logged.
"""

import base64
import logging
import os
import subprocess
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from linux_helper import x11
from linux_helper.config import DEFAULT_SCREENSHOT_DIR
from linux_helper.models import CapturedFrame, ScreenBounds

logger = logging.getLogger(__name__)

FILE_PREFIX = "linux-helper-"
REGION_PREFIX = "linux-helper-region-"
FILE_SUFFIX = ".png"
DEFAULT_MAX_AGE = 7 * 24 * 60 * 60  # seconds


def _geometry(b: ScreenBounds) -> str:
    return f"{b.width}x{b.height}+{b.x}+{b.y}"


def _gnome_full(path, bounds):
    # gnome-screenshot has no non-interactive crop; always the whole desktop
    return [["gnome-screenshot", "-f", path]]


def _gnome_region(path, bounds):
    return [["gnome-screenshot", "-a", "-f", path]]


def _import_full(path, bounds):
    if bounds:
        return [["import", "-window", "root", "-crop", _geometry(bounds), path]]
    return [["import", "-window", "root", path]]


def _scrot_full(path, bounds):
    if bounds:
        return [["scrot", "-a", f"{bounds.x},{bounds.y},{bounds.width},{bounds.height}", path]]
    return [["scrot", path]]


def _xwd_full(path, bounds):
    dump = path[: -len(FILE_SUFFIX)] + ".xwd" if path.endswith(FILE_SUFFIX) else path + ".xwd"
    convert = ["convert", dump]
    if bounds:
        convert += ["-crop", _geometry(bounds)]
    return [["xwd", "-root", "-out", dump], convert + [path]]


@dataclass(frozen=True)
class CaptureTool:
    """One screenshot utility: how to grab the screen and, if it can, a region."""
    name: str
    full: Callable[[str, Optional[ScreenBounds]], list]
    region: Optional[Callable[[str, ScreenBounds], list]] = None
    requires: tuple = ()


# Priority order matters: first installed tool wins
CAPTURE_TOOLS = (
    CaptureTool("gnome-screenshot", _gnome_full, region=_gnome_region),
    CaptureTool("import", _import_full, region=_import_full),
    CaptureTool("scrot", _scrot_full, region=_scrot_full),
    CaptureTool("xwd", _xwd_full, requires=("convert",)),
)


def detect_capture_tool(tools=CAPTURE_TOOLS, has_tool=x11.has_tool) -> Optional[CaptureTool]:
    """Return the first tool whose executables are all installed."""
    for tool in tools:
        if has_tool(tool.name) and all(has_tool(dep) for dep in tool.requires):
            logger.debug("Found screenshot tool: %s", tool.name)
            return tool
    return None


def _timestamp_slug(ts: datetime) -> str:
    """ISO-8601 UTC with ':' and '.' made filename-safe."""
    return ts.strftime("%Y-%m-%dT%H-%M-%S-") + f"{ts.microsecond // 1000:03d}Z"


def encode_data_url(raw: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"


class ScreenshotManager:
    """Produces CapturedFrames with the screenshot tool detected at construction."""

    def __init__(self, screenshot_dir: str = DEFAULT_SCREENSHOT_DIR, timeout: float = 10.0,
                 tool: Optional[CaptureTool] = None, detect: bool = True):
        self.timeout = timeout
        self.screenshot_dir = self._ensure_directory(screenshot_dir)
        self.tool = tool if tool is not None else (detect_capture_tool() if detect else None)
        if self.tool is None:
            logger.warning("No screenshot tool found (install gnome-screenshot, "
                           "imagemagick, scrot or x11-apps)")

    @staticmethod
    def _ensure_directory(path: str) -> str:
        try:
            os.makedirs(path, exist_ok=True)
            return path
        except OSError as e:
            logger.error("Failed to create screenshot directory %s: %s", path, e)
            return tempfile.gettempdir()

    @property
    def tool_name(self) -> Optional[str]:
        return self.tool.name if self.tool else None

    def _new_path(self, prefix: str) -> tuple[str, str, datetime]:
        timestamp = datetime.now(timezone.utc)
        filename = f"{prefix}{_timestamp_slug(timestamp)}{FILE_SUFFIX}"
        return filename, os.path.join(self.screenshot_dir, filename), timestamp

    def _run(self, commands: list) -> bool:
        """Run each command in turn; any failure or timeout fails the capture."""
        for args in commands:
            try:
                result = subprocess.run(
                    args, capture_output=True, text=True, timeout=self.timeout,
                )
            except subprocess.TimeoutExpired:
                logger.warning("Screenshot command timed out after %ss: %s",
                               self.timeout, " ".join(args))
                return False
            except OSError as e:
                logger.warning("Screenshot command failed to start: %s (%s)", args[0], e)
                return False
            if result.returncode != 0:
                logger.warning("Screenshot command failed (exit %s): %s %s",
                               result.returncode, " ".join(args), result.stderr.strip())
                return False
        return True

    def _build_frame(self, filename: str, filepath: str, timestamp: datetime) -> Optional[CapturedFrame]:
        # A tool can exit 0 without writing anything
        if not os.path.exists(filepath):
            logger.warning("Screenshot file was not created: %s", filepath)
            return None
        try:
            with open(filepath, "rb") as f:
                raw = f.read()
        except OSError as e:
            logger.warning("Failed to read screenshot %s: %s", filepath, e)
            return None
        return CapturedFrame(
            data_url=encode_data_url(raw),
            filename=filename,
            filepath=filepath,
            size=len(raw),
            timestamp=timestamp,
        )

    def _cleanup_intermediates(self, filepath: str) -> None:
        dump = filepath[: -len(FILE_SUFFIX)] + ".xwd"
        if os.path.exists(dump):
            try:
                os.remove(dump)
            except OSError:
                pass

    def capture_active_monitor(self, monitor: Optional[ScreenBounds] = None) -> Optional[CapturedFrame]:
        """Capture the monitor under the pointer (or the whole desktop).

        Returns None when no tool is installed, the tool fails or times out,
        or it produced no file.
        """
        if self.tool is None:
            logger.warning("Screenshot capture failed: no suitable screenshot tool found")
            return None

        if monitor is None:
            monitor = x11.active_monitor()

        filename, filepath, timestamp = self._new_path(FILE_PREFIX)
        ok = self._run(self.tool.full(filepath, monitor))
        self._cleanup_intermediates(filepath)
        if not ok:
            return None

        frame = self._build_frame(filename, filepath, timestamp)
        if frame:
            logger.info("Screenshot captured: %s (%d bytes, %s)",
                        filepath, frame.size, self.tool.name)
        return frame

    def capture_region(self, x: int, y: int, width: int, height: int) -> Optional[CapturedFrame]:
        """Capture a rectangle; tools without a region mode capture the full frame."""
        if self.tool is None:
            logger.warning("Region capture failed: no suitable screenshot tool found")
            return None
        if self.tool.region is None:
            logger.debug("%s has no region mode, capturing full frame", self.tool.name)
            return self.capture_active_monitor()

        filename, filepath, timestamp = self._new_path(REGION_PREFIX)
        if not self._run(self.tool.region(filepath, ScreenBounds(x, y, width, height))):
            return None

        frame = self._build_frame(filename, filepath, timestamp)
        if frame:
            logger.info("Region screenshot captured: %s", filepath)
        return frame

    def cleanup_old_screenshots(self, max_age: float = DEFAULT_MAX_AGE) -> int:
        """Delete captures older than ``max_age`` seconds. Returns how many went.

        Only files carrying our prefix are touched; the directory may hold the
        user's own pictures.
        """
        try:
            names = os.listdir(self.screenshot_dir)
        except OSError as e:
            logger.error("Failed to list screenshot directory: %s", e)
            return 0

        now = time.time()
        cleaned = 0
        for name in names:
            if not (name.startswith(FILE_PREFIX) and name.endswith(FILE_SUFFIX)):
                continue
            path = os.path.join(self.screenshot_dir, name)
            try:
                if not os.path.isfile(path):
                    continue
                if now - os.path.getmtime(path) > max_age:
                    os.remove(path)
                    cleaned += 1
            except OSError as e:
                logger.warning("Failed to remove old screenshot %s: %s", path, e)

        if cleaned:
            logger.info("Cleaned up %d old screenshots", cleaned)
        return cleaned
