"""Pointer position lookup with an xdotool > xwininfo > fixed-position chain."""

import logging
from typing import Callable, Optional

from linux_helper import x11
from linux_helper.models import PointerPosition, ScreenBounds

logger = logging.getLogger(__name__)

# Used when no query tool exists: centre of an assumed 1920x1080 display
FALLBACK_SCREEN = ScreenBounds(0, 0, 1920, 1080)
FALLBACK_POSITION = PointerPosition(960, 540, FALLBACK_SCREEN)


def query_xdotool() -> Optional[PointerPosition]:
    """Precise pointer location, plus the monitor (or whole display) it sits on."""
    location = x11.query_mouse_location()
    if location is None:
        return None
    x, y = location
    screen = x11.monitor_at(x11.query_monitors(), x, y)
    if screen is None:
        dims = x11.query_display_dimensions()
        if dims:
            screen = ScreenBounds(0, 0, dims[0], dims[1])
    return PointerPosition(x, y, screen)


def query_xwininfo() -> Optional[PointerPosition]:
    """Approximation: xwininfo only knows the root window, so use its centre."""
    geometry = x11.query_root_geometry()
    if geometry is None:
        return None
    width, height = geometry
    return PointerPosition(width // 2, height // 2, ScreenBounds(0, 0, width, height))


# (method name, binary to probe, query)
STRATEGIES = (
    ("xdotool", "xdotool", query_xdotool),
    ("xwininfo", "xwininfo", query_xwininfo),
)


class CursorTracker:
    """Returns PointerPositions and remembers the last one a query produced."""

    def __init__(self, strategies=STRATEGIES, has_tool: Callable[[str], bool] = x11.has_tool):
        self._strategies = [(name, query) for name, binary, query in strategies
                            if has_tool(binary)]
        self.last_position: PointerPosition = FALLBACK_POSITION
        if self._strategies:
            logger.debug("Cursor tracking via: %s",
                         ", ".join(name for name, _ in self._strategies))
        else:
            logger.warning("No cursor tracking tools found (install xdotool), "
                           "using fallback position")

    @property
    def tracking_method(self) -> str:
        return self._strategies[0][0] if self._strategies else "fallback"

    def is_tracking_available(self) -> bool:
        return bool(self._strategies)

    def get_current_position(self) -> PointerPosition:
        """Query the pointer, stopping at the first strategy that answers.

        Never raises. With no tools installed this is the fixed fallback
        position; when the tools exist but every query fails, the last known
        position (initially the fallback) is returned unchanged.
        """
        if not self._strategies:
            return FALLBACK_POSITION
        for name, query in self._strategies:
            try:
                position = query()
            except (OSError, ValueError) as e:
                logger.debug("Cursor query via %s failed: %s", name, e)
                continue
            if position is not None:
                self.last_position = position
                return position
        logger.debug("All cursor queries failed, using last known position")
        return self.last_position

    def get_screen_info(self) -> Optional[ScreenBounds]:
        """Dimensions of the whole X display, if xdpyinfo is available."""
        dims = x11.query_display_dimensions()
        if dims is None:
            return None
        return ScreenBounds(0, 0, dims[0], dims[1])
