"""Popup overlay behaviour, independent of the toolkit that draws it.

PopupStateMachine consumes decoded directives and drives a renderer (the
GTK window in overlay.py, a mock in tests) and a scheduler for the fade
animation. It answers every directive with an ack record.

Placement: the popup opens 10 px off the pointer, on the side of the
pointer facing the centre of its display, below the pointer when it sits in
the top strip of the display, and is then clamped inside the display with
a 10 px margin.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from linux_helper.config import PopupSettings
from linux_helper.errors import MessageError
from linux_helper.messages import (
    Directive, HideDirective, PositionDirective, ShowDirective, UpdateDirective,
    decode_directive,
)
from linux_helper.models import (
    PointerPosition, PopupStatus, PopupViewState, ScreenBounds, Suggestion,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Linux Helper"

POINTER_OFFSET = 10
EDGE_MARGIN = 10
TOP_ZONE = 100  # pointer this close to the top edge opens the popup downwards

FADE_IN_MS = 200
FADE_IN_STEPS = 10
FADE_OUT_MS = 150
FADE_OUT_STEPS = 8


class SlideDirection(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    DOWN = "down"


def compute_slide_direction(pointer: PointerPosition, screen: ScreenBounds) -> SlideDirection:
    centre_x = screen.x + screen.width / 2
    centre_y = screen.y + screen.height / 2
    direction = SlideDirection.LEFT if pointer.x > centre_x else SlideDirection.RIGHT
    if pointer.y < centre_y and pointer.y < screen.y + TOP_ZONE:
        direction = SlideDirection.DOWN
    return direction


def compute_popup_position(
    pointer: PointerPosition,
    width: int,
    height: int,
    screen: ScreenBounds,
    offset: int = POINTER_OFFSET,
    margin: int = EDGE_MARGIN,
) -> tuple[int, int]:
    """Top-left corner for a ``width`` x ``height`` popup near ``pointer``.

    The result keeps the popup inside ``screen`` whenever it fits.
    """
    x = pointer.x + offset
    y = pointer.y + offset
    if compute_slide_direction(pointer, screen) is SlideDirection.LEFT:
        x = pointer.x - width - offset

    right = screen.x + screen.width
    bottom = screen.y + screen.height
    if x + width > right:
        x = right - width - margin
    if x < screen.x:
        x = screen.x + margin
    if y + height > bottom:
        y = bottom - height - margin
    if y < screen.y:
        y = screen.y + margin
    return int(x), int(y)


class PopupRenderer:
    """What the state machine needs from a window. overlay.GtkRenderer implements it."""

    def size(self) -> tuple[int, int]:
        raise NotImplementedError

    def screen_at(self, x: int, y: int) -> ScreenBounds:
        raise NotImplementedError

    def pointer(self) -> Optional[PointerPosition]:
        return None

    def move(self, x: int, y: int) -> None:
        raise NotImplementedError

    def set_opacity(self, opacity: float) -> None:
        raise NotImplementedError

    def show(self) -> None:
        raise NotImplementedError

    def hide(self) -> None:
        raise NotImplementedError

    def render(self, view: PopupViewState) -> None:
        raise NotImplementedError


class Scheduler:
    """Repeating timers. ``callback`` returns True to keep running."""

    def every(self, interval_ms: int, callback: Callable[[], bool]):
        raise NotImplementedError

    def cancel(self, handle) -> None:
        raise NotImplementedError


class PopupStateMachine:
    """Applies show/update/position/hide directives to a renderer.

    Not thread safe: the popup process calls it from the toolkit's main loop
    only.
    """

    def __init__(
        self,
        renderer: PopupRenderer,
        scheduler: Scheduler,
        settings: Optional[PopupSettings] = None,
        on_execute: Optional[Callable[[Suggestion], Optional[str]]] = None,
    ):
        self.renderer = renderer
        self.scheduler = scheduler
        self.settings = settings or PopupSettings()
        self.on_execute = on_execute
        self.view = PopupViewState()
        self.pointer: Optional[PointerPosition] = None
        self.visible = False
        self._fade = None

    # -- entry points --

    def handle_record(self, raw) -> dict:
        """Decode one wire record and apply it. Always returns an ack."""
        try:
            directive = decode_directive(raw)
        except MessageError as e:
            logger.warning("Rejected directive: %s", e)
            return {"success": False, "error": str(e)}
        return self.handle(directive)

    def handle(self, directive: Directive) -> dict:
        try:
            if isinstance(directive, ShowDirective):
                return self._show(directive)
            if isinstance(directive, UpdateDirective):
                return self._update(directive)
            if isinstance(directive, PositionDirective):
                return self._position(directive)
            if isinstance(directive, HideDirective):
                return self._hide()
        except (ValueError, TypeError) as e:
            logger.warning("Invalid directive data: %s", e)
            return {"success": False, "error": str(e)}
        return {"success": False, "error": "Unknown message type"}

    def dismiss(self) -> None:
        """User closed the popup (Escape)."""
        self._hide()

    # -- directives --

    def _show(self, directive: ShowDirective) -> dict:
        view = PopupViewState(status=PopupStatus.LOADING, title=DEFAULT_TITLE)
        view.merge(directive.state)
        self.view = view

        if directive.position is not None:
            self.pointer = directive.position
        elif self.pointer is None:
            self.pointer = self.renderer.pointer()

        self._place()
        self.renderer.render(self.view)
        if not self.visible:
            self._cancel_fade()
            self.renderer.set_opacity(0.0)
            self.renderer.show()
            self.visible = True
            self._start_fade(FADE_IN_MS, FADE_IN_STEPS, fade_in=True)
        return {"success": True, "visible": True}

    def _update(self, directive: UpdateDirective) -> dict:
        if directive.execute_first and not self.visible:
            # Dismissed or never shown
            logger.info("Ignoring execute request while the popup is hidden")
            return {"success": False, "error": "popup not visible"}
        self.view.merge(directive.data)
        if directive.execute_first:
            self._execute_first()
        else:
            self.renderer.render(self.view)
        return {"success": True, "state": self.view.to_dict()}

    def _position(self, directive: PositionDirective) -> dict:
        screen = self.pointer.screen if self.pointer else None
        if screen is not None and not screen.contains(directive.x, directive.y):
            screen = None  # moved to another display, re-query on placement
        self.pointer = PointerPosition(directive.x, directive.y, screen)
        if self.visible and self.settings.follow_cursor:
            self._place()
        return {"success": True}

    def _hide(self) -> dict:
        if not self.visible:
            return {"success": True, "visible": False}
        self.visible = False
        self._cancel_fade()
        self._start_fade(FADE_OUT_MS, FADE_OUT_STEPS, fade_in=False)
        return {"success": True, "visible": False}

    def _execute_first(self) -> None:
        if not self.view.suggestions:
            self._show_error("No suggestion to execute")
            return
        suggestion = self.view.suggestions[0]
        if self.on_execute is None:
            self._show_error("Command execution is not available")
            return
        error = self.on_execute(suggestion)
        if error:
            self._show_error(error)
            return
        self._hide()

    def _show_error(self, message: str) -> None:
        self.view.status = PopupStatus.ERROR
        self.view.error = message
        self.renderer.render(self.view)

    # -- placement and animation --

    def _place(self) -> None:
        if self.pointer is None:
            return
        screen = self.pointer.screen or self.renderer.screen_at(self.pointer.x, self.pointer.y)
        width, height = self.renderer.size()
        x, y = compute_popup_position(self.pointer, width, height, screen)
        self.renderer.move(x, y)

    def _cancel_fade(self) -> None:
        if self._fade is not None:
            self.scheduler.cancel(self._fade)
            self._fade = None

    def _start_fade(self, duration_ms: int, steps: int, fade_in: bool) -> None:
        count = 0

        def step() -> bool:
            nonlocal count
            count += 1
            progress = count / steps
            self.renderer.set_opacity(progress if fade_in else 1.0 - progress)
            if count < steps:
                return True
            self._fade = None
            if not fade_in:
                self.renderer.hide()
            return False

        self._fade = self.scheduler.every(max(1, duration_ms // steps), step)
