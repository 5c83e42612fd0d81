"""Typing a command line into whichever window has keyboard focus."""

import logging
import time
from typing import Callable

from pynput.keyboard import Controller, Key

logger = logging.getLogger(__name__)

SUBMIT_PAUSE_MIN = 0.1
SUBMIT_PAUSE_PER_CHAR = 0.002


def normalize_command(command: str) -> str:
    """Collapse a suggestion onto one line so typing it can never run it early."""
    return " ".join(command.replace("\r", "\n").split("\n")).strip()


class CommandTyper:
    """Simulated keystrokes through pynput, one character at a time."""

    def __init__(
        self,
        char_delay: float = 0.005,
        press_enter: bool = False,
        controller=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.char_delay = char_delay
        self.press_enter = press_enter
        self._controller = controller or Controller()
        self._sleep = sleep

    def type_command(self, command: str) -> int:
        """Type ``command`` and return the number of characters sent."""
        line = normalize_command(command)
        if not line:
            return 0
        for char in line:
            self._controller.type(char)
            if self.char_delay > 0:
                self._sleep(self.char_delay)
        if self.press_enter:
            # Terminal needs to render the line before Enter lands
            self._sleep(max(SUBMIT_PAUSE_MIN, len(line) * SUBMIT_PAUSE_PER_CHAR))
            self._tap(Key.enter)
        logger.debug("Typed %d characters%s", len(line), " + Enter" if self.press_enter else "")
        return len(line)

    def _tap(self, key) -> None:
        self._controller.press(key)
        self._controller.release(key)
