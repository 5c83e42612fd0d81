"""Two-stage interaction state: capture on the first press, execute on the second."""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from linux_helper.models import InteractionState

logger = logging.getLogger(__name__)


class Action(str, Enum):
    CAPTURE = "capture"
    EXECUTE = "execute"


class InteractionStateMachine:
    """Gates whether an activation captures or executes the pending suggestion.

    Thread safety: transitions take a lock, although the daemon only drives
    them from its single activation worker and the analysis callback.
    """

    def __init__(self, awaiting_timeout: float = 0.0,
                 on_change: Optional[Callable[[InteractionState], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.awaiting_timeout = awaiting_timeout
        self._on_change = on_change
        self._clock = clock
        self._lock = threading.Lock()
        self._state = InteractionState.IDLE
        self._awaiting_since: Optional[float] = None
        self._generation = 0

    @property
    def state(self) -> InteractionState:
        with self._lock:
            self._expire_locked()
            return self._state

    @property
    def generation(self) -> int:
        """Increments on every capture so late analysis results can be recognised."""
        with self._lock:
            return self._generation

    def _set_locked(self, new: InteractionState) -> Optional[InteractionState]:
        if new is self._state:
            return None
        logger.debug("Interaction state: %s -> %s", self._state.value, new.value)
        self._state = new
        self._awaiting_since = self._clock() if new is InteractionState.AWAITING else None
        return new

    def _expire_locked(self) -> None:
        if (self._state is InteractionState.AWAITING and self.awaiting_timeout > 0
                and self._clock() - self._awaiting_since >= self.awaiting_timeout):
            logger.info("No second activation within %.0fs, resetting", self.awaiting_timeout)
            self._state = InteractionState.IDLE
            self._awaiting_since = None

    def _notify(self, changed: Optional[InteractionState]) -> None:
        if changed is not None and self._on_change:
            self._on_change(changed)

    def begin_activation(self) -> tuple[Action, int]:
        """Decide what a qualifying activation does and transition accordingly.

        Returns the action and the capture generation it belongs to.
        """
        with self._lock:
            self._expire_locked()
            if self._state is InteractionState.AWAITING:
                changed = self._set_locked(InteractionState.IDLE)
                action = Action.EXECUTE
            else:
                self._generation += 1
                changed = self._set_locked(InteractionState.CAPTURING)
                action = Action.CAPTURE
            generation = self._generation
        self._notify(changed)
        return action, generation

    def finish(self, generation: Optional[int] = None) -> None:
        """Back to idle after a failed or finished capture of ``generation``."""
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            if self._state is not InteractionState.CAPTURING:
                return
            changed = self._set_locked(InteractionState.IDLE)
        self._notify(changed)

    def results_shown(self, generation: Optional[int] = None) -> bool:
        """Results for ``generation`` are on screen; the next press executes.

        Returns False when a newer capture has started since.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            if self._state is not InteractionState.CAPTURING:
                return False
            changed = self._set_locked(InteractionState.AWAITING)
        self._notify(changed)
        return True

    def reset(self) -> None:
        with self._lock:
            changed = self._set_locked(InteractionState.IDLE)
        self._notify(changed)
