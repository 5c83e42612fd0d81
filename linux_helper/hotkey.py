"""Activation detection from the X input event stream.

``xinput test-xi2 --root`` prints every XI2 event on the root window as a
block of lines:

    EVENT type 4 (ButtonPress)
        device: 11 (11)
        time: 123456
        detail: 9
        ...

The monitor keeps that process running, feeds its stdout through
XinputEventParser and fires the callback once per press of the configured
button, debounced so the raw/core event pair of one click counts once.
"""

import logging
import re
import subprocess
import threading
import time
from typing import Callable, Optional

from linux_helper import kill_proc
from linux_helper.models import ActivationControl, ControlKind

logger = logging.getLogger(__name__)

XINPUT_COMMAND = ["xinput", "test-xi2", "--root"]

DEFAULT_HOTKEY = "ForwardButton"
DEFAULT_DEBOUNCE_MS = 500
DEFAULT_RESTART_DELAY = 5.0

# Map config names to X pointer button codes
BUTTON_MAP = {
    "LeftClick": 1,
    "MiddleClick": 2,
    "RightClick": 3,
    "ScrollUp": 4,
    "ScrollDown": 5,
    "BackButton": 8,
    "ForwardButton": 9,
}

_NUMBERED_BUTTON = re.compile(r"^Button(\d+)$")
_EVENT_HEADER = re.compile(r"^EVENT type \d+ \((\w+)\)")
_DETAIL = re.compile(r"^\s*detail:\s*(\d+)")


def resolve_control(name: str) -> ActivationControl:
    """Turn a configured hotkey name into a button or key control."""
    if name in BUTTON_MAP:
        return ActivationControl(name, ControlKind.BUTTON, button=BUTTON_MAP[name])
    match = _NUMBERED_BUTTON.match(name)
    if match:
        return ActivationControl(name, ControlKind.BUTTON, button=int(match.group(1)))
    return ActivationControl(name, ControlKind.KEY, key=name)


class XinputEventParser:
    """Line-by-line parser that reports the button code of each press event."""

    PRESS_EVENTS = ("ButtonPress", "RawButtonPress")

    def __init__(self):
        self._in_press = False

    def feed(self, line: str) -> Optional[int]:
        header = _EVENT_HEADER.match(line)
        if header:
            self._in_press = header.group(1) in self.PRESS_EVENTS
            return None
        if self._in_press:
            detail = _DETAIL.match(line)
            if detail:
                # Only the first detail line of a block is the button
                self._in_press = False
                return int(detail.group(1))
        return None


class HotkeyMonitor:
    """Watches the input stream for presses of one configured control."""

    def __init__(
        self,
        hotkey: str,
        on_activate: Callable[[], None],
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        restart_delay: float = DEFAULT_RESTART_DELAY,
        command: Optional[list] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.control = resolve_control(hotkey)
        self.on_activate = on_activate
        self.debounce = debounce_ms / 1000.0
        self.restart_delay = restart_delay
        self._command = command or XINPUT_COMMAND
        self._clock = clock
        self._lock = threading.RLock()
        self._process: Optional[subprocess.Popen] = None
        self._restart_timer: Optional[threading.Timer] = None
        self._last_fire: Optional[float] = None
        self._running = False
        self.available = True

    @property
    def hotkey(self) -> str:
        return self.control.name

    @property
    def is_monitoring(self) -> bool:
        with self._lock:
            return self._process is not None

    def start(self) -> None:
        """Begin monitoring the configured control."""
        with self._lock:
            self._running = True
            self._start_locked()

    def stop(self) -> None:
        """Stop monitoring. The subprocess is killed, not asked politely."""
        with self._lock:
            self._running = False
            self._cancel_restart()
            self._kill_locked()

    def update_control(self, hotkey: str) -> None:
        """Swap the monitored control; the old subscription never outlives this call."""
        with self._lock:
            was_running = self._running
            self._cancel_restart()
            self._kill_locked()
            self.control = resolve_control(hotkey)
            self._last_fire = None
            logger.info("Activation control set to %s", hotkey)
            if was_running:
                self._start_locked()

    def _start_locked(self) -> None:
        if self.control.kind is not ControlKind.BUTTON:
            logger.warning("Keyboard hotkey '%s' is not supported by the input monitor; "
                           "activation detection disabled until a pointer button is set",
                           self.control.name)
            return
        self._spawn_locked(self.control.button)

    def _spawn_locked(self, button: int) -> None:
        logger.info("Starting mouse button monitoring for button %d", button)
        try:
            proc = subprocess.Popen(
                self._command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError:
            self.available = False
            logger.warning("xinput not found; activation detection unavailable")
            return
        except OSError as e:
            logger.warning("Failed to spawn xinput: %s", e)
            self._schedule_restart_locked()
            return

        self.available = True
        self._process = proc
        threading.Thread(target=self._read_events, args=(proc, button), daemon=True).start()
        threading.Thread(target=self._read_errors, args=(proc,), daemon=True).start()

    def _kill_locked(self) -> None:
        proc, self._process = self._process, None
        if kill_proc(proc):
            try:
                proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("xinput did not exit after SIGKILL")
            logger.info("Stopped previous hotkey monitoring process")

    def _cancel_restart(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

    def _schedule_restart_locked(self) -> None:
        if not self._running or self._restart_timer is not None:
            return
        logger.info("Restarting mouse monitoring in %.0f seconds...", self.restart_delay)
        timer = threading.Timer(self.restart_delay, self._restart)
        timer.daemon = True
        self._restart_timer = timer
        timer.start()

    def _restart(self) -> None:
        with self._lock:
            self._restart_timer = None
            if self._running and self._process is None:
                self._start_locked()

    def _read_events(self, proc: subprocess.Popen, button: int) -> None:
        parser = XinputEventParser()
        for line in proc.stdout:
            code = parser.feed(line)
            if code is not None and code == button:
                self.handle_press()

        returncode = proc.wait()
        with self._lock:
            if self._process is not proc:
                return  # killed on purpose by stop() or update_control()
            self._process = None
            if returncode < 0:
                logger.warning("xinput exited on signal %d", -returncode)
            else:
                logger.warning("xinput exited with code %d", returncode)
            self._schedule_restart_locked()

    def _read_errors(self, proc: subprocess.Popen) -> None:
        for line in proc.stderr:
            line = line.strip()
            if line:
                logger.error("xinput stderr: %s", line)

    def handle_press(self) -> bool:
        """Fire the callback unless a press was accepted within the debounce window."""
        now = self._clock()
        with self._lock:
            if self._last_fire is not None and now - self._last_fire < self.debounce:
                return False
            self._last_fire = now
        logger.info("Hotkey press detected (%s)", self.control.name)
        try:
            self.on_activate()
        except Exception:
            logger.exception("Error in activation callback")
        return True
