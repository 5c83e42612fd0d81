"""Daemon-side owner of the popup process and its channel."""

import logging
import subprocess
import sys
import time
from typing import Callable, Optional

from linux_helper import kill_proc
from linux_helper.channel import PopupChannel
from linux_helper.config import DaemonConfig
from linux_helper.errors import ChannelError, PopupError
from linux_helper.messages import (
    HideDirective, PositionDirective, ShowDirective, UpdateDirective,
)
from linux_helper.models import Analysis, PointerPosition, PopupStatus
from linux_helper.popup import DEFAULT_TITLE

logger = logging.getLogger(__name__)


def popup_command(socket_path: str, config_path: Optional[str] = None) -> list:
    cmd = [sys.executable, "-m", "linux_helper.overlay", "--socket", socket_path]
    if config_path:
        cmd += ["--config", config_path]
    return cmd


class PopupController:
    """Spawns the popup process and translates daemon intents into directives."""

    def __init__(
        self,
        config: DaemonConfig,
        config_path: Optional[str] = None,
        channel: Optional[PopupChannel] = None,
        popen: Callable = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.config_path = config_path
        self.channel = channel or PopupChannel(
            config.popup_socket_path,
            attempts=config.popup_connect_attempts,
            interval=config.popup_connect_interval,
        )
        self._popen = popen
        self._sleep = sleep
        self._process: Optional[subprocess.Popen] = None
        self.initialized = False

    @property
    def available(self) -> bool:
        return self.initialized and self.channel.is_connected

    def initialize(self) -> None:
        """Start the popup process and connect to it.

        Raises PopupError when the process cannot be started or its socket
        never accepts within the retry budget.
        """
        if self.initialized:
            return
        cmd = popup_command(self.config.popup_socket_path, self.config_path)
        logger.info("Starting popup process: %s", " ".join(cmd))
        try:
            self._process = self._popen(
                cmd, stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            raise PopupError(f"failed to start popup process: {e}") from e

        # Give the process a moment to create its socket
        self._sleep(self.config.popup_connect_interval)
        try:
            self.channel.connect_with_retry(sleep=self._sleep)
        except ChannelError as e:
            self._stop_process()
            raise PopupError(str(e)) from e
        self.initialized = True
        logger.info("Popup controller initialized")

    # -- intents --

    def show_loading_at(self, position: PointerPosition) -> bool:
        return self.channel.send_directive(ShowDirective(
            state={"status": PopupStatus.LOADING.value, "title": DEFAULT_TITLE,
                   "content": "Analyzing screenshot..."},
            position=position,
        ))

    def show_results(self, analysis: Analysis) -> bool:
        return self.channel.send_directive(UpdateDirective(data={
            "status": PopupStatus.SUCCESS.value,
            "content": analysis.summary,
            "suggestions": [
                {"title": s.title, "command": s.command, "description": s.description}
                for s in analysis.suggestions
            ],
            "error": None,
        }))

    def show_error(self, message: str) -> bool:
        return self.channel.send_directive(UpdateDirective(data={
            "status": PopupStatus.ERROR.value, "error": message,
        }))

    def execute_first(self) -> bool:
        return self.channel.send_directive(UpdateDirective(execute_first=True))

    def update_position(self, x: int, y: int) -> bool:
        return self.channel.send_directive(PositionDirective(x, y))

    def hide(self) -> bool:
        return self.channel.send_directive(HideDirective())

    # -- teardown --

    def _stop_process(self) -> None:
        proc, self._process = self._process, None
        if proc is None:
            return
        try:
            proc.terminate()
            proc.wait(timeout=2)
        except subprocess.TimeoutExpired:
            kill_proc(proc)
        except ProcessLookupError:
            pass

    def cleanup(self) -> None:
        self.channel.close()
        self._stop_process()
        self.initialized = False
