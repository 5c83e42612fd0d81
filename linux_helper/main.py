"""Main daemon for Linux Helper - ties all components together."""

import argparse
import logging
import os
import signal
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from linux_helper import __version__
from linux_helper.analyzer import CommandAnalyzer
from linux_helper.channel import HostChannel
from linux_helper.config import CONFIG_PATH, DaemonConfig, load_config
from linux_helper.control import ControlServer
from linux_helper.cursor import CursorTracker
from linux_helper.errors import AnalysisError, LockError, PopupError
from linux_helper.hotkey import HotkeyMonitor
from linux_helper.lock import LockFile
from linux_helper.log import setup_logging, shutdown_logging
from linux_helper.messages import encode_activation_event
from linux_helper.models import ActivationEvent, Analysis, InteractionState
from linux_helper.popup_controller import PopupController
from linux_helper.screenshot import ScreenshotManager
from linux_helper.state import Action, InteractionStateMachine

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class HelperDaemon:
    """Owns the monitor, capture, locator and channels for one daemon process.

    Activations are handled one at a time on a single worker thread, so the
    interaction state only ever moves in activation order. Screenshot and
    pointer lookups for one activation run side by side on a small pool;
    analysis (standalone mode) runs on its own thread and hands its result
    back to the activation worker.
    """

    def __init__(
        self,
        config: DaemonConfig,
        config_path: Optional[str] = None,
        lock: Optional[LockFile] = None,
        screenshots: Optional[ScreenshotManager] = None,
        cursor: Optional[CursorTracker] = None,
        monitor: Optional[HotkeyMonitor] = None,
        host: Optional[HostChannel] = None,
        popup: Optional[PopupController] = None,
        analyzer: Optional[CommandAnalyzer] = None,
    ):
        self.config = config
        self.lock = lock or LockFile(config.lock_path)

        self.screenshots = screenshots or ScreenshotManager(
            config.screenshot_dir, timeout=config.capture_timeout,
        )
        self.cursor = cursor or CursorTracker()
        self.state = InteractionStateMachine(
            awaiting_timeout=config.awaiting_timeout,
            on_change=self._on_state_change,
        )
        self.monitor = monitor or HotkeyMonitor(
            config.hotkey,
            on_activate=self.on_activation,
            debounce_ms=config.debounce_ms,
            restart_delay=config.monitor_restart_delay,
        )
        self.host = host or HostChannel(
            config.socket_path,
            on_update_hotkey=self.update_hotkey,
            reconnect_delay=config.reconnect_delay,
            send_timeout=config.send_timeout,
        )

        # Standalone mode: the daemon drives analysis and the popup itself
        self.popup = popup
        self.analyzer = analyzer
        if config.standalone:
            if self.popup is None:
                self.popup = PopupController(config, config_path=config_path)
            if self.analyzer is None:
                self.analyzer = CommandAnalyzer(config.analyzer_command, config.analyzer_timeout)

        self.control_server: Optional[ControlServer] = None
        self._activation_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="activation")
        self._capture_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="capture")
        self._analysis_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="analysis")
        self._cleanup_timer: Optional[threading.Timer] = None
        self._shutdown_lock = threading.Lock()
        self._shutting_down = False
        self._stopped = threading.Event()
        self._started_at: Optional[float] = None
        self.exit_code = 0

    # -- Control socket helpers (called by ControlServer) --

    @property
    def popup_available(self) -> bool:
        return self.popup is not None and self.popup.available

    def status(self) -> dict:
        uptime = time.time() - self._started_at if self._started_at else 0.0
        return {
            "daemon": True,
            "version": __version__,
            "pid": os.getpid(),
            "uptime": round(uptime, 1),
            "hotkey": self.monitor.hotkey,
            "monitoring": self.monitor.is_monitoring,
            "state": self.state.state.value,
            "host_channel": self.host.status.value,
            "capture_tool": self.screenshots.tool_name,
            "cursor_method": self.cursor.tracking_method,
            "popup": self.popup_available,
            "mode": "standalone" if self.analyzer is not None and self.popup is not None else "host",
            "auto_start": self.config.auto_start,
        }

    def update_hotkey(self, hotkey: str) -> None:
        """Swap the activation control (from the host or the control socket)."""
        self.monitor.update_control(hotkey)
        self.config.hotkey = hotkey
        self._emit({"event": "hotkey_changed", "hotkey": hotkey})

    def cleanup_screenshots(self) -> int:
        return self.screenshots.cleanup_old_screenshots(
            self.config.cleanup_max_age_days * SECONDS_PER_DAY,
        )

    def _emit(self, event: dict) -> None:
        if self.control_server is not None:
            self.control_server.emit(event)

    def _on_state_change(self, state: InteractionState) -> None:
        self._emit({"event": "state_changed", "state": state.value})

    # -- Activation handling --

    def on_activation(self) -> Optional[Future]:
        """Monitor callback: queue the activation for the worker thread."""
        if self._shutting_down:
            return None
        return self._activation_pool.submit(self._run_activation)

    def _run_activation(self) -> None:
        try:
            self._handle_activation()
        except Exception:
            logger.exception("Activation failed")
            self.state.finish()

    def _handle_activation(self) -> None:
        action, generation = self.state.begin_activation()
        self._emit({"event": "activation", "action": action.value})

        if action is Action.EXECUTE:
            logger.info("Second activation: executing first suggestion")
            if self.popup_available:
                self.popup.execute_first()
            else:
                logger.warning("Popup unavailable, cannot execute suggestion")
            return

        frame_future = self._capture_pool.submit(self.screenshots.capture_active_monitor)
        pointer_future = self._capture_pool.submit(self.cursor.get_current_position)

        frame = frame_future.result()
        if frame is None:
            logger.warning("Screenshot capture failed, abandoning activation")
            self.state.finish(generation)
            return

        try:
            position = pointer_future.result()
        except Exception as e:
            logger.warning("Pointer lookup failed, using last known position: %s", e)
            position = self.cursor.last_position

        event = ActivationEvent(frame=frame, position=position)
        sent = self.host.send(encode_activation_event(event))
        if sent:
            logger.info("Sent hotkey event to host (%s, %d bytes)", frame.filename, frame.size)

        if self.analyzer is None or not self.popup_available:
            # Host mode: the host owns analysis and the popup
            self.state.finish(generation)
            return

        self.popup.show_loading_at(position)
        self._analysis_pool.submit(self._analyze, frame, generation)

    def _analyze(self, frame, generation: int) -> None:
        try:
            result = self.analyzer.analyze(frame)
        except AnalysisError as e:
            logger.error("Analysis failed: %s", e)
            result = e
        except Exception as e:
            logger.exception("Analyzer crashed")
            result = AnalysisError(f"analyzer crashed: {e}")
        if not self._shutting_down:
            self._activation_pool.submit(self._analysis_done, result, generation)

    def _analysis_done(self, result, generation: int) -> None:
        if generation != self.state.generation:
            logger.debug("Discarding analysis for superseded activation %d", generation)
            return
        if isinstance(result, AnalysisError):
            self.popup.show_error(str(result))
            self.state.finish(generation)
            return

        analysis: Analysis = result
        self.popup.show_results(analysis)
        if analysis.suggestions:
            self.state.results_shown(generation)
        else:
            self.state.finish(generation)

    # -- Periodic cleanup --

    def _schedule_cleanup(self) -> None:
        if self._shutting_down or self.config.cleanup_interval <= 0:
            return
        timer = threading.Timer(self.config.cleanup_interval, self._periodic_cleanup)
        timer.daemon = True
        self._cleanup_timer = timer
        timer.start()

    def _periodic_cleanup(self) -> None:
        try:
            self.cleanup_screenshots()
        finally:
            self._schedule_cleanup()

    # -- Lifecycle --

    def start(self) -> None:
        """Bring up every component. The lock must already be held."""
        self._started_at = time.time()
        logger.info("Linux Helper daemon %s starting (pid %d)", __version__, os.getpid())
        logger.info("Hotkey: %s", self.config.hotkey)
        logger.info("Screenshot tool: %s", self.screenshots.tool_name or "none")
        logger.info("Cursor tracking: %s", self.cursor.tracking_method)

        self.cleanup_screenshots()
        self._schedule_cleanup()

        if self.popup is not None:
            try:
                self.popup.initialize()
            except PopupError as e:
                logger.error("Popup subsystem failed to initialize, continuing in host mode: %s", e)
                self.popup.cleanup()
                self.popup = None

        self.host.start()

        self.control_server = ControlServer(self, self.config.control_socket_path)
        threading.Thread(target=self._run_control_server, daemon=True).start()

        self.monitor.start()
        logger.info("Daemon ready")

    def _run_control_server(self) -> None:
        try:
            self.control_server.run()
        except OSError as e:
            logger.warning("Control server unavailable on %s: %s",
                           self.config.control_socket_path, e)

    def shutdown(self) -> None:
        """Stop everything and release the lock. Safe to call more than once."""
        with self._shutdown_lock:
            if self._shutting_down:
                return
            self._shutting_down = True
        logger.info("Shutting down...")

        steps = [
            ("activation monitor", self.monitor.stop),
            ("cleanup timer", self._cancel_cleanup),
            ("host channel", self.host.close),
        ]
        if self.popup is not None:
            steps.append(("popup", self.popup.cleanup))
        if self.control_server is not None:
            steps.append(("control server", self.control_server.shutdown))
        steps += [
            ("workers", self._stop_workers),
            ("lock", self.lock.release),
        ]

        failed = False
        for name, step in steps:
            try:
                step()
            except Exception:
                logger.exception("Error while stopping %s", name)
                failed = True

        self.exit_code = 1 if failed else 0
        logger.info("Shutdown complete")
        self._stopped.set()

    def _cancel_cleanup(self) -> None:
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None

    def _stop_workers(self) -> None:
        for pool in (self._activation_pool, self._capture_pool, self._analysis_pool):
            pool.shutdown(wait=False, cancel_futures=True)

    def run(self) -> int:
        """Start the daemon and block until shutdown. Returns the exit code."""
        signal.signal(signal.SIGTERM, lambda sig, frame: self.shutdown())
        signal.signal(signal.SIGINT, lambda sig, frame: self.shutdown())

        try:
            self.start()
        except Exception:
            logger.exception("Daemon failed to start")
            self.shutdown()
            return 1

        # Short waits keep the main thread responsive to signals
        while not self._stopped.wait(1.0):
            pass
        return self.exit_code


def main(argv=None):
    parser = argparse.ArgumentParser(description="Linux Helper screen-capture daemon")
    parser.add_argument("--config", default=CONFIG_PATH, help="path to daemon.json")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging("debug" if args.debug else config.log_level, config.log_file)

    lock = LockFile(config.lock_path)
    try:
        lock.acquire()
    except LockError as e:
        logger.error("%s", e)
        return 1

    try:
        daemon = HelperDaemon(config, config_path=args.config, lock=lock)
    except Exception:
        lock.release()
        raise

    code = daemon.run()
    shutdown_logging()
    return code


if __name__ == "__main__":
    sys.exit(main())
