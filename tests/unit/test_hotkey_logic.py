"""Tests for activation detection logic in linux_helper/hotkey.py."""

import subprocess
from unittest.mock import MagicMock, patch

from linux_helper.hotkey import (
    BUTTON_MAP, HotkeyMonitor, XinputEventParser, resolve_control,
)
from linux_helper.models import ControlKind


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


class TestResolveControl:

    def test_forward_button_is_nine(self):
        control = resolve_control("ForwardButton")
        assert control.kind is ControlKind.BUTTON
        assert control.button == 9

    def test_named_buttons(self):
        for name, code in BUTTON_MAP.items():
            assert resolve_control(name).button == code

    def test_numbered_button(self):
        assert resolve_control("Button12").button == 12

    def test_key_chord(self):
        control = resolve_control("Ctrl+Shift+H")
        assert control.kind is ControlKind.KEY
        assert control.key == "Ctrl+Shift+H"
        assert control.button is None


class TestXinputEventParser:

    def test_button_press_detail(self):
        parser = XinputEventParser()
        assert parser.feed("EVENT type 4 (ButtonPress)\n") is None
        assert parser.feed("    device: 11 (11)\n") is None
        assert parser.feed("    detail: 9\n") == 9

    def test_raw_button_press(self):
        parser = XinputEventParser()
        parser.feed("EVENT type 15 (RawButtonPress)")
        assert parser.feed("    detail: 2") == 2

    def test_release_ignored(self):
        parser = XinputEventParser()
        parser.feed("EVENT type 5 (ButtonRelease)")
        assert parser.feed("    detail: 9") is None

    def test_motion_ignored(self):
        parser = XinputEventParser()
        parser.feed("EVENT type 6 (Motion)")
        assert parser.feed("    detail: 0") is None

    def test_only_first_detail_in_block(self):
        parser = XinputEventParser()
        parser.feed("EVENT type 4 (ButtonPress)")
        assert parser.feed("    detail: 9") == 9
        assert parser.feed("    detail: 9") is None


class TestDebounce:

    def _make_monitor(self, clock, callback=None):
        return HotkeyMonitor("ForwardButton", on_activate=callback or MagicMock(),
                             debounce_ms=500, clock=clock)

    def test_first_press_fires(self):
        callback = MagicMock()
        monitor = self._make_monitor(FakeClock(), callback)
        assert monitor.handle_press() is True
        callback.assert_called_once()

    def test_press_within_window_suppressed(self):
        clock = FakeClock()
        callback = MagicMock()
        monitor = self._make_monitor(clock, callback)
        monitor.handle_press()
        clock.now += 0.2
        assert monitor.handle_press() is False
        assert callback.call_count == 1

    def test_press_after_window_fires(self):
        clock = FakeClock()
        callback = MagicMock()
        monitor = self._make_monitor(clock, callback)
        monitor.handle_press()
        clock.now += 0.6
        assert monitor.handle_press() is True
        assert callback.call_count == 2

    def test_update_control_then_presses_fire_once_per_window(self):
        clock = FakeClock()
        callback = MagicMock()
        monitor = self._make_monitor(clock, callback)
        monitor.update_control("MiddleClick")
        assert monitor.control.button == 2
        for _ in range(5):
            monitor.handle_press()
            clock.now += 0.05
        assert callback.call_count == 1

    def test_callback_error_does_not_propagate(self):
        monitor = self._make_monitor(FakeClock(), MagicMock(side_effect=RuntimeError("boom")))
        assert monitor.handle_press() is True


class TestProcessLifecycle:

    def _fake_proc(self, lines=()):
        proc = MagicMock()
        proc.stdout = iter(lines)
        proc.stderr = iter(())
        proc.wait.return_value = 0
        return proc

    def test_start_spawns_xinput(self):
        proc = self._fake_proc()
        with patch("linux_helper.hotkey.subprocess.Popen", return_value=proc) as popen, \
             patch("linux_helper.hotkey.threading.Thread"):
            monitor = HotkeyMonitor("ForwardButton", on_activate=MagicMock())
            monitor.start()
        assert popen.call_args[0][0] == ["xinput", "test-xi2", "--root"]
        assert monitor.is_monitoring

    def test_update_control_kills_previous_process(self):
        first, second = self._fake_proc(), self._fake_proc()
        with patch("linux_helper.hotkey.subprocess.Popen", side_effect=[first, second]), \
             patch("linux_helper.hotkey.threading.Thread"):
            monitor = HotkeyMonitor("ForwardButton", on_activate=MagicMock())
            monitor.start()
            monitor.update_control("BackButton")
        first.kill.assert_called_once()
        assert monitor.control.button == 8
        assert monitor._process is second

    def test_key_control_leaves_monitoring_disabled(self):
        with patch("linux_helper.hotkey.subprocess.Popen") as popen:
            monitor = HotkeyMonitor("Ctrl+H", on_activate=MagicMock())
            monitor.start()
        popen.assert_not_called()
        assert not monitor.is_monitoring

    def test_missing_xinput_marks_unavailable(self):
        with patch("linux_helper.hotkey.subprocess.Popen", side_effect=FileNotFoundError):
            monitor = HotkeyMonitor("ForwardButton", on_activate=MagicMock())
            monitor.start()
        assert monitor.available is False
        assert monitor._restart_timer is None

    def test_stop_kills_process(self):
        proc = self._fake_proc()
        with patch("linux_helper.hotkey.subprocess.Popen", return_value=proc), \
             patch("linux_helper.hotkey.threading.Thread"):
            monitor = HotkeyMonitor("ForwardButton", on_activate=MagicMock())
            monitor.start()
            monitor.stop()
        proc.kill.assert_called_once()
        assert not monitor.is_monitoring

    def test_matching_press_in_stream_fires(self):
        callback = MagicMock()
        lines = [
            "EVENT type 4 (ButtonPress)\n", "    detail: 3\n",
            "EVENT type 4 (ButtonPress)\n", "    detail: 9\n",
        ]
        proc = self._fake_proc(lines)
        monitor = HotkeyMonitor("ForwardButton", on_activate=callback)
        monitor._running = False  # no restart after the fake stream ends
        monitor._process = proc
        monitor._read_events(proc, 9)
        callback.assert_called_once()

    def test_unexpected_exit_schedules_restart(self):
        proc = self._fake_proc()
        proc.wait.return_value = 1
        monitor = HotkeyMonitor("ForwardButton", on_activate=MagicMock(), restart_delay=60)
        monitor._running = True
        monitor._process = proc
        with patch("linux_helper.hotkey.threading.Timer") as timer:
            monitor._read_events(proc, 9)
        timer.assert_called_once()
        assert timer.call_args[0][0] == 60
        timer.return_value.start.assert_called_once()
        assert monitor._process is None

    def test_exit_after_stop_does_not_restart(self):
        proc = self._fake_proc()
        monitor = HotkeyMonitor("ForwardButton", on_activate=MagicMock())
        monitor._running = False
        monitor._process = None  # stop() already cleared it
        with patch("linux_helper.hotkey.threading.Timer") as timer:
            monitor._read_events(proc, 9)
        timer.assert_not_called()
