"""Tests for the toolkit-free parts of the popup process (linux_helper/overlay.py)."""

from unittest.mock import MagicMock, patch

from linux_helper import overlay
from linux_helper.models import Suggestion


class TestExecuteCallback:

    def test_refusal_returned_without_typing(self):
        executor = MagicMock()
        executor.refusal_reason.return_value = "Refused potentially destructive command: rm -rf /"
        on_execute = overlay.make_execute_callback(executor)
        with patch("linux_helper.overlay.threading.Thread") as thread:
            assert on_execute(Suggestion("wipe", "rm -rf /")).startswith("Refused")
        thread.assert_not_called()
        executor.type_command.assert_not_called()

    def test_typing_happens_off_the_main_loop(self):
        executor = MagicMock()
        executor.refusal_reason.return_value = None
        on_execute = overlay.make_execute_callback(executor)
        suggestion = Suggestion("list", "ls -la")
        with patch("linux_helper.overlay.threading.Thread") as thread:
            assert on_execute(suggestion) is None
        thread.return_value.start.assert_called_once()

        typer = thread.call_args[1]["target"]
        with patch("linux_helper.overlay.time.sleep") as sleep:
            typer()
        assert sleep.call_args[0][0] >= overlay.FADE_OUT_MS / 1000.0
        executor.type_command.assert_called_once_with(suggestion)


class TestMain:

    def test_exits_when_gtk_missing(self, tmp_path):
        config = tmp_path / "daemon.json"
        config.write_text("{}")
        with patch("linux_helper.overlay.GTK_AVAILABLE", False), \
             patch("linux_helper.overlay.setup_logging") as setup, \
             patch("linux_helper.overlay.PopupServer") as server:
            assert overlay.main(["--config", str(config)]) == 1
        assert setup.call_args[0][1] == overlay.POPUP_LOG_FILE
        server.assert_not_called()

    def test_dark_theme_is_fallback(self):
        assert overlay._build_css("neon") == overlay._build_css("dark")
        assert b"#fafafa" in overlay._build_css("light")
