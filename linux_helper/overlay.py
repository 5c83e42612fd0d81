"""GTK popup process: a small borderless window near the pointer.

Run as ``linux-helper-popup`` (or ``python -m linux_helper.overlay``). The
daemon spawns it and connects to its socket; directives arrive on the
server thread and are applied on the GTK main loop.
"""

import argparse
import logging
import os
import signal
import sys
import threading
import time

try:
    import gi
    gi.require_version("Gtk", "3.0")
    gi.require_version("Gdk", "3.0")
    from gi.repository import Gdk, GLib, Gtk, Pango

    GTK_AVAILABLE = True
except (ImportError, ValueError):
    GTK_AVAILABLE = False

from linux_helper.config import CONFIG_DIR, CONFIG_PATH, PopupSettings, load_config
from linux_helper.executor import SuggestionExecutor
from linux_helper.log import setup_logging
from linux_helper.models import PointerPosition, PopupStatus, ScreenBounds, Suggestion
from linux_helper.popup import FADE_OUT_MS, PopupRenderer, PopupStateMachine, Scheduler
from linux_helper.popup_server import PopupServer

logger = logging.getLogger(__name__)

POPUP_LOG_FILE = os.path.join(CONFIG_DIR, "popup.log")
DIRECTIVE_TIMEOUT = 5.0  # seconds to wait for the main loop to apply a directive

THEMES = {
    "dark": {"bg": "#1e1f22", "fg": "#e6e6e6", "dim": "#9a9ca3", "accent": "#4c8bf5",
             "code_bg": "#2b2d31", "error": "#f28b82"},
    "light": {"bg": "#fafafa", "fg": "#1f1f1f", "dim": "#5f6368", "accent": "#1a73e8",
              "code_bg": "#eceff1", "error": "#c5221f"},
}

STATUS_TEXT = {
    PopupStatus.IDLE: "",
    PopupStatus.LOADING: "Analyzing screenshot...",
    PopupStatus.SUCCESS: "Press the hotkey again to run the first suggestion",
    PopupStatus.ERROR: "Something went wrong",
}


def _build_css(theme: str) -> bytes:
    colors = THEMES.get(theme, THEMES["dark"])
    return f"""
    window.linux-helper {{
        background-color: {colors['bg']};
        color: {colors['fg']};
        border-radius: 8px;
    }}
    .lh-title {{ font-weight: bold; font-size: 1.1em; }}
    .lh-status {{ color: {colors['dim']}; }}
    .lh-error {{ color: {colors['error']}; }}
    .lh-command {{
        font-family: monospace;
        background-color: {colors['code_bg']};
        color: {colors['accent']};
        padding: 2px 4px;
    }}
    """.encode()


class GtkRenderer(PopupRenderer):
    """Borderless always-on-top window that never takes keyboard focus."""

    def __init__(self, settings: PopupSettings, on_close=None):
        self.settings = settings
        self.on_close = on_close

        self.window = Gtk.Window(title="Linux Helper")
        self.window.set_decorated(False)
        self.window.set_keep_above(True)
        self.window.set_skip_taskbar_hint(True)
        self.window.set_skip_pager_hint(True)
        self.window.set_accept_focus(False)
        self.window.set_type_hint(Gdk.WindowTypeHint.UTILITY)
        self.window.set_default_size(settings.width, settings.height)
        self.window.set_size_request(settings.width, settings.height)
        self.window.get_style_context().add_class("linux-helper")

        # Opacity needs an RGBA visual under a compositor
        screen = self.window.get_screen()
        visual = screen.get_rgba_visual()
        if visual is not None:
            self.window.set_visual(visual)

        theme = settings.theme
        if theme == "auto":
            prefer_dark = Gtk.Settings.get_default().get_property(
                "gtk-application-prefer-dark-theme")
            theme = "dark" if prefer_dark else "light"
        provider = Gtk.CssProvider()
        provider.load_from_data(_build_css(theme))
        Gtk.StyleContext.add_provider_for_screen(
            screen, provider, Gtk.STYLE_PROVIDER_PRIORITY_APPLICATION)

        self._build_ui()

    def _build_ui(self):
        box = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=6)
        box.set_margin_start(12)
        box.set_margin_end(12)
        box.set_margin_top(10)
        box.set_margin_bottom(10)
        self.window.add(box)

        header = Gtk.Box(orientation=Gtk.Orientation.HORIZONTAL, spacing=6)
        self.spinner = Gtk.Spinner()
        header.pack_start(self.spinner, False, False, 0)
        self.title_label = Gtk.Label(xalign=0)
        self.title_label.get_style_context().add_class("lh-title")
        header.pack_start(self.title_label, True, True, 0)
        close_btn = Gtk.Button.new_from_icon_name("window-close-symbolic", Gtk.IconSize.MENU)
        close_btn.set_relief(Gtk.ReliefStyle.NONE)
        close_btn.connect("clicked", self._on_close_clicked)
        header.pack_end(close_btn, False, False, 0)
        box.pack_start(header, False, False, 0)

        self.status_label = Gtk.Label(xalign=0)
        self.status_label.set_line_wrap(True)
        self.status_label.get_style_context().add_class("lh-status")
        box.pack_start(self.status_label, False, False, 0)

        scroller = Gtk.ScrolledWindow()
        scroller.set_policy(Gtk.PolicyType.NEVER, Gtk.PolicyType.AUTOMATIC)
        content_box = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=6)
        scroller.add(content_box)
        box.pack_start(scroller, True, True, 0)

        self.content_label = Gtk.Label(xalign=0)
        self.content_label.set_line_wrap(True)
        self.content_label.set_line_wrap_mode(Pango.WrapMode.WORD_CHAR)
        self.content_label.set_selectable(True)
        content_box.pack_start(self.content_label, False, False, 0)

        self.suggestion_list = Gtk.ListBox()
        self.suggestion_list.set_selection_mode(Gtk.SelectionMode.NONE)
        self.suggestion_list.connect("row-activated", self._on_row_activated)
        content_box.pack_start(self.suggestion_list, False, False, 0)

    # -- PopupRenderer --

    def size(self):
        return self.settings.width, self.settings.height

    def screen_at(self, x, y):
        display = Gdk.Display.get_default()
        monitor = display.get_monitor_at_point(x, y)
        geometry = monitor.get_geometry()
        return ScreenBounds(geometry.x, geometry.y, geometry.width, geometry.height)

    def pointer(self):
        seat = Gdk.Display.get_default().get_default_seat()
        _, x, y = seat.get_pointer().get_position()
        return PointerPosition(x, y, self.screen_at(x, y))

    def move(self, x, y):
        self.window.move(x, y)

    def set_opacity(self, opacity):
        self.window.set_opacity(opacity)

    def show(self):
        self.window.show_all()
        self._sync_spinner()

    def hide(self):
        self.spinner.stop()
        self.window.hide()

    def render(self, view):
        self._status = view.status
        self.title_label.set_text(view.title or "Linux Helper")
        if view.status is PopupStatus.ERROR:
            self.status_label.set_text(view.error or STATUS_TEXT[view.status])
            self.status_label.get_style_context().add_class("lh-error")
        else:
            self.status_label.set_text(STATUS_TEXT[view.status])
            self.status_label.get_style_context().remove_class("lh-error")
        self.content_label.set_text(view.content or "")

        for row in self.suggestion_list.get_children():
            self.suggestion_list.remove(row)
        for suggestion in view.suggestions:
            self.suggestion_list.add(self._suggestion_row(suggestion))
        self.suggestion_list.show_all()
        self._sync_spinner()

    def _suggestion_row(self, suggestion: Suggestion):
        row = Gtk.ListBoxRow()
        row.command = suggestion.command
        vbox = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=2)
        title = Gtk.Label(label=suggestion.title, xalign=0)
        title.set_line_wrap(True)
        vbox.pack_start(title, False, False, 0)
        command = Gtk.Label(label=suggestion.command, xalign=0)
        command.set_line_wrap(True)
        command.set_line_wrap_mode(Pango.WrapMode.CHAR)
        command.get_style_context().add_class("lh-command")
        vbox.pack_start(command, False, False, 0)
        if suggestion.description:
            desc = Gtk.Label(label=suggestion.description, xalign=0)
            desc.set_line_wrap(True)
            desc.get_style_context().add_class("lh-status")
            vbox.pack_start(desc, False, False, 0)
        row.add(vbox)
        row.set_tooltip_text("Click to copy")
        return row

    def _sync_spinner(self):
        if getattr(self, "_status", None) is PopupStatus.LOADING:
            self.spinner.start()
        else:
            self.spinner.stop()

    def _on_row_activated(self, listbox, row):
        clipboard = Gtk.Clipboard.get(Gdk.SELECTION_CLIPBOARD)
        clipboard.set_text(row.command, -1)
        logger.info("Copied command to clipboard: %s", row.command)

    def _on_close_clicked(self, button):
        if self.on_close:
            self.on_close()


class GLibScheduler(Scheduler):
    def every(self, interval_ms, callback):
        return GLib.timeout_add(interval_ms, callback)

    def cancel(self, handle):
        GLib.source_remove(handle)


def run_on_main_loop(fn, *args, timeout: float = DIRECTIVE_TIMEOUT):
    """Call ``fn`` on the GTK main loop and wait for its result."""
    done = threading.Event()
    result = {}

    def _run():
        try:
            result["value"] = fn(*args)
        except Exception as e:
            result["error"] = e
        finally:
            done.set()
        return False  # Don't repeat

    GLib.idle_add(_run)
    if not done.wait(timeout):
        raise TimeoutError(f"main loop did not respond within {timeout}s")
    if "error" in result:
        raise result["error"]
    return result["value"]


def make_execute_callback(executor: SuggestionExecutor):
    """Refuse synchronously; type after the popup has faded out."""

    def on_execute(suggestion: Suggestion):
        reason = executor.refusal_reason(suggestion)
        if reason:
            return reason

        def _type():
            time.sleep(FADE_OUT_MS / 1000.0 + 0.05)
            executor.type_command(suggestion)

        threading.Thread(target=_type, daemon=True).start()
        return None

    return on_execute


def main(argv=None):
    parser = argparse.ArgumentParser(description="Linux Helper popup overlay")
    parser.add_argument("--config", default=CONFIG_PATH, help="path to daemon.json")
    parser.add_argument("--socket", help="override the popup socket path")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging("debug" if args.debug else config.log_level, POPUP_LOG_FILE)
    socket_path = args.socket or config.popup_socket_path

    if not GTK_AVAILABLE:
        logger.error("PyGObject (GTK 3) is not installed; the popup cannot run. "
                     "Install with: pip install 'linux-helper[popup]'")
        return 1

    executor = SuggestionExecutor(auto_submit=config.popup.auto_submit)
    machine = None

    def dismiss():
        machine.dismiss()

    renderer = GtkRenderer(config.popup, on_close=dismiss)
    machine = PopupStateMachine(
        renderer, GLibScheduler(), settings=config.popup,
        on_execute=make_execute_callback(executor),
    )

    def handle_line(line: bytes) -> dict:
        try:
            return run_on_main_loop(machine.handle_record, line)
        except TimeoutError as e:
            return {"success": False, "error": str(e)}

    server = PopupServer(socket_path, handle_line)
    threading.Thread(target=server.run, daemon=True).start()

    def _quit(*_):
        Gtk.main_quit()
        return GLib.SOURCE_REMOVE

    GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, signal.SIGTERM, _quit)
    GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, signal.SIGINT, _quit)

    logger.info("Popup process started (pid %d)", os.getpid())
    Gtk.main()

    server.shutdown()
    logger.info("Popup process exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
