"""Integration tests for the reconnecting channels over real Unix sockets."""

import json
import os
import socket
import threading
import time
from unittest.mock import MagicMock

import pytest

from linux_helper.channel import ChannelStatus, HostChannel, PopupChannel
from linux_helper.config import DaemonConfig
from linux_helper.errors import ChannelError, PopupError
from linux_helper.messages import HideDirective
from linux_helper.popup_controller import PopupController


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class LineServer:
    """Minimal host endpoint: accepts one client at a time and records its lines."""

    def __init__(self, path):
        self.path = path
        self.lines = []
        self.conn = None
        if os.path.exists(path):
            os.unlink(path)
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.sock.bind(path)
        self.sock.listen(1)
        self.sock.settimeout(3)
        threading.Thread(target=self._serve, daemon=True).start()

    def _serve(self):
        try:
            conn, _ = self.sock.accept()
        except OSError:
            return
        self.conn = conn
        with conn.makefile("rb") as stream:
            try:
                for line in stream:
                    self.lines.append(json.loads(line))
            except (OSError, ValueError):
                pass

    def send(self, data: bytes):
        self.conn.sendall(data)

    def close(self):
        if self.conn is not None:
            try:
                self.conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self.conn.close()
        self.sock.close()
        if os.path.exists(self.path):
            os.unlink(self.path)


@pytest.fixture
def host_path(short_tmp):
    return os.path.join(short_tmp, "host.sock")


class TestHostChannel:

    def test_sends_records_and_receives_hotkey_updates(self, host_path):
        server = LineServer(host_path)
        on_update = MagicMock()
        channel = HostChannel(host_path, on_update_hotkey=on_update, reconnect_delay=0.1)
        try:
            channel.start()
            assert channel.status is ChannelStatus.CONNECTED
            assert wait_for(lambda: server.conn is not None)

            assert channel.send({"type": "hotkey-event", "data": {}}) is True
            assert wait_for(lambda: server.lines == [{"type": "hotkey-event", "data": {}}])

            server.send(b'not json\n{"type": "update-hotkey", "hotkey": "MiddleClick"}\n')
            assert wait_for(lambda: on_update.called)
            on_update.assert_called_once_with("MiddleClick")
            assert channel.is_connected
        finally:
            channel.close()
            server.close()

    def test_reconnects_after_drop(self, host_path):
        server = LineServer(host_path)
        channel = HostChannel(host_path, on_update_hotkey=MagicMock(), reconnect_delay=0.1)
        try:
            channel.start()
            assert wait_for(lambda: server.conn is not None)
            server.close()

            assert wait_for(lambda: not channel.is_connected)
            assert channel.send({"type": "hotkey-event"}) is False

            server = LineServer(host_path)
            assert wait_for(channel_connected(channel))
            assert channel.send({"type": "hotkey-event"}) is True
            assert wait_for(lambda: server.lines == [{"type": "hotkey-event"}])
        finally:
            channel.close()
            server.close()

    def test_unreachable_host_keeps_one_pending_retry(self, host_path):
        channel = HostChannel(host_path, on_update_hotkey=MagicMock(), reconnect_delay=30)
        try:
            channel.start()
            assert channel.status is ChannelStatus.DISCONNECTED
            assert channel.reconnect_pending
            timer = channel._reconnect_timer
            channel.send({"type": "hotkey-event"})
            channel.request_connect()
            assert channel._reconnect_timer is timer
        finally:
            channel.close()
        assert not channel.reconnect_pending

    def test_close_prevents_reconnect(self, host_path):
        server = LineServer(host_path)
        channel = HostChannel(host_path, on_update_hotkey=MagicMock(), reconnect_delay=0.05)
        channel.start()
        channel.close()
        server.close()
        time.sleep(0.2)
        assert channel.status is ChannelStatus.DISCONNECTED
        assert not channel.reconnect_pending

    def test_stalled_host_drops_connection_instead_of_blocking(self, host_path):
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        listener.bind(host_path)
        listener.listen(1)
        channel = HostChannel(host_path, on_update_hotkey=MagicMock(),
                              reconnect_delay=30, send_timeout=0.5)
        peer = None
        try:
            channel.start()
            peer, _ = listener.accept()  # accepted, never read from

            record = {"type": "hotkey-event", "data": {"screenshotDataUrl": "x" * (8 * 1024 * 1024)}}
            started = time.monotonic()
            assert channel.send(record) is False
            assert time.monotonic() - started < 5
            assert not channel.is_connected
            assert channel.reconnect_pending
        finally:
            channel.close()
            if peer is not None:
                peer.close()
            listener.close()

    def test_failing_callback_keeps_reader_alive(self, host_path):
        server = LineServer(host_path)
        on_update = MagicMock(side_effect=[RuntimeError("boom"), None])
        channel = HostChannel(host_path, on_update_hotkey=on_update, reconnect_delay=30)
        try:
            channel.start()
            assert wait_for(lambda: server.conn is not None)
            server.send(b'{"type": "update-hotkey", "hotkey": "BackButton"}\n')
            server.send(b'{"type": "update-hotkey", "hotkey": "MiddleClick"}\n')
            assert wait_for(lambda: on_update.call_count == 2)
            on_update.assert_called_with("MiddleClick")
            assert channel.is_connected
        finally:
            channel.close()
            server.close()


def channel_connected(channel):
    return lambda: channel.is_connected


class TestPopupChannel:

    def test_retry_budget_exhausted_raises(self, short_tmp):
        sleep = MagicMock()
        channel = PopupChannel(os.path.join(short_tmp, "popup.sock"), attempts=5, interval=1.0)
        with pytest.raises(ChannelError, match="5 attempts"):
            channel.connect_with_retry(sleep=sleep)
        assert sleep.call_count == 4
        sleep.assert_called_with(1.0)

    def test_controller_initialize_surfaces_failure(self, short_tmp):
        config = DaemonConfig(popup_socket_path=os.path.join(short_tmp, "popup.sock"),
                              popup_connect_attempts=3, popup_connect_interval=0.01)
        proc = MagicMock()
        popen = MagicMock(return_value=proc)
        controller = PopupController(config, popen=popen, sleep=MagicMock())
        with pytest.raises(PopupError):
            controller.initialize()
        proc.terminate.assert_called_once()
        assert not controller.available

    def test_send_while_disconnected_is_dropped(self, short_tmp):
        channel = PopupChannel(os.path.join(short_tmp, "popup.sock"), attempts=1, interval=0.01)
        try:
            assert channel.send_directive(HideDirective()) is False
        finally:
            channel.close()
