"""Popup-side endpoint of the Popup Channel.

Listens on a Unix socket, reads newline-delimited directives from the
daemon and writes one JSON ack line back for each.
"""

import json
import logging
import os
import socket
import stat
import threading
from typing import Callable

from linux_helper.errors import MessageError
from linux_helper.messages import LineBuffer, encode_line

logger = logging.getLogger(__name__)


class PopupServer:
    """Accept loop plus one reader thread per daemon connection."""

    def __init__(self, socket_path: str, handler: Callable[[bytes], dict]):
        self.socket_path = socket_path
        self.handler = handler
        self._shutting_down = False
        self._server = None
        self._connections = []
        self._lock = threading.Lock()
        self.ready = threading.Event()

    def run(self):
        """Run the popup socket server (blocking)."""
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

        server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        server.bind(self.socket_path)
        os.chmod(self.socket_path, stat.S_IRUSR | stat.S_IWUSR)  # 0o600 - owner only
        server.listen(5)
        server.settimeout(1.0)
        self._server = server
        self.ready.set()
        logger.info("Popup server listening on %s", self.socket_path)

        while not self._shutting_down:
            try:
                conn, _ = server.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            logger.info("Daemon connected")
            with self._lock:
                self._connections.append(conn)
            threading.Thread(
                target=self._handle_connection, args=(conn,), daemon=True
            ).start()

        server.close()
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

    def _handle_connection(self, conn):
        buffer = LineBuffer()
        try:
            while True:
                chunk = conn.recv(65536)
                if not chunk:
                    break
                try:
                    lines = buffer.feed(chunk)
                except MessageError as e:
                    conn.sendall(encode_line({"success": False, "error": str(e)}))
                    continue
                for line in lines:
                    conn.sendall(encode_line(self._dispatch(line)))
        except OSError as e:
            logger.debug("Popup connection error: %s", e)
        finally:
            with self._lock:
                if conn in self._connections:
                    self._connections.remove(conn)
            try:
                conn.close()
            except OSError:
                pass
            logger.info("Daemon disconnected")

    def _dispatch(self, line: bytes) -> dict:
        try:
            ack = self.handler(line)
        except Exception as e:
            logger.exception("Directive handler failed")
            return {"success": False, "error": str(e)}
        try:
            json.dumps(ack)
        except (TypeError, ValueError) as e:
            return {"success": False, "error": f"unserializable ack: {e}"}
        return ack

    def shutdown(self):
        """Stop accepting and drop the daemon connection."""
        self._shutting_down = True
        if self._server:
            try:
                self._server.close()
            except OSError:
                pass  # Socket already closed
        with self._lock:
            for conn in self._connections:
                try:
                    conn.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
            self._connections.clear()
