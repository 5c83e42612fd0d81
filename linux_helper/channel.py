"""Reconnecting duplex links over local Unix sockets.

A ChannelConnection owns at most one live socket. When that socket closes
or errors, exactly one reconnect is scheduled after a fixed delay; a second
failure while one is pending does not stack another. Outbound records are
never queued: sending while disconnected drops the record with a warning,
since a stale screenshot delivered late is worse than none.

HostChannel retries forever at a fixed interval. PopupChannel has a bounded
budget and its initial connect raises ChannelError when the budget runs out.
"""

import json
import logging
import socket
import threading
import time
from enum import Enum
from typing import Callable, Optional

from linux_helper.errors import ChannelError, MessageError
from linux_helper.messages import (
    Directive, HostMessage, LineBuffer, UpdateHotkey,
    decode_host_message, encode_directive, encode_line,
)

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 2.0
SEND_TIMEOUT = 10.0  # a peer that stops reading is dropped after this
RECV_BUFFER_SIZE = 65536


class ChannelStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ChannelConnection:
    """One logical reconnecting link to a local socket endpoint."""

    def __init__(
        self,
        name: str,
        path: str,
        reconnect_delay: float = 5.0,
        max_attempts: Optional[int] = None,
        on_record: Optional[Callable[[dict], None]] = None,
        send_timeout: float = SEND_TIMEOUT,
    ):
        self.name = name
        self.path = path
        self.reconnect_delay = reconnect_delay
        self.max_attempts = max_attempts  # None retries forever
        self.on_record = on_record
        self.send_timeout = send_timeout
        self._lock = threading.RLock()
        self._send_lock = threading.Lock()
        self._sock: Optional[socket.socket] = None
        self._status = ChannelStatus.DISCONNECTED
        self._reconnect_timer: Optional[threading.Timer] = None
        self._failed_attempts = 0
        self._closed = False

    @property
    def status(self) -> ChannelStatus:
        with self._lock:
            return self._status

    @property
    def is_connected(self) -> bool:
        return self.status is ChannelStatus.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        with self._lock:
            return self._reconnect_timer is not None

    # -- connection lifecycle --

    def start(self) -> None:
        """First connection attempt; failure falls into the reconnect policy."""
        with self._lock:
            self._closed = False
        self._attempt()

    def connect(self) -> bool:
        """Try once to open the socket. Returns True when connected."""
        with self._lock:
            if self._closed:
                return False
            if self._sock is not None:
                return True
            self._status = ChannelStatus.CONNECTING

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(CONNECT_TIMEOUT)
            sock.connect(self.path)
            # Bounds sendall; the reader treats its own timeouts as idle ticks
            sock.settimeout(self.send_timeout)
        except OSError as e:
            sock.close()
            with self._lock:
                self._status = ChannelStatus.DISCONNECTED
            logger.debug("%s channel: connect to %s failed: %s", self.name, self.path, e)
            return False

        with self._lock:
            if self._closed or self._sock is not None:
                sock.close()
                return self._sock is not None
            self._sock = sock
            self._status = ChannelStatus.CONNECTED
            self._failed_attempts = 0
        logger.info("%s channel connected to %s", self.name, self.path)
        threading.Thread(target=self._read_loop, args=(sock,), daemon=True).start()
        self._on_connected()
        return True

    def _on_connected(self) -> None:
        """Hook for subclasses."""

    def _attempt(self) -> None:
        with self._lock:
            self._reconnect_timer = None
        if self.connect():
            return
        with self._lock:
            self._failed_attempts += 1
            exhausted = (self.max_attempts is not None
                         and self._failed_attempts >= self.max_attempts)
        if exhausted:
            logger.error("%s channel: giving up on %s after %d attempts",
                         self.name, self.path, self._failed_attempts)
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self, delay: Optional[float] = None) -> None:
        with self._lock:
            if self._closed or self._reconnect_timer is not None or self._sock is not None:
                return
            delay = self.reconnect_delay if delay is None else delay
            timer = threading.Timer(delay, self._attempt)
            timer.daemon = True
            self._reconnect_timer = timer
        logger.debug("%s channel: reconnecting in %.1fs", self.name, delay)
        timer.start()

    def request_connect(self) -> None:
        """Ask for a connection attempt now unless one is already pending."""
        with self._lock:
            if self._closed or self._sock is not None:
                return
            if self._reconnect_timer is not None or self._status is ChannelStatus.CONNECTING:
                return
            self._failed_attempts = 0
        self._schedule_reconnect(delay=0)

    def _drop(self, sock: socket.socket, reason: str) -> None:
        with self._lock:
            if self._sock is not sock:
                return
            self._sock = None
            self._status = ChannelStatus.DISCONNECTED
            closed = self._closed
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            sock.close()
        except OSError:
            pass
        if closed:
            return
        logger.warning("%s channel disconnected (%s)", self.name, reason)
        self._schedule_reconnect()

    def close(self) -> None:
        """Close for good: no reconnect follows."""
        with self._lock:
            self._closed = True
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
                self._reconnect_timer = None
            sock, self._sock = self._sock, None
            self._status = ChannelStatus.DISCONNECTED
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()

    # -- I/O --

    def send(self, record: dict) -> bool:
        """Send one record now, or drop it if there is no live connection."""
        with self._lock:
            sock = self._sock
        if sock is None:
            logger.warning("%s channel not connected, dropping %s message",
                           self.name, record.get("type", "?"))
            self.request_connect()
            return False
        try:
            with self._send_lock:
                sock.sendall(encode_line(record))
        except socket.timeout:
            logger.warning("%s channel: peer not reading, dropping %s message after %.1fs",
                           self.name, record.get("type", "?"), self.send_timeout)
            self._drop(sock, "send timed out")
            return False
        except OSError as e:
            logger.warning("%s channel send failed, dropping %s message: %s",
                           self.name, record.get("type", "?"), e)
            self._drop(sock, f"send failed: {e}")
            return False
        return True

    def _read_loop(self, sock: socket.socket) -> None:
        buffer = LineBuffer()
        reason = "closed by peer"
        try:
            while True:
                try:
                    chunk = sock.recv(RECV_BUFFER_SIZE)
                except socket.timeout:
                    continue
                except OSError as e:
                    reason = str(e)
                    break
                if not chunk:
                    break
                try:
                    lines = buffer.feed(chunk)
                except MessageError as e:
                    logger.warning("%s channel: discarding input: %s", self.name, e)
                    continue
                for line in lines:
                    try:
                        self._handle_line(line)
                    except Exception:
                        logger.exception("%s channel: error handling record", self.name)
        finally:
            self._drop(sock, reason)

    def _handle_line(self, line: bytes) -> None:
        try:
            record = json.loads(line.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("%s channel: discarding malformed record: %s", self.name, e)
            return
        if not isinstance(record, dict):
            logger.warning("%s channel: discarding non-object record", self.name)
            return
        if self.on_record:
            self.on_record(record)


class HostChannel(ChannelConnection):
    """Daemon -> host application link. Retries forever at a fixed interval."""

    def __init__(self, path: str, on_update_hotkey: Callable[[str], None],
                 reconnect_delay: float = 5.0, send_timeout: float = SEND_TIMEOUT):
        super().__init__("Host", path, reconnect_delay=reconnect_delay,
                         send_timeout=send_timeout)
        self.on_update_hotkey = on_update_hotkey

    def _handle_line(self, line: bytes) -> None:
        try:
            message = decode_host_message(line)
        except MessageError as e:
            logger.warning("Host channel: discarding message: %s", e)
            return
        self.dispatch(message)

    def dispatch(self, message: HostMessage) -> None:
        if isinstance(message, UpdateHotkey):
            logger.info("Received hotkey update: %s", message.hotkey)
            self.on_update_hotkey(message.hotkey)
        else:
            raise TypeError(f"unhandled host message: {message!r}")


class PopupChannel(ChannelConnection):
    """Daemon -> popup process link with a bounded retry budget."""

    def __init__(self, path: str, attempts: int = 5, interval: float = 1.0):
        super().__init__("Popup", path, reconnect_delay=interval, max_attempts=attempts)
        self.attempts = attempts
        self.interval = interval
        self.last_ack: Optional[dict] = None
        self.on_record = self._on_ack

    def connect_with_retry(self, sleep: Callable[[float], None] = time.sleep) -> None:
        """Connect within the retry budget or raise ChannelError."""
        with self._lock:
            self._closed = False
        for attempt in range(1, self.attempts + 1):
            if self.connect():
                return
            logger.debug("Popup connection attempt %d failed, retrying...", attempt)
            if attempt < self.attempts:
                sleep(self.interval)
        raise ChannelError(
            f"could not connect to popup process at {self.path} after {self.attempts} attempts"
        )

    def send_directive(self, directive: Directive) -> bool:
        return self.send(encode_directive(directive))

    def _on_ack(self, record: dict) -> None:
        self.last_ack = record
        if record.get("success") is False:
            logger.warning("Popup rejected directive: %s", record.get("error"))
        else:
            logger.debug("Popup ack: %s", record)
