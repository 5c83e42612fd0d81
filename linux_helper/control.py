"""Admin control socket for the Linux Helper daemon.

A JSON command/event protocol over a Unix socket at
/tmp/linux-helper-control.sock, separate from the Host Channel (which only
carries hotkey events out and hotkey updates in).

Commands (client -> daemon), one per connection:
    {"cmd": "ping"}                          -> {"pong": true}
    {"cmd": "status"}                        -> current daemon state
    {"cmd": "capture"}                       -> synthetic activation
    {"cmd": "set_hotkey", "hotkey": "..."}   -> swap the activation control
    {"cmd": "cleanup"}                       -> sweep old screenshots now
    {"cmd": "stop"}                          -> shutdown daemon ("shutdown" also accepted)
    {"cmd": "subscribe"}                     -> keep connection open for events

Events (daemon -> subscribed clients):
    {"event": "activation", "action": "capture" | "execute"}
    {"event": "state_changed", "state": "idle" | "capturing" | "awaiting-second-activation"}
    {"event": "hotkey_changed", "hotkey": "..."}
"""

import argparse
import json
import logging
import os
import socket
import stat
import sys
import threading

from linux_helper.config import CONFIG_PATH, load_config

logger = logging.getLogger(__name__)


class ControlServer:
    """Admin endpoint: one JSON command per connection, or an event subscription."""

    def __init__(self, daemon, socket_path: str):
        self.daemon = daemon
        self.socket_path = socket_path
        self._shutting_down = False
        self._event_connections = []
        self._lock = threading.Lock()
        self._server = None

    def _handle_command(self, data: dict) -> dict:
        """Map one admin command onto the daemon and build its reply."""
        cmd = data.get("cmd")

        if cmd == "ping":
            return {"pong": True}

        if cmd == "status":
            return self.daemon.status()

        if cmd == "capture":
            self.daemon.on_activation()
            return {"ok": True}

        if cmd == "set_hotkey":
            hotkey = data.get("hotkey")
            if not isinstance(hotkey, str) or not hotkey:
                return {"error": "set_hotkey requires a hotkey"}
            self.daemon.update_hotkey(hotkey)
            return {"ok": True, "hotkey": hotkey}

        if cmd == "cleanup":
            return {"ok": True, "removed": self.daemon.cleanup_screenshots()}

        if cmd in ("stop", "shutdown"):
            threading.Thread(target=self.daemon.shutdown, daemon=True).start()
            return {"ok": True}

        if cmd == "subscribe":
            return {"subscribed": True}

        return {"error": f"unknown command: {cmd}"}

    def emit(self, event: dict):
        """Push a daemon event to every subscriber, dropping the ones that hung up."""
        msg = json.dumps(event).encode() + b"\n"
        with self._lock:
            dead = []
            for conn in self._event_connections:
                try:
                    conn.sendall(msg)
                except OSError:
                    dead.append(conn)
            for conn in dead:
                self._event_connections.remove(conn)

    def run(self):
        """Accept admin clients until shutdown() is called (blocking)."""
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

        server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        server.bind(self.socket_path)
        os.chmod(self.socket_path, stat.S_IRUSR | stat.S_IWUSR)  # 0o600 - owner only
        server.listen(5)
        server.settimeout(1.0)
        self._server = server

        while not self._shutting_down:
            try:
                conn, _ = server.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            threading.Thread(
                target=self._handle_connection, args=(conn,), daemon=True
            ).start()

        server.close()
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

    def _handle_connection(self, conn):
        """Read one command (or a subscribe request) from a client."""
        try:
            data = b""
            while True:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                data += chunk
                try:
                    json.loads(data.decode())
                    break  # Valid JSON received
                except json.JSONDecodeError:
                    continue

            if not data:
                conn.close()
                return

            request = json.loads(data.decode())
            if not isinstance(request, dict):
                raise ValueError("request is not a JSON object")
            response = self._handle_command(request)

            # Subscribe: keep connection open for streaming events
            if request.get("cmd") == "subscribe":
                conn.sendall(json.dumps(response).encode() + b"\n")
                with self._lock:
                    self._event_connections.append(conn)
                return  # Don't close

            conn.sendall(json.dumps(response).encode())
            conn.close()
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning("Control server: malformed request: %s", e)
            try:
                conn.close()
            except OSError:
                pass
        except OSError:
            # Client disconnected
            try:
                conn.close()
            except OSError:
                pass

    def shutdown(self):
        """Stop accepting and hang up on subscribers."""
        self._shutting_down = True
        if self._server:
            try:
                self._server.close()
            except OSError:
                pass  # Socket already closed
        with self._lock:
            for conn in self._event_connections:
                try:
                    conn.close()
                except OSError:
                    pass  # Connection already closed
            self._event_connections.clear()


def send_command(socket_path: str, request: dict, timeout: float = 5.0) -> dict:
    """Send one command to a running daemon and return its reply."""
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        sock.connect(socket_path)
        sock.sendall(json.dumps(request).encode())
        data = b""
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            data += chunk
    return json.loads(data.decode())


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="linux-helper-ctl", description="Control a running Linux Helper daemon")
    parser.add_argument("--config", default=CONFIG_PATH, help="path to daemon.json")
    sub = parser.add_subparsers(dest="cmd", required=True)
    for name, help_text in (
        ("ping", "check the daemon is alive"),
        ("status", "show daemon state"),
        ("capture", "trigger a capture as if the hotkey was pressed"),
        ("cleanup", "delete old screenshots now"),
        ("stop", "shut the daemon down"),
        ("watch", "print daemon events as they happen"),
    ):
        sub.add_parser(name, help=help_text)
    hotkey = sub.add_parser("set-hotkey", help="change the activation hotkey")
    hotkey.add_argument("hotkey")
    args = parser.parse_args(argv)

    socket_path = load_config(args.config).control_socket_path

    if args.cmd == "watch":
        return _watch(socket_path)

    request = {"cmd": args.cmd.replace("-", "_")}
    if args.cmd == "set-hotkey":
        request["hotkey"] = args.hotkey
    try:
        reply = send_command(socket_path, request)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Could not reach daemon at {socket_path}: {e}", file=sys.stderr)
        return 1
    print(json.dumps(reply, indent=2))
    return 1 if "error" in reply else 0


def _watch(socket_path: str) -> int:
    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.connect(socket_path)
        sock.sendall(json.dumps({"cmd": "subscribe"}).encode())
        with sock, sock.makefile("r") as stream:
            for line in stream:
                print(line.rstrip(), flush=True)
    except OSError as e:
        print(f"Could not reach daemon at {socket_path}: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
