"""Wire records for the Host Channel and the Popup Channel.

Both channels carry newline-delimited JSON objects with a ``type``
discriminator. Records are decoded once at the socket boundary into the
small dataclasses below; everything past that point dispatches on the
class, never on the raw string.

Host Channel:
    daemon -> host  {"type": "hotkey-event",
                     "data": {"screenshotDataUrl": "...", "cursorPosition": {...}}}
    host -> daemon  {"type": "update-hotkey", "hotkey": "MiddleClick"}

Popup Channel (daemon -> popup, one JSON ack back per record):
    {"type": "show", "data": {"status": "loading", "title": ..., "position": {...}}}
    {"type": "update", "data": {<partial view state>, "executeFirst": bool}}
    {"type": "position", "data": {"x": 10, "y": 20}}
    {"type": "hide"}
"""

import json
from dataclasses import dataclass, field
from typing import Optional, Union

from linux_helper.errors import MessageError
from linux_helper.models import ActivationEvent, PointerPosition

HOTKEY_EVENT = "hotkey-event"
UPDATE_HOTKEY = "update-hotkey"


@dataclass(frozen=True)
class UpdateHotkey:
    hotkey: str


# Host -> daemon carries exactly one control message type
HostMessage = UpdateHotkey


@dataclass
class ShowDirective:
    state: dict = field(default_factory=dict)
    position: Optional[PointerPosition] = None


@dataclass
class UpdateDirective:
    data: dict = field(default_factory=dict)
    execute_first: bool = False


@dataclass
class PositionDirective:
    x: int
    y: int


@dataclass
class HideDirective:
    pass


Directive = Union[ShowDirective, UpdateDirective, PositionDirective, HideDirective]


def encode_line(record: dict) -> bytes:
    """Serialize one record as a newline-terminated JSON line."""
    return json.dumps(record).encode() + b"\n"


def _parse_object(raw) -> dict:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode()
        except UnicodeDecodeError as e:
            raise MessageError(f"not utf-8: {e}") from e
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MessageError(f"invalid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise MessageError("record is not a JSON object")
    return raw


# -- Host Channel --

def encode_activation_event(event: ActivationEvent) -> dict:
    return {
        "type": HOTKEY_EVENT,
        "data": {
            "screenshotDataUrl": event.frame.data_url,
            "cursorPosition": event.position.to_dict(),
        },
    }


def decode_host_message(raw) -> HostMessage:
    """Decode a host -> daemon record. Raises MessageError for anything else."""
    record = _parse_object(raw)
    msg_type = record.get("type")
    if msg_type == UPDATE_HOTKEY:
        # Accept the hotkey at the top level or nested under "data"
        hotkey = record.get("hotkey")
        if hotkey is None and isinstance(record.get("data"), dict):
            hotkey = record["data"].get("hotkey")
        if not isinstance(hotkey, str) or not hotkey:
            raise MessageError("update-hotkey without a hotkey")
        return UpdateHotkey(hotkey=hotkey)
    raise MessageError(f"unknown host message type: {msg_type!r}")


# -- Popup Channel --

def encode_directive(directive: Directive) -> dict:
    if isinstance(directive, ShowDirective):
        data = dict(directive.state)
        if directive.position is not None:
            data["position"] = directive.position.to_dict()
        return {"type": "show", "data": data}
    if isinstance(directive, UpdateDirective):
        data = dict(directive.data)
        if directive.execute_first:
            data["executeFirst"] = True
        return {"type": "update", "data": data}
    if isinstance(directive, PositionDirective):
        return {"type": "position", "data": {"x": directive.x, "y": directive.y}}
    if isinstance(directive, HideDirective):
        return {"type": "hide"}
    raise TypeError(f"not a popup directive: {directive!r}")


def decode_directive(raw) -> Directive:
    """Decode a daemon -> popup record. Raises MessageError when malformed."""
    record = _parse_object(raw)
    msg_type = record.get("type")
    data = record.get("data") or {}
    if not isinstance(data, dict):
        raise MessageError("directive data is not an object")

    if msg_type == "show":
        state = dict(data)
        position = state.pop("position", None)
        try:
            pointer = PointerPosition.from_dict(position) if position else None
        except (KeyError, TypeError, ValueError) as e:
            raise MessageError(f"bad show position: {e}") from e
        return ShowDirective(state=state, position=pointer)

    if msg_type == "update":
        state = dict(data)
        execute_first = bool(state.pop("executeFirst", False))
        return UpdateDirective(data=state, execute_first=execute_first)

    if msg_type == "position":
        try:
            return PositionDirective(x=int(data["x"]), y=int(data["y"]))
        except (KeyError, TypeError, ValueError) as e:
            raise MessageError(f"bad position: {e}") from e

    if msg_type == "hide":
        return HideDirective()

    raise MessageError(f"unknown directive type: {msg_type!r}")


class LineBuffer:
    """Accumulates socket chunks and yields complete lines."""

    def __init__(self, max_line: int = 64 * 1024 * 1024):
        self._buf = b""
        self._max_line = max_line

    def feed(self, chunk: bytes) -> list:
        self._buf += chunk
        lines = []
        while b"\n" in self._buf:
            line, self._buf = self._buf.split(b"\n", 1)
            if line.strip():
                lines.append(line)
        if len(self._buf) > self._max_line:
            # A peer that never sends a newline would otherwise grow us forever
            self._buf = b""
            raise MessageError("line exceeds maximum length")
        return lines
