"""Tests for wire records in linux_helper/messages.py."""

import json

import pytest

from linux_helper.errors import MessageError
from linux_helper.messages import (
    HideDirective, LineBuffer, PositionDirective, ShowDirective, UpdateDirective,
    UpdateHotkey, decode_directive, decode_host_message, encode_activation_event,
    encode_directive, encode_line,
)
from linux_helper.models import ActivationEvent, PointerPosition, ScreenBounds


class TestHostMessages:

    def test_activation_event_shape(self, sample_frame, sample_position):
        record = encode_activation_event(ActivationEvent(sample_frame, sample_position))
        assert record["type"] == "hotkey-event"
        assert record["data"]["screenshotDataUrl"] == sample_frame.data_url
        assert record["data"]["cursorPosition"] == {
            "x": 100, "y": 200,
            "screen": {"x": 0, "y": 0, "width": 1920, "height": 1080},
        }

    def test_update_hotkey_top_level(self):
        assert decode_host_message(b'{"type": "update-hotkey", "hotkey": "MiddleClick"}') \
            == UpdateHotkey("MiddleClick")

    def test_update_hotkey_nested(self):
        raw = '{"type": "update-hotkey", "data": {"hotkey": "BackButton"}}'
        assert decode_host_message(raw) == UpdateHotkey("BackButton")

    @pytest.mark.parametrize("raw", [
        b"not json",
        b"[1, 2]",
        b'{"type": "update-hotkey"}',
        b'{"type": "something-else"}',
        b"\xff\xfe",
    ])
    def test_rejected(self, raw):
        with pytest.raises(MessageError):
            decode_host_message(raw)


class TestDirectives:

    def test_show_carries_position_in_data(self):
        pos = PointerPosition(5, 6, ScreenBounds(0, 0, 100, 100))
        record = encode_directive(ShowDirective({"status": "loading"}, pos))
        assert record == {"type": "show", "data": {
            "status": "loading",
            "position": {"x": 5, "y": 6, "screen": {"x": 0, "y": 0, "width": 100, "height": 100}},
        }}
        decoded = decode_directive(encode_line(record))
        assert decoded == ShowDirective({"status": "loading"}, pos)

    def test_update_execute_first_flag(self):
        record = encode_directive(UpdateDirective(execute_first=True))
        assert record == {"type": "update", "data": {"executeFirst": True}}
        decoded = decode_directive(json.dumps(record))
        assert decoded.execute_first is True
        assert decoded.data == {}

    def test_position_and_hide(self):
        assert decode_directive('{"type": "position", "data": {"x": 1, "y": 2}}') \
            == PositionDirective(1, 2)
        assert decode_directive('{"type": "hide"}') == HideDirective()

    def test_bad_position(self):
        with pytest.raises(MessageError):
            decode_directive('{"type": "position", "data": {"x": 1}}')

    def test_unknown_type(self):
        with pytest.raises(MessageError):
            decode_directive('{"type": "explode"}')


class TestLineBuffer:

    def test_splits_and_keeps_partial(self):
        buf = LineBuffer()
        assert buf.feed(b'{"a": 1}\n{"b"') == [b'{"a": 1}']
        assert buf.feed(b': 2}\n') == [b'{"b": 2}']

    def test_skips_blank_lines(self):
        assert LineBuffer().feed(b"\n\n{}\n") == [b"{}"]

    def test_overlong_line_rejected(self):
        buf = LineBuffer(max_line=8)
        with pytest.raises(MessageError):
            buf.feed(b"x" * 20)
        assert buf.feed(b"ok\n") == [b"ok"]
