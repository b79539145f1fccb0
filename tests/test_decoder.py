"""
Tests for localforge.decoder (LineJSONDecoder, ChunkedBodyDecoder, HTTPResponseDeframer).

Covers:
  - Event validation and line parsing
  - Chunk-boundary independence
  - Dropping blank, malformed and mis-shaped lines
  - One-time header stripping, status/header parsing
  - Chunked transfer encoding
"""

import logging

import pytest

from localforge.decoder import (
    ChunkedBodyDecoder,
    Event,
    HTTPResponseDeframer,
    LineJSONDecoder,
)
from localforge.exceptions import DecodeError, ProtocolError

from .conftest import HTTP_OK, chunked, ndjson

# ========================================================================
# Event
# ========================================================================


class TestEvent:
    def test_token_and_done(self):
        assert Event.from_line(b'{"response":"Hi","done":false}') == Event(token="Hi", done=False)

    def test_missing_fields_default(self):
        assert Event.from_line(b"{}") == Event(token=None, done=False)

    def test_unrecognized_fields_ignored(self):
        event = Event.from_line(b'{"response":"a","done":true,"model":"m","eval_count":3}')
        assert event == Event(token="a", done=True)

    def test_error_payload(self):
        assert Event.from_line(b'{"error":"model not found"}').error == "model not found"

    @pytest.mark.parametrize(
        "line",
        [
            b"[1, 2]",
            b'"text"',
            b'{"response": 5}',
            b'{"response": "x", "done": "yes"}',
            b'{"response": "x"',
            b"\xff\xfe",
        ],
    )
    def test_invalid_lines_raise_decode_error(self, line):
        with pytest.raises(DecodeError):
            Event.from_line(line)


# ========================================================================
# LineJSONDecoder
# ========================================================================


class TestLineJSONDecoder:
    def test_single_complete_line(self):
        decoder = LineJSONDecoder()
        assert decoder.feed(b'{"response":"Hello","done":false}\n') == [Event("Hello", False)]

    def test_partial_line_held_until_terminator(self):
        decoder = LineJSONDecoder()
        assert decoder.feed(b'{"response":"Hel') == []
        assert decoder.pending > 0
        assert decoder.feed(b'lo"}\n') == [Event("Hello", False)]
        assert decoder.pending == 0

    def test_empty_chunk_is_noop(self):
        decoder = LineJSONDecoder()
        decoder.feed(b'{"response":"a"')
        pending = decoder.pending
        assert decoder.feed(b"") == []
        assert decoder.pending == pending

    def test_crlf_line_endings(self):
        decoder = LineJSONDecoder()
        events = decoder.feed(b'{"response":"a"}\r\n{"response":"b","done":true}\r\n')
        assert events == [Event("a", False), Event("b", True)]

    def test_blank_and_malformed_lines_dropped_in_order(self):
        valid = [{"response": str(i), "done": False} for i in range(5)]
        stream = (
            ndjson(*valid[:2])
            + b"\n"
            + ndjson(*valid[2:4])
            + b'{"response": "broken\n'
            + ndjson(valid[4])
        )
        decoder = LineJSONDecoder()
        events = decoder.feed(stream)
        assert [event.token for event in events] == ["0", "1", "2", "3", "4"]
        assert decoder.dropped == 1

    def test_control_only_lines_dropped_silently(self):
        decoder = LineJSONDecoder()
        events = decoder.feed(b"\r\n \t\n\x00\n" + ndjson({"response": "ok"}))
        assert events == [Event("ok", False)]
        assert decoder.dropped == 0

    def test_malformed_line_is_logged_not_raised(self, caplog):
        decoder = LineJSONDecoder()
        with caplog.at_level(logging.DEBUG, logger="localforge.decoder"):
            assert decoder.feed(b"not json\n") == []
        assert any("Dropped line" in record.message for record in caplog.records)

    def test_multibyte_character_split_across_chunks(self):
        line = '{"response":"café ☕"}\n'.encode()
        split = line.index(b"\xc3") + 1
        decoder = LineJSONDecoder()
        assert decoder.feed(line[:split]) == []
        assert decoder.feed(line[split:]) == [Event("café ☕", False)]

    def test_flush_decodes_unterminated_final_line(self):
        decoder = LineJSONDecoder()
        assert decoder.feed(b'{"response":"whole","done":false}') == []
        assert decoder.flush() == [Event("whole", False)]
        assert decoder.flush() == []

    def test_chunk_boundary_independence(self):
        stream = (
            ndjson(
                {"response": "Hello", "done": False},
                {"response": ", wörld", "done": False},
            )
            + b"\n"
            + b"garbage\n"
            + ndjson({"response": "", "done": True})
        )
        expected = LineJSONDecoder().feed(stream)
        assert len(expected) == 3

        for split in range(len(stream) + 1):
            decoder = LineJSONDecoder()
            events = decoder.feed(stream[:split]) + decoder.feed(stream[split:])
            assert events == expected, f"split at {split}"

        decoder = LineJSONDecoder()
        byte_by_byte = []
        for index in range(len(stream)):
            byte_by_byte.extend(decoder.feed(stream[index : index + 1]))
        assert byte_by_byte == expected


# ========================================================================
# ChunkedBodyDecoder
# ========================================================================


class TestChunkedBodyDecoder:
    def test_removes_framing(self):
        decoder = ChunkedBodyDecoder()
        assert decoder.feed(chunked(b"abc", b"defgh")) == b"abcdefgh"
        assert decoder.finished

    def test_framing_split_everywhere(self):
        framed = chunked(b'{"response":"a"}\n', b'{"done":true}\n')
        decoder = ChunkedBodyDecoder()
        out = b"".join(decoder.feed(framed[i : i + 1]) for i in range(len(framed)))
        assert out == b'{"response":"a"}\n{"done":true}\n'

    def test_chunk_extensions_ignored(self):
        assert ChunkedBodyDecoder().feed(b"3;name=value\r\nabc\r\n0\r\n\r\n") == b"abc"

    def test_invalid_size_raises(self):
        with pytest.raises(ProtocolError):
            ChunkedBodyDecoder().feed(b"zz\r\nabc\r\n")


# ========================================================================
# HTTPResponseDeframer
# ========================================================================


class TestHTTPResponseDeframer:
    def test_end_to_end_example(self):
        deframer = HTTPResponseDeframer()
        first = deframer.feed(b'HTTP/1.1 200 OK\r\n\r\n{"response":"Hel')
        second = deframer.feed(b'lo","done":false}\n{"response":"","done":true}\n')
        assert first == []
        assert second == [Event("Hello", False), Event("", True)]

    def test_nothing_yielded_before_header_terminator(self):
        deframer = HTTPResponseDeframer()
        assert deframer.feed(b"HTTP/1.1 200 OK\r\nContent-Type: x\r\n") == []
        assert not deframer.headers_done
        assert deframer.feed(b"\r\n" + ndjson({"response": "a"})) == [Event("a", False)]
        assert deframer.headers_done

    def test_terminator_split_across_chunks(self):
        deframer = HTTPResponseDeframer()
        assert deframer.feed(b"HTTP/1.1 200 OK\r\n\r") == []
        assert deframer.feed(b"\n" + ndjson({"response": "a"})) == [Event("a", False)]

    def test_lenient_bare_newline_terminator(self):
        deframer = HTTPResponseDeframer()
        assert deframer.feed(b"HTTP/1.1 200 OK\nServer: x\n\n" + ndjson({"response": "a"})) == [
            Event("a", False)
        ]

    def test_header_strip_runs_once(self):
        body = (
            ndjson({"response": "one"})
            + b"\r\n\r\n"
            + ndjson({"response": "two"})
            + b"\n\nHTTP/1.1 200 OK\r\n\r\n"
            + ndjson({"response": "three", "done": True})
        )
        deframer = HTTPResponseDeframer()
        events = deframer.feed(HTTP_OK)
        for index in range(0, len(body), 7):
            events += deframer.feed(body[index : index + 7])
        assert [event.token for event in events] == ["one", "two", "three"]

    def test_status_and_headers_parsed(self):
        deframer = HTTPResponseDeframer()
        deframer.feed(b"HTTP/1.1 404 Not Found\r\nContent-Type: application/json\r\n\r\n")
        assert deframer.status_code == 404
        assert deframer.reason == "Not Found"
        assert deframer.headers["content-type"] == "application/json"
        assert not deframer.is_chunked

    def test_chunked_body_split_inside_json(self):
        head = b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n"
        body = chunked(b'{"response":"Hel', b'lo","done":false}\n', ndjson({"done": True}))
        deframer = HTTPResponseDeframer()
        events = []
        stream = head + body
        for index in range(0, len(stream), 5):
            events += deframer.feed(stream[index : index + 5])
        assert deframer.is_chunked
        assert events == [Event("Hello", False), Event(None, True)]

    def test_finish_without_headers_raises(self):
        deframer = HTTPResponseDeframer()
        deframer.feed(b"HTTP/1.1 200 OK\r\n")
        with pytest.raises(ProtocolError, match="header terminator"):
            deframer.finish()

    def test_finish_flushes_final_line(self):
        deframer = HTTPResponseDeframer()
        assert deframer.feed(HTTP_OK + b'{"response":"all","done":true}') == []
        assert deframer.finish() == [Event("all", True)]
