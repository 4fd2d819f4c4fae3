"""Unit tests for LineBuffer framing."""

from __future__ import annotations

from claudio.core.line_buffer import LineBuffer


def test_feed_returns_complete_lines_and_holds_remainder() -> None:
    buffer = LineBuffer()

    assert buffer.feed(b'{"a":1}\n{"b"') == [b'{"a":1}']
    assert buffer.pending == b'{"b"'
    assert buffer.feed(b":2}\n") == [b'{"b":2}']
    assert buffer.pending == b""


def test_every_chunk_split_yields_the_same_lines() -> None:
    """Lines are independent of where the byte stream is cut."""
    data = b"first\nsecond line\n\nthird\npartial"
    expected = [b"first", b"second line", b"", b"third"]

    for cut in range(len(data) + 1):
        buffer = LineBuffer()
        lines = buffer.feed(data[:cut]) + buffer.feed(data[cut:])
        assert lines == expected, f"cut at {cut}"
        assert buffer.pending == b"partial"


def test_byte_at_a_time_matches_single_feed() -> None:
    data = "héllo\nwörld\n".encode("utf-8")
    buffer = LineBuffer()
    lines = []
    for i in range(len(data)):
        lines.extend(buffer.feed(data[i : i + 1]))

    assert lines == ["héllo".encode("utf-8"), "wörld".encode("utf-8")]


def test_flush_returns_and_clears_partial_line() -> None:
    buffer = LineBuffer()
    buffer.feed(b"no newline yet")

    assert buffer.flush() == b"no newline yet"
    assert buffer.pending == b""
    assert buffer.flush() == b""


def test_empty_chunk_is_a_no_op() -> None:
    buffer = LineBuffer()
    buffer.feed(b"abc")

    assert buffer.feed(b"") == []
    assert buffer.pending == b"abc"


def test_clear_drops_pending_bytes() -> None:
    buffer = LineBuffer()
    buffer.feed(b"stale")
    buffer.clear()

    assert buffer.feed(b"fresh\n") == [b"fresh"]
