import pytest
from hypothesis import given, settings, strategies as st

from espfs_tools.encoder import (
    FinishResult,
    HeatshrinkEncoder,
    HeatshrinkError,
    PollResult,
    compress,
)


def _reference_decode(blob, window_sz2, lookahead_sz2):
    """Decode a heatshrink bit stream with a zero-filled initial window."""
    bits = "".join(f"{byte:08b}" for byte in blob)
    out = bytearray(1 << window_sz2)
    start = len(out)
    pos = 0
    while pos < len(bits):
        if bits[pos] == "1":
            if pos + 9 > len(bits):
                break
            out.append(int(bits[pos + 1:pos + 9], 2))
            pos += 9
        else:
            need = 1 + window_sz2 + lookahead_sz2
            if pos + need > len(bits):
                break
            offset = int(bits[pos + 1:pos + 1 + window_sz2], 2) + 1
            count = int(bits[pos + 1 + window_sz2:pos + need], 2) + 1
            pos += need
            for _ in range(count):
                out.append(out[-offset])
    return bytes(out[start:])


def _stream(data, window_sz2, lookahead_sz2, chunk, poll_size):
    enc = HeatshrinkEncoder(window_sz2, lookahead_sz2)
    out = bytearray()

    def drain():
        while True:
            piece, result = enc.poll(poll_size)
            assert len(piece) <= poll_size
            out.extend(piece)
            if result is PollResult.EMPTY:
                return

    view = data
    while view:
        n = enc.sink(view[:chunk])
        view = view[n:]
        drain()
    while enc.finish() is FinishResult.MORE:
        drain()
    return bytes(out)


@pytest.mark.parametrize("window, lookahead", [(3, 2), (16, 4), (8, 2), (8, 8), (8, 9)])
def test_invalid_parameters_raise(window, lookahead):
    with pytest.raises(HeatshrinkError):
        HeatshrinkEncoder(window, lookahead)


def test_compress_empty_is_empty():
    assert compress(b"", 8, 4) == b""


def test_single_literal_bit_layout():
    # tag bit 1, then 'a' (0x61), padded with zeros
    assert compress(b"a", 8, 4) == b"\xb0\x80"


def test_distinct_bytes_are_all_literals():
    data = bytes(range(1, 41))
    blob = compress(data, 8, 4)
    assert len(blob) == (9 * len(data) + 7) // 8
    assert _reference_decode(blob, 8, 4) == data


def test_repetitive_data_shrinks_and_round_trips():
    data = b"ab" * 200
    blob = compress(data, 8, 4)
    assert len(blob) < len(data) // 2
    assert _reference_decode(blob, 8, 4) == data


@pytest.mark.parametrize("window, lookahead", [(4, 3), (8, 4), (11, 4), (13, 4)])
def test_round_trip_text(window, lookahead):
    data = b"The quick brown fox jumps over the lazy dog. " * 20 + bytes(range(256))
    blob = compress(data, window, lookahead)
    assert _reference_decode(blob, window, lookahead) == data


def test_round_trip_window_15():
    data = b"espfs image entry " * 50
    blob = compress(data, 15, 4)
    assert _reference_decode(blob, 15, 4) == data


def test_sink_is_limited_by_window():
    enc = HeatshrinkEncoder(4, 3)
    assert enc.sink(bytes(100)) == 16


def test_sink_when_full_raises():
    enc = HeatshrinkEncoder(4, 3)
    enc.sink(bytes(16))
    with pytest.raises(HeatshrinkError):
        enc.sink(b"x")


def test_sink_after_finish_raises():
    enc = HeatshrinkEncoder(8, 4)
    enc.finish()
    with pytest.raises(HeatshrinkError):
        enc.sink(b"x")


def test_poll_zero_size_raises():
    enc = HeatshrinkEncoder(8, 4)
    with pytest.raises(HeatshrinkError):
        enc.poll(0)


def test_poll_without_input_is_empty():
    enc = HeatshrinkEncoder(8, 4)
    assert enc.poll(16) == (b"", PollResult.EMPTY)


def test_poll_reports_more_when_output_full():
    enc = HeatshrinkEncoder(4, 3)
    enc.sink(bytes(range(1, 17)))
    piece, result = enc.poll(1)
    assert len(piece) == 1
    assert result is PollResult.MORE


def test_finish_reports_more_then_done():
    enc = HeatshrinkEncoder(8, 4)
    enc.sink(b"hello")
    assert enc.finish() is FinishResult.MORE
    out = bytearray()
    while True:
        piece, result = enc.poll(64)
        out += piece
        if result is PollResult.EMPTY:
            break
    assert enc.finish() is FinishResult.DONE
    assert bytes(out) == compress(b"hello", 8, 4)


def test_reset_allows_reuse():
    enc = HeatshrinkEncoder(8, 4)
    enc.sink(b"first input")
    enc.finish()
    enc.poll(64)
    enc.reset()
    enc.sink(b"a")
    enc.finish()
    piece, _ = enc.poll(64)
    assert piece == compress(b"a", 8, 4)


@st.composite
def _params(draw):
    window = draw(st.integers(min_value=4, max_value=9))
    lookahead = draw(st.integers(min_value=3, max_value=window - 1))
    return window, lookahead


@settings(max_examples=60, deadline=None)
@given(data=st.binary(max_size=300), params=_params())
def test_round_trip_property(data, params):
    window, lookahead = params
    assert _reference_decode(compress(data, window, lookahead), window, lookahead) == data


@settings(max_examples=40, deadline=None)
@given(
    data=st.binary(max_size=200),
    params=_params(),
    chunk=st.integers(min_value=1, max_value=40),
    poll_size=st.integers(min_value=1, max_value=8),
)
def test_streaming_matches_one_shot(data, params, chunk, poll_size):
    window, lookahead = params
    assert _stream(data, window, lookahead, chunk, poll_size) == compress(data, window, lookahead)