"""Streaming heatshrink (LZSS) decoder.

Compressed input is sunk into a bounded input buffer. Decompressed output
is polled out in caller-sized pieces, and ``finish`` reports whether the
whole stream has been produced.
"""

from __future__ import annotations

import enum

from espfs_tools.encoder import (
    MAX_WINDOW_BITS,
    MIN_LOOKAHEAD_BITS,
    MIN_WINDOW_BITS,
    FinishResult,
    HeatshrinkError,
    PollResult,
)

DEFAULT_INPUT_BUFFER_SIZE = 256

_DECOMPRESS_CHUNK = 4096


class _State(enum.Enum):
    TAG_BIT = enum.auto()
    YIELD_LITERAL = enum.auto()
    BACKREF_INDEX_MSB = enum.auto()
    BACKREF_INDEX_LSB = enum.auto()
    BACKREF_COUNT_MSB = enum.auto()
    BACKREF_COUNT_LSB = enum.auto()
    YIELD_BACKREF = enum.auto()


class HeatshrinkDecoder:
    """Incremental LZSS decoder matching :class:`HeatshrinkEncoder` output."""

    def __init__(self, input_buffer_size: int, window_sz2: int, lookahead_sz2: int) -> None:
        if (
            window_sz2 < MIN_WINDOW_BITS
            or window_sz2 > MAX_WINDOW_BITS
            or input_buffer_size <= 0
            or lookahead_sz2 < MIN_LOOKAHEAD_BITS
            or lookahead_sz2 >= window_sz2
        ):
            raise HeatshrinkError(
                f"invalid decoder parameters: input buffer {input_buffer_size}, "
                f"window {window_sz2}, lookahead {lookahead_sz2}"
            )
        self.input_buffer_size = input_buffer_size
        self.window_sz2 = window_sz2
        self.lookahead_sz2 = lookahead_sz2
        self._input = bytearray(input_buffer_size)
        self._window = bytearray(1 << window_sz2)
        self.reset()

    def reset(self) -> None:
        """Return the decoder to its freshly created state."""
        self._input[:] = bytes(len(self._input))
        self._window[:] = bytes(len(self._window))
        self._state = _State.TAG_BIT
        self._input_size = 0
        self._input_index = 0
        self._bit_index = 0x00
        self._current_byte = 0x00
        self._output_count = 0
        self._output_index = 0
        self._head_index = 0

    def sink(self, data) -> int:
        """Copy as much of *data* as fits into the input buffer; return the count."""
        remaining = self.input_buffer_size - self._input_size
        if remaining == 0:
            return 0
        count = min(remaining, len(data))
        start = self._input_size
        self._input[start:start + count] = bytes(data[:count])
        self._input_size += count
        return count

    def poll(self, size: int) -> tuple[bytes, PollResult]:
        """Produce up to *size* bytes of decompressed output."""
        if size < 0:
            raise HeatshrinkError("output buffer size must not be negative")
        out = bytearray()
        handlers = {
            _State.TAG_BIT: lambda: self._tag_bit(),
            _State.YIELD_LITERAL: lambda: self._yield_literal(out, size),
            _State.BACKREF_INDEX_MSB: lambda: self._backref_index_msb(),
            _State.BACKREF_INDEX_LSB: lambda: self._backref_index_lsb(),
            _State.BACKREF_COUNT_MSB: lambda: self._backref_count_msb(),
            _State.BACKREF_COUNT_LSB: lambda: self._backref_count_lsb(),
            _State.YIELD_BACKREF: lambda: self._yield_backref(out, size),
        }
        while True:
            in_state = self._state
            self._state = handlers[in_state]()
            if self._state is in_state:
                result = PollResult.MORE if len(out) == size else PollResult.EMPTY
                return bytes(out), result

    def finish(self) -> FinishResult:
        """Report whether the input has been fully decoded."""
        if self._state is _State.YIELD_BACKREF:
            return FinishResult.MORE
        # Trailing zero padding may look like the start of a backref, and
        # 0xFF padding like a literal; both are done once input is empty.
        return FinishResult.DONE if self._input_size == 0 else FinishResult.MORE

    def _mask(self) -> int:
        return (1 << self.window_sz2) - 1

    def _tag_bit(self) -> _State:
        bits = self._get_bits(1)
        if bits is None:
            return _State.TAG_BIT
        if bits:
            return _State.YIELD_LITERAL
        if self.window_sz2 > 8:
            return _State.BACKREF_INDEX_MSB
        self._output_index = 0
        return _State.BACKREF_INDEX_LSB

    def _yield_literal(self, out: bytearray, limit: int) -> _State:
        if len(out) >= limit:
            return _State.YIELD_LITERAL
        byte = self._get_bits(8)
        if byte is None:
            return _State.YIELD_LITERAL
        value = byte & 0xFF
        self._window[self._head_index & self._mask()] = value
        self._head_index += 1
        out.append(value)
        return _State.TAG_BIT

    def _backref_index_msb(self) -> _State:
        bits = self._get_bits(self.window_sz2 - 8)
        if bits is None:
            return _State.BACKREF_INDEX_MSB
        self._output_index = bits << 8
        return _State.BACKREF_INDEX_LSB

    def _backref_index_lsb(self) -> _State:
        bits = self._get_bits(min(self.window_sz2, 8))
        if bits is None:
            return _State.BACKREF_INDEX_LSB
        self._output_index |= bits
        self._output_index += 1
        self._output_count = 0
        return _State.BACKREF_COUNT_MSB if self.lookahead_sz2 > 8 else _State.BACKREF_COUNT_LSB

    def _backref_count_msb(self) -> _State:
        bits = self._get_bits(self.lookahead_sz2 - 8)
        if bits is None:
            return _State.BACKREF_COUNT_MSB
        self._output_count = bits << 8
        return _State.BACKREF_COUNT_LSB

    def _backref_count_lsb(self) -> _State:
        bits = self._get_bits(min(self.lookahead_sz2, 8))
        if bits is None:
            return _State.BACKREF_COUNT_LSB
        self._output_count |= bits
        self._output_count += 1
        return _State.YIELD_BACKREF

    def _yield_backref(self, out: bytearray, limit: int) -> _State:
        count = limit - len(out)
        if count > 0:
            count = min(count, self._output_count)
            window = self._window
            mask = self._mask()
            neg_offset = self._output_index
            for _ in range(count):
                value = window[(self._head_index - neg_offset) & mask]
                out.append(value)
                window[self._head_index & mask] = value
                self._head_index += 1
            self._output_count -= count
            if self._output_count == 0:
                return _State.TAG_BIT
        return _State.YIELD_BACKREF

    def _get_bits(self, count: int) -> int | None:
        """Pull *count* bits from the input, or None if not enough are available."""
        if count > 15:
            return None
        if self._input_size == 0 and self._bit_index < (1 << (count - 1)):
            return None
        accumulator = 0
        for _ in range(count):
            if self._bit_index == 0:
                if self._input_size == 0:
                    return None
                self._current_byte = self._input[self._input_index]
                self._input_index += 1
                if self._input_index == self._input_size:
                    self._input_index = 0
                    self._input_size = 0
                self._bit_index = 0x80
            accumulator <<= 1
            if self._current_byte & self._bit_index:
                accumulator |= 0x01
            self._bit_index >>= 1
        return accumulator


def _drain(decoder: HeatshrinkDecoder, out: bytearray) -> None:
    while True:
        piece, result = decoder.poll(_DECOMPRESS_CHUNK)
        out += piece
        if result is PollResult.EMPTY:
            return


def decompress(
    data,
    window_sz2: int,
    lookahead_sz2: int,
    input_buffer_size: int = DEFAULT_INPUT_BUFFER_SIZE,
) -> bytes:
    """Decompress a whole heatshrink stream and return the original bytes."""
    decoder = HeatshrinkDecoder(input_buffer_size, window_sz2, lookahead_sz2)
    out = bytearray()
    view = memoryview(bytes(data))
    while view:
        sunk = decoder.sink(view)
        view = view[sunk:]
        _drain(decoder, out)
    while decoder.finish() is FinishResult.MORE:
        _drain(decoder, out)
    return bytes(out)