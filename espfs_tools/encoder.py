"""Streaming heatshrink (LZSS) encoder.

The encoder works as a state machine: input is sunk into an internal
window buffer, compressed output is polled out in caller-sized pieces,
and ``finish`` signals the end of the input stream.
"""

from __future__ import annotations

import enum

MIN_WINDOW_BITS = 4
MAX_WINDOW_BITS = 15
MIN_LOOKAHEAD_BITS = 3

LITERAL_MARKER = 0x01
BACKREF_MARKER = 0x00

_COMPRESS_CHUNK = 4096


class HeatshrinkError(Exception):
    """Raised on invalid parameters or misuse of an encoder or decoder."""


class PollResult(enum.Enum):
    """Outcome of a poll: whether more output is waiting."""

    EMPTY = 0
    MORE = 1


class FinishResult(enum.Enum):
    """Outcome of a finish request."""

    DONE = 0
    MORE = 1


class _State(enum.Enum):
    NOT_FULL = enum.auto()
    FILLED = enum.auto()
    SEARCH = enum.auto()
    YIELD_TAG_BIT = enum.auto()
    YIELD_LITERAL = enum.auto()
    YIELD_BR_INDEX = enum.auto()
    YIELD_BR_LENGTH = enum.auto()
    SAVE_BACKLOG = enum.auto()
    FLUSH_BITS = enum.auto()
    DONE = enum.auto()


def _to_int16(value: int) -> int:
    return value - 0x10000 if value >= 0x8000 else value


class HeatshrinkEncoder:
    """Incremental LZSS encoder with a ``2**window_sz2`` byte window."""

    def __init__(self, window_sz2: int, lookahead_sz2: int) -> None:
        if (
            window_sz2 < MIN_WINDOW_BITS
            or window_sz2 > MAX_WINDOW_BITS
            or lookahead_sz2 < MIN_LOOKAHEAD_BITS
            or lookahead_sz2 >= window_sz2
        ):
            raise HeatshrinkError(
                f"invalid encoder parameters: window {window_sz2}, lookahead {lookahead_sz2}"
            )
        self.window_sz2 = window_sz2
        self.lookahead_sz2 = lookahead_sz2
        # The buffer holds the backlog (previous window) followed by the current input.
        self._buffer = bytearray(2 << window_sz2)
        self._index = [-1] * (2 << window_sz2)
        self.reset()

    @property
    def _input_buffer_size(self) -> int:
        return 1 << self.window_sz2

    @property
    def _lookahead_size(self) -> int:
        return 1 << self.lookahead_sz2

    def reset(self) -> None:
        """Return the encoder to its freshly created state."""
        self._buffer[:] = bytes(len(self._buffer))
        self._input_size = 0
        self._state = _State.NOT_FULL
        self._match_scan_index = 0
        self._finishing = False
        self._bit_index = 0x80
        self._current_byte = 0x00
        self._match_length = 0
        self._match_pos = 0
        self._outgoing_bits = 0
        self._outgoing_bits_count = 0

    def sink(self, data) -> int:
        """Copy as much of *data* as fits into the input buffer; return the count."""
        if self._finishing:
            raise HeatshrinkError("cannot sink more input after finish")
        if self._state is not _State.NOT_FULL:
            raise HeatshrinkError("input buffer is full; poll before sinking more")
        ibs = self._input_buffer_size
        write_offset = ibs + self._input_size
        remaining = ibs - self._input_size
        count = min(remaining, len(data))
        self._buffer[write_offset:write_offset + count] = bytes(data[:count])
        self._input_size += count
        if count == remaining:
            self._state = _State.FILLED
        return count

    def poll(self, size: int) -> tuple[bytes, PollResult]:
        """Produce up to *size* bytes of compressed output."""
        if size <= 0:
            raise HeatshrinkError("output buffer size must be positive")
        out = bytearray()
        while True:
            in_state = self._state
            if in_state is _State.NOT_FULL or in_state is _State.DONE:
                return bytes(out), PollResult.EMPTY
            if in_state is _State.FILLED:
                self._do_indexing()
                self._state = _State.SEARCH
            elif in_state is _State.SEARCH:
                self._state = self._step_search()
            elif in_state is _State.YIELD_TAG_BIT:
                self._state = self._yield_tag_bit(out, size)
            elif in_state is _State.YIELD_LITERAL:
                self._state = self._yield_literal(out, size)
            elif in_state is _State.YIELD_BR_INDEX:
                self._state = self._yield_br_index(out, size)
            elif in_state is _State.YIELD_BR_LENGTH:
                self._state = self._yield_br_length(out, size)
            elif in_state is _State.SAVE_BACKLOG:
                self._save_backlog()
                self._state = _State.NOT_FULL
            elif in_state is _State.FLUSH_BITS:
                self._state = self._flush_bit_buffer(out, size)
                return bytes(out), PollResult.EMPTY
            if self._state is in_state and len(out) == size:
                return bytes(out), PollResult.MORE

    def finish(self) -> FinishResult:
        """Mark the end of input; report whether all output has been produced."""
        self._finishing = True
        if self._state is _State.NOT_FULL:
            self._state = _State.FILLED
        return FinishResult.DONE if self._state is _State.DONE else FinishResult.MORE

    def _step_search(self) -> _State:
        window_length = self._input_buffer_size
        lookahead = self._lookahead_size
        msi = self._match_scan_index
        fin = self._finishing
        if msi > self._input_size - (1 if fin else lookahead):
            return _State.FLUSH_BITS if fin else _State.SAVE_BACKLOG

        end = window_length + msi
        start = end - window_length
        max_possible = min(lookahead, self._input_size - msi)

        match = self._find_longest_match(start, end, max_possible)
        if match is None:
            self._match_scan_index += 1
            self._match_length = 0
        else:
            self._match_pos, self._match_length = match
        return _State.YIELD_TAG_BIT

    def _find_longest_match(self, start: int, end: int, maxlen: int) -> tuple[int, int] | None:
        buf = self._buffer
        index = self._index
        best_len = 0
        best_pos = -1
        pos = index[end]
        while pos - start >= 0:
            if buf[pos + best_len] != buf[end + best_len]:
                pos = index[pos]
                continue
            length = 1
            while length < maxlen and buf[pos + length] == buf[end + length]:
                length += 1
            if length > best_len:
                best_len = length
                best_pos = pos
                if length == maxlen:
                    break
            pos = index[pos]

        break_even = 1 + self.window_sz2 + self.lookahead_sz2
        if best_len > break_even // 8:
            return end - best_pos, best_len
        return None

    def _do_indexing(self) -> None:
        # Each entry links to the previous position holding the same byte;
        # positions are kept as 16-bit signed values, negative meaning end of list.
        last = [-1] * 256
        buf = self._buffer
        index = self._index
        for i in range(self._input_buffer_size + self._input_size):
            value = buf[i]
            index[i] = last[value]
            last[value] = _to_int16(i)

    def _yield_tag_bit(self, out: bytearray, limit: int) -> _State:
        if len(out) >= limit:
            return _State.YIELD_TAG_BIT
        if self._match_length == 0:
            self._push_bits(1, LITERAL_MARKER, out)
            return _State.YIELD_LITERAL
        self._push_bits(1, BACKREF_MARKER, out)
        self._outgoing_bits = self._match_pos - 1
        self._outgoing_bits_count = self.window_sz2
        return _State.YIELD_BR_INDEX

    def _yield_literal(self, out: bytearray, limit: int) -> _State:
        if len(out) >= limit:
            return _State.YIELD_LITERAL
        offset = self._input_buffer_size + self._match_scan_index - 1
        self._push_bits(8, self._buffer[offset], out)
        return _State.SEARCH

    def _yield_br_index(self, out: bytearray, limit: int) -> _State:
        if len(out) >= limit:
            return _State.YIELD_BR_INDEX
        if self._push_outgoing_bits(out) > 0:
            return _State.YIELD_BR_INDEX
        self._outgoing_bits = self._match_length - 1
        self._outgoing_bits_count = self.lookahead_sz2
        return _State.YIELD_BR_LENGTH

    def _yield_br_length(self, out: bytearray, limit: int) -> _State:
        if len(out) >= limit:
            return _State.YIELD_BR_LENGTH
        if self._push_outgoing_bits(out) > 0:
            return _State.YIELD_BR_LENGTH
        self._match_scan_index += self._match_length
        self._match_length = 0
        return _State.SEARCH

    def _flush_bit_buffer(self, out: bytearray, limit: int) -> _State:
        if self._bit_index == 0x80:
            return _State.DONE
        if len(out) < limit:
            out.append(self._current_byte)
            return _State.DONE
        return _State.FLUSH_BITS

    def _push_outgoing_bits(self, out: bytearray) -> int:
        if self._outgoing_bits_count > 8:
            count = 8
            bits = (self._outgoing_bits >> (self._outgoing_bits_count - 8)) & 0xFF
        else:
            count = self._outgoing_bits_count
            bits = self._outgoing_bits & 0xFF
        if count > 0:
            self._push_bits(count, bits, out)
            self._outgoing_bits_count -= count
        return count

    def _push_bits(self, count: int, bits: int, out: bytearray) -> None:
        if count == 8 and self._bit_index == 0x80:
            out.append(bits & 0xFF)
            return
        for i in range(count - 1, -1, -1):
            if bits & (1 << i):
                self._current_byte |= self._bit_index
            self._bit_index >>= 1
            if self._bit_index == 0:
                self._bit_index = 0x80
                out.append(self._current_byte)
                self._current_byte = 0x00

    def _save_backlog(self) -> None:
        ibs = self._input_buffer_size
        msi = self._match_scan_index
        shift = ibs + (ibs - msi)
        self._buffer[0:shift] = self._buffer[msi:msi + shift]
        self._match_scan_index = 0
        self._input_size -= msi


def _drain(encoder: HeatshrinkEncoder, out: bytearray) -> None:
    while True:
        piece, result = encoder.poll(_COMPRESS_CHUNK)
        out += piece
        if result is PollResult.EMPTY:
            return


def compress(data, window_sz2: int, lookahead_sz2: int) -> bytes:
    """Compress *data* in one go and return the heatshrink stream."""
    encoder = HeatshrinkEncoder(window_sz2, lookahead_sz2)
    out = bytearray()
    view = memoryview(bytes(data))
    while view:
        sunk = encoder.sink(view)
        view = view[sunk:]
        _drain(encoder, out)
    while encoder.finish() is FinishResult.MORE:
        _drain(encoder, out)
    return bytes(out)