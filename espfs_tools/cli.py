"""Command line front end for heatshrink compression and decompression."""

from __future__ import annotations

import contextlib
import enum
import math
import re
import sys
from dataclasses import dataclass
from typing import BinaryIO, Callable

from espfs_tools.decoder import HeatshrinkDecoder
from espfs_tools.encoder import FinishResult, HeatshrinkEncoder, HeatshrinkError, PollResult

DEFAULT_WINDOW_SZ2 = 11
DEFAULT_LOOKAHEAD_SZ2 = 4
DEFAULT_DECODER_INPUT_BUFFER_SIZE = 256
DEFAULT_BUFFER_SIZE = 64 * 1024

_PROG = "heatshrink"
_FLAG_OPTIONS = "hedv"
_VALUE_OPTIONS = "iwl"

USAGE = (
    "Usage:\n"
    "  heatshrink [-h] [-e|-d] [-v] [-w SIZE] [-l BITS] [IN_FILE] [OUT_FILE]\n"
    "\n"
    "heatshrink compresses or decompresses byte streams using LZSS, and is\n"
    "designed especially for embedded, low-memory, and/or hard real-time\n"
    "systems.\n"
    "\n"
    " -h        print help\n"
    " -e        encode (compress, default)\n"
    " -d        decode (decompress)\n"
    " -v        verbose (print input & output sizes, compression ratio, etc.)\n"
    "\n"
    " -w SIZE   Base-2 log of LZSS sliding window size\n"
    "\n"
    "    A larger value allows searches a larger history of the data for repeated\n"
    "    patterns, potentially compressing more effectively, but will use\n"
    "    more memory and processing time.\n"
    "    Recommended default: -w 8 (embedded systems), -w 10 (elsewhere)\n"
    "  \n"
    " -l BITS   Number of bits used for back-reference lengths\n"
    "\n"
    "    A larger value allows longer substitutions, but since all\n"
    "    back-references must use -w + -l bits, larger -w or -l can be\n"
    "    counterproductive if most patterns are small and/or local.\n"
    "    Recommended default: -l 4\n"
    "\n"
    " If IN_FILE or OUT_FILE are unspecified, they will default to\n"
    ' "-" for standard input and standard output, respectively.\n'
)


class Operation(enum.Enum):
    """What the command does with its input."""

    ENCODE = "encode"
    DECODE = "decode"


@dataclass
class Config:
    """Settings gathered from the command line."""

    window_sz2: int = DEFAULT_WINDOW_SZ2
    lookahead_sz2: int = DEFAULT_LOOKAHEAD_SZ2
    decoder_input_buffer_size: int = DEFAULT_DECODER_INPUT_BUFFER_SIZE
    buffer_size: int = DEFAULT_BUFFER_SIZE
    verbose: int = 0
    operation: Operation = Operation.ENCODE
    in_name: str = "-"
    out_name: str = "-"
    show_help: bool = False


_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    """Parse a leading integer the lenient way: no digits means zero."""
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def _apply_value(config: Config, option: str, value: str) -> None:
    number = _atoi(value)
    if option == "i":
        config.decoder_input_buffer_size = number
    elif option == "w":
        config.window_sz2 = number
    else:
        config.lookahead_sz2 = number


def _apply_flag(config: Config, option: str) -> None:
    if option == "h":
        config.show_help = True
    elif option == "e":
        config.operation = Operation.ENCODE
    elif option == "d":
        config.operation = Operation.DECODE
    else:
        config.verbose += 1


def parse_args(argv) -> Config:
    """Build a :class:`Config` from command line arguments.

    Raises ValueError for an unknown option or a missing option argument.
    """
    config = Config()
    positional: list[str] = []
    args = list(argv)
    pos = 0
    while pos < len(args):
        arg = args[pos]
        pos += 1
        if arg == "--":
            positional.extend(args[pos:])
            break
        if not arg.startswith("-") or arg == "-":
            positional.append(arg)
            continue
        letters = arg[1:]
        while letters:
            option, letters = letters[0], letters[1:]
            if option in _FLAG_OPTIONS:
                _apply_flag(config, option)
                if config.show_help:
                    return config
            elif option in _VALUE_OPTIONS:
                if letters:
                    value, letters = letters, ""
                elif pos < len(args):
                    value = args[pos]
                    pos += 1
                else:
                    raise ValueError(f"option requires an argument -- {option}")
                _apply_value(config, option, value)
            else:
                raise ValueError(f"illegal option -- {option}")
    if positional:
        config.in_name = positional[0]
    if len(positional) > 1:
        config.out_name = positional[1]
    return config


def _drain(poll: Callable[[int], tuple[bytes, PollResult]], sink: BinaryIO, size: int) -> int:
    written = 0
    while True:
        piece, result = poll(size)
        if piece:
            sink.write(piece)
            written += len(piece)
        if result is PollResult.EMPTY:
            return written


def encode_stream(
    source: BinaryIO,
    sink: BinaryIO,
    window_sz2: int = DEFAULT_WINDOW_SZ2,
    lookahead_sz2: int = DEFAULT_LOOKAHEAD_SZ2,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> tuple[int, int]:
    """Compress *source* into *sink*; return (bytes read, bytes written)."""
    encoder = HeatshrinkEncoder(window_sz2, lookahead_sz2)
    window = 1 << window_sz2
    in_total = out_total = 0
    while chunk := source.read(window):
        in_total += len(chunk)
        view = memoryview(chunk)
        while view:
            sunk = encoder.sink(view)
            view = view[sunk:]
            out_total += _drain(encoder.poll, sink, buffer_size)
    while encoder.finish() is FinishResult.MORE:
        out_total += _drain(encoder.poll, sink, buffer_size)
    return in_total, out_total


def decode_stream(
    source: BinaryIO,
    sink: BinaryIO,
    window_sz2: int = DEFAULT_WINDOW_SZ2,
    lookahead_sz2: int = DEFAULT_LOOKAHEAD_SZ2,
    input_buffer_size: int = DEFAULT_DECODER_INPUT_BUFFER_SIZE,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> tuple[int, int]:
    """Decompress *source* into *sink*; return (bytes read, bytes written)."""
    decoder = HeatshrinkDecoder(input_buffer_size, window_sz2, lookahead_sz2)
    window = 1 << window_sz2
    in_total = out_total = 0
    while chunk := source.read(window):
        in_total += len(chunk)
        view = memoryview(chunk)
        while view:
            sunk = decoder.sink(view)
            view = view[sunk:]
            out_total += _drain(decoder.poll, sink, buffer_size)
    while decoder.finish() is FinishResult.MORE:
        out_total += _drain(decoder.poll, sink, buffer_size)
    return in_total, out_total


def report(in_name: str, in_total: int, out_total: int, window_sz2: int, lookahead_sz2: int) -> str:
    """Describe the space saved by a run, as the verbose option prints it."""
    if in_total:
        saved = 100.0 - (100.0 * out_total) / in_total
    else:
        saved = math.nan if out_total == 0 else -math.inf
    return (
        f"{in_name} {saved:0.2f} %\t {in_total} -> {out_total} "
        f"(-w {window_sz2} -l {lookahead_sz2})"
    )


def _open_input(stack: contextlib.ExitStack, name: str) -> BinaryIO:
    if name == "-":
        return sys.stdin.buffer
    return stack.enter_context(open(name, "rb"))


def _open_output(stack: contextlib.ExitStack, name: str) -> BinaryIO:
    if name == "-":
        return sys.stdout.buffer
    return stack.enter_context(open(name, "wb"))


def main(argv=None) -> int:
    """Run the command; return the process exit status."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        config = parse_args(args)
    except ValueError as exc:
        print(f"{_PROG}: {exc}", file=sys.stderr)
        sys.stderr.write(USAGE)
        return 1
    if config.show_help:
        sys.stderr.write(USAGE)
        return 1

    if config.in_name == config.out_name and config.in_name != "-":
        print(f"Refusing to overwrite file '{config.in_name}' with itself.", file=sys.stderr)
        return 1

    try:
        with contextlib.ExitStack() as stack:
            source = _open_input(stack, config.in_name)
            sink = _open_output(stack, config.out_name)
            try:
                if config.operation is Operation.ENCODE:
                    totals = encode_stream(
                        source, sink, config.window_sz2, config.lookahead_sz2, config.buffer_size
                    )
                else:
                    totals = decode_stream(
                        source,
                        sink,
                        config.window_sz2,
                        config.lookahead_sz2,
                        config.decoder_input_buffer_size,
                        config.buffer_size,
                    )
            except HeatshrinkError:
                message = (
                    "failed to init encoder: bad settings"
                    if config.operation is Operation.ENCODE
                    else "failed to init decoder"
                )
                print(message, file=sys.stderr)
                return 1
            sink.flush()
    except OSError as exc:
        print(f"{_PROG}: open: {exc.strerror or exc}", file=sys.stderr)
        return 1

    if config.verbose:
        line = report(config.in_name, totals[0], totals[1], config.window_sz2, config.lookahead_sz2)
        stream = sys.stderr if config.out_name == "-" else sys.stdout
        print(line, file=stream)
    return 0


if __name__ == "__main__":
    sys.exit(main())