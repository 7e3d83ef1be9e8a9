"""Build espfs images from a list of files.

File names are read one per line from standard input, typically the
output of ``find``; the image is written to standard output and a short
report for each file goes to standard error.
"""

from __future__ import annotations

import os
import re
import stat
import sys
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterable

from espfs_tools.encoder import compress
from espfs_tools.format import (
    FLAG_GZIP,
    FLAG_LASTFILE,
    Compression,
    EspFsHeader,
    padded_length,
)

DEFAULT_LEVEL = 9
DEFAULT_GZIP_EXTENSIONS = ("html", "css", "js", "svg")

_PROG = "mkespfsimage"
# Heatshrink window and lookahead sizes for each pair of compression levels.
_WINDOW_BITS = (5, 6, 8, 11, 13)
_LOOKAHEAD_BITS = (3, 3, 4, 4, 4)

_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")


@dataclass
class ImageOptions:
    """How files are stored in an image."""

    compression: int = Compression.HEATSHRINK
    level: int = DEFAULT_LEVEL
    gzip_extensions: tuple[str, ...] = DEFAULT_GZIP_EXTENSIONS


def _atoi(text: str) -> int:
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def compress_heatshrink(data, level: int = -1) -> bytes:
    """Heatshrink-compress *data*, prefixed by a byte holding the encoder parameters.

    *level* runs from 1 (least memory) to 9 (best compression); -1 picks the default.
    """
    if level == -1:
        level = 8
    if not 1 <= level <= 9:
        raise ValueError(f"compression level must be between 1 and 9, not {level}")
    choice = (level - 1) // 2
    window_sz2 = _WINDOW_BITS[choice]
    lookahead_sz2 = _LOOKAHEAD_BITS[choice]
    params = bytes([(window_sz2 << 4) | lookahead_sz2])
    return params + compress(bytes(data), window_sz2, lookahead_sz2)


def compress_gzip(data, level: int = DEFAULT_LEVEL) -> bytes:
    """Compress *data* into a gzip stream at the given zlib level."""
    compressor = zlib.compressobj(level, zlib.DEFLATED, 31, 8, zlib.Z_DEFAULT_STRATEGY)
    return compressor.compress(bytes(data)) + compressor.flush()


def parse_gzip_extensions(text: str) -> tuple[str, ...]:
    """Split a comma separated list of file extensions, dropping empty items."""
    return tuple(item for item in text.split(",") if item)


def should_compress_gzip(name: str, extensions: Iterable[str]) -> bool:
    """True if the extension after the last dot of *name* is listed (case sensitive)."""
    dot = name.rfind(".")
    if dot < 0:
        return False
    return name[dot + 1:] in tuple(extensions)


def _compression_name(header: EspFsHeader) -> str:
    if header.compression == Compression.HEATSHRINK:
        return "heatshrink"
    if header.compression == Compression.NONE:
        return "gzip" if header.flags & FLAG_GZIP else "none"
    return "unknown"


def write_file_entry(
    out: BinaryIO,
    name,
    data,
    compression: int = Compression.NONE,
    level: int = DEFAULT_LEVEL,
    gzip_extensions: Iterable[str] = (),
) -> tuple[int, str]:
    """Append one file to an image.

    Returns the stored size as a percentage of the original, and the name
    of the compression that was used.
    """
    text_name = os.fsdecode(name)
    raw_name = os.fsencode(name)
    data = bytes(data)
    flags = 0
    extensions = tuple(gzip_extensions)

    if extensions and should_compress_gzip(text_name, extensions):
        stored = compress_gzip(data, level)
        compression = Compression.NONE
        flags = FLAG_GZIP
    elif compression == Compression.NONE:
        stored = data
    elif compression == Compression.HEATSHRINK:
        stored = compress_heatshrink(data, level)
    else:
        raise ValueError(f"Unknown compression - {compression}")

    if len(stored) > len(data):
        # Compression made the file bigger: store it as it is.
        compression = Compression.NONE
        stored = data
        flags = 0

    name_len = len(raw_name) + 1
    header = EspFsHeader(
        flags=flags,
        compression=compression,
        name_len=padded_length(name_len),
        file_len_comp=len(stored),
        file_len_decomp=len(data),
    )
    out.write(header.pack())
    out.write(raw_name + b"\0" * (1 + padded_length(name_len) - name_len))
    stored_len = padded_length(len(stored))
    out.write(stored + b"\0" * (stored_len - len(stored)))

    size = len(data)
    rate = (stored_len * 100) // size if size else 100
    return rate, _compression_name(header)


def finish_archive(out: BinaryIO) -> None:
    """Write the data-less header that ends an image."""
    out.write(EspFsHeader(flags=FLAG_LASTFILE, compression=Compression.NONE).pack())


def _image_name(path: str) -> str:
    name = path
    if name.startswith("."):
        name = name[1:]
    if name.startswith("/"):
        name = name[1:]
    return name


def build_image(
    out: BinaryIO,
    paths: Iterable,
    options: ImageOptions | None = None,
) -> list[tuple[str, int, str]]:
    """Write an image holding the regular files among *paths*.

    Paths that cannot be read are reported on standard error and skipped;
    anything that is not a regular file is skipped silently. Returns
    (name, rate, compression name) for each stored file.
    """
    options = options or ImageOptions()
    entries: list[tuple[str, int, str]] = []
    for raw_path in paths:
        path = os.fspath(raw_path)
        try:
            info = os.stat(path)
        except OSError as exc:
            print(f"{path}: {exc.strerror or exc}", file=sys.stderr)
            continue
        if not stat.S_ISREG(info.st_mode):
            continue
        name = _image_name(path)
        try:
            with open(path, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            print(f"{path}: {exc.strerror or exc}", file=sys.stderr)
            continue
        rate, comp_name = write_file_entry(
            out, name, data, options.compression, options.level, options.gzip_extensions
        )
        print(f"{name} ({rate}%, {comp_name})", file=sys.stderr)
        entries.append((name, rate, comp_name))
    finish_archive(out)
    return entries


def _usage() -> str:
    return (
        f"{_PROG} - Program to create espfs images\n"
        f"Usage: \nfind | {_PROG} [-c compressor] [-l compression_level] "
        "[-g gzipped_extensions] > out.espfs\n"
        "Compressors:\n"
        "0 - None\n1 - Heatshrink(default)\n"
        "\nCompression level: 1 is worst but low RAM usage, higher is better compression \n"
        "but uses more ram on decompression. -1 = compressors default.\n"
        "\nGzipped extensions: list of comma separated, case sensitive file extensions \n"
        "that will be gzipped. Defaults to 'html,css,js,svg'\n"
    )


def _parse_options(args: list[str]) -> ImageOptions | None:
    options = ImageOptions()
    pos = 0
    while pos < len(args):
        arg = args[pos]
        if arg not in ("-c", "-l", "-g") or pos + 1 >= len(args):
            return None
        value = args[pos + 1]
        pos += 2
        if arg == "-c":
            options.compression = _atoi(value)
        elif arg == "-l":
            options.level = _atoi(value)
            if not 1 <= options.level <= 9:
                return None
        else:
            options.gzip_extensions = parse_gzip_extensions(value)
    return options


def main(argv=None) -> int:
    """Read file names from standard input and write an image to standard output."""
    args = sys.argv[1:] if argv is None else list(argv)
    options = _parse_options(args)
    if options is None:
        sys.stderr.write(_usage())
        return 0

    paths = (line[:-1] if line.endswith("\n") else line for line in sys.stdin)
    out = sys.stdout.buffer
    try:
        build_image(out, paths, options)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1
    finally:
        out.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())