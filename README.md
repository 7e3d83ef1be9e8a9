# espfs-tools

Tools for working with small read-only file system images of the EspFs kind,
as used on microcontroller flash, together with a pure-Python implementation
of the heatshrink LZSS compressor that those images use.

The package has no runtime dependencies.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Command line

### `espfs-heatshrink`

Compresses or decompresses a byte stream with heatshrink
(`espfs_tools.cli:main`).

```
espfs-heatshrink [-h] [-e|-d] [-v] [-w SIZE] [-l BITS] [-i SIZE] [IN_FILE] [OUT_FILE]
```

- `-e` encode (compress, the default), `-d` decode (decompress)
- `-w SIZE` base-2 log of the sliding window size (default 11)
- `-l BITS` number of bits used for back-reference lengths (default 4)
- `-i SIZE` decoder input buffer size (default 256)
- `-v` print input and output sizes and the percentage of space saved
- `-h` print help

`IN_FILE` and `OUT_FILE` default to `-`, meaning standard input and standard
output. The command refuses to use the same named file as both input and
output. Decoding must use the same `-w` and `-l` values as encoding; invalid
settings are reported and the command exits with status 1.

```
espfs-heatshrink -w 10 -l 4 page.html page.hs
espfs-heatshrink -d -w 10 -l 4 page.hs page.html
```

### `espfs-mkimage`

Builds an EspFs image from a list of file names read on standard input, one
per line, and writes the image to standard output
(`espfs_tools.mkimage:main`). Only regular files are included; a leading `.`
and then a leading `/` are stripped from each stored name, so `./web/a.css`
is stored as `web/a.css`. Paths that cannot be read are reported on standard
error and skipped.

```
find . -type f | espfs-mkimage [-c compressor] [-l level] [-g extensions] > out.espfs
```

- `-c` compressor: `0` none, `1` heatshrink (default)
- `-l` compression level, 1 to 9 (default 9); for heatshrink it selects the
  window and lookahead sizes
- `-g` comma-separated, case-sensitive list of file extensions to gzip
  (default `html,css,js,svg`)

A file whose extension is in the gzip list is gzipped instead of using the
chosen compressor. A line per file is reported on standard error with its
stored size as a percentage of the original and the compression used
(`none`, `heatshrink` or `gzip`). A file that would grow under compression is
stored uncompressed. Bad options print a usage message.

## Python API

Compression in one call:

```python
from espfs_tools.encoder import compress
from espfs_tools.decoder import decompress

packed = compress(b"hello hello hello hello", 8, 4)
assert decompress(packed, 8, 4, 64) == b"hello hello hello hello"
```

The streaming classes `HeatshrinkEncoder` and `HeatshrinkDecoder` offer
`sink`, `poll` and `finish` for feeding data in pieces; `poll` returns the
output produced together with a `PollResult`, and `finish` returns a
`FinishResult`. Invalid parameters or misuse raise `HeatshrinkError`.

Building an image from Python uses `espfs_tools.mkimage`: `build_image`
writes every regular file of a list of paths according to an `ImageOptions`,
while `write_file_entry` and `finish_archive` write single entries and the
closing header. `compress_heatshrink` and `compress_gzip` are the two
compressors.

Reading an image:

```python
from espfs_tools.espfs import EspFs

with open("out.espfs", "rb") as f:
    fs = EspFs(f.read())

with fs.open("/index.html") as handle:
    content = handle.read()

info = fs.stat("index.html")
```

`EspFs.open` raises `FileNotFoundError` for a missing name, and a broken
image raises `EspFsError`. An open `EspFsFile` supports `read`, `seek`,
`is_compressed`, `access` and `close`; compressed files can only be rewound
to the start, and `access` works only on uncompressed files.

`EspFsVfs` in `espfs_tools.vfs` wraps an `EspFs` behind a small
descriptor-based interface (`open`, `read`, `write`, `lseek`, `fstat`,
`stat`, `close`) with a fixed number of open files; every operation fails
with `VfsError` where it cannot be done, and `write` always fails.
`VfsRegistry` holds a fixed number of slots for mounted images.
The image layout itself is described by `EspFsHeader`, `Compression` and
`padded_length` in `espfs_tools.format`.

## What this package does not do

- Images are read from bytes in memory; nothing is read from a flash
  partition, and `EspFsVfs` is an in-process object, not a mount into the
  operating system's file system.
- `EspFs.stat` only recognises files: a path naming a directory is reported
  as missing.
- Images are read-only; there is no way to add to or change an image other
  than building a new one.