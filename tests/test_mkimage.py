import gzip
import io
import types

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from espfs_tools.decoder import decompress
from espfs_tools.format import (
    FLAG_GZIP,
    HEADER_SIZE,
    Compression,
    EspFsHeader,
    padded_length,
)
from espfs_tools.mkimage import (
    ImageOptions,
    build_image,
    compress_gzip,
    compress_heatshrink,
    finish_archive,
    main,
    parse_gzip_extensions,
    should_compress_gzip,
    write_file_entry,
)


def _walk(image):
    offset = 0
    entries = []
    while True:
        header = EspFsHeader.unpack(image, offset)
        offset += HEADER_SIZE
        if header.is_last():
            return entries, offset
        name = image[offset:offset + header.name_len].split(b"\0")[0].decode()
        offset += header.name_len
        stored = image[offset:offset + header.file_len_comp]
        offset += padded_length(header.file_len_comp)
        entries.append((name, header, stored))


def test_parse_gzip_extensions_skips_empty_items():
    assert parse_gzip_extensions("html,css,,js") == ("html", "css", "js")


def test_should_compress_gzip():
    exts = ("html", "css", "js", "svg")
    assert should_compress_gzip("index.html", exts)
    assert should_compress_gzip("a/b/style.css", exts)
    assert not should_compress_gzip("noext", exts)
    assert not should_compress_gzip("INDEX.HTML", exts)
    assert not should_compress_gzip("image.png", exts)


def test_heatshrink_parameter_byte_for_best_level():
    out = compress_heatshrink(b"abcabcabcabc", 9)
    assert out[0] == (13 << 4) | 4


def test_heatshrink_default_level_matches_level_8():
    data = b"hello hello hello hello"
    assert compress_heatshrink(data, -1) == compress_heatshrink(data, 8)
    assert compress_heatshrink(data, -1)[0] == (11 << 4) | 4


@pytest.mark.parametrize("level", [0, 10, -2])
def test_heatshrink_invalid_level(level):
    with pytest.raises(ValueError):
        compress_heatshrink(b"data", level)


@settings(max_examples=30, deadline=None)
@given(data=st.binary(max_size=600), level=st.integers(min_value=1, max_value=9))
def test_heatshrink_round_trip(data, level):
    out = compress_heatshrink(data, level)
    ws, ls = out[0] >> 4, out[0] & 0xF
    assert decompress(out[1:], ws, ls) == data


@given(st.binary(max_size=500))
def test_gzip_round_trip(data):
    out = compress_gzip(data, 9)
    assert out[:2] == b"\x1f\x8b"
    assert gzip.decompress(out) == data


def test_finish_archive_bytes():
    out = io.BytesIO()
    finish_archive(out)
    assert out.getvalue() == b"ESfs\x01\x00\x00\x00" + bytes(8)


def test_write_uncompressed_entry_layout():
    out = io.BytesIO()
    rate, comp = write_file_entry(out, "a.txt", b"hello", Compression.NONE)
    assert comp == "none"
    image = out.getvalue()
    assert len(image) % 4 == 0
    header = EspFsHeader.unpack(image)
    assert header.name_len == padded_length(len("a.txt") + 1)
    assert header.file_len_comp == header.file_len_decomp == 5
    assert header.flags == 0
    name_end = HEADER_SIZE + header.name_len
    assert image[HEADER_SIZE:name_end].rstrip(b"\0") == b"a.txt"
    assert image[name_end:name_end + 5] == b"hello"
    assert rate >= 100


def test_empty_file_rate_is_100():
    out = io.BytesIO()
    rate, comp = write_file_entry(out, "empty", b"", Compression.HEATSHRINK)
    assert rate == 100
    assert comp == "none"


def test_heatshrink_entry_round_trip():
    data = b"the quick brown fox " * 50
    out = io.BytesIO()
    rate, comp = write_file_entry(out, "fox.txt", data, Compression.HEATSHRINK, 9)
    assert comp == "heatshrink"
    assert rate < 100
    header = EspFsHeader.unpack(out.getvalue())
    assert header.compression == Compression.HEATSHRINK
    assert header.file_len_decomp == len(data)
    start = HEADER_SIZE + header.name_len
    stored = out.getvalue()[start:start + header.file_len_comp]
    assert decompress(stored[1:], stored[0] >> 4, stored[0] & 0xF) == data


def test_compression_that_grows_reverts_to_none():
    out = io.BytesIO()
    _, comp = write_file_entry(out, "x", b"ab", Compression.HEATSHRINK)
    header = EspFsHeader.unpack(out.getvalue())
    assert comp == "none"
    assert header.compression == Compression.NONE
    assert header.file_len_comp == 2


def test_gzip_entry():
    data = b"<html><body>hello</body></html>" * 20
    out = io.BytesIO()
    _, comp = write_file_entry(
        out, "index.html", data, Compression.HEATSHRINK, 9, ("html",)
    )
    header = EspFsHeader.unpack(out.getvalue())
    assert comp == "gzip"
    assert header.flags & FLAG_GZIP
    assert header.compression == Compression.NONE
    start = HEADER_SIZE + header.name_len
    stored = out.getvalue()[start:start + header.file_len_comp]
    assert gzip.decompress(stored) == data


def test_unknown_compression_raises():
    with pytest.raises(ValueError):
        write_file_entry(io.BytesIO(), "f.bin", b"data", 7)


def test_build_image(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "a.txt").write_bytes(b"alpha")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.bin").write_bytes(b"\x00\x01\x02")
    out = io.BytesIO()
    options = ImageOptions(compression=Compression.NONE, gzip_extensions=())
    result = build_image(out, ["./a.txt", "./sub", "./sub/b.bin", "./missing"], options)
    assert [name for name, _, _ in result] == ["a.txt", "sub/b.bin"]
    entries, end = _walk(out.getvalue())
    assert end == len(out.getvalue())
    assert [(name, stored) for name, _, stored in entries] == [
        ("a.txt", b"alpha"),
        ("sub/b.bin", b"\x00\x01\x02"),
    ]
    err = capsys.readouterr().err
    assert "./missing" in err
    assert "a.txt (" in err


def test_main_bad_option_prints_usage(capsys):
    assert main(["-x"]) == 0
    assert "Usage" in capsys.readouterr().err


def test_main_rejects_level_out_of_range(capsys):
    assert main(["-l", "0"]) == 0
    assert "Usage" in capsys.readouterr().err


def test_main_builds_image_from_stdin(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "page.html").write_bytes(b"<p>hi</p>" * 40)
    (tmp_path / "raw.dat").write_bytes(b"raw data")
    stdout = types.SimpleNamespace(buffer=io.BytesIO())
    monkeypatch.setattr("sys.stdin", io.StringIO("./page.html\n./raw.dat\n"))
    monkeypatch.setattr("sys.stdout", stdout)
    assert main(["-c", "0", "-g", "html"]) == 0
    entries, _ = _walk(stdout.buffer.getvalue())
    names = [name for name, _, _ in entries]
    assert names == ["page.html", "raw.dat"]
    page_header, page_stored = entries[0][1], entries[0][2]
    assert page_header.flags & FLAG_GZIP
    assert gzip.decompress(page_stored) == b"<p>hi</p>" * 40
    assert entries[1][2] == b"raw data"


def test_main_unknown_compression_fails(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "f.bin").write_bytes(b"content")
    stdout = types.SimpleNamespace(buffer=io.BytesIO())
    monkeypatch.setattr("sys.stdin", io.StringIO("./f.bin\n"))
    monkeypatch.setattr("sys.stdout", stdout)
    assert main(["-c", "5"]) == 1
    assert "Unknown compression" in capsys.readouterr().err