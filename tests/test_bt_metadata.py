"""Tests for bencode decoding and info-dict parsing."""

import pytest

from bt_metadata import FileEntry, Metadata, parse_metainfo
from dht_bencode import BencodeError, bdecode, bencode


def test_bencode_sorts_dict_keys() -> None:
    """Keys are emitted in byte order regardless of insertion order."""
    assert bencode({"b": 1, b"a": [b"x", "y"]}) == b"d1:al1:x1:ye1:bi1ee"


def test_bdecode_reports_end_of_object() -> None:
    """The returned index marks where the first object ends."""
    obj, end = bdecode(b"d1:ai-3ee" + b"trailing piece data")
    assert obj == {b"a": -3}
    assert end == 9


@pytest.mark.parametrize(
    "data",
    [b"", b"i12", b"l1:a", b"d1:ai1e", b"5:abc", b"x", b"di1ei2ee", b"iabce",
     b"i1_0e", b"i+1e", b"i 1e", b"i--1e", b"ie", b"i1-e", b"1_0:abcdefghij"],
)
def test_bdecode_rejects_malformed(data: bytes) -> None:
    """Truncated or invalid input raises BencodeError."""
    with pytest.raises(BencodeError):
        bdecode(data)


def test_bencode_rejects_unknown_types() -> None:
    """Floats and bools have no bencode form."""
    with pytest.raises(TypeError):
        bencode(1.5)
    with pytest.raises(TypeError):
        bencode(True)


def test_parse_single_file_info_dict() -> None:
    """A single-file torrent lists its name as the only file."""
    blob = bencode({"name": "ubuntu.iso", "length": 4_000_000_000, "piece length": 262144, "pieces": b""})
    assert parse_metainfo(blob) == Metadata("ubuntu.iso", [FileEntry("ubuntu.iso", 4_000_000_000)], 262144)


def test_parse_multi_file_keeps_order() -> None:
    """Multi-file paths are joined with '/' and stay in listed order."""
    info = {
        "name": "Show",
        "piece length": 16384,
        "files": [
            {"length": 10, "path": ["Season 1", "e01.srt"]},
            {"length": 700, "path": ["Season 1", "e01.mkv"]},
        ],
    }
    meta = parse_metainfo(bencode({"announce": "udp://t", "info": info}))
    assert meta.name == "Show"
    assert meta.files == [FileEntry("Season 1/e01.srt", 10), FileEntry("Season 1/e01.mkv", 700)]
    assert meta.total_length == 710


def test_parse_prefers_utf8_names() -> None:
    """name.utf-8 and path.utf-8 win over the legacy keys."""
    info = {
        "name": b"\xe9t\xe9",
        "name.utf-8": "été",
        "files": [{"length": 1, "path": [b"x"], "path.utf-8": ["é.txt"]}],
    }
    meta = parse_metainfo(bencode(info))
    assert meta.name == "été"
    assert meta.files == [FileEntry("é.txt", 1)]


def test_parse_rejects_garbage() -> None:
    """Non-dict or undecodable payloads raise ValueError."""
    with pytest.raises(ValueError):
        parse_metainfo(b"not bencode")
    with pytest.raises(ValueError):
        parse_metainfo(bencode([1, 2]))
