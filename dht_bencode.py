# dht_bencode.py
from typing import Tuple, Any, Union


class BencodeError(ValueError):
    pass


def bencode(x: Any) -> bytes:
    """
    Encode int, bytes, str, list and dict (str/bytes keys) into bencode.
    Dict keys are emitted in sorted byte order.
    """
    if isinstance(x, bool):
        raise TypeError("bool is not bencodable")
    if isinstance(x, int):
        return b"i%de" % x
    if isinstance(x, (bytes, bytearray)):
        return b"%d:%s" % (len(x), bytes(x))
    if isinstance(x, str):
        return bencode(x.encode("utf-8"))
    if isinstance(x, (list, tuple)):
        return b"l" + b"".join(bencode(i) for i in x) + b"e"
    if isinstance(x, dict):
        items = [((k if isinstance(k, bytes) else str(k).encode("utf-8")), v) for k, v in x.items()]
        items.sort(key=lambda kv: kv[0])
        return b"d" + b"".join(bencode(k) + bencode(v) for k, v in items) + b"e"
    raise TypeError(f"Unsupported type for bencode: {type(x)}")


def _decode_at(s: bytes, i: int) -> Tuple[Any, int]:
    if i >= len(s):
        raise BencodeError("unexpected end of data")

    c = s[i:i+1]
    if c == b"i":
        end = s.find(b"e", i + 1)
        if end == -1:
            raise BencodeError(f"unterminated integer at {i}")
        digits = s[i+1:end]
        if not digits.lstrip(b"-").isdigit() or digits.count(b"-") > 1:
            raise BencodeError(f"bad integer at {i}")
        return int(digits), end + 1

    if c == b"l":
        i += 1
        out = []
        while s[i:i+1] != b"e":
            if i >= len(s):
                raise BencodeError("unterminated list")
            item, i = _decode_at(s, i)
            out.append(item)
        return out, i + 1

    if c == b"d":
        i += 1
        d = {}
        while s[i:i+1] != b"e":
            if i >= len(s):
                raise BencodeError("unterminated dict")
            key, i = _decode_at(s, i)
            if not isinstance(key, bytes):
                raise BencodeError("dict key must be a byte string")
            d[key], i = _decode_at(s, i)
        return d, i + 1

    if c.isdigit():
        colon = s.find(b":", i)
        if colon == -1:
            raise BencodeError(f"string length missing colon at {i}")
        start = colon + 1
        if not s[i:colon].isdigit():
            raise BencodeError(f"bad string length at {i}")
        end = start + int(s[i:colon])
        if end > len(s):
            raise BencodeError("string length exceeds data")
        return s[start:end], end

    raise BencodeError(f"invalid bencode at position {i}: byte {c!r}")


def bdecode(s: Union[bytes, bytearray, memoryview]) -> Tuple[Any, int]:
    """
    Decode one object from the start of s. Returns (obj, next_index); callers
    that need the raw span of the object (e.g. to hash an info dict) use
    next_index, and trailing bytes after it are left to the caller.
    """
    return _decode_at(bytes(s), 0)
