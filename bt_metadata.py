# bt_metadata.py
import hashlib
import math
import os
import socket
import struct
import time
import zlib
from typing import Any, Dict, List, NamedTuple, Tuple

from dht_bencode import BencodeError, bdecode, bencode

# --- BitTorrent message helpers -------------------------------------------
PSTR = b"BitTorrent protocol"

MSG_ID_EXTENDED  = 20  # BEP-10
EXT_HANDSHAKE_ID = 0   # ext msg id for the "extended handshake"
UT_METADATA_ID   = 1   # id we advertise for incoming ut_metadata messages

UT_MSG_REQUEST = 0
UT_MSG_DATA    = 1
UT_MSG_REJECT  = 2

PIECE_LEN         = 16 * 1024
MAX_METADATA_SIZE = 10 * 1024 * 1024
MAX_MESSAGE_LEN   = 1024 * 1024
PEER_TIMEOUT      = 8.0


class PeerTimeout(Exception): ...
class PeerProtoError(Exception): ...


class FileEntry(NamedTuple):
    path: str
    length: int


class Metadata(NamedTuple):
    name: str
    files: List[FileEntry]
    piece_length: int = 0

    @property
    def total_length(self) -> int:
        return sum(f.length for f in self.files)


def _readn(sock: socket.socket, n: int) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        try:
            chunk = sock.recv(n - len(buf))
        except socket.timeout:
            raise PeerTimeout("recv timeout") from None
        if not chunk:
            raise PeerProtoError("peer closed")
        buf += chunk
    return bytes(buf)


def _read_msg(sock: socket.socket) -> Tuple[int, bytes]:
    """
    Returns (msg_id, payload); msg_id -1 is a keep-alive.
    """
    (length,) = struct.unpack("!I", _readn(sock, 4))
    if length == 0:
        return -1, b""
    if length > MAX_MESSAGE_LEN:
        raise PeerProtoError("message too large")
    payload = _readn(sock, length)
    return payload[0], payload[1:]


def _send_extended(sock: socket.socket, ext_id: int, payload: bytes) -> None:
    sock.sendall(struct.pack("!IBB", 2 + len(payload), MSG_ID_EXTENDED, ext_id) + payload)


def _read_extended(sock: socket.socket, want_ext_id: int, deadline: float) -> bytes:
    """Skip everything until an extended message with want_ext_id arrives."""
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        sock.settimeout(max(0.1, remaining))
        msg_id, payload = _read_msg(sock)
        if msg_id == MSG_ID_EXTENDED and payload and payload[0] == want_ext_id:
            return payload[1:]
    raise PeerTimeout(f"no extended message {want_ext_id}")


def bt_handshake(peer: Tuple[str, int], infohash: bytes, timeout: float = PEER_TIMEOUT) -> socket.socket:
    """
    Connect and perform the base BT handshake with the extension bit set.
    Returns a connected socket ready for messages.
    """
    try:
        s = socket.create_connection(peer, timeout=timeout)
    except OSError as e:
        raise PeerProtoError(f"connection failed: {e}") from None

    try:
        reserved = bytearray(8)
        reserved[5] |= 0x10  # BEP-10 extension protocol bit
        peer_id = b"-MS0100-" + os.urandom(12)
        s.sendall(bytes([len(PSTR)]) + PSTR + bytes(reserved) + infohash + peer_id)

        (n,) = struct.unpack("!B", _readn(s, 1))
        if n != len(PSTR) or _readn(s, n) != PSTR:
            raise PeerProtoError("bad protocol string")
        reserved2 = _readn(s, 8)
        if _readn(s, 20) != infohash:
            raise PeerProtoError("infohash mismatch")
        _readn(s, 20)  # peer id
        if not reserved2[5] & 0x10:
            raise PeerProtoError("peer lacks extension protocol")
    except Exception:
        s.close()
        raise
    return s


def ext_handshake(sock: socket.socket, deadline: float) -> Tuple[int, int]:
    """
    Exchange extended handshakes. Returns (peer's ut_metadata id, metadata_size).
    """
    _send_extended(sock, EXT_HANDSHAKE_ID, bencode({b"m": {b"ut_metadata": UT_METADATA_ID}}))
    try:
        resp, _ = bdecode(_read_extended(sock, EXT_HANDSHAKE_ID, deadline))
    except BencodeError as e:
        raise PeerProtoError(f"bad extended handshake: {e}") from None
    if not isinstance(resp, dict):
        raise PeerProtoError("bad extended handshake")

    m = resp.get(b"m")
    ut_id = m.get(b"ut_metadata") if isinstance(m, dict) else None
    if not isinstance(ut_id, int) or ut_id <= 0:
        raise PeerProtoError("peer does not support ut_metadata")
    size = resp.get(b"metadata_size")
    if not isinstance(size, int) or not 0 < size <= MAX_METADATA_SIZE:
        raise PeerProtoError(f"bad metadata_size {size!r}")
    return ut_id, size


def fetch_metadata(peer: Tuple[str, int], infohash: bytes, timeout: float = PEER_TIMEOUT) -> bytes:
    """
    Download the raw info dict from one peer over BEP 9 and verify it against
    infohash. Raises PeerProtoError / PeerTimeout on any failure.
    """
    deadline = time.monotonic() + timeout
    s = bt_handshake(peer, infohash, timeout=timeout)
    try:
        ut_id, size = ext_handshake(s, deadline)
        pieces = []
        for i in range(math.ceil(size / PIECE_LEN)):
            _send_extended(s, ut_id, bencode({b"msg_type": UT_MSG_REQUEST, b"piece": i}))
            while True:
                payload = _read_extended(s, UT_METADATA_ID, deadline)
                try:
                    hdr, idx = bdecode(payload)
                except BencodeError:
                    continue
                if not isinstance(hdr, dict) or hdr.get(b"piece") != i:
                    continue
                if hdr.get(b"msg_type") == UT_MSG_REJECT:
                    raise PeerProtoError(f"peer rejected piece {i}")
                if hdr.get(b"msg_type") == UT_MSG_DATA:
                    pieces.append(payload[idx:])
                    break
    finally:
        s.close()

    blob = b"".join(pieces)[:size]
    if blob.startswith(b"\x1f\x8b"):
        try:
            blob = zlib.decompress(blob, 16 + zlib.MAX_WBITS)
        except zlib.error as e:
            raise PeerProtoError(f"bad gzip metadata: {e}") from None
    if hashlib.sha1(blob).digest() != infohash:
        raise PeerProtoError("metadata hash mismatch")
    return blob


def _text(b: Any) -> str:
    return b.decode("utf-8", "replace") if isinstance(b, bytes) else ""


def parse_metainfo(meta_blob: bytes) -> Metadata:
    """
    Accepts either a bare info dict (what ut_metadata returns) or a full
    .torrent metainfo with an "info" key. Files keep their order in the dict.
    """
    try:
        obj, _ = bdecode(meta_blob)
    except BencodeError as e:
        raise ValueError(f"bad metainfo payload: {e}") from None
    if not isinstance(obj, dict):
        raise ValueError("bad metainfo payload")

    info: Dict[bytes, Any] = obj[b"info"] if isinstance(obj.get(b"info"), dict) else obj
    name = _text(info.get(b"name.utf-8") or info.get(b"name"))

    files: List[FileEntry] = []
    if isinstance(info.get(b"files"), list):  # multi-file mode
        for f in info[b"files"]:
            if not isinstance(f, dict):
                continue
            parts = f.get(b"path.utf-8") or f.get(b"path") or []
            path = "/".join(_text(p) for p in parts if isinstance(p, bytes))
            length = f.get(b"length", 0)
            files.append(FileEntry(path or "unknown", length if isinstance(length, int) else 0))
    elif isinstance(info.get(b"length"), int):  # single-file mode
        files.append(FileEntry(name, info[b"length"]))

    piece_len = info.get(b"piece length", 0)
    return Metadata(name, files, piece_len if isinstance(piece_len, int) else 0)
