# magnet_uri.py
import base64
import binascii
from typing import List, NamedTuple, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

BTIH_PREFIX = "urn:btih:"


class MagnetError(ValueError):
    pass


class Magnet(NamedTuple):
    infohash: bytes
    display_name: Optional[str]
    trackers: List[str]
    peers: List[Tuple[str, int]]

    @property
    def infohash_hex(self) -> str:
        return self.infohash.hex()


def _parse_btih(value: str) -> bytes:
    """Accept the 40-char hex or 32-char base32 infohash forms."""
    if len(value) == 40:
        try:
            return bytes.fromhex(value)
        except ValueError:
            raise MagnetError(f"bad hex infohash: {value!r}") from None
    if len(value) == 32:
        try:
            return base64.b32decode(value.upper())
        except binascii.Error:
            raise MagnetError(f"bad base32 infohash: {value!r}") from None
    raise MagnetError(f"infohash has wrong length: {value!r}")


def _parse_peer(value: str) -> Optional[Tuple[str, int]]:
    # x.pe is host:port; IPv6 literals are bracketed
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        return None
    host = host.strip("[]")
    if not host or not 0 < int(port) < 65536:
        return None
    return host, int(port)


def parse_magnet(uri: str) -> Magnet:
    """
    Parse a BitTorrent magnet link (BEP 9). Only v1 "urn:btih:" topics are
    understood; anything else raises MagnetError.
    """
    parts = urlsplit(uri.strip())
    if parts.scheme.lower() != "magnet":
        raise MagnetError(f"not a magnet link: {uri!r}")

    params = parse_qs(parts.query)
    infohash = None
    for xt in params.get("xt", []):
        if xt.lower().startswith(BTIH_PREFIX):
            infohash = _parse_btih(xt[len(BTIH_PREFIX):])
            break
    if infohash is None:
        raise MagnetError(f"magnet link has no btih topic: {uri!r}")

    names = params.get("dn", [])
    peers = [p for p in (_parse_peer(v) for v in params.get("x.pe", [])) if p]
    return Magnet(
        infohash=infohash,
        display_name=names[0] if names else None,
        trackers=params.get("tr", []),
        peers=peers,
    )
