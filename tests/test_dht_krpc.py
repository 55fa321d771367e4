"""Tests for compact encodings and the iterative get_peers walk."""

import socket
import struct
import threading

from dht_krpc import DHTClient, parse_compact_nodes, parse_compact_peers, xor_distance

TARGET = b"\x00" * 20


def compact_peer(ip: str, port: int) -> bytes:
    return socket.inet_aton(ip) + struct.pack("!H", port)


def compact_node(nid: bytes, ip: str, port: int) -> bytes:
    return nid + compact_peer(ip, port)


class ScriptedClient(DHTClient):
    """get_peers answers come from a dict keyed by node address."""

    def __init__(self, answers):
        super().__init__(bind_ip="127.0.0.1")
        self.answers = answers
        self.asked = []

    def get_peers(self, addr, infohash):
        self.asked.append(addr)
        return self.answers.get(addr)


def test_parse_compact_peers_skips_junk() -> None:
    """Short entries and port zero are dropped."""
    values = [compact_peer("1.2.3.4", 6881), b"\x01\x02", compact_peer("5.6.7.8", 0), "str"]
    assert parse_compact_peers(values) == [("1.2.3.4", 6881)]
    assert parse_compact_peers(None) == []


def test_parse_compact_nodes_ignores_trailing_bytes() -> None:
    """A partial trailing entry is cut off."""
    data = compact_node(b"\x11" * 20, "9.9.9.9", 53) + b"\x00\x01"
    assert parse_compact_nodes(data) == [(b"\x11" * 20, "9.9.9.9", 53)]
    assert parse_compact_nodes(None) == []


def test_xor_distance() -> None:
    """Distance is the XOR of the ids as big-endian integers."""
    assert xor_distance(b"\x00\x01", b"\x00\x03") == 2
    assert xor_distance(TARGET, TARGET) == 0


def test_find_peers_walks_closest_nodes_first() -> None:
    """Peers from every reached node are yielded once, nearer nodes asked first."""
    seed = ("10.0.0.1", 6881)
    near = ("10.0.0.2", 6881)
    far = ("10.0.0.3", 6881)
    answers = {
        seed: {
            b"nodes": compact_node(b"\xff" * 20, *far) + compact_node(b"\x00" * 19 + b"\x01", *near),
            b"values": [compact_peer("1.1.1.1", 1)],
        },
        near: {b"values": [compact_peer("1.1.1.1", 1), compact_peer("2.2.2.2", 2)]},
        far: {b"values": [compact_peer("3.3.3.3", 3)]},
    }
    client = ScriptedClient(answers)
    try:
        peers = list(client.find_peers(TARGET, [seed]))
    finally:
        client.close()
    assert peers == [("1.1.1.1", 1), ("2.2.2.2", 2), ("3.3.3.3", 3)]
    assert client.asked == [seed, near, far]


def test_find_peers_stops_on_request() -> None:
    """A set stop event ends the walk before any query."""
    stop = threading.Event()
    stop.set()
    client = ScriptedClient({})
    try:
        assert list(client.find_peers(TARGET, [("10.0.0.1", 6881)], stop=stop)) == []
    finally:
        client.close()
    assert client.asked == []


def test_find_peers_respects_query_cap() -> None:
    """Each node points at a new one; the walk halts at max_queries."""
    answers = {}
    for i in range(1, 20):
        answers[("10.0.1.%d" % i, 1)] = {b"nodes": compact_node(bytes([i]) * 20, "10.0.1.%d" % (i + 1), 1)}
    client = ScriptedClient(answers)
    try:
        list(client.find_peers(TARGET, [("10.0.1.1", 1)], max_queries=5))
    finally:
        client.close()
    assert len(client.asked) == 5
