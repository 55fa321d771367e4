# dht_krpc.py
import heapq
import logging
import os
import socket
import struct
import threading
import time
from typing import Dict, Iterator, List, Optional, Set, Tuple

from dht_bencode import BencodeError, bdecode, bencode

logger = logging.getLogger(__name__)

Addr = Tuple[str, int]

BOOTSTRAP = [
    ("router.bittorrent.com", 6881),
    ("dht.transmissionbt.com", 6881),
    ("router.utorrent.com", 6881),
    ("dht.libtorrent.org", 25401),
]

QUERY_TIMEOUT = 2.0      # seconds to wait for one KRPC reply
LOOKUP_WIDTH = 8         # closest unqueried nodes asked per round
MAX_QUERIES = 200        # hard cap on get_peers queries per lookup


# --- Helpers ---------------------------------------------------------------

def rand_node_id() -> bytes:
    return os.urandom(20)


def rand_tid(n: int = 2) -> bytes:
    return os.urandom(n)


def xor_distance(a: bytes, b: bytes) -> int:
    return int.from_bytes(a, "big") ^ int.from_bytes(b, "big")


def parse_compact_peers(values) -> List[Addr]:
    """
    'values' is a list of 6-byte compact entries: ip(4) + port(2 big-endian).
    """
    out: List[Addr] = []
    for v in values or []:
        if not isinstance(v, bytes) or len(v) != 6:
            continue
        ip = socket.inet_ntoa(v[:4])
        (port,) = struct.unpack("!H", v[4:6])
        if port:
            out.append((ip, port))
    return out


def parse_compact_nodes(data: bytes) -> List[Tuple[bytes, str, int]]:
    """
    Kademlia 'nodes' is a concatenation of 26-byte entries:
      node_id(20) + IPv4(4) + port(2 big-endian)
    """
    out = []
    if not isinstance(data, bytes):
        return out
    usable = len(data) - len(data) % 26
    for i in range(0, usable, 26):
        nid = data[i:i+20]
        ip = socket.inet_ntoa(data[i+20:i+24])
        (port,) = struct.unpack("!H", data[i+24:i+26])
        if port:
            out.append((nid, ip, port))
    return out


def resolve_bootstrap(routers: List[Addr]) -> List[Addr]:
    out = []
    for host, port in routers:
        try:
            out.append((socket.gethostbyname(host), port))
        except (socket.gaierror, UnicodeError):
            logger.info("DNS failed for %s", host)
    return out


# --- KRPC Client -----------------------------------------------------------

class DHTClient:
    """
    Minimal KRPC client over one UDP socket. Not safe for concurrent use:
    replies are matched by transaction id on a shared socket, so give each
    lookup thread its own client.
    """

    def __init__(self, bind_ip: str = "0.0.0.0", bind_port: int = 0, timeout: float = QUERY_TIMEOUT):
        self.node_id = rand_node_id()
        self.timeout = timeout
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind((bind_ip, bind_port))
        self.sock.settimeout(timeout)

    def close(self):
        try:
            self.sock.close()
        except OSError:
            pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # --- Send/receive ---

    def _send_query(self, addr: Addr, q: str, args: Dict[bytes, object]) -> bytes:
        t = rand_tid()
        msg = {b"t": t, b"y": b"q", b"q": q.encode("ascii"), b"a": {**args, b"id": self.node_id}}
        self.sock.sendto(bencode(msg), addr)
        return t

    def _recv(self) -> Optional[dict]:
        try:
            data, _src = self.sock.recvfrom(65535)
        except socket.timeout:
            return None
        try:
            obj, _ = bdecode(data)
        except (BencodeError, ValueError):
            return None
        return obj if isinstance(obj, dict) else None

    def _query(self, addr: Addr, q: str, args: Dict[bytes, object]) -> Optional[dict]:
        try:
            t = self._send_query(addr, q, args)
        except OSError as e:
            logger.debug("send to %s:%d failed: %s", addr[0], addr[1], e)
            return None
        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            obj = self._recv()
            if obj and obj.get(b"t") == t and obj.get(b"y") == b"r":
                r = obj.get(b"r")
                return r if isinstance(r, dict) else None
        return None

    # --- Queries we need ---

    def find_node(self, addr: Addr, target: Optional[bytes] = None) -> Optional[dict]:
        return self._query(addr, "find_node", {b"target": target or rand_node_id()})

    def get_peers(self, addr: Addr, infohash: bytes) -> Optional[dict]:
        return self._query(addr, "get_peers", {b"info_hash": infohash})

    def find_peers(
        self,
        infohash: bytes,
        seeds: List[Addr],
        stop: Optional[threading.Event] = None,
        max_queries: int = MAX_QUERIES,
    ) -> Iterator[Addr]:
        """
        Iterative get_peers walk towards infohash, yielding each newly seen
        peer as soon as a node returns it. Nodes are queried closest-first by
        XOR distance; seeds (bootstrap routers) go first.
        """
        frontier: List[Tuple[int, int, Addr]] = []
        asked: Set[Addr] = set()
        seen_peers: Set[Addr] = set()
        order = 0
        for addr in seeds:
            heapq.heappush(frontier, (-1, order, addr))
            order += 1

        queries = 0
        while frontier and queries < max_queries:
            if stop is not None and stop.is_set():
                return
            batch = []
            while frontier and len(batch) < LOOKUP_WIDTH:
                _, _, addr = heapq.heappop(frontier)
                if addr not in asked:
                    asked.add(addr)
                    batch.append(addr)

            for addr in batch:
                if stop is not None and stop.is_set():
                    return
                queries += 1
                r = self.get_peers(addr, infohash)
                if not r:
                    continue
                for peer in parse_compact_peers(r.get(b"values")):
                    if peer not in seen_peers:
                        seen_peers.add(peer)
                        yield peer
                for nid, ip, port in parse_compact_nodes(r.get(b"nodes", b"")):
                    if (ip, port) not in asked:
                        heapq.heappush(frontier, (xor_distance(nid, infohash), order, (ip, port)))
                        order += 1

        logger.debug("lookup %s finished after %d queries, %d peers", infohash.hex(), queries, len(seen_peers))
