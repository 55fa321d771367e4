# metadata_source.py
"""
Metadata sources turn a magnet link into torrent metadata in the background.

A source's begin_resolve() registers interest in one identifier and returns a
ResolveHandle immediately; the handle's `ready` event fires once metadata is
available or the source has given up. begin_resolve() itself is not required
to be thread-safe, waiting on distinct handles is.
"""
import logging
import threading
from typing import Callable, Iterable, List, Optional, Protocol, Tuple

from bt_metadata import PEER_TIMEOUT, Metadata, PeerProtoError, PeerTimeout, fetch_metadata, parse_metainfo
from dht_krpc import BOOTSTRAP, DHTClient, resolve_bootstrap
from magnet_uri import Magnet, parse_magnet

logger = logging.getLogger(__name__)

Addr = Tuple[str, int]

PEERS_PER_MAGNET = 50  # peers tried before a lookup gives up


class ResolveError(Exception):
    pass


class ResolveHandle:
    """One in-flight resolution. Completed exactly once by the source."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        self.ready = threading.Event()
        self._metadata: Optional[Metadata] = None
        self._error: Optional[BaseException] = None

    def set_metadata(self, metadata: Metadata) -> None:
        if self.ready.is_set():
            return
        self._metadata = metadata
        self.ready.set()

    def set_error(self, error: BaseException) -> None:
        if self.ready.is_set():
            return
        self._error = error
        self.ready.set()

    def metadata(self) -> Metadata:
        if not self.ready.is_set():
            raise RuntimeError(f"metadata for {self.identifier} is not ready")
        if self._error is not None:
            raise ResolveError(str(self._error)) from self._error
        return self._metadata


class MetadataSource(Protocol):
    def begin_resolve(self, identifier: str) -> ResolveHandle: ...

    def close(self) -> None: ...


PeerFinder = Callable[[bytes, threading.Event], Iterable[Addr]]
Fetcher = Callable[[Addr, bytes], bytes]


class DHTMetadataSource:
    """
    Resolves magnet links via the mainline DHT and BEP 9 metadata exchange.

    Each handle gets its own daemon thread and its own UDP socket. Peers named
    in the magnet (x.pe) are tried before the DHT walk. Lookups are never
    cancelled by a caller's timeout; they run until they succeed, run out of
    peers, or the source is closed.

    find_peers and fetch are injectable so the lookup loop can run without a
    network.
    """

    def __init__(
        self,
        bootstrap: List[Addr] = BOOTSTRAP,
        peers_per_magnet: int = PEERS_PER_MAGNET,
        peer_timeout: float = PEER_TIMEOUT,
        find_peers: Optional[PeerFinder] = None,
        fetch: Optional[Fetcher] = None,
    ):
        self.bootstrap = bootstrap
        self.peers_per_magnet = peers_per_magnet
        self.peer_timeout = peer_timeout
        self._find_peers = find_peers or self._dht_peers
        self._fetch = fetch or (lambda peer, ih: fetch_metadata(peer, ih, timeout=self.peer_timeout))
        self._stop = threading.Event()
        self._seeds: Optional[List[Addr]] = None
        self._seeds_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def begin_resolve(self, identifier: str) -> ResolveHandle:
        """
        Raises MagnetError for a malformed link and RuntimeError once closed.
        """
        if self.closed:
            raise RuntimeError("metadata source is closed")
        magnet = parse_magnet(identifier)
        handle = ResolveHandle(identifier)
        t = threading.Thread(
            target=self._lookup,
            args=(magnet, handle),
            name=f"lookup-{magnet.infohash_hex[:8]}",
            daemon=True,
        )
        t.start()
        return handle

    def close(self) -> None:
        """Tell every lookup to stop. Lookup threads notice between peers."""
        self._stop.set()

    def _dht_peers(self, infohash: bytes, stop: threading.Event) -> Iterable[Addr]:
        with self._seeds_lock:
            seeds = self._seeds
            if not seeds:
                # an empty answer (DNS down) is retried by the next lookup
                seeds = resolve_bootstrap(self.bootstrap)
                if seeds:
                    self._seeds = seeds
                else:
                    logger.warning("no DHT bootstrap router could be resolved")
        with DHTClient() as client:
            yield from client.find_peers(infohash, seeds, stop=stop)

    def _candidates(self, magnet: Magnet) -> Iterable[Addr]:
        yield from magnet.peers
        yield from self._find_peers(magnet.infohash, self._stop)

    def _lookup(self, magnet: Magnet, handle: ResolveHandle) -> None:
        ih = magnet.infohash_hex
        tried = 0
        try:
            for peer in self._candidates(magnet):
                if self.closed:
                    handle.set_error(ResolveError("source closed"))
                    return
                if tried >= self.peers_per_magnet:
                    break
                tried += 1
                try:
                    blob = self._fetch(peer, magnet.infohash)
                    metadata = parse_metainfo(blob)
                except (PeerProtoError, PeerTimeout, OSError, ValueError) as e:
                    logger.debug("%s: no metadata from %s:%d - %s", ih, peer[0], peer[1], e)
                    continue
                logger.info("%s: got metadata from %s:%d (%d files)", ih, peer[0], peer[1], len(metadata.files))
                handle.set_metadata(metadata)
                return
        except Exception as e:
            logger.warning("%s: lookup crashed: %s", ih, e)
            handle.set_error(e)
            return
        handle.set_error(ResolveError(f"no peer served metadata for {ih} after {tried} attempts"))
