"""Shared fakes: an in-process metadata source scripted per identifier."""

import threading
import time
from typing import Dict, List, NamedTuple

from bt_metadata import FileEntry, Metadata
from metadata_source import ResolveError, ResolveHandle


class Delayed(NamedTuple):
    """Metadata that becomes ready after `delay` seconds."""

    delay: float
    metadata: Metadata


class Fails(NamedTuple):
    """The source gives up on the identifier after `delay` seconds."""

    delay: float = 0.0


class FakeSource:
    """
    Plan values: Metadata (ready at once), Delayed, Fails, an Exception
    instance (raised by begin_resolve) or missing (never ready).
    """

    def __init__(self, plan=None, register_delay: float = 0.0):
        self.plan = plan or {}
        self.register_delay = register_delay
        self.handles: Dict[str, List[ResolveHandle]] = {}
        self.registered: List[str] = []
        self.closed = False
        self.max_concurrent_registrations = 0
        self._active = 0
        self._lock = threading.Lock()
        self._timers: List[threading.Timer] = []

    def begin_resolve(self, identifier: str) -> ResolveHandle:
        with self._lock:
            self._active += 1
            self.max_concurrent_registrations = max(self.max_concurrent_registrations, self._active)
        try:
            if self.register_delay:
                time.sleep(self.register_delay)
            if self.closed:
                raise RuntimeError("closed")
            action = self.plan.get(identifier)
            if isinstance(action, Exception):
                raise action
            handle = ResolveHandle(identifier)
            if isinstance(action, Metadata):
                handle.set_metadata(action)
            elif isinstance(action, Delayed):
                self._later(action.delay, handle.set_metadata, action.metadata)
            elif isinstance(action, Fails):
                self._later(action.delay, handle.set_error, ResolveError("no peers"))
            with self._lock:
                self.registered.append(identifier)
                self.handles.setdefault(identifier, []).append(handle)
            return handle
        finally:
            with self._lock:
                self._active -= 1

    def _later(self, delay, fn, arg):
        t = threading.Timer(delay, fn, args=(arg,))
        t.daemon = True
        self._timers.append(t)
        t.start()

    def close(self) -> None:
        self.closed = True
        for t in self._timers:
            t.cancel()


def make_metadata(name: str, *files) -> Metadata:
    return Metadata(name, [FileEntry(p, n) for p, n in files], 16384)
