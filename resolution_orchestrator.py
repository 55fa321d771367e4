# resolution_orchestrator.py
"""
Concurrent resolution of many magnet links against one shared metadata source.

Every submitted identifier gets its own thread. A thread registers the
identifier with the source while holding the client lock, releases it, then
waits on the handle's `ready` event for at most `timeout` seconds. Whatever
happens, it sends exactly one (identifier, outcome, metadata) message to a
single collector thread, which owns the result list and counts the completion
barrier down. A thread that gave up waiting never touches shared state again,
so metadata arriving after the timeout is simply dropped.

    with ResolutionOrchestrator(DHTMetadataSource(), timeout=120) as orch:
        for line in lines:
            orch.submit(line)
        orch.begin_resolution()
        results = orch.await_all()
"""
import enum
import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

from bt_metadata import Metadata
from metadata_source import MetadataSource

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120  # seconds per identifier


class Outcome(enum.Enum):
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    REGISTRATION_FAILED = "registration_failed"
    SOURCE_FAILED = "source_failed"


@dataclass(frozen=True)
class ResolutionResult:
    identifier: str
    metadata: Optional[Metadata] = None


class CompletionBarrier:
    """Counts in-flight tasks; wait() returns once the count is back to zero."""

    def __init__(self):
        self._cond = threading.Condition()
        self._pending = 0

    @property
    def pending(self) -> int:
        with self._cond:
            return self._pending

    def add(self, n: int = 1) -> None:
        with self._cond:
            self._pending += n

    def done(self) -> None:
        with self._cond:
            if self._pending <= 0:
                raise RuntimeError("completion barrier decremented below zero")
            self._pending -= 1
            if self._pending == 0:
                self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._pending == 0, timeout)


class ResolutionOrchestrator:
    def __init__(self, source: MetadataSource, timeout: float = DEFAULT_TIMEOUT, max_workers: Optional[int] = None):
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout!r}")
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers!r}")
        self.timeout = timeout
        self.max_workers = max_workers
        self._source = source
        self._client_lock = threading.Lock()   # guards calls into the source
        self._results_lock = threading.Lock()  # guards _results and _outcomes
        self._state_lock = threading.Lock()    # guards submit/begin/close bookkeeping
        self._slots = threading.BoundedSemaphore(max_workers) if max_workers else None
        self._barrier = CompletionBarrier()
        self._inbox: "queue.Queue[Tuple[str, Outcome, Optional[Metadata]]]" = queue.Queue()
        self._identifiers: List[str] = []
        self._results: List[ResolutionResult] = []
        self._outcomes: List[Tuple[str, Outcome]] = []
        self._started = False
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def submitted(self) -> List[str]:
        with self._state_lock:
            return list(self._identifiers)

    def submit(self, identifier: str) -> None:
        """Queue one identifier. The barrier counts it from this moment on."""
        with self._state_lock:
            if self._started:
                raise RuntimeError("cannot submit after resolution has begun")
            if self._closed:
                raise RuntimeError("orchestrator is closed")
            self._identifiers.append(identifier)
            self._barrier.add()

    def begin_resolution(self, timeout: Optional[float] = None) -> None:
        """
        Start one resolution thread per submitted identifier. Returns at once;
        use await_all() to wait for them.
        """
        timeout = self.timeout if timeout is None else timeout
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout!r}")
        with self._state_lock:
            if self._started:
                raise RuntimeError("resolution has already begun")
            if self._closed:
                raise RuntimeError("orchestrator is closed")
            self._started = True
            identifiers = list(self._identifiers)

        logger.info("Resolving %d identifiers (timeout %ss)", len(identifiers), timeout)
        threading.Thread(target=self._collect, name="resolution-collector", daemon=True).start()
        for i, identifier in enumerate(identifiers):
            threading.Thread(
                target=self._resolve,
                args=(identifier, timeout),
                name=f"resolve-{i}",
                daemon=True,
            ).start()

    def await_all(self) -> List[ResolutionResult]:
        """
        Block until every identifier has resolved, timed out or failed, then
        return the successful results in completion order.
        """
        with self._state_lock:
            if not self._started and self._identifiers:
                raise RuntimeError("await_all() called before begin_resolution()")
        self._barrier.wait()
        with self._results_lock:
            return list(self._results)

    def outcomes(self) -> List[Tuple[str, Outcome]]:
        """Terminal outcome of every finished task, in completion order."""
        with self._results_lock:
            return list(self._outcomes)

    def close(self) -> None:
        """Release the shared source. Idempotent."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        with self._client_lock:
            self._source.close()

    # --- workers ---

    def _resolve(self, identifier: str, timeout: float) -> None:
        outcome, metadata = Outcome.SOURCE_FAILED, None
        if self._slots is not None:
            self._slots.acquire()
        try:
            outcome, metadata = self._race(identifier, timeout)
        finally:
            if self._slots is not None:
                self._slots.release()
            self._inbox.put((identifier, outcome, metadata))

    def _race(self, identifier: str, timeout: float) -> Tuple[Outcome, Optional[Metadata]]:
        logger.info("Adding magnet: %s", identifier)
        try:
            with self._client_lock:
                handle = self._source.begin_resolve(identifier)
        except Exception as e:
            logger.warning("Error adding magnet %s: %s", identifier, e)
            return Outcome.REGISTRATION_FAILED, None

        if not handle.ready.wait(timeout):
            logger.info("Timed out on %s", identifier)
            return Outcome.TIMED_OUT, None

        try:
            metadata = handle.metadata()
        except Exception as e:
            logger.warning("Could not resolve %s: %s", identifier, e)
            return Outcome.SOURCE_FAILED, None
        if metadata is None:
            logger.warning("Source returned no metadata for %s", identifier)
            return Outcome.SOURCE_FAILED, None
        return Outcome.RESOLVED, metadata

    def _collect(self) -> None:
        # Sole writer of _results. Every task sends exactly one message, so
        # the barrier hits zero right after the last one is recorded.
        while self._barrier.pending:
            identifier, outcome, metadata = self._inbox.get()
            with self._results_lock:
                self._outcomes.append((identifier, outcome))
                if outcome is Outcome.RESOLVED:
                    self._results.append(ResolutionResult(identifier, metadata))
            self._barrier.done()
