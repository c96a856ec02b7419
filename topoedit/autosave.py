from __future__ import annotations

from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Tuple
import heapq
import logging

from .model import Element, ElementModel
from .settings import AUTOSAVE_QUIET_MS

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> Any: ...

    def cancel(self, handle: Any) -> None: ...


class VirtualScheduler:
    """Deterministic scheduler driven by ``advance``; nothing runs on its own."""

    def __init__(self):
        self.now = 0
        self._seq = 0
        self._heap: List[Tuple[int, int]] = []
        self._callbacks: Dict[int, Callable[[], None]] = {}

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> int:
        self._seq += 1
        handle = self._seq
        heapq.heappush(self._heap, (self.now + max(0, int(delay_ms)), handle))
        self._callbacks[handle] = callback
        return handle

    def cancel(self, handle: Any) -> None:
        self._callbacks.pop(handle, None)

    def pending(self) -> int:
        return len(self._callbacks)

    def advance(self, ms: int) -> None:
        target = self.now + int(ms)
        while self._heap and self._heap[0][0] <= target:
            due, handle = heapq.heappop(self._heap)
            callback = self._callbacks.pop(handle, None)
            if callback is None:
                continue
            self.now = due
            callback()
        self.now = target


@dataclass
class _Job:
    kind: str  # save | undo
    suppress_notification: bool = True


class AutosaveCoordinator:
    """Debounces model mutations into save requests and serializes host writes.

    ``save(suppress_notification)`` and ``undo()`` issue one host request each
    and return a Future. Only one request is in flight at a time; later
    requests wait in a queue, and queued saves coalesce since the snapshot
    is taken when the request is actually sent.

    While held (a topology reload is outstanding) saves are deferred, so a
    stale model is never written over the host document. After an undo is
    acknowledged ``after_undo`` is called, and the save of the undone state
    waits for the holds it starts to be released.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        save: Callable[[bool], Future],
        undo: Optional[Callable[[], Future]] = None,
        quiet_ms: int = AUTOSAVE_QUIET_MS,
        is_busy: Optional[Callable[[], bool]] = None,
        is_locked: Optional[Callable[[], bool]] = None,
        after_undo: Optional[Callable[[], None]] = None,
    ):
        self.scheduler = scheduler
        self._save = save
        self._undo = undo
        self.quiet_ms = quiet_ms
        self._is_busy = is_busy or (lambda: False)
        self._is_locked = is_locked or (lambda: False)
        self._after_undo = after_undo

        self._timer: Any = None
        self._deferred = False
        self._queue: Deque[_Job] = deque()
        self._in_flight: Optional[_Job] = None
        self._holds = 0
        self._disposed = False

        self.saves_sent = 0
        self.failures = 0

    # ───────────────── Model wiring ─────────────────

    def attach(self, model: ElementModel) -> None:
        model.on("add remove data dragfree", self._on_mutation)
        model.on("position", self._on_position)

    def detach(self, model: ElementModel) -> None:
        model.off("add remove data dragfree", self._on_mutation)
        model.off("position", self._on_position)

    def _on_mutation(self, event: str, element: Optional[Element]) -> None:
        self.notify(event)

    def _on_position(self, event: str, element: Optional[Element]) -> None:
        # No saves while a node is still held by the pointer.
        if element is not None and getattr(element, "grabbed", False):
            return
        self.notify(event)

    # ───────────────── Debounce ─────────────────

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    @property
    def held(self) -> bool:
        return self._holds > 0

    def notify(self, reason: str = "change") -> None:
        if self._disposed:
            return
        if self._timer is not None:
            self.scheduler.cancel(self._timer)
        self._timer = self.scheduler.call_later(self.quiet_ms, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self._is_locked():
            logger.debug("Autosave skipped - lab is deployed")
            return
        if self._holds or self._is_busy():
            # Picked up again by resume() once the reload, drag or edge draw ends.
            self._deferred = True
            return
        self._enqueue(_Job("save", suppress_notification=True))

    def resume(self) -> None:
        if self._deferred:
            self._deferred = False
            self.notify("resume")

    def hold(self) -> None:
        self._holds += 1

    def release(self) -> None:
        if self._holds == 0:
            return
        self._holds -= 1
        if self._holds == 0:
            self.resume()

    def cancel_pending(self) -> None:
        if self._timer is not None:
            self.scheduler.cancel(self._timer)
            self._timer = None
        self._deferred = False

    # ───────────────── Explicit requests ─────────────────

    def save_now(self) -> None:
        self.cancel_pending()
        self._enqueue(_Job("save", suppress_notification=False))

    def undo(self) -> None:
        if self._undo is None:
            logger.warning("Undo requested but no undo collaborator is configured")
            return
        # Unsaved edits go out first so the host undoes from the latest document.
        if self._timer is not None:
            self.cancel_pending()
            self._enqueue(_Job("save", suppress_notification=True))
        self._enqueue(_Job("undo"))

    # ───────────────── Serialized dispatch ─────────────────

    def _enqueue(self, job: _Job) -> None:
        last = self._queue[-1] if self._queue else None
        if job.kind == "save" and last is not None and last.kind == "save":
            last.suppress_notification = last.suppress_notification and job.suppress_notification
        else:
            self._queue.append(job)
        self._pump()

    def _pump(self) -> None:
        if self._in_flight is not None or not self._queue:
            return
        job = self._queue.popleft()
        self._in_flight = job
        try:
            if job.kind == "undo":
                fut = self._undo()
            else:
                self.saves_sent += 1
                fut = self._save(job.suppress_notification)
        except Exception as e:
            logger.error("Host request '%s' failed to dispatch: %s", job.kind, e)
            self.failures += 1
            self._in_flight = None
            self._pump()
            return
        fut.add_done_callback(lambda f, j=job: self._on_done(j, f))

    def _on_done(self, job: _Job, fut: Future) -> None:
        self._in_flight = None
        if self._disposed:
            return
        err = fut.exception() if not fut.cancelled() else None
        if fut.cancelled() or err is not None:
            self.failures += 1
            logger.error("Host request '%s' rejected: %s", job.kind, err or "cancelled")
        elif job.kind == "undo":
            if self._after_undo is None:
                self.notify("undo")
            else:
                # Saved once the reload started by after_undo has landed.
                self._deferred = True
                self._after_undo()
        self._pump()

    def dispose(self) -> None:
        self._disposed = True
        self.cancel_pending()
        self._queue.clear()
        self._holds = 0
