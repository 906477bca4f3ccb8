"""Thread and queue plumbing shared by the pipeline stages.

Every stage is a daemon ``threading.Thread`` that talks to its neighbours only
through bounded ``queue.Queue`` channels and reports back to the orchestrator
through one unbounded signal queue. A shared ``threading.Event`` carries
cancellation: blocking ``put``/``get`` calls wake up regularly to check it, so
once any stage fails the others stop promptly instead of draining their input.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Tuple

logger = logging.getLogger(__name__)

# Poll interval for cancellable queue operations (seconds).
_POLL = 0.1


class _EndOfStream:
    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


class PipelineCancelled(Exception):
    """Raised inside a stage when another stage has already failed."""


class PipelineContext:
    """Cancellation flag plus the orchestrator's signal channel."""

    def __init__(self) -> None:
        self.cancel_event = threading.Event()
        self.signals: "queue.Queue[Tuple[str, Any]]" = queue.Queue()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def signal(self, kind: str, payload: Any = None) -> None:
        self.signals.put((kind, payload))

    def fail(self, exc: BaseException) -> None:
        """Record a failure and stop every stage."""
        first = not self.cancel_event.is_set()
        self.cancel_event.set()
        self.signal("error", exc)
        if first:
            logger.error("Pipeline failed: %s: %s", exc.__class__.__name__, exc)

    def put(self, q: queue.Queue, item: Any) -> None:
        """Blocking put that gives up with PipelineCancelled once the run is cancelled."""
        while True:
            if self.cancelled:
                raise PipelineCancelled()
            try:
                q.put(item, timeout=_POLL)
                return
            except queue.Full:
                continue

    def get(self, q: queue.Queue) -> Any:
        """Blocking get that gives up with PipelineCancelled once the run is cancelled."""
        while True:
            if self.cancelled:
                raise PipelineCancelled()
            try:
                return q.get(timeout=_POLL)
            except queue.Empty:
                continue


class Stage(threading.Thread):
    """Base class for pipeline threads.

    Subclasses implement :meth:`work`. Any exception escaping it is reported to
    the orchestrator via :meth:`PipelineContext.fail`; a
    :class:`PipelineCancelled` escaping it just ends the thread.
    """

    def __init__(self, ctx: PipelineContext, *, name: str) -> None:
        super().__init__(name=name, daemon=True)
        self.ctx = ctx

    def work(self) -> None:
        raise NotImplementedError

    def run(self) -> None:
        logger.debug("%s started", self.name)
        try:
            self.work()
        except PipelineCancelled:
            logger.debug("%s stopped after cancellation", self.name)
            return
        except Exception as e:
            self.ctx.fail(e)
            return
        logger.debug("%s finished", self.name)
