"""
Search monitoring: progress events, cooperative cancellation, time budgets, results.

A SearchMonitor is passed into long-running searches. They call
``monitor.check()`` at the top of each outer loop (restart, relocate/tuck pass,
BES pop) and stop with the best result so far once it reports a stop status.
Progress goes to an optional ``on_event`` callback as SearchEvent records.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..graph import Graph, Node
from ..utils.logging_utils import get_logger

log = get_logger("cse.monitor")


class SearchStatus(str, Enum):
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    ITERATION_CAP = "iteration_cap"


@dataclass
class SearchEvent:
    stage: str
    message: str
    iteration: int = 0
    score: Optional[float] = None
    elapsed: float = 0.0
    payload: Dict[str, Any] = field(default_factory=dict)


EventSink = Callable[[SearchEvent], None]


class SearchMonitor:
    """
    Parameters
    ----------
    on_event : callable, optional
        Receives every SearchEvent; exceptions raised by it propagate.
    cancel_event : threading.Event, optional
        Set from another thread to request cancellation.
    max_seconds : float, optional
        Advisory wall-clock budget, checked between moves.
    """

    def __init__(
        self,
        on_event: Optional[EventSink] = None,
        cancel_event: Optional[threading.Event] = None,
        max_seconds: Optional[float] = None,
    ):
        self.on_event = on_event
        self.cancel_event = cancel_event or threading.Event()
        self.max_seconds = max_seconds
        self._t0 = time.monotonic()
        self._status: Optional[SearchStatus] = None
        self._capped = False
        self._lock = threading.Lock()

    def start(self) -> "SearchMonitor":
        self._t0 = time.monotonic()
        self._status = None
        self._capped = False
        return self

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._t0

    def cancel(self) -> None:
        self.cancel_event.set()

    def check(self) -> Optional[SearchStatus]:
        """Return a stop status if the search should stop, else None."""
        if self._status is not None:
            return self._status
        if self.cancel_event.is_set():
            self._stop(SearchStatus.CANCELLED)
        elif self.max_seconds is not None and self.elapsed > self.max_seconds:
            self._stop(SearchStatus.TIMEOUT)
        return self._status

    def hit_iteration_cap(self, where: str, cap: int) -> None:
        """Record a capped loop; other loops keep running."""
        log.warning("%s hit the iteration cap (%d); keeping the best result so far.", where, cap)
        self._capped = True

    def _stop(self, status: SearchStatus) -> None:
        with self._lock:
            if self._status is None:
                self._status = status
                log.info("Search stopping early: %s after %.2fs", status.value, self.elapsed)

    @property
    def status(self) -> SearchStatus:
        if self._status is not None:
            return self._status
        return SearchStatus.ITERATION_CAP if self._capped else SearchStatus.COMPLETE

    def emit(self, stage: str, message: str, iteration: int = 0,
             score: Optional[float] = None, **payload: Any) -> None:
        if self.on_event is None:
            return
        self.on_event(SearchEvent(stage, message, iteration, score, self.elapsed, payload))


@dataclass
class SearchResult:
    graph: Graph
    order: List[Node]
    score: Optional[float]
    status: SearchStatus
    elapsed: float
    algorithm: str
    info: Dict[str, Any] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return self.status == SearchStatus.COMPLETE

    def summary(self) -> Dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "status": self.status.value,
            "score": self.score,
            "order": [n.name for n in self.order],
            "elapsed_sec": round(self.elapsed, 4),
            "num_nodes": self.graph.num_nodes(),
            "num_edges": self.graph.num_edges(),
            **self.info,
        }


__all__ = ["SearchStatus", "SearchEvent", "SearchMonitor", "SearchResult", "EventSink"]
