from __future__ import annotations

import time

from causal_search.graph import Graph
from causal_search.search.monitor import SearchMonitor, SearchResult, SearchStatus


def test_status_precedence():
    m = SearchMonitor()
    assert m.check() is None
    assert m.status == SearchStatus.COMPLETE
    m.hit_iteration_cap("restart 0", 5)
    assert m.status == SearchStatus.ITERATION_CAP
    m.cancel()
    assert m.check() == SearchStatus.CANCELLED
    assert m.status == SearchStatus.CANCELLED


def test_time_budget():
    m = SearchMonitor(max_seconds=0.0)
    time.sleep(0.01)
    assert m.check() == SearchStatus.TIMEOUT


def test_start_clears_previous_stop():
    m = SearchMonitor(max_seconds=0.0)
    time.sleep(0.01)
    m.check()
    m.max_seconds = None
    m.start()
    assert m.check() is None


def test_events_reach_the_sink():
    seen = []
    m = SearchMonitor(on_event=seen.append)
    m.emit("moves", "round 1", iteration=1, score=-3.0, restart=0)
    assert len(seen) == 1
    ev = seen[0]
    assert (ev.stage, ev.iteration, ev.score, ev.payload) == ("moves", 1, -3.0, {"restart": 0})
    SearchMonitor().emit("moves", "dropped")


def test_result_summary():
    r = SearchResult(Graph(), [], 0.0, SearchStatus.COMPLETE, 0.123456, "boss", {"restarts_completed": 1})
    s = r.summary()
    assert r.complete
    assert s["status"] == "complete"
    assert s["elapsed_sec"] == 0.1235
    assert s["restarts_completed"] == 1
