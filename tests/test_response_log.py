# tests/test_response_log.py
import threading
import time

import pytest

import smart_insights.response_log as rlog
from smart_insights.errors import ResponseClosedError, ResponseNotFoundError
from smart_insights.response_log import INITIAL_UPDATE_TEXT, ResponseLog


@pytest.fixture
def log(app_db):
    return ResponseLog()


def test_create_starts_in_progress(log):
    snap = log.create("r-1", "How many orders?")
    assert snap.uuid == "r-1"
    assert snap.status == "in_progress"
    assert snap.success is True
    assert [(u.type, u.text) for u in snap.response] == [("step_output", INITIAL_UPDATE_TEXT)]


def test_append_preserves_order(log):
    log.create("r-1", "q")
    log.append_update("r-1", "step_output", "one")
    log.append_update("r-1", "debug_log", "two")
    log.append_update("r-1", "step_output", "three")
    texts = [u.text for u in log.get("r-1").response]
    assert texts == [INITIAL_UPDATE_TEXT, "one", "two", "three"]


def test_unknown_id(log):
    with pytest.raises(ResponseNotFoundError):
        log.get("missing")
    with pytest.raises(ResponseNotFoundError):
        log.append_update("missing", "step_output", "x")
    with pytest.raises(ResponseNotFoundError):
        log.set_status("missing", "failed", False)


def test_status_is_terminal_once(log):
    log.create("r-1", "q")
    log.set_status("r-1", "completed", True)
    with pytest.raises(ResponseClosedError):
        log.set_status("r-1", "failed", False)
    resp = log.get("r-1")
    assert resp.status == "completed"
    assert resp.success is True


def test_no_updates_after_terminal(log):
    log.create("r-1", "q")
    log.set_status("r-1", "failed", False)
    with pytest.raises(ResponseClosedError):
        log.append_update("r-1", "step_output", "late")
    assert len(log.get("r-1").response) == 1


def test_status_cannot_move_back_to_in_progress(log):
    log.create("r-1", "q")
    with pytest.raises(ValueError):
        log.set_status("r-1", "in_progress", True)


def test_list_all_in_creation_order(log):
    for rid in ("a", "b", "c"):
        log.create(rid, f"question {rid}")
    assert [r.uuid for r in log.list_all()] == ["a", "b", "c"]


def test_concurrent_appends_are_not_lost(log):
    log.create("r-1", "q")
    log.create("r-2", "q")

    def writer(rid, tag):
        for i in range(20):
            log.append_update(rid, "debug_log", f"{tag}-{i}")

    threads = [
        threading.Thread(target=writer, args=("r-1", "x")),
        threading.Thread(target=writer, args=("r-1", "y")),
        threading.Thread(target=writer, args=("r-2", "z")),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    r1 = [u.text for u in log.get("r-1").response[1:]]
    assert len(r1) == 40
    # each writer's own updates stay in the order it appended them
    assert [t for t in r1 if t.startswith("x-")] == [f"x-{i}" for i in range(20)]
    assert [t for t in r1 if t.startswith("y-")] == [f"y-{i}" for i in range(20)]
    assert len(log.get("r-2").response) == 21


def test_timestamps_follow_append_order_under_contention(log, monkeypatch):
    real_now = rlog._now
    stamped = threading.Event()

    def slow_now():
        ts = real_now()
        if threading.current_thread().name == "slow-writer":
            stamped.set()
            time.sleep(0.3)
        return ts

    monkeypatch.setattr(rlog, "_now", slow_now)
    log.create("r-1", "q")

    slow = threading.Thread(target=log.append_update, args=("r-1", "debug_log", "A"), name="slow-writer")
    fast = threading.Thread(target=log.append_update, args=("r-1", "debug_log", "B"))
    slow.start()
    assert stamped.wait(2.0)
    fast.start()
    slow.join()
    fast.join()

    updates = log.get("r-1").response
    assert [u.text for u in updates[1:]] == ["A", "B"]
    assert all(a.timestamp <= b.timestamp for a, b in zip(updates, updates[1:]))
