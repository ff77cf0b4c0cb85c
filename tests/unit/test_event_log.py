"""Tests for SQLiteEventLog — append, query, sequence allocation."""

from __future__ import annotations

import threading

from crmpilot.core.identifiers import RunId, generate_run_id
from crmpilot.runtime.event_log import SeqCounter, SQLiteEventLog
from crmpilot.schemas.events import EventType, RunFinished, RunStarted, StepStarted


class TestSQLiteEventLog:
    def test_append_and_query(self, event_log: SQLiteEventLog, run_id: RunId) -> None:
        event_log.append(RunStarted(run_id=run_id, seq=0, payload={"tenant_id": "t"}))
        event_log.append(StepStarted(run_id=run_id, seq=1, payload={"step": 1}))
        event_log.append(RunFinished(run_id=run_id, seq=2))

        events = event_log.query_by_run(run_id)
        assert [e.seq for e in events] == [0, 1, 2]
        assert events[0].event_type == EventType.RUN_STARTED
        assert events[0].payload == {"tenant_id": "t"}

    def test_query_by_type(self, event_log: SQLiteEventLog, run_id: RunId) -> None:
        event_log.append(RunStarted(run_id=run_id, seq=0))
        event_log.append(StepStarted(run_id=run_id, seq=1))
        event_log.append(StepStarted(run_id=run_id, seq=2))

        steps = event_log.query_by_type(run_id, EventType.STEP_STARTED)
        assert [e.seq for e in steps] == [1, 2]

    def test_runs_are_isolated(self, event_log: SQLiteEventLog) -> None:
        a, b = generate_run_id(), generate_run_id()
        event_log.append(RunStarted(run_id=a, seq=0))
        assert event_log.query_by_run(b) == []

    def test_next_seq(self, event_log: SQLiteEventLog, run_id: RunId) -> None:
        assert event_log.next_seq(run_id) == 0
        event_log.append(RunStarted(run_id=run_id, seq=0))
        event_log.append(StepStarted(run_id=run_id, seq=1))
        assert event_log.next_seq(run_id) == 2

    def test_concurrent_appends(self, tmp_path) -> None:
        log = SQLiteEventLog(tmp_path / "events.db")
        run_id = generate_run_id()
        seq = SeqCounter(0)
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(20):
                with lock:
                    n = seq.next()
                log.append(StepStarted(run_id=run_id, seq=n))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert [e.seq for e in log.query_by_run(run_id)] == list(range(80))
        log.close()


class TestSeqCounter:
    def test_counts_from_start(self) -> None:
        counter = SeqCounter(5)
        assert counter.next() == 5
        assert counter.next() == 6
        assert counter.value == 7
