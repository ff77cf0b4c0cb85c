"""Run store — persistence for runs suspended on approval."""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from crmpilot.core.identifiers import RunId, ToolInvocationId
from crmpilot.schemas.run import PausedRun


class RunStore(ABC):
    """Stores paused runs keyed by run id and by pending invocation id."""

    @abstractmethod
    def save(self, paused: PausedRun) -> None:
        """Persist (or replace) the snapshot for ``paused.run_id``."""

    @abstractmethod
    def load(self, run_id: RunId) -> PausedRun | None:
        """Return the snapshot for a run, or None if it is not paused."""

    @abstractmethod
    def find_by_invocation(self, invocation_id: ToolInvocationId) -> PausedRun | None:
        """Return the paused run waiting on the given invocation id."""

    @abstractmethod
    def take(self, run_id: RunId) -> PausedRun | None:
        """Atomically load and remove a snapshot.

        Of several concurrent callers at most one receives the snapshot;
        the others get None.
        """

    @abstractmethod
    def delete(self, run_id: RunId) -> None:
        """Remove a snapshot. Missing ids are ignored."""


class InMemoryRunStore(RunStore):
    """Process-local run store."""

    def __init__(self) -> None:
        self._runs: dict[RunId, PausedRun] = {}
        self._lock = threading.Lock()

    def save(self, paused: PausedRun) -> None:
        with self._lock:
            self._runs[paused.run_id] = paused.model_copy(deep=True)

    def load(self, run_id: RunId) -> PausedRun | None:
        with self._lock:
            paused = self._runs.get(run_id)
            return paused.model_copy(deep=True) if paused is not None else None

    def find_by_invocation(self, invocation_id: ToolInvocationId) -> PausedRun | None:
        with self._lock:
            for paused in self._runs.values():
                if invocation_id in paused.pending_invocation_ids:
                    return paused.model_copy(deep=True)
        return None

    def take(self, run_id: RunId) -> PausedRun | None:
        with self._lock:
            return self._runs.pop(run_id, None)

    def delete(self, run_id: RunId) -> None:
        with self._lock:
            self._runs.pop(run_id, None)

    def __len__(self) -> int:
        return len(self._runs)


class SQLiteRunStore(RunStore):
    """SQLite-backed run store, so approvals can arrive in another process."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._lock = threading.Lock()
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS paused_runs (
                run_id TEXT PRIMARY KEY,
                snapshot_json TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS pending_invocations (
                invocation_id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    def save(self, paused: PausedRun) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO paused_runs (run_id, snapshot_json) VALUES (?, ?)",
                (paused.run_id, paused.model_dump_json()),
            )
            self._conn.execute(
                "DELETE FROM pending_invocations WHERE run_id = ?", (paused.run_id,)
            )
            self._conn.executemany(
                "INSERT INTO pending_invocations (invocation_id, run_id) VALUES (?, ?)",
                [(inv_id, paused.run_id) for inv_id in paused.pending_invocation_ids],
            )
            self._conn.commit()

    def load(self, run_id: RunId) -> PausedRun | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT snapshot_json FROM paused_runs WHERE run_id = ?", (run_id,)
            ).fetchone()
        return PausedRun.model_validate_json(row[0]) if row else None

    def find_by_invocation(self, invocation_id: ToolInvocationId) -> PausedRun | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT run_id FROM pending_invocations WHERE invocation_id = ?",
                (invocation_id,),
            ).fetchone()
        return self.load(RunId(row[0])) if row else None

    def take(self, run_id: RunId) -> PausedRun | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT snapshot_json FROM paused_runs WHERE run_id = ?", (run_id,)
            ).fetchone()
            if row is None:
                return None
            # The row count decides the winner when another process got here first.
            deleted = self._conn.execute(
                "DELETE FROM paused_runs WHERE run_id = ?", (run_id,)
            ).rowcount
            self._conn.execute(
                "DELETE FROM pending_invocations WHERE run_id = ?", (run_id,)
            )
            self._conn.commit()
        return PausedRun.model_validate_json(row[0]) if deleted else None

    def delete(self, run_id: RunId) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM paused_runs WHERE run_id = ?", (run_id,))
            self._conn.execute(
                "DELETE FROM pending_invocations WHERE run_id = ?", (run_id,)
            )
            self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
