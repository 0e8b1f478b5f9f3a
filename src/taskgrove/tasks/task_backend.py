# src/taskgrove/tasks/task_backend.py

from __future__ import annotations

import contextlib
import copy
import json
import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path

from ..core.ports import TaskRecord

logger = logging.getLogger(__name__)

_COUNTER_KEY = "next_id"


class MemoryTaskBackend:
    """In-process backend (tests, demos, STORAGE=memory)."""

    def __init__(self) -> None:
        self._records: dict[int, TaskRecord] = {}
        self._counter = 1

    def close(self) -> None:
        return

    def get(self, task_id: int) -> TaskRecord | None:
        rec = self._records.get(int(task_id))
        return copy.deepcopy(rec) if rec is not None else None

    def all(self) -> list[TaskRecord]:
        return [copy.deepcopy(self._records[k]) for k in sorted(self._records)]

    def put(self, record: TaskRecord) -> None:
        self._records[int(record["id"])] = copy.deepcopy(record)

    def delete(self, task_id: int) -> None:
        self._records.pop(int(task_id), None)

    def get_counter(self) -> int:
        return self._counter

    def set_counter(self, value: int) -> None:
        self._counter = int(value)

    def write_batch(
        self,
        *,
        put: Iterable[TaskRecord] = (),
        delete: Iterable[int] = (),
        counter: int | None = None,
    ) -> None:
        for rec in put:
            self.put(rec)
        for task_id in delete:
            self.delete(task_id)
        if counter is not None:
            self.set_counter(counter)

    def replace_all(self, records: Iterable[TaskRecord], counter: int) -> None:
        self._records = {int(r["id"]): copy.deepcopy(r) for r in records}
        self._counter = int(counter)


class SqliteTaskBackend:
    """
    SQLite task backend.

    Records are stored as JSON payloads keyed by id; the id counter lives in a
    one-row-per-key metadata table.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_records()
        except sqlite3.Error:
            total = -1
        logger.info("SqliteTaskBackend ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    payload TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_deleted ON tasks(deleted)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _encode(record: TaskRecord) -> str:
        return json.dumps(record, ensure_ascii=False, sort_keys=True)

    @staticmethod
    def _decode(payload: str) -> TaskRecord:
        return json.loads(payload)

    @classmethod
    def _put_rows(cls, cur: sqlite3.Cursor, records: Iterable[TaskRecord]) -> None:
        cur.executemany(
            "INSERT OR REPLACE INTO tasks(id, deleted, payload) VALUES (?, ?, ?)",
            [(int(r["id"]), 1 if r.get("deleted") else 0, cls._encode(r)) for r in records],
        )

    @staticmethod
    def _set_counter_row(cur: sqlite3.Cursor, value: int) -> None:
        cur.execute(
            "INSERT OR REPLACE INTO metadata(key, value) VALUES (?, ?)",
            (_COUNTER_KEY, int(value)),
        )

    # ---- public API ----

    def count_records(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def get(self, task_id: int) -> TaskRecord | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT payload FROM tasks WHERE id = ?", (int(task_id),))
            row = cur.fetchone()
            return self._decode(row["payload"]) if row else None
        finally:
            conn.close()

    def all(self) -> list[TaskRecord]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT payload FROM tasks ORDER BY id ASC")
            return [self._decode(r["payload"]) for r in cur.fetchall()]
        finally:
            conn.close()

    def put(self, record: TaskRecord) -> None:
        self.write_batch(put=[record])

    def delete(self, task_id: int) -> None:
        self.write_batch(delete=[task_id])

    def get_counter(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT value FROM metadata WHERE key = ?", (_COUNTER_KEY,))
            row = cur.fetchone()
            return int(row["value"]) if row else 1
        finally:
            conn.close()

    def set_counter(self, value: int) -> None:
        self.write_batch(counter=value)

    def write_batch(
        self,
        *,
        put: Iterable[TaskRecord] = (),
        delete: Iterable[int] = (),
        counter: int | None = None,
    ) -> None:
        """Write one store operation in a single transaction."""
        puts = list(put)
        deletes = [int(d) for d in delete]
        if not puts and not deletes and counter is None:
            return

        conn = self._get_conn()
        try:
            with conn:
                cur = conn.cursor()
                if puts:
                    self._put_rows(cur, puts)
                if deletes:
                    cur.executemany("DELETE FROM tasks WHERE id = ?", [(d,) for d in deletes])
                if counter is not None:
                    self._set_counter_row(cur, counter)
            logger.debug(
                "Batch written put=%s delete=%s counter=%s",
                [r["id"] for r in puts],
                deletes,
                counter,
            )
        finally:
            conn.close()

    def replace_all(self, records: Iterable[TaskRecord], counter: int) -> None:
        rows = list(records)
        conn = self._get_conn()
        try:
            with conn:
                cur = conn.cursor()
                cur.execute("DELETE FROM tasks")
                self._put_rows(cur, rows)
                self._set_counter_row(cur, counter)
            logger.info("Replaced all task records: %d rows, next_id=%s", len(rows), counter)
        finally:
            conn.close()
