from __future__ import annotations

import sqlite3
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import ContextManager

from ..srs import NotInitializedError, ReviewState
from .common import (
    chunked,
    format_timestamp,
    immediate_transaction,
    state_from_record,
    state_to_record,
)
from .ports import ReviewStateStore

# SQLite のバインド変数上限 (SQLITE_MAX_VARIABLE_NUMBER) を下回るように分割する
_IN_CLAUSE_CHUNK = 500
_SELECT_COLUMNS = (
    "vocabulary_id, ease_factor, interval_days, repetitions, last_reviewed_at, next_review_at"
)


def ensure_tables(conn: sqlite3.Connection) -> None:
    """復習状態テーブルを初期化する。"""

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS review_states (
            learner_id TEXT NOT NULL,
            vocabulary_id TEXT NOT NULL,
            ease_factor REAL NOT NULL DEFAULT 2.5,
            interval_days INTEGER NOT NULL DEFAULT 0,
            repetitions INTEGER NOT NULL DEFAULT 0,
            last_reviewed_at TEXT NOT NULL,
            next_review_at TEXT NOT NULL,
            PRIMARY KEY (learner_id, vocabulary_id)
        );
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_review_states_due ON review_states(learner_id, next_review_at);"
    )


class ReviewStateSQLStore(ReviewStateStore):
    """SQLite 上の復習状態（学習者×語彙で一意）を扱う。"""

    def __init__(self, conn_provider: Callable[[], ContextManager[sqlite3.Connection]]):
        self._conn_provider = conn_provider

    def get_state(self, learner_id: str, item_id: str) -> ReviewState | None:
        with self._conn_provider() as conn:
            row = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM review_states WHERE learner_id = ? AND vocabulary_id = ?;",
                (learner_id, item_id),
            ).fetchone()
        return None if row is None else state_from_record(dict(row))

    def get_states_for_items(
        self, learner_id: str, item_ids: Sequence[str]
    ) -> list[ReviewState]:
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return []
        states: list[ReviewState] = []
        with self._conn_provider() as conn:
            for chunk in chunked(ids, _IN_CLAUSE_CHUNK):
                placeholders = ",".join("?" for _ in chunk)
                cur = conn.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM review_states "
                    f"WHERE learner_id = ? AND vocabulary_id IN ({placeholders});",
                    (learner_id, *chunk),
                )
                states.extend(state_from_record(dict(row)) for row in cur.fetchall())
        return states

    def get_all_states(self, learner_id: str) -> list[ReviewState]:
        with self._conn_provider() as conn:
            cur = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM review_states WHERE learner_id = ? "
                "ORDER BY next_review_at ASC, vocabulary_id ASC;",
                (learner_id,),
            )
            return [state_from_record(dict(row)) for row in cur.fetchall()]

    def list_due_states(
        self, learner_id: str, now: datetime, limit: int | None = None
    ) -> list[ReviewState]:
        # LIMIT -1 は SQLite で「上限なし」
        sql_limit = -1 if limit is None else max(0, int(limit))
        with self._conn_provider() as conn:
            cur = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM review_states "
                "WHERE learner_id = ? AND next_review_at <= ? "
                "ORDER BY next_review_at ASC, vocabulary_id ASC LIMIT ?;",
                (learner_id, format_timestamp(now), sql_limit),
            )
            return [state_from_record(dict(row)) for row in cur.fetchall()]

    def upsert_state(self, learner_id: str, state: ReviewState) -> None:
        record = state_to_record(learner_id, state)
        with self._conn_provider() as conn:
            conn.execute(
                """
                INSERT INTO review_states (
                    learner_id, vocabulary_id, ease_factor, interval_days,
                    repetitions, last_reviewed_at, next_review_at
                ) VALUES (
                    :learner_id, :vocabulary_id, :ease_factor, :interval_days,
                    :repetitions, :last_reviewed_at, :next_review_at
                )
                ON CONFLICT(learner_id, vocabulary_id) DO UPDATE SET
                    ease_factor = excluded.ease_factor,
                    interval_days = excluded.interval_days,
                    repetitions = excluded.repetitions,
                    last_reviewed_at = excluded.last_reviewed_at,
                    next_review_at = excluded.next_review_at;
                """,
                record,
            )

    def create_states_if_absent(
        self, learner_id: str, states: Sequence[ReviewState]
    ) -> list[str]:
        if not states:
            return []
        created: list[str] = []
        with self._conn_provider() as conn:
            with immediate_transaction(conn):
                for state in states:
                    cur = conn.execute(
                        """
                        INSERT OR IGNORE INTO review_states (
                            learner_id, vocabulary_id, ease_factor, interval_days,
                            repetitions, last_reviewed_at, next_review_at
                        ) VALUES (
                            :learner_id, :vocabulary_id, :ease_factor, :interval_days,
                            :repetitions, :last_reviewed_at, :next_review_at
                        );
                        """,
                        state_to_record(learner_id, state),
                    )
                    if cur.rowcount == 1:
                        created.append(state.item_id)
        return created

    def update_state(
        self,
        learner_id: str,
        item_id: str,
        transform: Callable[[ReviewState], ReviewState],
    ) -> ReviewState:
        with self._conn_provider() as conn:
            with immediate_transaction(conn):
                row = conn.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM review_states WHERE learner_id = ? AND vocabulary_id = ?;",
                    (learner_id, item_id),
                ).fetchone()
                if row is None:
                    raise NotInitializedError(learner_id, item_id)
                updated = transform(state_from_record(dict(row)))
                record = state_to_record(learner_id, updated)
                conn.execute(
                    """
                    UPDATE review_states
                    SET ease_factor = :ease_factor,
                        interval_days = :interval_days,
                        repetitions = :repetitions,
                        last_reviewed_at = :last_reviewed_at,
                        next_review_at = :next_review_at
                    WHERE learner_id = :learner_id AND vocabulary_id = :vocabulary_id;
                    """,
                    record,
                )
        return updated

    def delete_states(
        self, learner_id: str, item_ids: Sequence[str] | None = None
    ) -> int:
        with self._conn_provider() as conn:
            with immediate_transaction(conn):
                if item_ids is None:
                    cur = conn.execute(
                        "DELETE FROM review_states WHERE learner_id = ?;", (learner_id,)
                    )
                    return cur.rowcount
                deleted = 0
                for chunk in chunked(list(dict.fromkeys(item_ids)), _IN_CLAUSE_CHUNK):
                    placeholders = ",".join("?" for _ in chunk)
                    cur = conn.execute(
                        f"DELETE FROM review_states WHERE learner_id = ? AND vocabulary_id IN ({placeholders});",
                        (learner_id, *chunk),
                    )
                    deleted += cur.rowcount
                return deleted
