from __future__ import annotations

import sqlite3
from collections.abc import Callable
from typing import ContextManager

from ..models.progress import LearnerProfile
from .ports import LearnerProfileStore


def ensure_tables(conn: sqlite3.Connection) -> None:
    """学習者プロフィールテーブルを初期化する。"""

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS learner_profiles (
            learner_id TEXT PRIMARY KEY,
            data TEXT NOT NULL
        );
        """
    )


class LearnerProfileSQLStore(LearnerProfileStore):
    """学習者プロフィールを JSON 文字列として 1 行に保存する。"""

    def __init__(self, conn_provider: Callable[[], ContextManager[sqlite3.Connection]]):
        self._conn_provider = conn_provider

    def get_profile(self, learner_id: str) -> LearnerProfile | None:
        with self._conn_provider() as conn:
            row = conn.execute(
                "SELECT data FROM learner_profiles WHERE learner_id = ?;",
                (learner_id,),
            ).fetchone()
        if row is None:
            return None
        return LearnerProfile.model_validate_json(row["data"])

    def save_profile(self, learner_id: str, profile: LearnerProfile) -> None:
        with self._conn_provider() as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO learner_profiles (learner_id, data) VALUES (?, ?)
                    ON CONFLICT(learner_id) DO UPDATE SET data = excluded.data;
                    """,
                    (learner_id, profile.model_dump_json()),
                )

    def delete_profile(self, learner_id: str) -> None:
        with self._conn_provider() as conn:
            with conn:
                conn.execute(
                    "DELETE FROM learner_profiles WHERE learner_id = ?;", (learner_id,)
                )
