from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from . import catalog, profiles, review_states
from .catalog import CatalogSQLStore
from .profiles import LearnerProfileSQLStore
from .review_states import ReviewStateSQLStore


class AppSQLiteStore:
    """SQLite-backed persistence layer (single device, on-disk).

    復習状態・語彙カタログ・学習者プロフィールの各サブストアを束ね、
    接続の生成とスキーマ初期化だけをここで担う。
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._ensure_dirs()
        self._init_db()
        self.review_states = ReviewStateSQLStore(self._conn)
        self.catalog = CatalogSQLStore(self._conn)
        self.profiles = LearnerProfileSQLStore(self._conn)

    # --- low-level helpers ---
    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: トランザクションは BEGIN IMMEDIATE で明示的に張る
        conn = sqlite3.connect(
            self.db_path, timeout=10.0, isolation_level=None, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.execute("pragma journal_mode=WAL;")
        conn.execute("pragma foreign_keys=ON;")
        return conn

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_dirs(self) -> None:
        p = Path(self.db_path)
        if p.parent and not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self) -> None:
        with self._conn() as conn:
            with conn:
                review_states.ensure_tables(conn)
                catalog.ensure_tables(conn)
                profiles.ensure_tables(conn)
