"""Pytest configuration: import path and deterministic settings for the backend."""

import os
import sys
import tempfile
from pathlib import Path

_BACKEND_ROOT = Path(__file__).resolve().parents[1] / "apps" / "backend"
if str(_BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(_BACKEND_ROOT))

# `review_backend.main` は import 時にアプリを生成するため、既定ストアの
# SQLite ファイルが作業ツリーに作られないよう一時ディレクトリへ向けておく。
os.environ.setdefault("STORE_BACKEND", "sqlite")
os.environ.setdefault(
    "REVIEW_DB_PATH",
    str(Path(tempfile.mkdtemp(prefix="review-tests-")) / "review.sqlite3"),
)

import pytest  # noqa: E402


@pytest.fixture
def sqlite_store(tmp_path):
    from review_backend.store.sqlite_store import AppSQLiteStore

    return AppSQLiteStore(str(tmp_path / "review.sqlite3"))
