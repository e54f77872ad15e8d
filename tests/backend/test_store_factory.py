from __future__ import annotations

import pytest

from review_backend.config import Settings
from review_backend.store import (
    AppFirestoreStore,
    AppSQLiteStore,
    _normalize_emulator_host,
    create_store,
)

from tests.firestore_fakes import ensure_firestore_test_env, use_fake_firestore_client


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("localhost:8080", "http://localhost:8080"),
        (" https://emu:9000 ", "https://emu:9000"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_emulator_host(raw, expected) -> None:
    assert _normalize_emulator_host(raw) == expected


def test_create_store_sqlite(tmp_path) -> None:
    settings = Settings(_env_file=None, review_db_path=str(tmp_path / "db" / "r.sqlite3"))

    store = create_store(settings)

    assert isinstance(store, AppSQLiteStore)
    assert (tmp_path / "db" / "r.sqlite3").exists()


def test_create_store_firestore_uses_client(monkeypatch: pytest.MonkeyPatch) -> None:
    ensure_firestore_test_env(monkeypatch)
    fake = use_fake_firestore_client(monkeypatch)

    store = create_store(Settings(_env_file=None))

    assert isinstance(store, AppFirestoreStore)
    store.profiles.delete_profile("nobody")
    store.review_states.create_states_if_absent("l1", [])
    assert store._client is fake
