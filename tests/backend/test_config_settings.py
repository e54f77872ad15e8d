"""設定の読み込みと正規化を検証するテスト群。"""

import pytest
from pydantic import ValidationError

from review_backend.config import DEFAULT_LEARNER_ID, Settings


def test_defaults() -> None:
    config = Settings(_env_file=None)

    assert config.store_backend == "sqlite"
    assert config.catalog_cache_ttl_seconds == 300.0
    assert config.review_session_limit == 100
    assert config.default_learner_id == DEFAULT_LEARNER_ID
    assert config.allowed_cors_origins == ()


def test_store_backend_is_case_insensitive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORE_BACKEND", "  FireStore ")

    assert Settings(_env_file=None).store_backend == "firestore"


def test_unknown_store_backend_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORE_BACKEND", "postgres")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_reads_cors_origins_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """`CORS_ALLOWED_ORIGINS` から値を読み込み、トリムと重複排除を行う。"""

    monkeypatch.setenv(
        "CORS_ALLOWED_ORIGINS",
        " https://app.example.com ,https://admin.example.com,https://app.example.com ",
    )

    config = Settings(_env_file=None)

    assert config.allowed_cors_origins == (
        "https://app.example.com",
        "https://admin.example.com",
    )


def test_google_cloud_project_is_accepted_as_project_id(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FIRESTORE_PROJECT_ID", raising=False)
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "demo-project")

    assert Settings(_env_file=None).firestore_project_id == "demo-project"


@pytest.mark.parametrize(
    ("env", "value"),
    [
        ("CATALOG_CACHE_TTL_SECONDS", "-1"),
        ("REVIEW_SESSION_LIMIT", "0"),
        ("DEFAULT_LEARNER_ID", "   "),
    ],
)
def test_invalid_values_rejected(monkeypatch: pytest.MonkeyPatch, env: str, value: str) -> None:
    monkeypatch.setenv(env, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


@pytest.fixture
def no_firestore_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("FIRESTORE_PROJECT_ID", "GOOGLE_CLOUD_PROJECT", "FIRESTORE_EMULATOR_HOST"):
        monkeypatch.delenv(name, raising=False)


def test_strict_production_firestore_requires_project_id(no_firestore_env) -> None:
    with pytest.raises(ValidationError, match="FIRESTORE_PROJECT_ID"):
        Settings(_env_file=None, environment="production", store_backend="firestore")


def test_strict_production_rejects_emulator_host(no_firestore_env) -> None:
    with pytest.raises(ValidationError, match="FIRESTORE_EMULATOR_HOST"):
        Settings(
            _env_file=None,
            environment="production",
            store_backend="firestore",
            firestore_project_id="prod-project",
            firestore_emulator_host="127.0.0.1:8080",
        )


def test_production_checks_are_skipped_without_strict_mode(no_firestore_env) -> None:
    config = Settings(
        _env_file=None,
        environment="production",
        store_backend="firestore",
        strict_mode=False,
    )

    assert config.firestore_project_id is None


def test_strict_mode_only_applies_to_production(no_firestore_env) -> None:
    config = Settings(_env_file=None, environment="development", store_backend="firestore")

    assert config.strict_mode is True
    assert config.store_backend == "firestore"


def test_strict_production_accepts_complete_firestore_config(no_firestore_env) -> None:
    config = Settings(
        _env_file=None,
        environment="production",
        store_backend="firestore",
        firestore_project_id="prod-project",
    )

    assert config.firestore_project_id == "prod-project"
