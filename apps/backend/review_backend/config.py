from typing import Annotated, Literal

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.types import NoDecode


DEFAULT_DB_PATH = ".data/review.sqlite3"
DEFAULT_LEARNER_ID = "00000000-0000-0000-0000-000000000001"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数から読み込まれるアプリ設定クラス。
    - environment: 実行環境（development/staging/production など）
    - store_backend: 復習状態の永続化先（sqlite=端末ローカル / firestore=リモート）
    - catalog_cache_ttl_seconds: 語彙カタログのキャッシュ有効期間
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )

    # --- 永続化バックエンド ---
    store_backend: Literal["sqlite", "firestore"] = Field(
        default="sqlite",
        description="Persistence backend for review state / 復習状態の永続化バックエンド",
    )
    review_db_path: str = Field(
        default=DEFAULT_DB_PATH,
        description="Path to SQLite database for local persistence / ローカル永続化用SQLite DBパス",
    )
    firestore_project_id: str | None = Field(
        default=None,
        description="Firestore project ID / Firestore のプロジェクトID",
        validation_alias=AliasChoices("firestore_project_id", "google_cloud_project"),
    )
    firestore_emulator_host: str | None = Field(
        default=None,
        description="Firestore emulator host (host:port) / Firestore エミュレータのホスト",
    )

    # --- カタログ/復習セッション ---
    catalog_cache_ttl_seconds: float = Field(
        default=300.0,
        description="Freshness window of the vocabulary catalog cache (s) / 語彙カタログキャッシュの有効期間（秒）",
    )
    review_session_limit: int = Field(
        default=100,
        description="Max cards returned for a review session / 1回の復習セッションの最大出題数",
    )
    default_learner_id: str = Field(
        default=DEFAULT_LEARNER_ID,
        description="Learner ID used when X-Learner-Id is not sent / X-Learner-Id 未指定時の学習者ID",
    )

    allowed_cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description=(
            "Comma separated CORS origins / CORS で許可するオリジンのカンマ区切り一覧"
        ),
        validation_alias=AliasChoices("allowed_cors_origins", "cors_allowed_origins"),
    )

    # --- Strict mode ---
    strict_mode: bool = Field(
        default=True,
        description=(
            "Fail fast on missing/invalid configuration in production (disable only for tests) / "
            "本番環境で不完全な設定を起動時に拒否する"
        ),
    )

    # Pydantic v2 settings config
    # - env_file: .env を読み込む
    # - extra: .env に存在する未使用キーを無視
    # - case_sensitive: 環境変数キーの大小文字を区別しない
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("allowed_cors_origins", mode="before")
    @classmethod
    def _normalise_allowed_cors_origins(
        cls, raw_origins: object
    ) -> tuple[str, ...] | object:  # pragma: no cover - pydantic handles typing
        """Convert environment input into a deduplicated tuple of origins.

        なぜ: CORS 設定を `.env` で管理するときに空白や重複が混ざりやすいため、
        FastAPI へ渡す前にトリムと重複排除を行って安全な配列へ正規化する。
        """

        if raw_origins is None:
            candidates: list[str] = []
        elif isinstance(raw_origins, str):
            candidates = raw_origins.split(",")
        else:
            try:
                candidates = list(raw_origins)
            except TypeError:
                return raw_origins

        normalised: list[str] = []
        seen: set[str] = set()
        for candidate in candidates:
            if not isinstance(candidate, str):
                continue
            trimmed = candidate.strip()
            if not trimmed or trimmed in seen:
                continue
            seen.add(trimmed)
            normalised.append(trimmed)

        return tuple(normalised)

    @field_validator("store_backend", mode="before")
    @classmethod
    def _normalise_store_backend(cls, value: object) -> object:
        """`SQLite` や ` firestore ` のような表記揺れを受け付ける。"""

        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("catalog_cache_ttl_seconds", mode="after")
    @classmethod
    def _validate_cache_ttl(cls, value: float) -> float:
        if value < 0:
            raise ValueError("CATALOG_CACHE_TTL_SECONDS must be >= 0")
        return value

    @field_validator("review_session_limit", mode="after")
    @classmethod
    def _validate_session_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("REVIEW_SESSION_LIMIT must be a positive integer")
        return value

    @field_validator("default_learner_id", mode="after")
    @classmethod
    def _validate_default_learner(cls, value: str) -> str:
        learner_id = (value or "").strip()
        if not learner_id:
            raise ValueError("DEFAULT_LEARNER_ID must not be empty")
        return learner_id

    @model_validator(mode="after")
    def _enforce_production_store(self) -> "Settings":
        """strict_mode かつ production のとき、リモートストアの設定漏れを起動時に検出する。

        - firestore: プロジェクトIDが必須で、エミュレータは指定できない
        """

        environment_name = (self.environment or "").strip().lower()
        if not self.strict_mode or environment_name != "production":
            return self
        if self.store_backend == "firestore":
            if not (self.firestore_project_id or "").strip():
                raise ValueError("FIRESTORE_PROJECT_ID is required for firestore in production")
            if (self.firestore_emulator_host or "").strip():
                raise ValueError("FIRESTORE_EMULATOR_HOST must not be set in production")
        return self


settings = Settings()
