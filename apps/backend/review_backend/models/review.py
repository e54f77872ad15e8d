from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ..srs import ReviewStage, ReviewState
from .catalog import CollectionRef, VocabularyItem


class ReviewStateResponse(BaseModel):
    """A persisted review state as exposed over HTTP."""

    vocabulary_id: str
    ease_factor: float
    interval_days: int
    repetitions: int
    last_reviewed_at: datetime
    next_review_at: datetime
    stage: ReviewStage

    @classmethod
    def from_state(cls, state: ReviewState) -> "ReviewStateResponse":
        return cls(
            vocabulary_id=state.item_id,
            ease_factor=state.ease_factor,
            interval_days=state.interval_days,
            repetitions=state.repetitions,
            last_reviewed_at=state.last_reviewed_at,
            next_review_at=state.next_review_at,
            stage=state.stage,
        )


class ReviewInitializeRequest(BaseModel):
    item_ids: list[str] = Field(default_factory=list, max_length=1000)


class ReviewInitializeResponse(BaseModel):
    created: list[str]


class ReviewRateRequest(BaseModel):
    """採点リクエスト。

    - quality: 0..5（UI の4ボタンは Again=1, Hard=2, Good=4, Easy=5）
    """

    item_id: str = Field(min_length=1)
    quality: int = Field(strict=True)


class ReviewDueRequest(BaseModel):
    item_ids: list[str] = Field(default_factory=list, max_length=1000)


class ReviewDueResponse(BaseModel):
    due: list[str]


class SessionCard(BaseModel):
    item: VocabularyItem
    state: ReviewStateResponse | None = None


class ReviewSessionResponse(BaseModel):
    """今日の復習対象（出題日時が到来したカード）。"""

    collection: CollectionRef | None = None
    cards: list[SessionCard]


class FlashcardStats(BaseModel):
    """学習者全体のカード統計。

    - learning: total - mature（未成熟カード数）
    """

    total: int = 0
    due: int = 0
    mature: int = 0
    learning: int = 0


class CollectionSummary(BaseModel):
    """コレクション（HSK レベル / レッスン / デッキ）単位の出題状況。"""

    collection: CollectionRef
    title: str
    total_cards: int
    due_cards: int
    new_cards: int
    accuracy: int
    last_reviewed_at: datetime | None = None


class CollectionSummaryResponse(BaseModel):
    total_due: int
    collections: list[CollectionSummary]
