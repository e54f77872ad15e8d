from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CollectionKind(str, Enum):
    """How reviewable items are grouped in the catalog."""

    level = "level"
    lesson = "lesson"
    deck = "deck"


class CollectionRef(BaseModel):
    """A curriculum level, a lesson, or a user-defined deck."""

    model_config = ConfigDict(frozen=True)

    kind: CollectionKind
    key: str = Field(min_length=1)

    @property
    def cache_key(self) -> str:
        return f"{self.kind.value}:{self.key}"


class VocabularyItem(BaseModel):
    """A learnable vocabulary unit. The scheduler only ever sees its `id`."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    simplified: str = ""
    pinyin: str = ""
    definition_en: str = ""
    part_of_speech: str = ""
    hsk_level: int | None = None
    lesson_id: str | None = None
    deck_id: str | None = None
    word_order: int = 0
    is_custom: bool = False


class Deck(BaseModel):
    id: str
    name: str
    description: str = ""
    created_at: datetime


class DeckCreateRequest(BaseModel):
    """カスタムデッキ作成リクエスト。"""

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)


class CardCreateRequest(BaseModel):
    """デッキへ追加する単語カード。"""

    simplified: str = Field(min_length=1, max_length=64)
    pinyin: str = Field(default="", max_length=128)
    definition_en: str = Field(default="", max_length=500)
    part_of_speech: str = Field(default="", max_length=32)


class DeckListResponse(BaseModel):
    items: list[Deck]


class DeckDetailResponse(BaseModel):
    """デッキ詳細（カード一覧と出題状況）。"""

    deck: Deck
    total_cards: int
    due_cards: int
    new_cards: int
    cards: list[VocabularyItem]
