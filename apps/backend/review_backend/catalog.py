from __future__ import annotations

from collections.abc import Sequence

from .cache import TTLCache
from .id_factory import generate_card_id
from .logging import logger
from .models.catalog import (
    CardCreateRequest,
    CollectionKind,
    CollectionRef,
    Deck,
    VocabularyItem,
)
from .store.ports import CatalogStore

_LEVELS_KEY = "levels"
_DECKS_KEY = "decks"


class CatalogService:
    """語彙カタログの読み出しを TTL キャッシュ越しに提供する。

    キャッシュは呼び出し側から渡されたインスタンスをそのまま共有する。
    デッキ作成・カード追加・削除などの書き込み後は全件を破棄する。
    """

    def __init__(self, store: CatalogStore, cache: TTLCache) -> None:
        self._store = store
        self._cache = cache

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def list_vocabulary(self, collection: CollectionRef) -> list[VocabularyItem]:
        items = self._cache.get_or_load(
            collection.cache_key, lambda: self._store.list_vocabulary(collection)
        )
        return list(items)

    def get_vocabulary(self, item_ids: Sequence[str]) -> list[VocabularyItem]:
        return self._store.get_vocabulary(item_ids)

    def list_hsk_levels(self) -> list[int]:
        return list(self._cache.get_or_load(_LEVELS_KEY, self._store.list_hsk_levels))

    def list_decks(self) -> list[Deck]:
        return list(self._cache.get_or_load(_DECKS_KEY, self._store.list_decks))

    def get_deck(self, deck_id: str) -> Deck | None:
        return self._store.get_deck(deck_id)

    def save_vocabulary(self, items: Sequence[VocabularyItem]) -> None:
        self._store.save_vocabulary(items)
        self._cache.invalidate()
        logger.info("catalog_vocabulary_saved", count=len(items))

    def create_deck(self, name: str, description: str = "") -> Deck:
        deck = self._store.create_deck(name.strip(), description.strip())
        self._cache.invalidate()
        logger.info("deck_created", deck_id=deck.id)
        return deck

    def add_card(self, deck_id: str, payload: CardCreateRequest) -> VocabularyItem:
        item = VocabularyItem(
            id=generate_card_id(),
            simplified=payload.simplified.strip(),
            pinyin=payload.pinyin.strip(),
            definition_en=payload.definition_en.strip(),
            part_of_speech=payload.part_of_speech.strip(),
            deck_id=deck_id,
            is_custom=True,
        )
        card = self._store.add_card(deck_id, item)
        self._cache.invalidate()
        logger.info("deck_card_added", deck_id=deck_id, item_id=card.id)
        return card

    def delete_deck(self, deck_id: str) -> list[str] | None:
        removed = self._store.delete_deck(deck_id)
        self._cache.invalidate()
        if removed is not None:
            logger.info("deck_deleted", deck_id=deck_id, removed_cards=len(removed))
        return removed

    def deck_cards(self, deck_id: str) -> list[VocabularyItem]:
        return self.list_vocabulary(CollectionRef(kind=CollectionKind.deck, key=deck_id))
