from __future__ import annotations

from datetime import datetime

from .catalog import CatalogService
from .logging import logger
from .models.catalog import (
    CardCreateRequest,
    CollectionKind,
    CollectionRef,
    Deck,
    DeckDetailResponse,
    VocabularyItem,
)
from .models.progress import (
    CurrentLessonRequest,
    LearnerProfile,
    LessonCompleteRequest,
    LessonCompleteResponse,
)
from .models.review import (
    CollectionSummary,
    CollectionSummaryResponse,
    FlashcardStats,
    ReviewSessionResponse,
    ReviewStateResponse,
    SessionCard,
)
from .progress import (
    compute_stats,
    level_title,
    record_lesson_completion,
    summarize_collection,
)
from .srs import ReviewScheduler, ReviewState, ensure_utc
from .store.ports import DeckNotFoundError, LearnerProfileStore, ReviewStateStore


class ReviewService:
    """復習・カタログ・学習者プロフィールをまとめたアプリケーションサービス。

    ルーターはこのクラスだけを呼び出し、永続化バックエンドの違いは
    各ポート（ReviewStateStore / CatalogStore / LearnerProfileStore）が吸収する。
    """

    def __init__(
        self,
        *,
        review_states: ReviewStateStore,
        catalog: CatalogService,
        profiles: LearnerProfileStore,
        session_limit: int = 100,
    ) -> None:
        self._review_states = review_states
        self._catalog = catalog
        self._profiles = profiles
        self._session_limit = session_limit
        self.scheduler = ReviewScheduler(review_states)

    @property
    def catalog(self) -> CatalogService:
        return self._catalog

    # --- Review ---
    def initialize(self, learner_id: str, item_ids: list[str], now: datetime) -> list[str]:
        return self.scheduler.initialize(learner_id, item_ids, now)

    def rate(
        self, learner_id: str, item_id: str, quality: int, now: datetime
    ) -> ReviewState:
        return self.scheduler.rate(learner_id, item_id, quality, now)

    def due_items(self, learner_id: str, item_ids: list[str], now: datetime) -> list[str]:
        due = self.scheduler.due_items(learner_id, item_ids, now)
        # 入力順を保って返す
        return [item_id for item_id in dict.fromkeys(item_ids) if item_id in due]

    def start_session(
        self,
        learner_id: str,
        collection: CollectionRef | None,
        now: datetime,
        limit: int | None = None,
    ) -> ReviewSessionResponse:
        """出題日時が到来したカードを返す。

        - collection 指定あり: そのコレクションの語彙を初期化してから、期日到来分を語順で返す
        - 指定なし: 全コレクション横断で next_review_at の古い順に返す
        """

        moment = ensure_utc(now)
        max_cards = self._session_limit if limit is None else max(0, int(limit))
        if collection is not None:
            items = self._catalog.list_vocabulary(collection)
            ids = [item.id for item in items]
            self.scheduler.initialize(learner_id, ids, moment)
            states = {
                state.item_id: state
                for state in self._review_states.get_states_for_items(learner_id, ids)
            }
            cards = [
                SessionCard(item=item, state=ReviewStateResponse.from_state(states[item.id]))
                for item in items
                if item.id in states and states[item.id].is_due(moment)
            ][:max_cards]
        else:
            due_states = self.scheduler.due_states(learner_id, moment, max_cards)
            items_by_id = {
                item.id: item
                for item in self._catalog.get_vocabulary([state.item_id for state in due_states])
            }
            cards = [
                SessionCard(item=items_by_id[state.item_id], state=ReviewStateResponse.from_state(state))
                for state in due_states
                if state.item_id in items_by_id
            ]
        logger.info(
            "review_session_started",
            learner_id=learner_id,
            collection=collection.cache_key if collection else None,
            cards=len(cards),
        )
        return ReviewSessionResponse(collection=collection, cards=cards)

    def stats(self, learner_id: str, now: datetime) -> FlashcardStats:
        return compute_stats(self._review_states.get_all_states(learner_id), ensure_utc(now))

    def collection_summaries(
        self, learner_id: str, now: datetime
    ) -> CollectionSummaryResponse:
        """HSK レベルごと・カスタムデッキごとの出題状況をまとめる。"""

        moment = ensure_utc(now)
        all_states = self._review_states.get_all_states(learner_id)
        summaries: list[CollectionSummary] = []
        for level in self._catalog.list_hsk_levels():
            ref = CollectionRef(kind=CollectionKind.level, key=str(level))
            items = self._catalog.list_vocabulary(ref)
            summaries.append(
                summarize_collection(ref, level_title(level), items, all_states, moment)
            )
        for deck in self._catalog.list_decks():
            ref = CollectionRef(kind=CollectionKind.deck, key=deck.id)
            items = self._catalog.deck_cards(deck.id)
            summaries.append(summarize_collection(ref, deck.name, items, all_states, moment))
        total_due = sum(1 for state in all_states if state.is_due(moment))
        return CollectionSummaryResponse(total_due=total_due, collections=summaries)

    def reset_progress(self, learner_id: str) -> int:
        deleted = self._review_states.delete_states(learner_id)
        self._profiles.delete_profile(learner_id)
        logger.info("learner_progress_reset", learner_id=learner_id, deleted_states=deleted)
        return deleted

    # --- Decks ---
    def list_decks(self) -> list[Deck]:
        return self._catalog.list_decks()

    def create_deck(self, name: str, description: str = "") -> Deck:
        return self._catalog.create_deck(name, description)

    def deck_detail(self, learner_id: str, deck_id: str, now: datetime) -> DeckDetailResponse:
        deck = self._catalog.get_deck(deck_id)
        if deck is None:
            raise DeckNotFoundError(deck_id)
        cards = self._catalog.deck_cards(deck_id)
        classification = self.scheduler.classify(
            learner_id, [card.id for card in cards], ensure_utc(now)
        )
        return DeckDetailResponse(
            deck=deck,
            total_cards=len(cards),
            due_cards=len(classification.due),
            new_cards=len(classification.new),
            cards=cards,
        )

    def add_card(self, deck_id: str, payload: CardCreateRequest) -> VocabularyItem:
        return self._catalog.add_card(deck_id, payload)

    def delete_deck(self, learner_id: str, deck_id: str) -> list[str]:
        """デッキとそのカードを削除し、学習者の該当復習状態もまとめて消す。"""

        removed = self._catalog.delete_deck(deck_id)
        if removed is None:
            raise DeckNotFoundError(deck_id)
        if removed:
            self._review_states.delete_states(learner_id, removed)
        return removed

    # --- Learner profile ---
    def get_profile(self, learner_id: str) -> LearnerProfile:
        return self._profiles.get_profile(learner_id) or LearnerProfile()

    def update_current_lesson(
        self, learner_id: str, payload: CurrentLessonRequest
    ) -> LearnerProfile:
        profile = self.get_profile(learner_id).model_copy(
            update={
                "current_level": payload.level,
                "current_unit": payload.unit,
                "current_lesson": payload.lesson,
            }
        )
        self._profiles.save_profile(learner_id, profile)
        return profile

    def complete_lesson(
        self, learner_id: str, payload: LessonCompleteRequest, now: datetime
    ) -> LessonCompleteResponse:
        """レッスン完了を記録し、lesson_id があればその語彙を復習対象に加える。"""

        moment = ensure_utc(now)
        items: list[VocabularyItem] = []
        initialized: list[str] = []
        if payload.lesson_id:
            items = self._catalog.list_vocabulary(
                CollectionRef(kind=CollectionKind.lesson, key=payload.lesson_id)
            )
            initialized = self.scheduler.initialize(
                learner_id, [item.id for item in items], moment
            )
        profile = record_lesson_completion(
            self.get_profile(learner_id),
            level=payload.level,
            unit=payload.unit,
            lesson=payload.lesson,
            words_learned=len(items),
            now=moment,
        )
        self._profiles.save_profile(learner_id, profile)
        logger.info(
            "lesson_completed",
            learner_id=learner_id,
            lesson=f"{payload.level}_{payload.unit}_{payload.lesson}",
            initialized=len(initialized),
            words_learned=profile.total_words_learned,
            streak=profile.streak,
        )
        return LessonCompleteResponse(profile=profile, initialized=initialized)
