from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from review_backend.cache import TTLCache
from review_backend.catalog import CatalogService
from review_backend.models.catalog import (
    CardCreateRequest,
    CollectionKind,
    CollectionRef,
    VocabularyItem,
)
from review_backend.models.progress import CurrentLessonRequest, LessonCompleteRequest
from review_backend.service import ReviewService
from review_backend.store.ports import DeckNotFoundError

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)
LEARNER = "learner-1"


@pytest.fixture
def service(sqlite_store) -> ReviewService:
    sqlite_store.catalog.save_vocabulary(
        [
            VocabularyItem(id="n1", simplified="你", hsk_level=1, lesson_id="L1", word_order=1),
            VocabularyItem(id="n2", simplified="好", hsk_level=1, lesson_id="L1", word_order=2),
            VocabularyItem(id="n3", simplified="书", hsk_level=2, lesson_id="L2", word_order=1),
        ]
    )
    return ReviewService(
        review_states=sqlite_store.review_states,
        catalog=CatalogService(sqlite_store.catalog, TTLCache(300)),
        profiles=sqlite_store.profiles,
        session_limit=2,
    )


def test_collection_session_initializes_and_returns_due_cards(service: ReviewService) -> None:
    ref = CollectionRef(kind=CollectionKind.level, key="1")

    session = service.start_session(LEARNER, ref, NOW)

    assert [card.item.id for card in session.cards] == ["n1", "n2"]
    assert all(card.state is not None and card.state.repetitions == 0 for card in session.cards)

    service.rate(LEARNER, "n1", 4, NOW)
    later = service.start_session(LEARNER, ref, NOW + timedelta(minutes=5))
    assert [card.item.id for card in later.cards] == ["n2"]


def test_global_session_orders_by_next_review_and_applies_limit(service: ReviewService) -> None:
    service.initialize(LEARNER, ["n3"], NOW - timedelta(days=1))
    service.initialize(LEARNER, ["n2"], NOW - timedelta(hours=1))
    service.initialize(LEARNER, ["n1"], NOW)

    session = service.start_session(LEARNER, None, NOW)
    limited = service.start_session(LEARNER, None, NOW, limit=1)

    assert session.collection is None
    assert [card.item.id for card in session.cards] == ["n3", "n2"]
    assert [card.item.id for card in limited.cards] == ["n3"]


def test_due_items_keeps_input_order(service: ReviewService) -> None:
    service.initialize(LEARNER, ["n1", "n2", "n3"], NOW)
    service.rate(LEARNER, "n2", 5, NOW)

    assert service.due_items(LEARNER, ["n3", "n2", "n1", "n3"], NOW) == ["n3", "n1"]


def test_collection_summaries_cover_levels_and_decks(service: ReviewService) -> None:
    deck = service.create_deck("Travel")
    card = service.add_card(deck.id, CardCreateRequest(simplified="机场"))
    service.initialize(LEARNER, ["n1", card.id], NOW)
    service.rate(LEARNER, "n1", 4, NOW)

    result = service.collection_summaries(LEARNER, NOW)

    titles = [summary.title for summary in result.collections]
    assert titles == ["HSK 1 Vocabulary", "HSK 2 Vocabulary", "Travel"]
    level_one = result.collections[0]
    assert (level_one.total_cards, level_one.due_cards, level_one.new_cards) == (2, 0, 1)
    assert level_one.accuracy == 100
    assert result.collections[2].due_cards == 1
    assert result.total_due == 1


def test_stats(service: ReviewService) -> None:
    service.initialize(LEARNER, ["n1", "n2"], NOW)
    service.rate(LEARNER, "n1", 4, NOW)

    stats = service.stats(LEARNER, NOW)

    assert (stats.total, stats.due, stats.mature, stats.learning) == (2, 1, 0, 2)


def test_complete_lesson_initializes_vocabulary_and_updates_profile(service: ReviewService) -> None:
    payload = LessonCompleteRequest(level=1, unit=1, lesson=1, lesson_id="L1")

    first = service.complete_lesson(LEARNER, payload, NOW)
    second = service.complete_lesson(LEARNER, payload, NOW + timedelta(days=1))

    assert first.initialized == ["n1", "n2"]
    assert second.initialized == []
    assert second.profile.completed_lessons == ["1_1_1"]
    assert second.profile.total_words_learned == 2
    assert second.profile.streak == 2
    assert service.get_profile(LEARNER) == second.profile


def test_complete_lesson_counts_words_already_opened_in_a_session(service: ReviewService) -> None:
    service.start_session(LEARNER, CollectionRef(kind=CollectionKind.lesson, key="L1"), NOW)

    done = service.complete_lesson(
        LEARNER, LessonCompleteRequest(level=1, unit=1, lesson=1, lesson_id="L1"), NOW
    )

    assert done.initialized == []
    assert done.profile.total_words_learned == 2


def test_update_current_lesson(service: ReviewService) -> None:
    profile = service.update_current_lesson(LEARNER, CurrentLessonRequest(level=2, unit=3, lesson=4))

    assert (profile.current_level, profile.current_unit, profile.current_lesson) == (2, 3, 4)
    assert service.get_profile(LEARNER).current_unit == 3


def test_delete_deck_removes_learner_states(service: ReviewService, sqlite_store) -> None:
    deck = service.create_deck("Food")
    card = service.add_card(deck.id, CardCreateRequest(simplified="饺子"))
    service.initialize(LEARNER, [card.id, "n1"], NOW)

    removed = service.delete_deck(LEARNER, deck.id)

    assert removed == [card.id]
    assert sqlite_store.review_states.get_state(LEARNER, card.id) is None
    assert sqlite_store.review_states.get_state(LEARNER, "n1") is not None
    with pytest.raises(DeckNotFoundError):
        service.delete_deck(LEARNER, deck.id)


def test_deck_detail_counts(service: ReviewService) -> None:
    deck = service.create_deck("Food")
    first = service.add_card(deck.id, CardCreateRequest(simplified="饺子"))
    service.add_card(deck.id, CardCreateRequest(simplified="面条"))
    service.initialize(LEARNER, [first.id], NOW)

    detail = service.deck_detail(LEARNER, deck.id, NOW)

    assert (detail.total_cards, detail.due_cards, detail.new_cards) == (2, 1, 1)
    with pytest.raises(DeckNotFoundError):
        service.deck_detail(LEARNER, "dk:missing", NOW)


def test_reset_progress(service: ReviewService) -> None:
    service.initialize(LEARNER, ["n1", "n2"], NOW)
    service.update_current_lesson(LEARNER, CurrentLessonRequest(level=2, unit=1, lesson=1))

    assert service.reset_progress(LEARNER) == 2
    assert service.stats(LEARNER, NOW).total == 0
    assert service.get_profile(LEARNER).current_level == 1
