"""Ports (interfaces) for persistence.

These define the contract the SQLite and Firestore adapters implement.
Application services depend on these abstractions, not concrete backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import datetime

from ..models.catalog import CollectionRef, Deck, VocabularyItem
from ..models.progress import LearnerProfile
from ..srs import ReviewState


class DeckNotFoundError(LookupError):
    def __init__(self, deck_id: str) -> None:
        super().__init__(f"deck not found: {deck_id}")
        self.deck_id = deck_id


class ReviewStateStore(ABC):
    """Per-learner review state keyed by (learner_id, vocabulary_id).

    Implementations:
        - ReviewStateSQLStore: local SQLite file.
        - FirestoreReviewStateStore: remote Firestore collection.
    """

    @abstractmethod
    def get_state(self, learner_id: str, item_id: str) -> ReviewState | None:
        """Return the state for one item, or None when it was never initialized."""

    @abstractmethod
    def get_states_for_items(
        self, learner_id: str, item_ids: Sequence[str]
    ) -> list[ReviewState]:
        """Return states for the given ids; ids without state are skipped."""

    @abstractmethod
    def get_all_states(self, learner_id: str) -> list[ReviewState]:
        pass

    @abstractmethod
    def list_due_states(
        self, learner_id: str, now: datetime, limit: int | None = None
    ) -> list[ReviewState]:
        """States with next_review_at <= now, ordered by next_review_at ascending."""

    @abstractmethod
    def upsert_state(self, learner_id: str, state: ReviewState) -> None:
        """Write the full state (last write wins)."""

    @abstractmethod
    def create_states_if_absent(
        self, learner_id: str, states: Sequence[ReviewState]
    ) -> list[str]:
        """Insert states whose id has no record yet and return the created ids.

        Existing records are never overwritten, even under concurrent calls.
        """

    @abstractmethod
    def update_state(
        self,
        learner_id: str,
        item_id: str,
        transform: Callable[[ReviewState], ReviewState],
    ) -> ReviewState:
        """Atomically read, transform and write one state.

        Raises:
            NotInitializedError: when no state exists for the item.
        """

    @abstractmethod
    def delete_states(
        self, learner_id: str, item_ids: Sequence[str] | None = None
    ) -> int:
        """Bulk delete (all states when item_ids is None). Returns deleted count."""


class CatalogStore(ABC):
    """Vocabulary catalog grouped by HSK level, lesson or custom deck."""

    @abstractmethod
    def list_vocabulary(self, collection: CollectionRef) -> list[VocabularyItem]:
        """Items of a collection ordered by word_order."""

    @abstractmethod
    def get_vocabulary(self, item_ids: Sequence[str]) -> list[VocabularyItem]:
        pass

    @abstractmethod
    def list_hsk_levels(self) -> list[int]:
        """Distinct HSK levels that have at least one vocabulary item, ascending."""

    @abstractmethod
    def save_vocabulary(self, items: Sequence[VocabularyItem]) -> None:
        pass

    @abstractmethod
    def create_deck(self, name: str, description: str = "") -> Deck:
        pass

    @abstractmethod
    def get_deck(self, deck_id: str) -> Deck | None:
        pass

    @abstractmethod
    def list_decks(self) -> list[Deck]:
        pass

    @abstractmethod
    def delete_deck(self, deck_id: str) -> list[str] | None:
        """Delete a deck with its cards. Returns removed card ids, None if unknown."""

    @abstractmethod
    def add_card(self, deck_id: str, item: VocabularyItem) -> VocabularyItem:
        pass


class LearnerProfileStore(ABC):
    """Lesson position, completed lessons and streak for a learner."""

    @abstractmethod
    def get_profile(self, learner_id: str) -> LearnerProfile | None:
        pass

    @abstractmethod
    def save_profile(self, learner_id: str, profile: LearnerProfile) -> None:
        pass

    @abstractmethod
    def delete_profile(self, learner_id: str) -> None:
        pass
