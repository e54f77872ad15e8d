from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

from google.api_core import exceptions as gexc
from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore

from ..id_factory import generate_card_id, generate_deck_id
from ..logging import logger
from ..models.catalog import CollectionKind, CollectionRef, Deck, VocabularyItem
from ..models.progress import LearnerProfile
from ..srs import NotInitializedError, ReviewState
from .catalog import CUSTOM_LEVEL_KEY
from .common import chunked, format_timestamp, parse_timestamp, state_from_record, state_to_record
from .ports import CatalogStore, DeckNotFoundError, LearnerProfileStore, ReviewStateStore


def _coerce_firestore_snapshot(
    candidate: Any,
) -> firestore.DocumentSnapshot | None:
    """Normalize Firestore transaction.get results (snapshot or generator) into a snapshot."""

    if candidate is None:
        return None
    if hasattr(candidate, "exists"):
        return candidate  # type: ignore[return-value]
    if isinstance(candidate, Iterator):
        return next(candidate, None)
    if isinstance(candidate, Iterable) and not isinstance(candidate, (str, bytes, Mapping)):
        iterator = iter(candidate)
        return next(iterator, None)
    return None


def _safe_doc_id(raw: str) -> str:
    """ドキュメント ID に使えない '/' などをパーセントエンコードする。"""

    return quote(str(raw), safe="")


def review_state_doc_id(learner_id: str, item_id: str) -> str:
    # 両要素とも ':' をエンコードするので区切りが曖昧にならない
    return f"{_safe_doc_id(learner_id)}:{_safe_doc_id(item_id)}"


class FirestoreBaseStore:
    """Firestore クライアント共通のヘルパー。"""

    # Firestore のバッチ上限（500 件）に余裕を持たせる
    _BATCH_SIZE = 450

    def __init__(self, client: firestore.Client):
        self._client = client

    def _delete_refs(self, refs: Sequence[Any]) -> None:
        for start in range(0, len(refs), self._BATCH_SIZE):
            batch = self._client.batch()
            for ref in refs[start : start + self._BATCH_SIZE]:
                batch.delete(ref)
            batch.commit()


class FirestoreReviewStateStore(FirestoreBaseStore, ReviewStateStore):
    """Firestore 上の復習状態（review_states コレクション）を扱う。

    ドキュメント ID は `{learner_id}:{vocabulary_id}` で、学習者×語彙ごとに
    高々 1 件になる。
    """

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._states = client.collection("review_states")

    def _ref(self, learner_id: str, item_id: str):
        return self._states.document(review_state_doc_id(learner_id, item_id))

    def get_state(self, learner_id: str, item_id: str) -> ReviewState | None:
        snapshot = self._ref(learner_id, item_id).get()
        if not snapshot.exists:
            return None
        return state_from_record(snapshot.to_dict() or {})

    def get_states_for_items(
        self, learner_id: str, item_ids: Sequence[str]
    ) -> list[ReviewState]:
        ids = list(dict.fromkeys(item_ids))
        states: list[ReviewState] = []
        for chunk in chunked(ids, self._BATCH_SIZE):
            refs = [self._ref(learner_id, item_id) for item_id in chunk]
            for snapshot in self._client.get_all(refs):
                if snapshot.exists:
                    states.append(state_from_record(snapshot.to_dict() or {}))
        return states

    def get_all_states(self, learner_id: str) -> list[ReviewState]:
        query = self._states.where("learner_id", "==", learner_id).order_by(
            "next_review_at"
        )
        return [state_from_record(snap.to_dict() or {}) for snap in query.stream()]

    def list_due_states(
        self, learner_id: str, now: datetime, limit: int | None = None
    ) -> list[ReviewState]:
        if limit is not None and int(limit) <= 0:
            return []
        query = (
            self._states.where("learner_id", "==", learner_id)
            .where("next_review_at", "<=", format_timestamp(now))
            .order_by("next_review_at")
        )
        if limit is not None:
            query = query.limit(int(limit))
        return [state_from_record(snap.to_dict() or {}) for snap in query.stream()]

    def upsert_state(self, learner_id: str, state: ReviewState) -> None:
        self._ref(learner_id, state.item_id).set(state_to_record(learner_id, state))

    def create_states_if_absent(
        self, learner_id: str, states: Sequence[ReviewState]
    ) -> list[str]:
        created: list[str] = []
        for state in states:
            try:
                # create() はサーバー側で存在チェックされるため並行初期化でも上書きしない
                self._ref(learner_id, state.item_id).create(
                    state_to_record(learner_id, state)
                )
            except AlreadyExists:
                continue
            created.append(state.item_id)
        return created

    def update_state(
        self,
        learner_id: str,
        item_id: str,
        transform: Callable[[ReviewState], ReviewState],
    ) -> ReviewState:
        doc_ref = self._ref(learner_id, item_id)
        transaction = self._client.transaction()
        transaction._begin()
        try:
            snapshot = _coerce_firestore_snapshot(transaction.get(doc_ref))
            if snapshot is None or not snapshot.exists:
                raise NotInitializedError(learner_id, item_id)
            updated = transform(state_from_record(snapshot.to_dict() or {}))
            transaction.set(doc_ref, state_to_record(learner_id, updated))
            transaction._commit()
        except gexc.GoogleAPIError as exc:
            if transaction.in_progress:
                transaction._rollback()
            logger.warning(
                "firestore_update_review_state_failed",
                learner_id=learner_id,
                item_id=item_id,
                error=str(exc),
                error_class=exc.__class__.__name__,
            )
            raise
        except Exception:
            if transaction.in_progress:
                transaction._rollback()
            raise
        return updated

    def delete_states(
        self, learner_id: str, item_ids: Sequence[str] | None = None
    ) -> int:
        if item_ids is None:
            refs = [
                snap.reference
                for snap in self._states.where("learner_id", "==", learner_id).stream()
            ]
        else:
            refs = []
            for chunk in chunked(list(dict.fromkeys(item_ids)), self._BATCH_SIZE):
                candidates = [self._ref(learner_id, item_id) for item_id in chunk]
                refs.extend(
                    snap.reference
                    for snap in self._client.get_all(candidates)
                    if snap.exists
                )
        self._delete_refs(refs)
        return len(refs)


def _item_from_doc(data: Mapping[str, Any]) -> VocabularyItem:
    return VocabularyItem.model_validate(dict(data))


def _deck_from_doc(data: Mapping[str, Any]) -> Deck:
    return Deck(
        id=str(data["id"]),
        name=str(data.get("name") or ""),
        description=str(data.get("description") or ""),
        created_at=parse_timestamp(data["created_at"]),
    )


def _sort_items(items: list[VocabularyItem]) -> list[VocabularyItem]:
    return sorted(items, key=lambda item: (item.word_order, item.id))


class FirestoreCatalogStore(FirestoreBaseStore, CatalogStore):
    """語彙（vocabulary）とカスタムデッキ（decks）を Firestore で管理する。

    並び順は word_order で揃える。複合インデックスを増やさないよう、
    絞り込みだけを Firestore に任せてソートは取得後に行う。
    """

    def __init__(
        self,
        client: firestore.Client,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(client)
        self._vocabulary = client.collection("vocabulary")
        self._decks = client.collection("decks")
        self._clock = clock or (lambda: datetime.now(UTC))

    def list_vocabulary(self, collection: CollectionRef) -> list[VocabularyItem]:
        if collection.kind is CollectionKind.level:
            if collection.key == CUSTOM_LEVEL_KEY:
                query = self._vocabulary.where("is_custom", "==", True).where(
                    "deck_id", "==", None
                )
            else:
                try:
                    level = int(collection.key)
                except ValueError:
                    return []
                query = self._vocabulary.where("hsk_level", "==", level)
        elif collection.kind is CollectionKind.lesson:
            query = self._vocabulary.where("lesson_id", "==", collection.key)
        else:
            query = self._vocabulary.where("deck_id", "==", collection.key)
        return _sort_items([_item_from_doc(snap.to_dict() or {}) for snap in query.stream()])

    def get_vocabulary(self, item_ids: Sequence[str]) -> list[VocabularyItem]:
        ids = list(dict.fromkeys(item_ids))
        items: list[VocabularyItem] = []
        for chunk in chunked(ids, self._BATCH_SIZE):
            refs = [self._vocabulary.document(_safe_doc_id(item_id)) for item_id in chunk]
            items.extend(
                _item_from_doc(snap.to_dict() or {})
                for snap in self._client.get_all(refs)
                if snap.exists
            )
        order = {item_id: index for index, item_id in enumerate(ids)}
        items.sort(key=lambda item: order.get(item.id, len(order)))
        return items

    def list_hsk_levels(self) -> list[int]:
        levels: set[int] = set()
        for snap in self._vocabulary.stream():
            level = (snap.to_dict() or {}).get("hsk_level")
            if level is not None:
                levels.add(int(level))
        return sorted(levels)

    def save_vocabulary(self, items: Sequence[VocabularyItem]) -> None:
        for start in range(0, len(items), self._BATCH_SIZE):
            batch = self._client.batch()
            for item in items[start : start + self._BATCH_SIZE]:
                batch.set(self._vocabulary.document(_safe_doc_id(item.id)), item.model_dump())
            batch.commit()

    def create_deck(self, name: str, description: str = "") -> Deck:
        deck = Deck(
            id=generate_deck_id(),
            name=name,
            description=description,
            created_at=self._clock(),
        )
        self._decks.document(_safe_doc_id(deck.id)).create(
            {
                "id": deck.id,
                "name": deck.name,
                "description": deck.description,
                "created_at": format_timestamp(deck.created_at),
            }
        )
        return deck

    def get_deck(self, deck_id: str) -> Deck | None:
        snapshot = self._decks.document(_safe_doc_id(deck_id)).get()
        if not snapshot.exists:
            return None
        return _deck_from_doc(snapshot.to_dict() or {})

    def list_decks(self) -> list[Deck]:
        query = self._decks.order_by("created_at", direction=firestore.Query.DESCENDING)
        return [_deck_from_doc(snap.to_dict() or {}) for snap in query.stream()]

    def delete_deck(self, deck_id: str) -> list[str] | None:
        deck_ref = self._decks.document(_safe_doc_id(deck_id))
        if not deck_ref.get().exists:
            return None
        snapshots = list(self._vocabulary.where("deck_id", "==", deck_id).stream())
        cards = _sort_items([_item_from_doc(snap.to_dict() or {}) for snap in snapshots])
        self._delete_refs([snap.reference for snap in snapshots] + [deck_ref])
        return [card.id for card in cards]

    def add_card(self, deck_id: str, item: VocabularyItem) -> VocabularyItem:
        if not self._decks.document(_safe_doc_id(deck_id)).get().exists:
            raise DeckNotFoundError(deck_id)
        orders = [
            int((snap.to_dict() or {}).get("word_order") or 0)
            for snap in self._vocabulary.where("deck_id", "==", deck_id).stream()
        ]
        card = item.model_copy(
            update={
                "id": item.id or generate_card_id(),
                "deck_id": deck_id,
                "is_custom": True,
                "word_order": max(orders) + 1 if orders else 0,
            }
        )
        self._vocabulary.document(_safe_doc_id(card.id)).set(card.model_dump())
        return card


class FirestoreProfileStore(FirestoreBaseStore, LearnerProfileStore):
    """学習者プロフィール（learner_profiles コレクション）を扱う。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._profiles = client.collection("learner_profiles")

    def get_profile(self, learner_id: str) -> LearnerProfile | None:
        snapshot = self._profiles.document(_safe_doc_id(learner_id)).get()
        if not snapshot.exists:
            return None
        return LearnerProfile.model_validate(snapshot.to_dict() or {})

    def save_profile(self, learner_id: str, profile: LearnerProfile) -> None:
        self._profiles.document(_safe_doc_id(learner_id)).set(
            profile.model_dump(mode="json")
        )

    def delete_profile(self, learner_id: str) -> None:
        self._profiles.document(_safe_doc_id(learner_id)).delete()


class AppFirestoreStore:
    """Firestore 版の永続化レイヤー（AppSQLiteStore と同じ構成）。"""

    def __init__(self, client: firestore.Client):
        self._client = client
        self.review_states = FirestoreReviewStateStore(client)
        self.catalog = FirestoreCatalogStore(client)
        self.profiles = FirestoreProfileStore(client)
