"""Spaced-repetition scheduling (SM-2 derived).

学習者×語彙ごとの復習状態 `ReviewState` と、品質評価 (0..5) から次回出題日時を
決める遷移関数、および「どの語彙が出題対象か」の問い合わせを提供する。
永続化先（SQLite / Firestore）には依存せず、`ReviewStateStore` ポート越しに動作する。
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import Enum, IntEnum
from typing import TYPE_CHECKING

from .logging import logger

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .store.ports import ReviewStateStore


DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
MIN_QUALITY = 0
MAX_QUALITY = 5
PASSING_QUALITY = 3
MATURE_REPETITIONS = 3


class SchedulerError(Exception):
    """Base class for review scheduler failures."""


class NotInitializedError(SchedulerError):
    """`rate` was called for an item that has no review state yet.

    呼び出し側が `initialize` を先に行う契約違反であり、リトライ対象ではない。
    """

    def __init__(self, learner_id: str, item_id: str) -> None:
        super().__init__(f"review state not initialized: learner={learner_id} item={item_id}")
        self.learner_id = learner_id
        self.item_id = item_id


class InvalidQualityError(SchedulerError, ValueError):
    """Quality rating outside the 0..5 integer scale."""

    def __init__(self, quality: object) -> None:
        super().__init__(
            f"quality must be an integer between {MIN_QUALITY} and {MAX_QUALITY}, got {quality!r}"
        )
        self.quality = quality


class ReviewRating(IntEnum):
    """Four-button rating UI mapped onto the 0..5 quality scale.

    3 is never produced by these buttons; it is only reachable programmatically.
    """

    AGAIN = 1
    HARD = 2
    GOOD = 4
    EASY = 5


class ReviewStage(str, Enum):
    new = "new"
    learning = "learning"
    young = "young"
    mature = "mature"


def ensure_utc(moment: datetime) -> datetime:
    """naive な datetime は UTC とみなし、aware なものは UTC へ変換する。"""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ReviewState:
    """Scheduling record for one (learner, vocabulary item) pair."""

    item_id: str
    ease_factor: float
    interval_days: int
    repetitions: int
    last_reviewed_at: datetime
    next_review_at: datetime

    @classmethod
    def fresh(cls, item_id: str, now: datetime) -> "ReviewState":
        """Initial state: immediately due, no repetitions, default ease."""

        moment = ensure_utc(now)
        return cls(
            item_id=item_id,
            ease_factor=DEFAULT_EASE_FACTOR,
            interval_days=0,
            repetitions=0,
            last_reviewed_at=moment,
            next_review_at=moment,
        )

    @property
    def stage(self) -> ReviewStage:
        if self.repetitions >= MATURE_REPETITIONS:
            return ReviewStage.mature
        if self.repetitions == 2:
            return ReviewStage.young
        return ReviewStage.learning

    def is_due(self, now: datetime) -> bool:
        return ensure_utc(self.next_review_at) <= ensure_utc(now)


def validate_quality(quality: object) -> int:
    """Reject anything that is not an integer in 0..5 (bool included)."""

    if isinstance(quality, bool) or not isinstance(quality, int):
        raise InvalidQualityError(quality)
    if quality < MIN_QUALITY or quality > MAX_QUALITY:
        raise InvalidQualityError(quality)
    return int(quality)


def round_half_away_from_zero(value: float) -> int:
    """Round to the nearest integer; exact .5 ties move away from zero."""

    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def next_ease_factor(ease_factor: float, quality: int) -> float:
    """EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)), floored at 1.3."""

    miss = MAX_QUALITY - quality
    updated = ease_factor + (0.1 - miss * (0.08 + miss * 0.02))
    return max(MIN_EASE_FACTOR, updated)


def schedule_next(state: ReviewState, quality: int, now: datetime) -> ReviewState:
    """Apply one rating to `state` and return the updated state.

    - quality < 3: lapse. repetitions=0, interval=1 day, ease keeps its (floored) value.
    - otherwise: repetitions+1 and interval 1 → 6 → round(previous interval × EF').
    """

    grade = validate_quality(quality)
    moment = ensure_utc(now)
    ease_factor = next_ease_factor(state.ease_factor, grade)

    if grade < PASSING_QUALITY:
        repetitions = 0
        interval_days = 1
    else:
        repetitions = state.repetitions + 1
        if repetitions == 1:
            interval_days = 1
        elif repetitions == 2:
            interval_days = 6
        else:
            interval_days = round_half_away_from_zero(state.interval_days * ease_factor)

    return replace(
        state,
        ease_factor=ease_factor,
        interval_days=interval_days,
        repetitions=repetitions,
        last_reviewed_at=moment,
        next_review_at=moment + timedelta(days=interval_days),
    )


@dataclass(frozen=True)
class Classification:
    """Candidate ids partitioned by review status."""

    new: frozenset[str]
    due: frozenset[str]
    scheduled: frozenset[str]


class ReviewScheduler:
    """Storage-agnostic scheduler operating over a `ReviewStateStore`.

    - initialize: 未登録の語彙だけ初期状態を作成する（冪等）
    - rate: 品質評価を適用し、読み込み〜更新をストア側で原子的に行う
    - due_items: 候補集合のうち next_review_at <= now のものを返す
    """

    def __init__(self, store: "ReviewStateStore") -> None:
        self._store = store

    def initialize(
        self, learner_id: str, item_ids: Iterable[str], now: datetime
    ) -> list[str]:
        ordered_ids = list(dict.fromkeys(item_ids))
        if not ordered_ids:
            return []
        fresh_states = [ReviewState.fresh(item_id, now) for item_id in ordered_ids]
        created = self._store.create_states_if_absent(learner_id, fresh_states)
        if created:
            logger.info(
                "review_states_initialized",
                learner_id=learner_id,
                requested=len(ordered_ids),
                created=len(created),
            )
        return created

    def rate(
        self, learner_id: str, item_id: str, quality: int, now: datetime
    ) -> ReviewState:
        grade = validate_quality(quality)
        moment = ensure_utc(now)
        updated = self._store.update_state(
            learner_id,
            item_id,
            lambda current: schedule_next(current, grade, moment),
        )
        logger.info(
            "review_rated",
            learner_id=learner_id,
            item_id=item_id,
            quality=grade,
            repetitions=updated.repetitions,
            interval_days=updated.interval_days,
            ease_factor=round(updated.ease_factor, 4),
        )
        return updated

    def due_items(
        self, learner_id: str, candidate_ids: Iterable[str], now: datetime
    ) -> set[str]:
        candidates = set(candidate_ids)
        if not candidates:
            return set()
        states = self._store.get_states_for_items(learner_id, sorted(candidates))
        return {
            state.item_id
            for state in states
            if state.item_id in candidates and state.is_due(now)
        }

    def due_states(
        self, learner_id: str, now: datetime, limit: int | None = None
    ) -> list[ReviewState]:
        """All due states of a learner, oldest `next_review_at` first."""

        return self._store.list_due_states(learner_id, ensure_utc(now), limit)

    def classify(
        self, learner_id: str, candidate_ids: Iterable[str], now: datetime
    ) -> Classification:
        candidates = set(candidate_ids)
        if not candidates:
            return Classification(frozenset(), frozenset(), frozenset())
        states = [
            state
            for state in self._store.get_states_for_items(learner_id, sorted(candidates))
            if state.item_id in candidates
        ]
        known = {state.item_id for state in states}
        due = {state.item_id for state in states if state.is_due(now)}
        return Classification(
            new=frozenset(candidates - known),
            due=frozenset(due),
            scheduled=frozenset(known - due),
        )
