"""Aggregations over review states and learner profile bookkeeping.

ストレージには触れない純粋関数だけを置く。統計・コレクション要約・
連続学習日数（streak）・レッスン完了の計算をここで行い、永続化は
`service.ReviewService` が担う。
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime

from .models.catalog import CollectionRef, VocabularyItem
from .models.progress import LearnerProfile
from .models.review import CollectionSummary, FlashcardStats
from .srs import MATURE_REPETITIONS, ReviewState, ensure_utc, round_half_away_from_zero


def compute_stats(states: Iterable[ReviewState], now: datetime) -> FlashcardStats:
    total = due = mature = 0
    for state in states:
        total += 1
        if state.is_due(now):
            due += 1
        if state.repetitions >= MATURE_REPETITIONS:
            mature += 1
    return FlashcardStats(total=total, due=due, mature=mature, learning=total - mature)


def compute_accuracy(states: Iterable[ReviewState]) -> int:
    """Percentage of attempted cards that were recalled, rounded; 0 without attempts.

    attempted: repetitions > 0, recalled: repetitions >= 1.
    """

    states = list(states)
    attempted = [state for state in states if state.repetitions > 0]
    if not attempted:
        return 0
    recalled = sum(1 for state in attempted if state.repetitions >= 1)
    return round_half_away_from_zero(recalled * 100 / len(attempted))


def summarize_collection(
    collection: CollectionRef,
    title: str,
    items: Sequence[VocabularyItem],
    states: Sequence[ReviewState],
    now: datetime,
) -> CollectionSummary:
    """Card counts for one level/lesson/deck.

    states には items に対応する既存の復習状態だけを渡す。
    """

    item_ids = {item.id for item in items}
    relevant = [state for state in states if state.item_id in item_ids]
    last_reviewed = max((state.last_reviewed_at for state in relevant), default=None)
    return CollectionSummary(
        collection=collection,
        title=title,
        total_cards=len(items),
        due_cards=sum(1 for state in relevant if state.is_due(now)),
        new_cards=len(item_ids) - len(relevant),
        accuracy=compute_accuracy(relevant),
        last_reviewed_at=last_reviewed,
    )


def level_title(level: int) -> str:
    return f"HSK {level} Vocabulary"


def lesson_key(level: int, unit: int, lesson: int) -> str:
    return f"{level}_{unit}_{lesson}"


def update_streak(profile: LearnerProfile, today: date) -> LearnerProfile:
    """Advance the study streak for a study session on `today`.

    - 初回: 1
    - 同日: 変更なし
    - 翌日: +1
    - 2日以上空いた（または日付が巻き戻った）: 1 に戻す
    """

    last = profile.last_study_date
    if last is None:
        streak = 1
    else:
        gap = (today - last).days
        if gap == 0:
            return profile
        streak = profile.streak + 1 if gap == 1 else 1
    return profile.model_copy(update={"streak": streak, "last_study_date": today})


def record_lesson_completion(
    profile: LearnerProfile,
    *,
    level: int,
    unit: int,
    lesson: int,
    words_learned: int,
    now: datetime,
) -> LearnerProfile:
    """Mark a lesson completed, bump the streak and add its words.

    Words are only counted the first time a lesson is completed.
    """

    key = lesson_key(level, unit, lesson)
    completed = list(profile.completed_lessons)
    total_words = profile.total_words_learned
    if key not in completed:
        completed.append(key)
        total_words += max(0, words_learned)
    updated = profile.model_copy(
        update={
            "completed_lessons": completed,
            "total_words_learned": total_words,
        }
    )
    return update_streak(updated, ensure_utc(now).date())
