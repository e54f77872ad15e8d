from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from ..srs import DEFAULT_EASE_FACTOR, MIN_EASE_FACTOR, ReviewState, ensure_utc


# 旧端末ローカル形式（camelCase）と DB 形式（snake_case）の対応表
_CAMEL_TO_SNAKE = {
    "vocabularyId": "vocabulary_id",
    "easeFactor": "ease_factor",
    "intervalDays": "interval_days",
    "lastReviewedAt": "last_reviewed_at",
    "nextReviewAt": "next_review_at",
}


def normalize_non_negative_int(value: Any) -> int:
    """与えられた値を非負整数に正規化する。

    repetitions / interval_days は UI のバグで負値が送られてしまうと出題順が
    破綻するため、ここでゼロ以上に矯正しておく。"""

    try:
        ivalue = int(value)
    except (TypeError, ValueError):
        return 0
    return ivalue if ivalue >= 0 else 0


def format_timestamp(moment: datetime) -> str:
    """UTC・マイクロ秒固定の ISO-8601 文字列にする（文字列比較で時系列順になる）。"""

    return ensure_utc(moment).isoformat(timespec="microseconds")


def parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    text = str(raw or "").strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def state_to_record(learner_id: str, state: ReviewState) -> dict[str, Any]:
    return {
        "learner_id": learner_id,
        "vocabulary_id": state.item_id,
        "ease_factor": float(state.ease_factor),
        "interval_days": int(state.interval_days),
        "repetitions": int(state.repetitions),
        "last_reviewed_at": format_timestamp(state.last_reviewed_at),
        "next_review_at": format_timestamp(state.next_review_at),
    }


def state_from_record(record: Mapping[str, Any]) -> ReviewState:
    """Build a `ReviewState` from a stored row or document.

    snake_case（リモート/SQLite）と camelCase（旧ローカル blob）の両方を受け付ける。
    """

    data = {_CAMEL_TO_SNAKE.get(key, key): value for key, value in record.items()}
    try:
        ease_factor = float(data.get("ease_factor") or DEFAULT_EASE_FACTOR)
    except (TypeError, ValueError):
        ease_factor = DEFAULT_EASE_FACTOR
    return ReviewState(
        item_id=str(data["vocabulary_id"]),
        ease_factor=max(MIN_EASE_FACTOR, ease_factor),
        interval_days=normalize_non_negative_int(data.get("interval_days")),
        repetitions=normalize_non_negative_int(data.get("repetitions")),
        last_reviewed_at=parse_timestamp(data["last_reviewed_at"]),
        next_review_at=parse_timestamp(data["next_review_at"]),
    )


@contextmanager
def immediate_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """BEGIN IMMEDIATE〜COMMIT で囲み、例外時は ROLLBACK して再送出する。

    接続は isolation_level=None（autocommit）で開かれている前提。IMMEDIATE で
    書き込みロックを先に取るため、同一行への同時採点でも更新が失われない。
    """

    conn.execute("BEGIN IMMEDIATE;")
    try:
        yield conn
    except Exception:
        conn.execute("ROLLBACK;")
        raise
    conn.execute("COMMIT;")


def chunked(values: Sequence[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(values), size):
        yield list(values[start : start + size])
