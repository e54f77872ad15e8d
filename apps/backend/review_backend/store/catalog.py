from __future__ import annotations

import sqlite3
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any, ContextManager

from ..id_factory import generate_card_id, generate_deck_id
from ..models.catalog import CollectionKind, CollectionRef, Deck, VocabularyItem
from .common import chunked, format_timestamp, immediate_transaction, parse_timestamp
from .ports import CatalogStore, DeckNotFoundError

_IN_CLAUSE_CHUNK = 500
_VOCAB_COLUMNS = (
    "id, simplified, pinyin, definition_en, part_of_speech, hsk_level, "
    "lesson_id, deck_id, word_order, is_custom"
)

# HSK レベル "0" は「デッキに属さないカスタム単語」を表す
CUSTOM_LEVEL_KEY = "0"


def ensure_tables(conn: sqlite3.Connection) -> None:
    """語彙・デッキテーブルを初期化する。"""

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS decks (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS vocabulary (
            id TEXT PRIMARY KEY,
            simplified TEXT NOT NULL,
            pinyin TEXT NOT NULL DEFAULT '',
            definition_en TEXT NOT NULL DEFAULT '',
            part_of_speech TEXT NOT NULL DEFAULT '',
            hsk_level INTEGER,
            lesson_id TEXT,
            deck_id TEXT,
            word_order INTEGER NOT NULL DEFAULT 0,
            is_custom INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(deck_id) REFERENCES decks(id) ON DELETE CASCADE
        );
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_vocabulary_level ON vocabulary(hsk_level, word_order);"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_vocabulary_lesson ON vocabulary(lesson_id, word_order);"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_vocabulary_deck ON vocabulary(deck_id, word_order);"
    )


def _item_from_row(row: sqlite3.Row) -> VocabularyItem:
    data = dict(row)
    data["is_custom"] = bool(data.get("is_custom"))
    return VocabularyItem(**data)


def _item_params(item: VocabularyItem) -> dict[str, Any]:
    params = item.model_dump()
    params["is_custom"] = 1 if item.is_custom else 0
    return params


def _deck_from_row(row: sqlite3.Row) -> Deck:
    return Deck(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        created_at=parse_timestamp(row["created_at"]),
    )


class CatalogSQLStore(CatalogStore):
    """SQLite 上の語彙カタログとカスタムデッキを扱う。"""

    def __init__(
        self,
        conn_provider: Callable[[], ContextManager[sqlite3.Connection]],
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self._conn_provider = conn_provider
        self._clock = clock or (lambda: datetime.now(UTC))

    def list_vocabulary(self, collection: CollectionRef) -> list[VocabularyItem]:
        if collection.kind is CollectionKind.level:
            if collection.key == CUSTOM_LEVEL_KEY:
                where, params = "is_custom = 1 AND deck_id IS NULL", ()
            else:
                try:
                    level = int(collection.key)
                except ValueError:
                    return []
                where, params = "hsk_level = ?", (level,)
        elif collection.kind is CollectionKind.lesson:
            where, params = "lesson_id = ?", (collection.key,)
        else:
            where, params = "deck_id = ?", (collection.key,)
        with self._conn_provider() as conn:
            cur = conn.execute(
                f"SELECT {_VOCAB_COLUMNS} FROM vocabulary WHERE {where} ORDER BY word_order ASC, id ASC;",
                params,
            )
            return [_item_from_row(row) for row in cur.fetchall()]

    def get_vocabulary(self, item_ids: Sequence[str]) -> list[VocabularyItem]:
        ids = list(dict.fromkeys(item_ids))
        items: list[VocabularyItem] = []
        if not ids:
            return items
        with self._conn_provider() as conn:
            for chunk in chunked(ids, _IN_CLAUSE_CHUNK):
                placeholders = ",".join("?" for _ in chunk)
                cur = conn.execute(
                    f"SELECT {_VOCAB_COLUMNS} FROM vocabulary WHERE id IN ({placeholders});",
                    tuple(chunk),
                )
                items.extend(_item_from_row(row) for row in cur.fetchall())
        order = {item_id: index for index, item_id in enumerate(ids)}
        items.sort(key=lambda item: order[item.id])
        return items

    def list_hsk_levels(self) -> list[int]:
        with self._conn_provider() as conn:
            cur = conn.execute(
                "SELECT DISTINCT hsk_level FROM vocabulary WHERE hsk_level IS NOT NULL ORDER BY hsk_level ASC;"
            )
            return [int(row["hsk_level"]) for row in cur.fetchall()]

    def save_vocabulary(self, items: Sequence[VocabularyItem]) -> None:
        if not items:
            return
        with self._conn_provider() as conn:
            with immediate_transaction(conn):
                conn.executemany(
                    """
                    INSERT INTO vocabulary (
                        id, simplified, pinyin, definition_en, part_of_speech,
                        hsk_level, lesson_id, deck_id, word_order, is_custom
                    ) VALUES (
                        :id, :simplified, :pinyin, :definition_en, :part_of_speech,
                        :hsk_level, :lesson_id, :deck_id, :word_order, :is_custom
                    )
                    ON CONFLICT(id) DO UPDATE SET
                        simplified = excluded.simplified,
                        pinyin = excluded.pinyin,
                        definition_en = excluded.definition_en,
                        part_of_speech = excluded.part_of_speech,
                        hsk_level = excluded.hsk_level,
                        lesson_id = excluded.lesson_id,
                        deck_id = excluded.deck_id,
                        word_order = excluded.word_order,
                        is_custom = excluded.is_custom;
                    """,
                    [_item_params(item) for item in items],
                )

    def create_deck(self, name: str, description: str = "") -> Deck:
        deck = Deck(
            id=generate_deck_id(),
            name=name,
            description=description,
            created_at=self._clock(),
        )
        with self._conn_provider() as conn:
            with conn:
                conn.execute(
                    "INSERT INTO decks (id, name, description, created_at) VALUES (?, ?, ?, ?);",
                    (deck.id, deck.name, deck.description, format_timestamp(deck.created_at)),
                )
        return deck

    def get_deck(self, deck_id: str) -> Deck | None:
        with self._conn_provider() as conn:
            row = conn.execute(
                "SELECT id, name, description, created_at FROM decks WHERE id = ?;",
                (deck_id,),
            ).fetchone()
        return None if row is None else _deck_from_row(row)

    def list_decks(self) -> list[Deck]:
        with self._conn_provider() as conn:
            cur = conn.execute(
                "SELECT id, name, description, created_at FROM decks ORDER BY created_at DESC, id ASC;"
            )
            return [_deck_from_row(row) for row in cur.fetchall()]

    def delete_deck(self, deck_id: str) -> list[str] | None:
        with self._conn_provider() as conn:
            with immediate_transaction(conn):
                exists = conn.execute(
                    "SELECT 1 FROM decks WHERE id = ?;", (deck_id,)
                ).fetchone()
                if exists is None:
                    return None
                card_ids = [
                    row["id"]
                    for row in conn.execute(
                        "SELECT id FROM vocabulary WHERE deck_id = ? ORDER BY word_order ASC;",
                        (deck_id,),
                    ).fetchall()
                ]
                conn.execute("DELETE FROM vocabulary WHERE deck_id = ?;", (deck_id,))
                conn.execute("DELETE FROM decks WHERE id = ?;", (deck_id,))
        return card_ids

    def add_card(self, deck_id: str, item: VocabularyItem) -> VocabularyItem:
        with self._conn_provider() as conn:
            with immediate_transaction(conn):
                exists = conn.execute(
                    "SELECT 1 FROM decks WHERE id = ?;", (deck_id,)
                ).fetchone()
                if exists is None:
                    raise DeckNotFoundError(deck_id)
                next_order = conn.execute(
                    "SELECT COALESCE(MAX(word_order), -1) + 1 AS next_order FROM vocabulary WHERE deck_id = ?;",
                    (deck_id,),
                ).fetchone()["next_order"]
                card = item.model_copy(
                    update={
                        "id": item.id or generate_card_id(),
                        "deck_id": deck_id,
                        "is_custom": True,
                        "word_order": int(next_order),
                    }
                )
                conn.execute(
                    """
                    INSERT INTO vocabulary (
                        id, simplified, pinyin, definition_en, part_of_speech,
                        hsk_level, lesson_id, deck_id, word_order, is_custom
                    ) VALUES (
                        :id, :simplified, :pinyin, :definition_en, :part_of_speech,
                        :hsk_level, :lesson_id, :deck_id, :word_order, :is_custom
                    );
                    """,
                    _item_params(card),
                )
        return card
