"""語彙 JSON をカタログストア（SQLite / Firestore）へ流し込むユーティリティ。

入力は次のいずれか:
- VocabularyItem 相当のオブジェクト配列
- {"vocabulary": [...]} 形式のオブジェクト
- 1 行 1 オブジェクトの JSONL（拡張子 .jsonl）
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .logging import logger
from .models.catalog import VocabularyItem
from .store.common import normalize_non_negative_int
from .store.ports import CatalogStore


class SeedFormatError(ValueError):
    """Seed file could not be parsed into vocabulary items."""


def _iter_raw_records(path: Path) -> Iterable[Mapping[str, Any]]:
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".jsonl":
        for line_no, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as exc:
                raise SeedFormatError(f"{path}:{line_no}: {exc.msg}") from exc
        return
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SeedFormatError(f"{path}: {exc.msg}") from exc
    if isinstance(payload, Mapping):
        payload = payload.get("vocabulary")
    if not isinstance(payload, list):
        raise SeedFormatError(f"{path}: expected a list of vocabulary objects")
    yield from payload


def parse_vocabulary(records: Iterable[Mapping[str, Any]]) -> list[VocabularyItem]:
    """生レコードを VocabularyItem に変換する。

    word_order が無いものは出現順で補い、同じ id が重複した場合は後勝ちにする。
    """

    items: dict[str, VocabularyItem] = {}
    for position, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise SeedFormatError(f"record #{position} is not an object")
        data = dict(record)
        data["word_order"] = normalize_non_negative_int(data.get("word_order", position))
        try:
            item = VocabularyItem.model_validate(data)
        except ValidationError as exc:
            raise SeedFormatError(f"record #{position}: {exc.errors()[0]['msg']}") from exc
        items[item.id] = item
    return list(items.values())


def load_vocabulary_file(path: Path) -> list[VocabularyItem]:
    return parse_vocabulary(_iter_raw_records(path))


def seed_catalog(path: Path, catalog: CatalogStore) -> int:
    """ファイルの語彙をカタログへ upsert し、件数を返す。"""

    items = load_vocabulary_file(path)
    catalog.save_vocabulary(items)
    logger.info("catalog_seeded", path=str(path), count=len(items))
    return len(items)
