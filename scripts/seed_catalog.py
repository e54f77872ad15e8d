#!/usr/bin/env python
"""語彙 JSON / JSONL を設定済みのカタログストア（SQLite / Firestore）へ流し込むユーティリティ。"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "source",
        type=Path,
        help="取り込む語彙ファイル（.json または .jsonl）",
    )
    parser.add_argument(
        "--backend",
        choices=("sqlite", "firestore"),
        default=None,
        help="STORE_BACKEND を上書きする場合に指定（既定: 環境変数 / .env の値）",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="sqlite バックエンド時の DB パス（既定: REVIEW_DB_PATH）",
    )
    parser.add_argument(
        "--emulator-host",
        default=None,
        help="firestore バックエンド時に FIRESTORE_EMULATOR_HOST として使うホスト:ポート",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    # 設定クラスは import 時点で環境変数を読むため、先に上書きしてから backend を読み込む。
    if args.backend:
        os.environ["STORE_BACKEND"] = args.backend
    if args.db_path:
        os.environ["REVIEW_DB_PATH"] = str(args.db_path)
    if args.emulator_host:
        os.environ.setdefault("FIRESTORE_EMULATOR_HOST", str(args.emulator_host))

    repo_root = Path(__file__).resolve().parents[1]
    backend_root = repo_root / "apps" / "backend"
    sys.path.insert(0, str(backend_root))

    from review_backend.config import settings
    from review_backend.logging import configure_logging
    from review_backend.seed_catalog import seed_catalog
    from review_backend.store import create_store

    configure_logging()
    store = create_store(settings)
    count = seed_catalog(args.source, store.catalog)
    print(f"Seeded {count} vocabulary items into {settings.store_backend} catalog.")


if __name__ == "__main__":
    main()
