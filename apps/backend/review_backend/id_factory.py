"""ID 生成ユーティリティ。

カスタムデッキ・カスタム単語カードの ID は Firestore のパス制約に抵触しない
文字だけで構成し、種別が判別できるよう prefix を付けた UUID を使用する。
"""

from __future__ import annotations

import uuid


def generate_deck_id() -> str:
    return f"dk:{uuid.uuid4().hex}"


def generate_card_id() -> str:
    """カスタム単語カードの新規 ID を生成する。

    教材語彙（シード由来）の ID と衝突しないよう `vc:` prefix を付ける。
    """

    return f"vc:{uuid.uuid4().hex}"
