"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from datetime import datetime

from fastapi import Header, Request

from .service import ReviewService
from .srs import utc_now


def get_review_service(request: Request) -> ReviewService:
    return request.app.state.review_service


def get_learner_id(
    request: Request,
    x_learner_id: str | None = Header(default=None, alias="X-Learner-Id"),
) -> str:
    """X-Learner-Id ヘッダーの学習者 ID。未指定・空なら既定の学習者 ID を使う。"""

    learner_id = (x_learner_id or "").strip()
    if learner_id:
        return learner_id
    return request.app.state.settings.default_learner_id


def get_now() -> datetime:
    return utc_now()
