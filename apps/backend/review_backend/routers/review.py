from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps import get_learner_id, get_now, get_review_service
from ..models.catalog import CollectionKind, CollectionRef
from ..models.review import (
    CollectionSummaryResponse,
    FlashcardStats,
    ReviewDueRequest,
    ReviewDueResponse,
    ReviewInitializeRequest,
    ReviewInitializeResponse,
    ReviewRateRequest,
    ReviewSessionResponse,
    ReviewStateResponse,
)
from ..service import ReviewService

router = APIRouter(tags=["review"])


@router.post(
    "/initialize",
    response_model=ReviewInitializeResponse,
    summary="語彙を復習対象として初期化",
)
def initialize_items(
    req: ReviewInitializeRequest,
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
    now: datetime = Depends(get_now),
) -> ReviewInitializeResponse:
    """未登録の語彙だけ初期状態（即時出題）を作成する。既存の状態は変更しない。"""

    created = service.initialize(learner_id, req.item_ids, now)
    return ReviewInitializeResponse(created=created)


@router.post(
    "/rate",
    response_model=ReviewStateResponse,
    summary="カードを採点して次回出題日時を更新",
)
def rate_item(
    req: ReviewRateRequest,
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
    now: datetime = Depends(get_now),
) -> ReviewStateResponse:
    state = service.rate(learner_id, req.item_id, req.quality, now)
    return ReviewStateResponse.from_state(state)


@router.post("/due", response_model=ReviewDueResponse)
def due_items(
    req: ReviewDueRequest,
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
    now: datetime = Depends(get_now),
) -> ReviewDueResponse:
    """候補のうち出題日時が到来しているものを入力順で返す（未初期化は対象外）。"""

    return ReviewDueResponse(due=service.due_items(learner_id, req.item_ids, now))


@router.get("/session", response_model=ReviewSessionResponse)
def review_session(
    kind: CollectionKind | None = Query(default=None),
    key: str | None = Query(default=None, min_length=1),
    limit: int | None = Query(default=None, ge=1, le=1000),
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
    now: datetime = Depends(get_now),
) -> ReviewSessionResponse:
    """復習セッションのカードを返す。

    kind と key は両方指定するか、両方省略する（省略時は全コレクション横断）。
    """

    if (kind is None) != (key is None):
        raise HTTPException(status_code=422, detail="kind and key must be given together")
    collection = CollectionRef(kind=kind, key=key) if kind is not None and key else None
    return service.start_session(learner_id, collection, now, limit)


@router.get("/stats", response_model=FlashcardStats)
def review_stats(
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
    now: datetime = Depends(get_now),
) -> FlashcardStats:
    return service.stats(learner_id, now)


@router.get("/collections", response_model=CollectionSummaryResponse)
def collection_summaries(
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
    now: datetime = Depends(get_now),
) -> CollectionSummaryResponse:
    return service.collection_summaries(learner_id, now)


@router.delete("/progress")
def reset_progress(
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
) -> dict[str, int]:
    """学習者の復習状態とプロフィールをすべて削除する。"""

    return {"deleted": service.reset_progress(learner_id)}
