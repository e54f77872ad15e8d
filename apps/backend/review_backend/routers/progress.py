from datetime import datetime

from fastapi import APIRouter, Depends

from ..deps import get_learner_id, get_now, get_review_service
from ..models.progress import (
    CurrentLessonRequest,
    LearnerProfile,
    LessonCompleteRequest,
    LessonCompleteResponse,
)
from ..service import ReviewService

router = APIRouter(tags=["progress"])


@router.get("", response_model=LearnerProfile)
def get_progress(
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
) -> LearnerProfile:
    return service.get_profile(learner_id)


@router.put("/current-lesson", response_model=LearnerProfile)
def update_current_lesson(
    req: CurrentLessonRequest,
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
) -> LearnerProfile:
    return service.update_current_lesson(learner_id, req)


@router.post("/lessons/complete", response_model=LessonCompleteResponse)
def complete_lesson(
    req: LessonCompleteRequest,
    learner_id: str = Depends(get_learner_id),
    service: ReviewService = Depends(get_review_service),
    now: datetime = Depends(get_now),
) -> LessonCompleteResponse:
    """レッスン完了を記録し、連続学習日数を更新する。

    lesson_id を渡すとそのレッスンの語彙が復習対象として初期化される。
    """

    return service.complete_lesson(learner_id, req, now)
