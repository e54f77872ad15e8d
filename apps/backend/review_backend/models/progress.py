from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class LearnerProfile(BaseModel):
    """学習位置・完了レッスン・連続学習日数などの学習者プロフィール。

    - completed_lessons: "level_unit_lesson" 形式の ID
    - streak: 連続学習日数（日付が途切れたら 1 に戻る）
    """

    current_level: int = 1
    current_unit: int = 1
    current_lesson: int = 1
    completed_lessons: list[str] = Field(default_factory=list)
    streak: int = 0
    last_study_date: date | None = None
    total_words_learned: int = 0


class CurrentLessonRequest(BaseModel):
    level: int = Field(ge=1)
    unit: int = Field(ge=1)
    lesson: int = Field(ge=1)


class LessonCompleteRequest(BaseModel):
    """レッスン完了リクエスト。

    lesson_id が指定されていれば、そのレッスンの語彙を復習対象として初期化する。
    """

    level: int = Field(ge=1)
    unit: int = Field(ge=1)
    lesson: int = Field(ge=1)
    lesson_id: str | None = None


class LessonCompleteResponse(BaseModel):
    profile: LearnerProfile
    initialized: list[str]
