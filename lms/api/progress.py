"""Progress endpoints for the authenticated student.

  POST /v1/progress/materials/{material_id}/complete
    -> mark material completed (idempotent)
    -> cascade: topic re-evaluation, course recompute (same transaction)
    -> invalidate the cached course summary after commit
    -> 200 MaterialProgress

  GET /v1/progress/courses/{course_id}
    -> read-through cache (check cache -> miss -> query store -> populate)

Replaying a completion returns the original row; completed_at never
moves forward.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from lms.api.courses import EnrollmentViewOut
from lms.api.dependencies import require_student_id
from lms.api.errors import http_error
from lms.models.progress import CourseProgress, MaterialProgress, TopicProgress
from lms.services.errors import ProgressError
from lms.services.progress_service import progress_service

router = APIRouter(prefix="/v1/progress", tags=["progress"])


class MaterialProgressOut(BaseModel):
    student_id: str
    material_id: str
    completed: bool
    completed_at: int | None = None

    @classmethod
    def from_domain(cls, p: MaterialProgress) -> MaterialProgressOut:
        return cls(
            student_id=str(p.student_id),
            material_id=str(p.material_id),
            completed=p.completed,
            completed_at=p.completed_at,
        )


class TopicProgressOut(BaseModel):
    student_id: str
    topic_id: str
    completed: bool
    completed_at: int | None = None
    time_spent_seconds: int
    last_updated: int | None = None

    @classmethod
    def from_domain(cls, p: TopicProgress) -> TopicProgressOut:
        return cls(
            student_id=str(p.student_id),
            topic_id=str(p.topic_id),
            completed=p.completed,
            completed_at=p.completed_at,
            time_spent_seconds=p.time_spent_seconds,
            last_updated=p.last_updated,
        )


class CourseProgressOut(BaseModel):
    student_id: str
    course_id: str
    progress_percent: int
    last_updated: int | None = None
    last_topic_id: str | None = None
    skill_score: int = 0

    @classmethod
    def from_domain(cls, p: CourseProgress) -> CourseProgressOut:
        return cls(
            student_id=str(p.student_id),
            course_id=str(p.course_id),
            progress_percent=p.progress_percent,
            last_updated=p.last_updated,
            last_topic_id=str(p.last_topic_id) if p.last_topic_id else None,
            skill_score=p.skill_score,
        )


class TimeSpentIn(BaseModel):
    # Negative deltas are rejected by the service with a domain error.
    seconds: int = Field(le=24 * 60 * 60)


@router.post(
    "/materials/{material_id}/complete", response_model=MaterialProgressOut
)
async def complete_material(
    material_id: UUID,
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> MaterialProgressOut:
    try:
        progress = await progress_service.mark_material_completed(student_id, material_id)
    except ProgressError as e:
        raise http_error(e) from None
    return MaterialProgressOut.from_domain(progress)


@router.post("/topics/{topic_id}/time", response_model=TopicProgressOut)
async def record_time_spent(
    topic_id: UUID,
    payload: TimeSpentIn,
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> TopicProgressOut:
    try:
        progress = await progress_service.record_time_spent(
            student_id, topic_id, payload.seconds
        )
    except ProgressError as e:
        raise http_error(e) from None
    return TopicProgressOut.from_domain(progress)


@router.get("/topics", response_model=list[TopicProgressOut])
async def list_topic_progress(
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> list[TopicProgressOut]:
    rows = await progress_service.list_topic_progress(student_id)
    return [TopicProgressOut.from_domain(p) for p in rows]


@router.get("/materials", response_model=list[MaterialProgressOut])
async def list_material_progress(
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> list[MaterialProgressOut]:
    rows = await progress_service.list_material_progress(student_id)
    return [MaterialProgressOut.from_domain(p) for p in rows]


@router.get("/courses/{course_id}", response_model=CourseProgressOut)
async def get_course_progress(
    course_id: UUID,
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> CourseProgressOut:
    try:
        progress = await progress_service.get_course_progress(student_id, course_id)
    except ProgressError as e:
        raise http_error(e) from None
    return CourseProgressOut.from_domain(progress)


@router.get("/enrollments", response_model=list[EnrollmentViewOut])
async def list_my_enrollments(
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> list[EnrollmentViewOut]:
    try:
        views = await progress_service.get_student_enrollments(student_id)
    except ProgressError as e:
        raise http_error(e) from None
    return [EnrollmentViewOut.from_view(v) for v in views]
