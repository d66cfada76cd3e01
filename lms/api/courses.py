"""Enrollment endpoints.

  POST   /v1/courses/{course_id}/enrollment   enroll the caller
  DELETE /v1/courses/{course_id}/enrollment   unenroll the caller
  GET    /v1/courses/{course_id}/enrollment   the caller's enrollment (404 if none)
  GET    /v1/courses/{course_id}/enrollment/status   is the caller enrolled?
  POST   /v1/courses/{course_id}/bulk-enroll  instructor/admin, by email
  GET    /v1/courses/{course_id}/enrollments  instructor/admin roster

Enrollment and unenrollment move the course and student counters in the
same transaction as the enrollment row; see services/course_progress.py.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from lms.api.dependencies import require_staff, require_student_id
from lms.api.errors import http_error
from lms.models.enrollment import BulkEnrollResult, Enrollment, EnrollmentView
from lms.models.principal import Principal
from lms.services.errors import ProgressError
from lms.services.progress_service import progress_service

router = APIRouter(prefix="/v1/courses", tags=["courses"])


class EnrollmentOut(BaseModel):
    id: str
    student_id: str
    course_id: str
    completion_percentage: int
    is_completed: bool
    enrolled_at: int
    last_accessed_at: int
    completed_at: int | None = None

    @classmethod
    def from_domain(cls, e: Enrollment) -> EnrollmentOut:
        return cls(
            id=str(e.id),
            student_id=str(e.student_id),
            course_id=str(e.course_id),
            completion_percentage=e.completion_percentage,
            is_completed=e.is_completed,
            enrolled_at=e.enrolled_at,
            last_accessed_at=e.last_accessed_at,
            completed_at=e.completed_at,
        )


class EnrollmentViewOut(EnrollmentOut):
    course_title: str

    @classmethod
    def from_view(cls, v: EnrollmentView) -> EnrollmentViewOut:
        return cls(
            id=str(v.id),
            student_id=str(v.student_id),
            course_id=str(v.course_id),
            course_title=v.course_title,
            completion_percentage=v.completion_percentage,
            is_completed=v.is_completed,
            enrolled_at=v.enrolled_at,
            last_accessed_at=v.last_accessed_at,
            completed_at=v.completed_at,
        )


class EnrollmentStatusOut(BaseModel):
    course_id: str
    enrolled: bool


class BulkEnrollIn(BaseModel):
    emails: list[str] = Field(min_length=1)


class BulkEnrollItemOut(BaseModel):
    identifier: str
    status: str
    reason: str | None = None


class BulkEnrollOut(BaseModel):
    course_id: str
    processed: int
    succeeded: list[str]
    failed: list[str]
    message: str
    outcomes: list[BulkEnrollItemOut]

    @classmethod
    def from_result(cls, r: BulkEnrollResult) -> BulkEnrollOut:
        return cls(
            course_id=str(r.course_id),
            processed=r.processed,
            succeeded=r.succeeded,
            failed=r.failed,
            message=r.message,
            outcomes=[
                BulkEnrollItemOut(identifier=o.identifier, status=o.status, reason=o.reason)
                for o in r.outcomes
            ],
        )


@router.post(
    "/{course_id}/enrollment",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_in_course(
    course_id: UUID,
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> EnrollmentOut:
    try:
        enrollment = await progress_service.enroll(student_id, course_id)
    except ProgressError as e:
        raise http_error(e) from None
    return EnrollmentOut.from_domain(enrollment)


@router.delete("/{course_id}/enrollment", status_code=status.HTTP_204_NO_CONTENT)
async def unenroll_from_course(
    course_id: UUID,
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> Response:
    try:
        await progress_service.unenroll(student_id, course_id)
    except ProgressError as e:
        raise http_error(e) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{course_id}/enrollment", response_model=EnrollmentViewOut)
async def get_my_enrollment(
    course_id: UUID,
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> EnrollmentViewOut:
    try:
        view = await progress_service.get_enrollment(student_id, course_id)
    except ProgressError as e:
        raise http_error(e) from None
    return EnrollmentViewOut.from_view(view)


@router.get("/{course_id}/enrollment/status", response_model=EnrollmentStatusOut)
async def get_enrollment_status(
    course_id: UUID,
    student_id: Annotated[UUID, Depends(require_student_id)],
) -> EnrollmentStatusOut:
    enrolled = await progress_service.is_enrolled(student_id, course_id)
    return EnrollmentStatusOut(course_id=str(course_id), enrolled=enrolled)


@router.post("/{course_id}/bulk-enroll", response_model=BulkEnrollOut)
async def bulk_enroll(
    course_id: UUID,
    payload: BulkEnrollIn,
    _principal: Annotated[Principal, Depends(require_staff)],
) -> BulkEnrollOut:
    try:
        result = await progress_service.bulk_enroll(course_id, payload.emails)
    except ProgressError as e:
        raise http_error(e) from None
    return BulkEnrollOut.from_result(result)


@router.get("/{course_id}/enrollments", response_model=list[EnrollmentViewOut])
async def list_course_enrollments(
    course_id: UUID,
    _principal: Annotated[Principal, Depends(require_staff)],
) -> list[EnrollmentViewOut]:
    try:
        views = await progress_service.get_course_enrollments(course_id)
    except ProgressError as e:
        raise http_error(e) from None
    return [EnrollmentViewOut.from_view(v) for v in views]
