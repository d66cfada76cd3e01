from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Enrollment:
    id: UUID
    student_id: UUID
    course_id: UUID
    enrolled_at: int
    last_accessed_at: int
    completion_percentage: int = 0
    is_completed: bool = False
    completed_at: int | None = None

    @staticmethod
    def new(*, student_id: UUID, course_id: UUID, now: int) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            student_id=student_id,
            course_id=course_id,
            enrolled_at=now,
            last_accessed_at=now,
        )


@dataclass(frozen=True, slots=True)
class EnrollmentView:
    """Read model returned to callers listing enrollments."""

    id: UUID
    student_id: UUID
    course_id: UUID
    course_title: str
    completion_percentage: int
    is_completed: bool
    enrolled_at: int
    last_accessed_at: int
    completed_at: int | None = None


@dataclass(frozen=True, slots=True)
class BulkEnrollOutcome:
    identifier: str
    status: str  # enrolled|failed
    reason: str | None = None  # already enrolled|student not found

    def summary(self) -> str:
        if self.reason is None:
            return self.identifier
        return f"{self.identifier} ({self.reason})"


@dataclass(frozen=True, slots=True)
class BulkEnrollResult:
    course_id: UUID
    outcomes: list[BulkEnrollOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> list[str]:
        return [o.identifier for o in self.outcomes if o.status == "enrolled"]

    @property
    def failed(self) -> list[str]:
        return [o.summary() for o in self.outcomes if o.status == "failed"]

    @property
    def message(self) -> str:
        return f"Enrolled {len(self.succeeded)} out of {self.processed} students"
