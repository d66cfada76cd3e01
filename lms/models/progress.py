from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class MaterialProgress:
    """One student's completion state for one material.

    A missing row and a row with completed=False mean the same thing:
    the material has not been finished.
    """

    student_id: UUID
    material_id: UUID
    completed: bool = False
    completed_at: int | None = None


@dataclass(frozen=True, slots=True)
class TopicProgress:
    student_id: UUID
    topic_id: UUID
    completed: bool = False
    completed_at: int | None = None
    time_spent_seconds: int = 0
    last_updated: int | None = None


@dataclass(frozen=True, slots=True)
class CourseProgress:
    """Derived course-level rollup for one student.

    Kept in lockstep with Enrollment.completion_percentage by the course
    aggregator; both are written in the same transaction.
    """

    student_id: UUID
    course_id: UUID
    progress_percent: int = 0
    last_updated: int | None = None
    last_topic_id: UUID | None = None
    skill_score: int = 0
