"""create catalog, enrollment and progress tables

Revision ID: 3b7e1c9d2a41
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e1c9d2a41"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    op.create_table(
        "students",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("courses_enrolled", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("courses_enrolled >= 0"),
    )
    op.create_table(
        "courses",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("total_enrollments", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("total_enrollments >= 0"),
    )
    op.create_table(
        "topics",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "course_id",
            _uuid(),
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("materials_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_topics_course_id", "topics", ["course_id"])
    op.create_table(
        "materials",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "topic_id",
            _uuid(),
            sa.ForeignKey("topics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False, server_default="file"),
        sa.Column("url", sa.Text(), nullable=True),
    )
    op.create_index("ix_materials_topic_id", "materials", ["topic_id"])
    op.create_table(
        "enrollments",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "student_id",
            _uuid(),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "course_id",
            _uuid(),
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "completion_percentage", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "is_completed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("enrolled_at", sa.Integer(), nullable=False),
        sa.Column("last_accessed_at", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.Integer(), nullable=True),
        sa.UniqueConstraint("student_id", "course_id"),
        sa.CheckConstraint("completion_percentage BETWEEN 0 AND 100"),
    )
    op.create_index("ix_enrollments_course_id", "enrollments", ["course_id"])
    op.create_table(
        "topic_material_progress",
        sa.Column(
            "student_id",
            _uuid(),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "material_id",
            _uuid(),
            sa.ForeignKey("materials.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.Integer(), nullable=True),
    )
    op.create_table(
        "topic_progress",
        sa.Column(
            "student_id",
            _uuid(),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "topic_id",
            _uuid(),
            sa.ForeignKey("topics.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.Integer(), nullable=True),
        sa.Column(
            "time_spent_seconds", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("last_updated", sa.Integer(), nullable=True),
    )
    op.create_table(
        "course_progress",
        sa.Column(
            "student_id",
            _uuid(),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "course_id",
            _uuid(),
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("progress_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.Integer(), nullable=True),
        sa.Column("last_topic_id", _uuid(), nullable=True),
        sa.Column("skill_score", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("progress_percent BETWEEN 0 AND 100"),
    )


def downgrade() -> None:
    op.drop_table("course_progress")
    op.drop_table("topic_progress")
    op.drop_table("topic_material_progress")
    op.drop_index("ix_enrollments_course_id", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_index("ix_materials_topic_id", table_name="materials")
    op.drop_table("materials")
    op.drop_index("ix_topics_course_id", table_name="topics")
    op.drop_table("topics")
    op.drop_table("courses")
    op.drop_table("students")
