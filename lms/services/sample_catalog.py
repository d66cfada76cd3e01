"""Sample catalog for development against the in-memory store.

Course, topic and material authoring live in another service; locally we
still need something to enroll in and complete.  Fixed ids keep the
seeded rows stable across restarts so curl scripts keep working.
"""

from __future__ import annotations

import logging
from uuid import UUID

from lms.models.catalog import Course, Material, Student, Topic
from lms.repos.progress_store import ProgressDatabase

logger = logging.getLogger(__name__)

SAMPLE_STUDENT_ID = UUID("00000000-0000-0000-0000-00000000000a")
SAMPLE_COURSE_ID = UUID("00000000-0000-0000-0000-000000000001")

_TOPICS = [
    (
        UUID("00000000-0000-0000-0000-000000000101"),
        "Getting started",
        [(UUID("00000000-0000-0000-0000-000000001001"), "Welcome video")],
    ),
    (
        UUID("00000000-0000-0000-0000-000000000102"),
        "Core concepts",
        [
            (UUID("00000000-0000-0000-0000-000000001002"), "Reading: data model"),
            (UUID("00000000-0000-0000-0000-000000001003"), "Worksheet"),
        ],
    ),
]


async def seed_sample_catalog(database: ProgressDatabase) -> bool:
    """Seed one student and one two-topic course.  Returns False if already seeded."""
    async with database.transaction() as store:
        if await store.get_course(SAMPLE_COURSE_ID) is not None:
            return False

        await store.add_student(
            Student(
                id=SAMPLE_STUDENT_ID,
                email="student@example.com",
                name="Sample Student",
            )
        )
        await store.add_course(
            Course(id=SAMPLE_COURSE_ID, title="Introduction to Data Modeling")
        )
        for position, (topic_id, title, materials) in enumerate(_TOPICS, start=1):
            await store.add_topic(
                Topic(
                    id=topic_id,
                    course_id=SAMPLE_COURSE_ID,
                    position=position,
                    title=title,
                )
            )
            for m_position, (material_id, m_title) in enumerate(materials, start=1):
                await store.add_material(
                    Material(
                        id=material_id,
                        topic_id=topic_id,
                        position=m_position,
                        title=m_title,
                    )
                )

    logger.info("Seeded sample course=%s student=%s", SAMPLE_COURSE_ID, SAMPLE_STUDENT_ID)
    return True
