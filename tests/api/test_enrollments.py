"""Enrollment endpoint tests.

Verifies:
1. POST /enrollment returns 201; a second POST is 409
2. DELETE /enrollment returns 204; a second DELETE is 404
3. Bulk enroll and the roster are restricted to instructors/admins
4. Unauthenticated and malformed-subject tokens are rejected (401)
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from lms.services.progress_service import progress_db
from tests.conftest import add_course, add_student, auth, mint_token, run


def _student_token(email: str = "learner@example.com"):
    student = run(add_student(progress_db, email))
    return student, mint_token(sub=str(student.id))


def test_enroll_returns_201_then_409(client: TestClient) -> None:
    student, token = _student_token()
    sample = run(add_course(progress_db, [1]))

    resp = client.post(f"/v1/courses/{sample.course.id}/enrollment", headers=auth(token))
    assert resp.status_code == 201
    data = resp.json()
    assert data["student_id"] == str(student.id)
    assert data["course_id"] == str(sample.course.id)
    assert data["completion_percentage"] == 0
    assert data["is_completed"] is False

    again = client.post(f"/v1/courses/{sample.course.id}/enrollment", headers=auth(token))
    assert again.status_code == 409


def test_enroll_unknown_course_is_404(client: TestClient) -> None:
    _, token = _student_token()
    resp = client.post(f"/v1/courses/{uuid.uuid4()}/enrollment", headers=auth(token))
    assert resp.status_code == 404


def test_unenroll_returns_204_then_404(client: TestClient) -> None:
    _, token = _student_token()
    sample = run(add_course(progress_db, [1]))
    url = f"/v1/courses/{sample.course.id}/enrollment"

    client.post(url, headers=auth(token))
    resp = client.delete(url, headers=auth(token))
    assert resp.status_code == 204

    again = client.delete(url, headers=auth(token))
    assert again.status_code == 404


def test_enrollment_status(client: TestClient) -> None:
    _, token = _student_token()
    sample = run(add_course(progress_db, [1]))
    url = f"/v1/courses/{sample.course.id}/enrollment"

    assert client.get(f"{url}/status", headers=auth(token)).json()["enrolled"] is False
    client.post(url, headers=auth(token))
    assert client.get(f"{url}/status", headers=auth(token)).json()["enrolled"] is True


def test_get_my_enrollment(client: TestClient) -> None:
    student, token = _student_token()
    sample = run(add_course(progress_db, [1, 1], title="Databases"))
    url = f"/v1/courses/{sample.course.id}/enrollment"
    client.post(url, headers=auth(token))
    client.post(
        f"/v1/progress/materials/{sample.materials_of(0)[0].id}/complete",
        headers=auth(token),
    )

    resp = client.get(url, headers=auth(token))
    assert resp.status_code == 200
    data = resp.json()
    assert data["student_id"] == str(student.id)
    assert data["course_title"] == "Databases"
    assert data["completion_percentage"] == 50
    assert data["is_completed"] is False
    assert data["completed_at"] is None


def test_get_my_enrollment_when_not_enrolled_is_404(client: TestClient) -> None:
    _, token = _student_token()
    sample = run(add_course(progress_db, [1]))
    resp = client.get(f"/v1/courses/{sample.course.id}/enrollment", headers=auth(token))
    assert resp.status_code == 404


def test_enroll_requires_auth(client: TestClient) -> None:
    resp = client.post(f"/v1/courses/{uuid.uuid4()}/enrollment")
    assert resp.status_code == 401


def test_non_uuid_subject_is_rejected(client: TestClient) -> None:
    token = mint_token(sub="not-a-uuid")
    resp = client.post(f"/v1/courses/{uuid.uuid4()}/enrollment", headers=auth(token))
    assert resp.status_code == 401


def test_bulk_enroll_as_instructor(client: TestClient) -> None:
    sample = run(add_course(progress_db, [1]))
    run(add_student(progress_db, "a@example.com"))
    b = run(add_student(progress_db, "b@example.com"))
    run(add_student(progress_db, "c@example.com"))
    b_token = mint_token(sub=str(b.id))
    client.post(f"/v1/courses/{sample.course.id}/enrollment", headers=auth(b_token))

    instructor = mint_token(sub=str(uuid.uuid4()), roles=["instructor"])
    resp = client.post(
        f"/v1/courses/{sample.course.id}/bulk-enroll",
        json={"emails": ["a@example.com", "b@example.com", "c@example.com"]},
        headers=auth(instructor),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["processed"] == 3
    assert data["succeeded"] == ["a@example.com", "c@example.com"]
    assert data["failed"] == ["b@example.com (already enrolled)"]
    assert data["message"] == "Enrolled 2 out of 3 students"


def test_bulk_enroll_forbidden_for_students(client: TestClient) -> None:
    _, token = _student_token()
    sample = run(add_course(progress_db, [1]))
    resp = client.post(
        f"/v1/courses/{sample.course.id}/bulk-enroll",
        json={"emails": ["a@example.com"]},
        headers=auth(token),
    )
    assert resp.status_code == 403


def test_bulk_enroll_unknown_course_is_404(client: TestClient) -> None:
    admin = mint_token(sub=str(uuid.uuid4()), roles=["admin"])
    resp = client.post(
        f"/v1/courses/{uuid.uuid4()}/bulk-enroll",
        json={"emails": ["a@example.com"]},
        headers=auth(admin),
    )
    assert resp.status_code == 404


def test_bulk_enroll_rejects_empty_list(client: TestClient) -> None:
    admin = mint_token(sub=str(uuid.uuid4()), roles=["admin"])
    resp = client.post(
        f"/v1/courses/{uuid.uuid4()}/bulk-enroll",
        json={"emails": []},
        headers=auth(admin),
    )
    assert resp.status_code == 422


def test_course_roster_lists_enrollments(client: TestClient) -> None:
    student, token = _student_token()
    sample = run(add_course(progress_db, [1], title="Roster Course"))
    client.post(f"/v1/courses/{sample.course.id}/enrollment", headers=auth(token))

    admin = mint_token(sub=str(uuid.uuid4()), roles=["admin"])
    resp = client.get(f"/v1/courses/{sample.course.id}/enrollments", headers=auth(admin))
    assert resp.status_code == 200
    data = resp.json()
    assert len(data) == 1
    assert data[0]["student_id"] == str(student.id)
    assert data[0]["course_title"] == "Roster Course"


def test_course_roster_forbidden_for_students(client: TestClient) -> None:
    _, token = _student_token()
    resp = client.get(f"/v1/courses/{uuid.uuid4()}/enrollments", headers=auth(token))
    assert resp.status_code == 403
