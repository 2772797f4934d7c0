from datetime import datetime, timedelta

from conftest import create_account, create_course, past
from database.models import UserRole


def mark(client, account, course_id, entries, on=None, period=1, path="/api/attendance/mark"):
    return client.post(
        path,
        headers=account.headers,
        json={
            "courseId": course_id,
            "date": on or past(1),
            "period": period,
            "attendanceData": entries,
        },
    )


def enrolled_student(client, department, course_id):
    student = create_account(UserRole.STUDENT, department)
    assert client.post(f"/api/courses/{course_id}/enroll", headers=student.headers).status_code == 201
    return student


def test_marking_twice_updates_instead_of_duplicating(client, faculty, department, course):
    student = enrolled_student(client, department, course)

    first = mark(client, faculty, course, [{"studentId": student.profile_id, "status": "present"}])
    assert first.status_code == 200
    assert first.json()["data"]["created"] == 1

    second = mark(client, faculty, course, [{"studentId": student.profile_id, "status": "absent"}])
    assert second.json()["data"]["created"] == 0
    assert second.json()["data"]["updated"] == 1

    records = client.get(f"/api/attendance?courseId={course}", headers=faculty.headers).json()
    assert records["pagination"]["totalItems"] == 1
    assert records["data"][0]["status"] == "absent"


def test_unenrolled_students_are_reported_not_fatal(client, faculty, department, course):
    enrolled = enrolled_student(client, department, course)
    stranger = create_account(UserRole.STUDENT, department)

    response = mark(client, faculty, course, [
        {"studentId": enrolled.profile_id, "status": "present"},
        {"studentId": stranger.profile_id, "status": "present"},
    ])
    data = response.json()["data"]
    assert response.status_code == 200
    assert data["recordsProcessed"] == 1
    assert [e["studentId"] for e in data["errors"]] == [stranger.profile_id]


def test_future_dates_are_rejected(client, faculty, department, course):
    student = enrolled_student(client, department, course)
    tomorrow = (datetime.utcnow() + timedelta(days=2)).date().isoformat()
    response = mark(client, faculty, course, [{"studentId": student.profile_id, "status": "present"}], on=tomorrow)
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot mark attendance for future dates"


def test_period_must_be_within_day(client, faculty, department, course):
    student = enrolled_student(client, department, course)
    response = mark(client, faculty, course, [{"studentId": student.profile_id, "status": "present"}], period=9)
    assert response.status_code == 400


def test_faculty_cannot_mark_other_courses(client, faculty, department):
    other_course = create_course(department)
    response = mark(client, faculty, other_course, [])
    assert response.status_code == 403


def test_faculty_route_hides_other_courses(client, faculty, department):
    other_course = create_course(department)
    response = mark(client, faculty, other_course, [], path="/api/faculty/attendance/mark")
    assert response.status_code == 404


def test_students_cannot_mark_attendance(client, student, course):
    assert mark(client, student, course, []).status_code == 403


def test_student_sees_only_own_attendance(client, faculty, department, course):
    mine = enrolled_student(client, department, course)
    theirs = enrolled_student(client, department, course)
    mark(client, faculty, course, [
        {"studentId": mine.profile_id, "status": "present"},
        {"studentId": theirs.profile_id, "status": "absent"},
    ])

    response = client.get(f"/api/attendance?studentId={theirs.profile_id}", headers=mine.headers)
    records = response.json()["data"]
    assert len(records) == 1
    assert records[0]["student"]["id"] == mine.profile_id

    summary = client.get(f"/api/attendance/student/{theirs.profile_id}/summary", headers=mine.headers)
    assert summary.status_code == 403


def test_attendance_statistics(client, faculty, department, course):
    student = enrolled_student(client, department, course)
    for period, status in ((1, "present"), (2, "late"), (3, "absent"), (4, "absent")):
        mark(client, faculty, course, [{"studentId": student.profile_id, "status": status}], period=period)

    stats = client.get("/api/attendance/stats", headers=student.headers).json()["data"]
    assert stats["overall"]["total"] == 4
    assert stats["overall"]["percentage"] == 50.0
    assert len(stats["monthlyTrend"]) == 6


def test_update_attendance_record(client, faculty, department, course):
    student = enrolled_student(client, department, course)
    record_id = mark(
        client, faculty, course, [{"studentId": student.profile_id, "status": "absent"}]
    ).json()["data"]["records"][0]["id"]

    response = client.put(
        f"/api/attendance/{record_id}", headers=faculty.headers, json={"status": "excused", "remarks": "Medical"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "excused"


def test_export_is_csv(client, faculty, department, course):
    student = enrolled_student(client, department, course)
    mark(client, faculty, course, [{"studentId": student.profile_id, "status": "present"}])

    response = client.get(f"/api/attendance/export?courseId={course}", headers=faculty.headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("Date,Period")
    assert len(lines) == 2
