from conftest import ACADEMIC_YEAR, create_account, create_department
from database.models import UserRole


def period(day="Monday", number=1, start="9:00", end="10:00", **extra):
    return {"day": day, "periodNumber": number, "startTime": start, "endTime": end, **extra}


def create_timetable(client, account, department, schedule=None, semester=1):
    return client.post(
        "/api/timetable",
        headers=account.headers,
        json={
            "departmentId": department,
            "semester": semester,
            "academicYear": ACADEMIC_YEAR,
            "schedule": schedule if schedule is not None else [period()],
        },
    )


def test_new_timetable_is_an_inactive_draft(client, admin, department, course, faculty):
    response = create_timetable(client, admin, department, [
        period(courseId=course, facultyId=faculty.profile_id, room="A-101"),
        period(number=2, start="10:00", end="11:00"),
    ])
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "draft"
    assert data["isActive"] is False
    assert data["schedule"][0]["startTime"] == "09:00"
    assert data["schedule"][0]["course"]["id"] == course


def test_overlapping_periods_are_rejected(client, admin, department):
    response = create_timetable(client, admin, department, [
        period(start="9:00", end="10:30"),
        period(number=2, start="10:00", end="11:00"),
    ])
    assert response.status_code == 400
    assert response.json()["message"] == "Time overlap detected in Monday schedule"


def test_unknown_course_is_rejected(client, admin, department):
    response = create_timetable(client, admin, department, [period(courseId=9999)])
    assert response.status_code == 400


def test_faculty_limited_to_own_department(client, faculty):
    response = create_timetable(client, faculty, create_department())
    assert response.status_code == 403


def test_submit_and_approve(client, admin, faculty, department):
    timetable_id = create_timetable(client, faculty, department).json()["data"]["id"]

    submitted = client.post(f"/api/timetable/{timetable_id}/submit", headers=faculty.headers)
    assert submitted.json()["data"]["status"] == "pending_approval"

    assert client.post(f"/api/timetable/{timetable_id}/approve", headers=faculty.headers).status_code == 403

    approved = client.post(f"/api/timetable/{timetable_id}/approve", headers=admin.headers)
    assert approved.status_code == 200
    assert approved.json()["data"]["status"] == "approved"
    assert approved.json()["data"]["isActive"] is True

    again = client.post(f"/api/timetable/{timetable_id}/approve", headers=admin.headers)
    assert again.status_code == 400


def test_empty_timetable_cannot_be_submitted(client, admin, department):
    timetable_id = create_timetable(client, admin, department, schedule=[]).json()["data"]["id"]
    response = client.post(f"/api/timetable/{timetable_id}/submit", headers=admin.headers)
    assert response.status_code == 400


def test_approving_a_newer_timetable_archives_the_old_one(client, admin, department):
    first = create_timetable(client, admin, department).json()["data"]["id"]
    second = create_timetable(client, admin, department).json()["data"]["id"]

    client.post(f"/api/timetable/{first}/approve", headers=admin.headers)
    client.post(f"/api/timetable/{second}/approve", headers=admin.headers)

    old = client.get(f"/api/timetable/{first}", headers=admin.headers).json()["data"]["timetable"]
    assert old["status"] == "archived"
    assert old["isActive"] is False

    active = client.get(f"/api/timetable?department={department}&isActive=true", headers=admin.headers).json()
    assert [t["id"] for t in active["data"]] == [second]


def test_active_timetable_blocks_new_draft_for_same_key(client, admin, department):
    first = create_timetable(client, admin, department).json()["data"]["id"]
    client.post(f"/api/timetable/{first}/approve", headers=admin.headers)

    response = create_timetable(client, admin, department)
    assert response.status_code == 400


def test_students_see_only_their_active_timetable(client, admin, department, student):
    draft = create_timetable(client, admin, department).json()["data"]["id"]
    other_semester = create_timetable(client, admin, department, semester=3).json()["data"]["id"]
    client.post(f"/api/timetable/{other_semester}/approve", headers=admin.headers)

    assert client.get("/api/timetable", headers=student.headers).json()["data"] == []
    assert client.get(f"/api/timetable/{draft}", headers=student.headers).status_code == 403

    client.post(f"/api/timetable/{draft}/approve", headers=admin.headers)
    listed = client.get("/api/timetable", headers=student.headers).json()["data"]
    assert [t["id"] for t in listed] == [draft]


def test_editing_approved_timetable(client, admin, faculty, department):
    timetable_id = create_timetable(client, admin, department).json()["data"]["id"]
    client.post(f"/api/timetable/{timetable_id}/approve", headers=admin.headers)

    blocked = client.put(
        f"/api/timetable/{timetable_id}", headers=faculty.headers, json={"schedule": [period(day="Tuesday")]}
    )
    assert blocked.status_code == 403

    response = client.put(
        f"/api/timetable/{timetable_id}", headers=admin.headers, json={"schedule": [period(day="Tuesday")]}
    )
    data = response.json()["data"]
    assert data["version"] == 2
    assert data["status"] == "pending_approval"
    assert data["isActive"] is True


def test_conflicts_across_timetables(client, admin, department, faculty):
    other_department = create_department()
    slot = period(facultyId=faculty.profile_id, room="Lab 1")
    create_timetable(client, admin, department, [slot])
    second = create_timetable(client, admin, other_department, [slot]).json()["data"]["id"]

    assert client.get("/api/timetable/conflicts", headers=admin.headers).json()["data"]["totalConflicts"] == 0

    client.post(f"/api/timetable/{second}/approve", headers=admin.headers)
    first = client.get(f"/api/timetable?department={department}", headers=admin.headers).json()["data"][0]["id"]
    client.post(f"/api/timetable/{first}/submit", headers=admin.headers)

    data = client.get("/api/timetable/conflicts", headers=admin.headers).json()["data"]
    assert data["timetablesChecked"] == 2
    assert {c["type"] for c in data["conflicts"]} == {"faculty_conflict", "room_conflict"}


def test_export_csv(client, admin, department, course):
    timetable_id = create_timetable(client, admin, department, [
        period(courseId=course),
        period(day="Wednesday", start="11:00", end="12:00", isBreak=True),
    ]).json()["data"]["id"]

    response = client.get(f"/api/timetable/{timetable_id}/export?format=csv", headers=admin.headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("Day,Period,Start,End")
    assert lines[1].startswith("Monday,1,09:00,10:00")
    assert "Break" in lines[2]

    assert client.get(f"/api/timetable/{timetable_id}/export?format=pdf", headers=admin.headers).status_code == 400


def test_faculty_schedule_lists_taught_periods(client, admin, faculty, department, course):
    timetable_id = create_timetable(client, admin, department, [
        period(courseId=course, facultyId=faculty.profile_id),
    ]).json()["data"]["id"]
    client.post(f"/api/timetable/{timetable_id}/approve", headers=admin.headers)

    data = client.get("/api/timetable/my-schedule", headers=faculty.headers).json()["data"]
    assert len(data["schedule"]["Monday"]) == 1
    assert data["statistics"]["totalPeriods"] == 1

    student = create_account(UserRole.STUDENT, department)
    assert client.get("/api/timetable/my-schedule", headers=student.headers).status_code == 403
