from conftest import create_account, create_course, past
from database.models import UserRole


def enroll(client, student, course_id):
    return client.post(f"/api/courses/{course_id}/enroll", headers=student.headers).json()["data"]["id"]


def test_classes_and_students_are_limited_to_own_courses(client, faculty, department, student, course):
    other_course = create_course(department)
    enroll(client, student, course)
    outsider = create_account(UserRole.STUDENT, department)
    enroll(client, outsider, other_course)

    classes = client.get("/api/faculty/classes", headers=faculty.headers).json()["data"]
    assert [(c["id"], c["role"], c["enrollmentCount"]) for c in classes] == [(course, "coordinator", 1)]

    students = client.get("/api/faculty/students", headers=faculty.headers).json()
    assert [s["id"] for s in students["data"]] == [student.profile_id]

    assert client.get(f"/api/faculty/courses/{other_course}", headers=faculty.headers).status_code == 404


def test_grade_submission_updates_transcript(client, faculty, department, student, course):
    second_course = create_course(department, coordinator_id=faculty.profile_id)
    first_enrollment = enroll(client, student, course)
    second_enrollment = enroll(client, student, second_course)

    response = client.post(
        "/api/faculty/grades/submit",
        headers=faculty.headers,
        json={
            "courseId": course,
            "grades": [{"enrollmentId": first_enrollment, "internalMarks": 35, "externalMarks": 52, "grade": "A"}],
        },
    )
    assert response.status_code == 200
    assert response.json()["data"]["gradesSubmitted"] == 1

    client.post(
        "/api/faculty/grades/submit",
        headers=faculty.headers,
        json={"courseId": second_course, "grades": [{"enrollmentId": second_enrollment, "grade": "D"}]},
    )

    grades = client.get("/api/student/grades", headers=student.headers).json()["data"]
    assert grades["gpa"] == 6.5
    assert grades["totalCredits"] == 4
    first = next(g for g in grades["grades"] if g["id"] == first_enrollment)
    assert first["status"] == "completed"
    assert first["grades"]["total"] == 87

    history = client.get("/api/student/academic-history", headers=student.headers).json()["data"]
    assert history["cgpa"] == 6.5
    assert len(history["terms"]) == 1

    submitted = client.get("/api/faculty/grades/history", headers=faculty.headers).json()["data"]
    assert len(submitted) == 2


def test_unknown_grade_rejects_whole_batch(client, faculty, department, course):
    first = enroll(client, create_account(UserRole.STUDENT, department), course)
    second = enroll(client, create_account(UserRole.STUDENT, department), course)

    response = client.post(
        "/api/faculty/grades/submit",
        headers=faculty.headers,
        json={"courseId": course, "grades": [
            {"enrollmentId": first, "grade": "A"},
            {"enrollmentId": second, "grade": "Z"},
        ]},
    )
    assert response.status_code == 400
    assert client.get("/api/faculty/grades/history", headers=faculty.headers).json()["data"] == []


def test_grades_for_foreign_enrollment_are_reported(client, faculty, department, student, course):
    other_enrollment = enroll(client, student, create_course(department))

    response = client.post(
        "/api/faculty/grades/submit",
        headers=faculty.headers,
        json={"courseId": course, "grades": [{"enrollmentId": other_enrollment, "grade": "B"}]},
    )
    data = response.json()["data"]
    assert data["gradesSubmitted"] == 0
    assert data["errors"][0]["enrollmentId"] == other_enrollment


def test_attendance_report(client, faculty, department, student, course):
    enroll(client, student, course)
    client.post(
        "/api/faculty/attendance/mark",
        headers=faculty.headers,
        json={"courseId": course, "date": past(1), "period": 1, "attendanceData": [{"studentId": student.profile_id, "status": "late"}]},
    )

    report = client.get(f"/api/faculty/attendance/report?courseId={course}", headers=faculty.headers).json()["data"]
    assert report["totalRecords"] == 1
    assert report["report"][0]["late"] == 1
    assert report["report"][0]["percentage"] == 100.0


def test_upload_material(client, faculty, course):
    response = client.post(
        "/api/faculty/upload-material",
        headers=faculty.headers,
        data={"courseId": str(course), "title": "Week 1 slides"},
        files={"file": ("intro.pdf", b"%PDF-1.4 slides", "application/pdf")},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["size"] == len(b"%PDF-1.4 slides")
    assert data["url"].startswith("/uploads/materials/")

    served = client.get(data["url"])
    assert served.content == b"%PDF-1.4 slides"


def test_upload_rejects_disallowed_types(client, faculty, course):
    response = client.post(
        "/api/faculty/upload-material",
        headers=faculty.headers,
        data={"courseId": str(course), "title": "Script"},
        files={"file": ("run.exe", b"MZ", "application/octet-stream")},
    )
    assert response.status_code == 400


def test_profile_update(client, faculty):
    response = client.put(
        "/api/faculty/profile", headers=faculty.headers, json={"specialization": "Databases", "phone": "9876543210"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["specialization"] == "Databases"


def test_faculty_area_requires_faculty(client, student, admin):
    assert client.get("/api/faculty/classes", headers=student.headers).status_code == 403
    assert client.get("/api/faculty/classes", headers=admin.headers).status_code == 403
