from conftest import create_account, create_course, create_department, past
from database.models import UserRole


def enroll(client, account, course_id, **body):
    return client.post(f"/api/courses/{course_id}/enroll", headers=account.headers, json=body or None)


def test_admin_creates_course(client, admin, department, faculty):
    response = client.post(
        "/api/courses",
        headers=admin.headers,
        json={
            "code": "cs201",
            "name": "Operating Systems",
            "departmentId": department,
            "semester": 3,
            "credits": 4,
            "instructorIds": [faculty.profile_id],
        },
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["code"] == "CS201"
    assert data["enrollmentCount"] == 0
    assert [i["id"] for i in data["instructors"]] == [faculty.profile_id]


def test_faculty_creator_becomes_coordinator(client, faculty, department):
    response = client.post(
        "/api/courses",
        headers=faculty.headers,
        json={"code": "CS202", "name": "Networks", "departmentId": department, "semester": 3},
    )
    assert response.status_code == 201
    assert response.json()["data"]["coordinator"]["id"] == faculty.profile_id


def test_faculty_may_create_course_in_any_department(client, faculty):
    other_department = create_department()
    response = client.post(
        "/api/courses",
        headers=faculty.headers,
        json={"code": "ME101", "name": "Thermodynamics", "departmentId": other_department, "semester": 1},
    )
    assert response.status_code == 201
    assert response.json()["data"]["coordinator"]["id"] == faculty.profile_id


def test_duplicate_course_code_is_rejected(client, admin, department):
    payload = {"code": "CS301", "name": "Compilers", "departmentId": department, "semester": 5}
    assert client.post("/api/courses", headers=admin.headers, json=payload).status_code == 201
    response = client.post("/api/courses", headers=admin.headers, json=payload)
    assert response.status_code == 400
    assert response.json()["message"] == "Course with this code already exists"


def test_assessment_weights_must_total_100(client, admin, department):
    response = client.post(
        "/api/courses",
        headers=admin.headers,
        json={
            "code": "CS302", "name": "Graphics", "departmentId": department, "semester": 5,
            "internalWeight": 50, "externalWeight": 60,
        },
    )
    assert response.status_code == 400


def test_students_cannot_create_courses(client, student, department):
    response = client.post(
        "/api/courses",
        headers=student.headers,
        json={"code": "CS303", "name": "AI", "departmentId": department, "semester": 5},
    )
    assert response.status_code == 403


def test_student_enrolls_in_course(client, student, course):
    response = enroll(client, student, course)
    assert response.status_code == 201
    assert response.json()["data"]["status"] == "active"

    details = client.get(f"/api/courses/{course}", headers=student.headers)
    assert details.json()["data"]["enrollmentCount"] == 1


def test_duplicate_enrollment_is_rejected(client, student, course):
    assert enroll(client, student, course).status_code == 201
    response = enroll(client, student, course)
    assert response.status_code == 400
    assert response.json()["message"] == "Student is already enrolled in this course"


def test_course_capacity_is_enforced(client, department):
    course_id = create_course(department, max_enrollment=1)
    first = create_account(UserRole.STUDENT, department)
    second = create_account(UserRole.STUDENT, department)

    assert enroll(client, first, course_id).status_code == 201
    response = enroll(client, second, course_id)
    assert response.status_code == 400
    assert response.json()["message"] == "Course is at maximum capacity"


def test_withdraw_then_reenroll_same_year(client, student, course):
    enroll(client, student, course)

    withdrawn = client.delete(f"/api/courses/{course}/withdraw", headers=student.headers)
    assert withdrawn.status_code == 200
    assert withdrawn.json()["data"]["status"] == "withdrawn"

    again = enroll(client, student, course)
    assert again.status_code == 201
    assert again.json()["data"]["status"] == "active"


def test_withdraw_without_enrollment_is_not_found(client, student, course):
    response = client.delete(f"/api/courses/{course}/withdraw", headers=student.headers)
    assert response.status_code == 404


def test_admin_enrolls_named_student(client, admin, student, course):
    response = enroll(client, admin, course, studentId=student.profile_id)
    assert response.status_code == 201
    assert response.json()["data"]["student"]["id"] == student.profile_id


def test_admin_must_name_student(client, admin, course):
    assert enroll(client, admin, course).status_code == 400


def test_faculty_cannot_enroll(client, faculty, course):
    assert enroll(client, faculty, course).status_code == 403


def test_prerequisites_must_be_completed(client, admin, student, department):
    basics = create_course(department)
    response = client.post(
        "/api/courses",
        headers=admin.headers,
        json={
            "code": "CS401", "name": "Advanced Topics", "departmentId": department,
            "semester": 1, "prerequisiteIds": [basics],
        },
    )
    advanced = response.json()["data"]["id"]

    blocked = enroll(client, student, advanced)
    assert blocked.status_code == 400
    assert blocked.json()["message"] == "Student has not completed required prerequisites"


def test_course_with_active_enrollments_cannot_be_deleted(client, admin, student, course):
    enroll(client, student, course)
    response = client.delete(f"/api/courses/{course}", headers=admin.headers)
    assert response.status_code == 400

    client.delete(f"/api/courses/{course}/withdraw", headers=student.headers)
    assert client.delete(f"/api/courses/{course}", headers=admin.headers).status_code == 200
    assert client.get(f"/api/courses/{course}", headers=admin.headers).status_code == 404


def test_course_with_grades_is_kept(client, admin, faculty, student, course):
    enrollment_id = enroll(client, student, course).json()["data"]["id"]
    client.post(
        "/api/faculty/grades/submit",
        headers=faculty.headers,
        json={"courseId": course, "grades": [{"enrollmentId": enrollment_id, "grade": "A"}]},
    )

    response = client.delete(f"/api/courses/{course}", headers=admin.headers)
    assert response.status_code == 400
    assert "history" in response.json()["message"]

    grades = client.get("/api/student/grades", headers=student.headers).json()["data"]
    assert grades["gpa"] == 9.0
    assert [g["id"] for g in grades["grades"]] == [enrollment_id]

    archived = client.put(f"/api/courses/{course}", headers=admin.headers, json={"status": "inactive"})
    assert archived.json()["data"]["status"] == "inactive"


def test_course_with_attendance_is_kept(client, admin, faculty, student, course):
    enroll(client, student, course)
    client.post(
        "/api/attendance/mark",
        headers=faculty.headers,
        json={"courseId": course, "date": past(1), "period": 1,
              "attendanceData": [{"studentId": student.profile_id, "status": "present"}]},
    )
    client.delete(f"/api/courses/{course}/withdraw", headers=student.headers)

    assert client.delete(f"/api/courses/{course}", headers=admin.headers).status_code == 400
    records = client.get(f"/api/attendance?courseId={course}", headers=admin.headers).json()["data"]
    assert len(records) == 1


def test_list_courses_is_paginated(client, student, department):
    for _ in range(3):
        create_course(department)
    response = client.get("/api/courses?limit=2", headers=student.headers)
    body = response.json()
    assert response.status_code == 200
    assert len(body["data"]) == 2
    assert body["pagination"]["totalItems"] == 3
    assert body["pagination"]["hasNext"] is True


def test_faculty_sees_enrollments_only_for_own_courses(client, department, student, course):
    outsider = create_account(UserRole.FACULTY, department)
    enroll(client, student, course)
    response = client.get(f"/api/courses/{course}/enrollments", headers=outsider.headers)
    assert response.status_code == 403
