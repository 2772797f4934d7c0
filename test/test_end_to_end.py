from conftest import PASSWORD, auth_header, create_course, past
from test_auth import register_payload


def test_health_is_public(client):
    client.cookies.clear()
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] in ("healthy", "degraded")
    assert response.json()["checks"]["database"] == {"status": "ok"}


def test_responses_carry_security_headers(client):
    response = client.get("/")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_new_student_starts_with_an_empty_dashboard(client, department):
    assert client.post("/api/auth/register", json=register_payload(department)).status_code == 201
    client.cookies.clear()

    login = client.post("/api/auth/login", json={"email": "new.student@college.edu", "password": PASSWORD})
    assert login.status_code == 200
    headers = auth_header(login.json()["data"]["token"])

    response = client.get("/api/student/dashboard", headers=headers)
    assert response.status_code == 200
    stats = response.json()["data"]["stats"]
    assert stats == {"enrolledCourses": 0, "attendancePercentage": 0.0, "pendingFees": 0.0, "borrowedBooks": 0}

    assert client.get("/api/students/dashboard", headers=headers).status_code == 200


def test_semester_walkthrough(client, admin, faculty, department, course):
    client.post("/api/auth/register", json=register_payload(department))
    client.cookies.clear()
    token = client.post(
        "/api/auth/login", json={"email": "new.student@college.edu", "password": PASSWORD}
    ).json()["data"]["token"]
    student = auth_header(token)
    profile_id = client.get("/api/student/profile", headers=student).json()["data"]["id"]

    assert client.post(f"/api/courses/{course}/enroll", headers=student).status_code == 201

    marked = client.post(
        "/api/attendance/mark",
        headers=faculty.headers,
        json={"courseId": course, "date": past(1), "period": 1,
              "attendanceData": [{"studentId": profile_id, "status": "present"}]},
    )
    assert marked.json()["data"]["created"] == 1

    client.post(
        "/api/fees/bulk-create",
        headers=admin.headers,
        json={"feeType": "tuition", "amount": 5000, "dueDate": "2099-01-01T00:00:00",
              "academicYear": "2024-2025", "studentFilters": {"department": department}},
    )
    client.post("/api/notices", headers=admin.headers, json={"title": "Welcome", "content": "Classes begin Monday"})

    stats = client.get("/api/student/dashboard", headers=student).json()["data"]
    assert stats["stats"] == {
        "enrolledCourses": 1, "attendancePercentage": 100.0, "pendingFees": 5000.0, "borrowedBooks": 0,
    }
    assert [n["title"] for n in stats["recentActivity"]["notices"]] == ["Welcome"]

    other_course = create_course(department)
    assert client.get(f"/api/courses/{other_course}/enrollments", headers=faculty.headers).status_code == 403
