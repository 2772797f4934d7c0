from conftest import PASSWORD, create_account, create_course
from database.models import UserRole


def new_student_payload(department, email="new.student@college.edu"):
    return {
        "firstName": "Asha",
        "lastName": "Rao",
        "email": email,
        "password": PASSWORD,
        "role": "student",
        "studentData": {
            "studentId": "STU9001",
            "rollNumber": "R9001",
            "department": department,
            "batch": "2024-2028",
            "semester": 1,
            "academicYear": "2024-2025",
        },
    }


def test_admin_creates_and_lists_users(client, admin, department):
    response = client.post("/api/admin/users", headers=admin.headers, json=new_student_payload(department))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["user"]["role"] == "student"
    assert "password" not in data["user"]

    listed = client.get("/api/admin/users?role=student&search=asha", headers=admin.headers).json()
    assert [u["email"] for u in listed["data"]] == ["new.student@college.edu"]


def test_duplicate_user_email(client, admin, department):
    client.post("/api/admin/users", headers=admin.headers, json=new_student_payload(department))
    response = client.post("/api/admin/users", headers=admin.headers, json=new_student_payload(department))
    assert response.status_code == 400


def test_deactivated_user_is_locked_out(client, admin, student):
    assert client.get("/api/auth/me", headers=student.headers).status_code == 200

    response = client.put(f"/api/admin/users/{student.user_id}", headers=admin.headers, json={"status": "inactive"})
    assert response.status_code == 200

    locked = client.get("/api/auth/me", headers=student.headers)
    assert locked.status_code == 401
    assert locked.json()["message"] == "User account is inactive"


def test_admin_cannot_lock_out_themselves(client, admin):
    deactivate = client.put(f"/api/admin/users/{admin.user_id}", headers=admin.headers, json={"status": "inactive"})
    assert deactivate.status_code == 400

    demote = client.put(f"/api/admin/users/{admin.user_id}", headers=admin.headers, json={"role": "librarian"})
    assert demote.status_code == 400

    delete = client.delete(f"/api/admin/users/{admin.user_id}", headers=admin.headers)
    assert delete.status_code == 400


def test_role_change_requires_matching_profile(client, admin, librarian):
    response = client.put(f"/api/admin/users/{librarian.user_id}", headers=admin.headers, json={"role": "student"})
    assert response.status_code == 400


def test_role_change_is_audited(client, admin, librarian):
    client.put(f"/api/admin/users/{librarian.user_id}", headers=admin.headers, json={"role": "admin"})

    logs = client.get("/api/admin/audit-logs?action=ROLE_CHANGE", headers=admin.headers).json()["data"]
    assert len(logs) == 1
    assert logs[0]["resourceId"] == str(librarian.user_id)
    assert logs[0]["user"]["id"] == admin.user_id


def test_soft_and_permanent_delete(client, admin, department):
    victim = create_account(UserRole.STUDENT, department)

    soft = client.delete(f"/api/admin/users/{victim.user_id}", headers=admin.headers)
    assert soft.json()["message"] == "User deactivated successfully"
    assert client.get(f"/api/admin/users/{victim.user_id}", headers=admin.headers).json()["data"]["user"]["status"] == "inactive"

    hard = client.delete(f"/api/admin/users/{victim.user_id}?permanent=true", headers=admin.headers)
    assert hard.json()["message"] == "User deleted successfully"
    assert client.get(f"/api/admin/users/{victim.user_id}", headers=admin.headers).status_code == 404


def department_fields(data):
    return {key: data[key] for key in ("name", "code", "description", "headId", "establishedYear", "status")}


def test_department_lifecycle(client, admin):
    created = client.post(
        "/api/admin/departments",
        headers=admin.headers,
        json={"name": "Civil", "code": "ce", "description": "Structures and surveying", "establishedYear": 1998},
    )
    assert created.status_code == 201
    department_id = created.json()["data"]["id"]

    fetched = client.get(f"/api/admin/departments/{department_id}", headers=admin.headers).json()["data"]
    before = department_fields(fetched)
    assert before == {
        "name": "Civil", "code": "CE", "description": "Structures and surveying",
        "headId": None, "establishedYear": 1998, "status": "active",
    }

    duplicate = client.post("/api/admin/departments", headers=admin.headers, json={"name": "Civil", "code": "CV"})
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Department with this name or code already exists"

    renamed = client.put(
        f"/api/admin/departments/{department_id}", headers=admin.headers, json={"name": "Civil Engineering"}
    )
    assert renamed.status_code == 200

    after = department_fields(
        client.get(f"/api/admin/departments/{department_id}", headers=admin.headers).json()["data"]
    )
    assert after == {**before, "name": "Civil Engineering"}

    assert client.delete(f"/api/admin/departments/{department_id}", headers=admin.headers).status_code == 200
    assert client.get(f"/api/admin/departments/{department_id}", headers=admin.headers).status_code == 404


def test_department_in_use_cannot_be_deleted(client, admin, department, student):
    response = client.delete(f"/api/admin/departments/{department}", headers=admin.headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot delete department with existing students or faculty"


def test_department_with_courses_cannot_be_deleted(client, admin):
    created = client.post("/api/admin/departments", headers=admin.headers, json={"name": "Physics", "code": "PHY"})
    department_id = created.json()["data"]["id"]
    create_course(department_id)

    response = client.delete(f"/api/admin/departments/{department_id}", headers=admin.headers)
    assert response.status_code == 400


def test_department_counts(client, admin, department, student, faculty):
    data = client.get(f"/api/admin/departments/{department}", headers=admin.headers).json()["data"]
    assert data["counts"] == {"students": 1, "faculty": 1, "courses": 0}


def test_reports(client, admin, student):
    for report_type in ("users", "academic", "financial", "library"):
        response = client.get(f"/api/admin/reports?type={report_type}", headers=admin.headers)
        assert response.status_code == 200
        assert response.json()["data"]["reportType"] == report_type

    assert client.get("/api/admin/reports?type=bogus", headers=admin.headers).status_code == 400


def test_dashboard_and_system_stats(client, admin, student):
    assert client.get("/api/admin/dashboard", headers=admin.headers).status_code == 200
    assert client.get("/api/admin/system-stats", headers=admin.headers).status_code == 200
    stats = client.get("/api/admin/users/stats", headers=admin.headers).json()["data"]
    assert stats["overview"]["total"] == 2


def test_admin_area_requires_admin(client, faculty, librarian, student):
    for account in (faculty, librarian, student):
        assert client.get("/api/admin/users", headers=account.headers).status_code == 403
