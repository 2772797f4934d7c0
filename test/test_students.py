from datetime import datetime, timedelta

from conftest import create_book


def test_profile_update_limited_to_contact_fields(client, student):
    response = client.put(
        "/api/student/profile",
        headers=student.headers,
        json={"phone": "9000000001", "guardianName": "R. Rao", "currentSemester": 8},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["guardianName"] == "R. Rao"
    assert data["user"]["phone"] == "9000000001"
    assert data["currentSemester"] == 1


def test_library_books_split_current_and_history(client, student):
    first = client.post("/api/library/borrow", headers=student.headers, json={"bookId": create_book()}).json()["data"]
    client.post("/api/library/borrow", headers=student.headers, json={"bookId": create_book()})
    client.post("/api/library/return", headers=student.headers, json={"borrowId": first["id"]})

    data = client.get("/api/student/library-books", headers=student.headers).json()["data"]
    assert len(data["current"]) == 1
    assert len(data["history"]) == 1
    assert data["totalFine"] == 0


def test_fees_view_matches_ledger(client, admin, department, student):
    client.post(
        "/api/fees/bulk-create",
        headers=admin.headers,
        json={
            "feeType": "hostel", "amount": 1200,
            "dueDate": (datetime.utcnow() - timedelta(days=1)).isoformat(),
            "academicYear": "2024-2025", "studentFilters": {"department": department},
        },
    )
    data = client.get("/api/students/fees", headers=student.headers).json()["data"]
    assert data["fees"][0]["status"] == "overdue"
    assert data["summary"]["overdueCount"] == 1
    assert data["summary"]["dueAmount"] == 1200


def test_timetable_is_none_until_approved(client, student):
    response = client.get("/api/student/timetable", headers=student.headers)
    assert response.status_code == 200
    assert response.json()["data"] is None


def test_attendance_view_includes_summary(client, student):
    body = client.get("/api/student/attendance", headers=student.headers).json()
    assert body["data"] == []
    assert body["summary"]["total"] == 0


def test_student_area_requires_student(client, faculty):
    assert client.get("/api/student/dashboard", headers=faculty.headers).status_code == 403
