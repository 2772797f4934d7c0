from datetime import datetime, timedelta

from conftest import create_account, create_department
from database.models import UserRole


def publish(client, account, **fields):
    body = {"title": "Exam schedule", "content": "Mid-semester exams start next week."}
    body.update(fields)
    return client.post("/api/notices", headers=account.headers, json=body)


def titles(client, account):
    return [n["title"] for n in client.get("/api/notices", headers=account.headers).json()["data"]]


def test_untargeted_notice_reaches_everyone(client, admin, student, faculty, librarian):
    response = publish(client, admin)
    assert response.status_code == 201
    assert response.json()["data"]["targetRoles"] == ["all"]

    for account in (student, faculty, librarian):
        assert titles(client, account) == ["Exam schedule"]


def test_role_and_department_targeting(client, admin, department, student, faculty):
    elsewhere = create_account(UserRole.STUDENT, create_department())
    publish(client, admin, title="Faculty meeting", targetRoles=["faculty"])
    publish(client, admin, title="Department lab closure", targetDepartments=[department])

    assert titles(client, faculty) == ["Department lab closure", "Faculty meeting"]
    assert titles(client, student) == ["Department lab closure"]
    assert titles(client, elsewhere) == []


def test_unknown_target_department_is_rejected(client, admin):
    response = publish(client, admin, targetDepartments=[4242])
    assert response.status_code == 400


def test_drafts_future_and_expired_notices_are_hidden(client, admin, student):
    now = datetime.utcnow()
    publish(client, admin, title="Draft", status="draft")
    publish(client, admin, title="Future", publishDate=(now + timedelta(days=2)).isoformat())
    publish(
        client, admin, title="Expired",
        publishDate=(now - timedelta(days=5)).isoformat(), expiryDate=(now - timedelta(days=1)).isoformat(),
    )
    publish(client, admin, title="Live")

    assert titles(client, student) == ["Live"]
    assert len(titles(client, admin)) == 4


def test_expiry_must_follow_publish_date(client, admin):
    now = datetime.utcnow()
    response = publish(
        client, admin, publishDate=now.isoformat(), expiryDate=(now - timedelta(hours=1)).isoformat()
    )
    assert response.status_code == 400


def test_pinned_notices_come_first(client, admin, student):
    publish(client, admin, title="Pinned", isPinned=True, publishDate=(datetime.utcnow() - timedelta(days=3)).isoformat())
    publish(client, admin, title="Newer")
    assert titles(client, student) == ["Pinned", "Newer"]


def test_unread_count_and_read_marking(client, admin, student):
    first = publish(client, admin, title="One").json()["data"]["id"]
    publish(client, admin, title="Two")

    assert client.get("/api/notices/unread-count", headers=student.headers).json()["data"]["unreadCount"] == 2

    marked = client.post(f"/api/notices/{first}/read", headers=student.headers).json()["data"]
    assert marked == {"noticeId": first, "isRead": True, "firstView": True}
    again = client.post(f"/api/notices/{first}/read", headers=student.headers).json()["data"]
    assert again["firstView"] is False

    assert client.get("/api/notices/unread-count", headers=student.headers).json()["data"]["unreadCount"] == 1
    unread = client.get("/api/notices?unreadOnly=true", headers=student.headers).json()["data"]
    assert [n["title"] for n in unread] == ["Two"]


def test_viewing_details_counts_once(client, admin, student):
    notice_id = publish(client, admin).json()["data"]["id"]
    client.get(f"/api/notices/{notice_id}", headers=student.headers)
    data = client.get(f"/api/notices/{notice_id}", headers=student.headers).json()["data"]
    assert data["viewCount"] == 1
    assert data["isRead"] is True


def test_targeted_notice_is_hidden_from_others(client, admin, student):
    notice_id = publish(client, admin, targetRoles=["faculty"]).json()["data"]["id"]
    assert client.get(f"/api/notices/{notice_id}", headers=student.headers).status_code == 403
    assert client.post(f"/api/notices/{notice_id}/read", headers=student.headers).status_code == 403


def test_students_cannot_publish(client, student):
    assert publish(client, student).status_code == 403


def test_only_publisher_or_admin_can_edit(client, admin, department, faculty):
    colleague = create_account(UserRole.FACULTY, department)
    notice_id = publish(client, faculty).json()["data"]["id"]

    assert client.put(
        f"/api/notices/{notice_id}", headers=colleague.headers, json={"title": "Changed"}
    ).status_code == 403

    updated = client.put(f"/api/notices/{notice_id}", headers=faculty.headers, json={"title": "Changed"})
    assert updated.json()["data"]["title"] == "Changed"

    assert client.delete(f"/api/notices/{notice_id}", headers=admin.headers).status_code == 200
    assert client.get(f"/api/notices/{notice_id}", headers=admin.headers).status_code == 404


def test_faculty_notice_statistics(client, admin, faculty, student):
    mine = publish(client, faculty, priority="urgent").json()["data"]["id"]
    publish(client, admin)
    client.post(f"/api/notices/{mine}/read", headers=student.headers)

    overall = client.get("/api/notices/stats", headers=faculty.headers).json()["data"]["overall"]
    assert overall == {"totalNotices": 1, "urgentNotices": 1, "totalViews": 1, "avgViewsPerNotice": 1.0}

    assert client.get("/api/notices/stats", headers=student.headers).status_code == 403
