from conftest import PASSWORD, auth_header
from services.email_service import EmailService


def register_payload(department_id, email="new.student@college.edu", **overrides):
    payload = {
        "firstName": "Asha",
        "lastName": "Rao",
        "email": email,
        "password": PASSWORD,
        "confirmPassword": PASSWORD,
        "role": "student",
        "studentData": {
            "studentId": "CS2024001",
            "rollNumber": "CS-24-001",
            "department": department_id,
            "batch": "2024-2028",
            "semester": 1,
            "academicYear": "2024-2025",
        },
    }
    payload.update(overrides)
    return payload


def test_register_student_returns_user_profile_and_token(client, department):
    response = client.post("/api/auth/register", json=register_payload(department))

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["user"]["email"] == "new.student@college.edu"
    assert body["data"]["user"]["role"] == "student"
    assert body["data"]["profile"]["rollNumber"] == "CS-24-001"
    assert body["data"]["token"]
    assert "hashedPassword" not in body["data"]["user"]
    assert "timestamp" in body


def test_register_rejects_mismatched_passwords(client, department):
    response = client.post(
        "/api/auth/register", json=register_payload(department, confirmPassword="Other@123")
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Passwords do not match"


def test_register_rejects_weak_password(client, department):
    response = client.post(
        "/api/auth/register",
        json=register_payload(department, password="abcdef", confirmPassword="abcdef"),
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_register_rejects_duplicate_email(client, department):
    assert client.post("/api/auth/register", json=register_payload(department)).status_code == 201

    second = register_payload(department)
    second["studentData"] = {**second["studentData"], "studentId": "CS2024002", "rollNumber": "CS-24-002"}
    response = client.post("/api/auth/register", json=second)

    assert response.status_code == 400
    assert response.json()["message"] == "User already exists with this email"


def test_register_requires_student_data(client):
    response = client.post("/api/auth/register", json=register_payload(None, studentData=None))
    assert response.status_code == 400


def test_admin_accounts_cannot_self_register(client, department):
    response = client.post("/api/auth/register", json=register_payload(department, role="admin"))
    assert response.status_code == 400


def test_login_and_me(client, department):
    client.post("/api/auth/register", json=register_payload(department))

    response = client.post("/api/auth/login", json={"email": "new.student@college.edu", "password": PASSWORD})
    assert response.status_code == 200
    token = response.json()["data"]["token"]

    client.cookies.clear()
    me = client.get("/api/auth/me", headers=auth_header(token))
    assert me.status_code == 200
    assert me.json()["data"]["user"]["email"] == "new.student@college.edu"
    assert me.json()["data"]["profile"]["studentId"] == "CS2024001"


def test_login_with_wrong_password_is_unauthorized(client, student):
    response = client.post("/api/auth/login", json={"email": student.email, "password": "Wrong@123"})

    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Invalid email or password"


def test_login_is_rate_limited_per_ip(client, student):
    statuses = [
        client.post("/api/auth/login", json={"email": student.email, "password": "Wrong@123"}).status_code
        for _ in range(6)
    ]
    assert statuses[:5] == [401] * 5
    assert statuses[5] == 429


def test_me_requires_token(client):
    client.cookies.clear()
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["message"] == "Not authorized, no token provided"


def test_malformed_token_is_rejected(client):
    client.cookies.clear()
    response = client.get("/api/auth/me", headers=auth_header("not-a-jwt"))
    assert response.status_code == 401


def test_refresh_token_rotation_revokes_presented_token(client, department):
    registered = client.post("/api/auth/register", json=register_payload(department)).json()["data"]
    old_refresh = registered["refreshToken"]

    rotated = client.post("/api/auth/refresh-token", json={"refreshToken": old_refresh})
    assert rotated.status_code == 200
    assert rotated.json()["data"]["refreshToken"] != old_refresh

    replay = client.post("/api/auth/refresh-token", json={"refreshToken": old_refresh})
    assert replay.status_code == 401


def test_logout_revokes_refresh_tokens(client, department):
    registered = client.post("/api/auth/register", json=register_payload(department)).json()["data"]

    response = client.post("/api/auth/logout", headers=auth_header(registered["token"]))
    assert response.status_code == 200

    refresh = client.post("/api/auth/refresh-token", json={"refreshToken": registered["refreshToken"]})
    assert refresh.status_code == 401


def test_change_password(client, student):
    response = client.put(
        "/api/auth/change-password",
        headers=student.headers,
        json={"currentPassword": PASSWORD, "newPassword": "Changed@456", "confirmPassword": "Changed@456"},
    )
    assert response.status_code == 200

    login = client.post("/api/auth/login", json={"email": student.email, "password": "Changed@456"})
    assert login.status_code == 200


def test_change_password_requires_current_password(client, student):
    response = client.put(
        "/api/auth/change-password",
        headers=student.headers,
        json={"currentPassword": "Wrong@123", "newPassword": "Changed@456"},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Current password is incorrect"


def test_forgot_and_reset_password(client, student, monkeypatch):
    captured = {}

    async def fake_send(user, token, fm):
        captured["token"] = token
        return True

    monkeypatch.setattr(EmailService, "send_password_reset_email", fake_send)

    response = client.post("/api/auth/forgot-password", json={"email": student.email})
    assert response.status_code == 200
    assert "token" in captured

    reset = client.post(
        f"/api/auth/reset-password/{captured['token']}",
        json={"password": "Reset@789", "confirmPassword": "Reset@789"},
    )
    assert reset.status_code == 200

    reused = client.post(
        f"/api/auth/reset-password/{captured['token']}",
        json={"password": "Again@789", "confirmPassword": "Again@789"},
    )
    assert reused.status_code == 400

    login = client.post("/api/auth/login", json={"email": student.email, "password": "Reset@789"})
    assert login.status_code == 200


def test_forgot_password_does_not_reveal_unknown_email(client):
    response = client.post("/api/auth/forgot-password", json={"email": "nobody@college.edu"})
    assert response.status_code == 200
    assert response.json()["success"] is True


def test_verify_email(client, department, monkeypatch):
    captured = {}

    async def fake_send(user, token, fm):
        captured["token"] = token
        return True

    monkeypatch.setattr(EmailService, "send_email_verification", fake_send)
    client.post("/api/auth/register", json=register_payload(department))

    response = client.get(f"/api/auth/verify-email/{captured['token']}")
    assert response.status_code == 200
    assert response.json()["data"]["emailVerified"] is True

    assert client.get("/api/auth/verify-email/bogus-token").status_code == 400
