"""
Shared fixtures: an in-memory database per test and helpers that create
users directly (bypassing the login rate limit) and hand back bearer headers.
"""
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ.setdefault("RATE_LIMIT_MAX_REQUESTS", "1000")
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="erp-uploads-"))
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="erp-logs-"))

from datetime import datetime, timedelta
from itertools import count

import pytest
from fastapi.testclient import TestClient

import config
from app import app
from database.models import Book, BookCategory, Course, Department, UserRole
from services.auth_service import AuthService

PASSWORD = "Secret@123"
ACADEMIC_YEAR = "2024-2025"

_sequence = count(1)


@pytest.fixture
def client():
    """Each client runs the lifespan, which builds a fresh in-memory database."""
    with TestClient(app) as test_client:
        app.state.rate_limit_store.reset()
        yield test_client
    app.state.rate_limit_store.reset()


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class Account:
    def __init__(self, user_id: int, email: str, token: str, profile_id: int = None):
        self.user_id = user_id
        self.email = email
        self.token = token
        self.profile_id = profile_id

    @property
    def headers(self) -> dict:
        return auth_header(self.token)


def create_department(name: str = None, code: str = None) -> int:
    n = next(_sequence)
    with config.db.get_session() as db:
        department = Department(name=name or f"Department {n}", code=code or f"D{n}")
        db.add(department)
        db.flush()
        return department.id


def create_account(role: UserRole, department_id: int = None, semester: int = 1, **profile_overrides) -> Account:
    n = next(_sequence)
    email = f"{role.value}{n}@college.edu"
    student_data = faculty_data = None
    if role == UserRole.STUDENT:
        student_data = {
            "studentId": f"STU{n:04d}",
            "rollNumber": f"R{n:04d}",
            "department": department_id,
            "batch": "2024-2028",
            "semester": semester,
            "academicYear": ACADEMIC_YEAR,
            **profile_overrides,
        }
    elif role == UserRole.FACULTY:
        faculty_data = {"employeeId": f"EMP{n:04d}", "department": department_id, **profile_overrides}

    with config.db.get_session() as db:
        user = AuthService.create_user(
            db,
            first_name=role.value.capitalize(),
            last_name=str(n),
            email=email,
            password=PASSWORD,
            role=role,
            student_data=student_data,
            faculty_data=faculty_data,
        )
        access_token, _, _ = AuthService.create_tokens(user)
        profile = AuthService.profile_of(user)
        return Account(user.id, email, access_token, profile.id if profile else None)


def create_course(department_id: int, semester: int = 1, coordinator_id: int = None, max_enrollment: int = 60) -> int:
    n = next(_sequence)
    with config.db.get_session() as db:
        course = Course(
            code=f"C{n:03d}",
            name=f"Course {n}",
            department_id=department_id,
            semester=semester,
            credits=4,
            coordinator_id=coordinator_id,
            max_enrollment=max_enrollment,
        )
        db.add(course)
        db.flush()
        return course.id


def create_book(copies: int = 2, title: str = None) -> int:
    n = next(_sequence)
    with config.db.get_session() as db:
        book = Book(
            isbn=f"978000000{n:04d}",
            title=title or f"Book {n}",
            authors=["A. Author"],
            category=BookCategory.COMPUTER_SCIENCE,
            total_copies=copies,
            available_copies=copies,
        )
        db.add(book)
        db.flush()
        return book.id


def past(days: int = 0) -> str:
    return (datetime.utcnow() - timedelta(days=days)).date().isoformat()


@pytest.fixture
def department(client):
    return create_department()


@pytest.fixture
def admin(client):
    return create_account(UserRole.ADMIN)


@pytest.fixture
def librarian(client):
    return create_account(UserRole.LIBRARIAN)


@pytest.fixture
def faculty(client, department):
    return create_account(UserRole.FACULTY, department)


@pytest.fixture
def student(client, department):
    return create_account(UserRole.STUDENT, department)


@pytest.fixture
def course(faculty, department):
    return create_course(department, coordinator_id=faculty.profile_id)
