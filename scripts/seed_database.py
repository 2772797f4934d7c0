#!/usr/bin/env python3
"""
Seed a development database with departments, users, courses, enrollments and books.

Safe to run repeatedly: records that already exist (by code, email or ISBN) are skipped.
All seeded accounts share the password ``Password@123``. Pass ``--reset`` to drop
and recreate every table first.
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.connection import Database
from database.models import (
    Book, BookCategory, Course, CourseType, Department, Enrollment, EnrollmentStatus, User, UserRole,
)
from services.auth_service import AuthService
from core.logger import logger
import config

SEED_PASSWORD = "Password@123"
ACADEMIC_YEAR = "2024-2025"

DEPARTMENTS = [
    ("Computer Science and Engineering", "CSE", 1998),
    ("Electronics and Communication", "ECE", 2001),
    ("Mechanical Engineering", "MECH", 1995),
]

COURSES = [
    ("CS101", "Programming Fundamentals", "CSE", 1, 4, CourseType.THEORY),
    ("CS102", "Programming Lab", "CSE", 1, 2, CourseType.PRACTICAL),
    ("CS301", "Data Structures", "CSE", 3, 4, CourseType.THEORY),
    ("CS302", "Database Systems", "CSE", 3, 3, CourseType.THEORY),
    ("EC201", "Digital Electronics", "ECE", 3, 4, CourseType.THEORY),
    ("ME101", "Engineering Mechanics", "MECH", 1, 3, CourseType.THEORY),
]

BOOKS = [
    ("9780262033848", "Introduction to Algorithms", ["Thomas H. Cormen", "Charles E. Leiserson"],
     "MIT Press", BookCategory.COMPUTER_SCIENCE, 4),
    ("9780073523323", "Database System Concepts", ["Abraham Silberschatz", "Henry F. Korth"],
     "McGraw-Hill", BookCategory.COMPUTER_SCIENCE, 3),
    ("9780132145190", "Digital Design", ["M. Morris Mano"], "Pearson", BookCategory.ELECTRONICS, 2),
    ("9780073380315", "Engineering Mechanics: Statics", ["Ferdinand P. Beer"], "McGraw-Hill",
     BookCategory.MECHANICAL, 2),
    ("9780470458365", "Advanced Engineering Mathematics", ["Erwin Kreyszig"], "Wiley",
     BookCategory.MATHEMATICS, 5),
]


def seed_departments(db):
    departments = {}
    for name, code, year in DEPARTMENTS:
        department = db.query(Department).filter(Department.code == code).first()
        if not department:
            department = Department(name=name, code=code, established_year=year)
            db.add(department)
            db.flush()
            logger.info(f"Seeded department {code}")
        departments[code] = department
    db.commit()
    return departments


def seed_user(db, email, first_name, last_name, role, **profile):
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    return AuthService.create_user(
        db=db,
        first_name=first_name,
        last_name=last_name,
        email=email,
        password=SEED_PASSWORD,
        role=role,
        **profile
    )


def seed_people(db, departments):
    seed_user(db, "admin@college.edu", "System", "Admin", UserRole.ADMIN)
    seed_user(db, "librarian@college.edu", "Library", "Staff", UserRole.LIBRARIAN)

    faculty = {}
    for index, code in enumerate(departments, start=1):
        user = seed_user(
            db, f"faculty.{code.lower()}@college.edu", "Faculty", code, UserRole.FACULTY,
            faculty_data={
                "employeeId": f"EMP{index:03d}",
                "department": departments[code].id,
                "designation": "Assistant Professor",
                "qualification": "Ph.D.",
                "experience": 5,
            },
        )
        faculty[code] = user.faculty_profile

    students = []
    for code in departments:
        for number in range(1, 4):
            user = seed_user(
                db, f"student{number}.{code.lower()}@college.edu", "Student", f"{code} {number}",
                UserRole.STUDENT,
                student_data={
                    "studentId": f"{code}24{number:03d}",
                    "rollNumber": f"{code}-24-{number:03d}",
                    "department": departments[code].id,
                    "batch": "2024-2028",
                    "semester": 1,
                    "academicYear": ACADEMIC_YEAR,
                },
            )
            students.append(user.student_profile)
    return faculty, students


def seed_courses(db, departments, faculty):
    courses = []
    for code, name, dept_code, semester, credits, course_type in COURSES:
        course = db.query(Course).filter(Course.code == code).first()
        if not course:
            coordinator = faculty.get(dept_code)
            course = Course(
                code=code,
                name=name,
                department_id=departments[dept_code].id,
                semester=semester,
                credits=credits,
                course_type=course_type,
                coordinator_id=coordinator.id if coordinator else None,
                max_enrollment=config.DEFAULT_MAX_ENROLLMENT,
            )
            if coordinator:
                course.instructors.append(coordinator)
            db.add(course)
            logger.info(f"Seeded course {code}")
        courses.append(course)
    db.commit()
    return courses


def seed_enrollments(db, courses, students):
    for student in students:
        for course in courses:
            if course.department_id != student.department_id or course.semester != student.current_semester:
                continue
            exists = db.query(Enrollment).filter(
                Enrollment.student_id == student.id,
                Enrollment.course_id == course.id,
                Enrollment.academic_year == ACADEMIC_YEAR
            ).first()
            if not exists:
                db.add(Enrollment(
                    student_id=student.id,
                    course_id=course.id,
                    academic_year=ACADEMIC_YEAR,
                    semester=course.semester,
                    status=EnrollmentStatus.ACTIVE,
                ))
    db.commit()


def seed_books(db):
    for isbn, title, authors, publisher, category, copies in BOOKS:
        if db.query(Book).filter(Book.isbn == isbn).first():
            continue
        db.add(Book(
            isbn=isbn,
            title=title,
            authors=authors,
            publisher=publisher,
            category=category,
            total_copies=copies,
            available_copies=copies,
            location=f"Rack {category.value[:3].upper()}",
        ))
        logger.info(f"Seeded book {isbn}")
    db.commit()


def seed_database(reset: bool = False):
    config.db = Database(
        database_url=config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW
    )
    if reset:
        config.db.drop_tables()
    config.db.create_tables()

    print("Seeding database...")
    print("=" * 50)
    with config.db.get_session() as db:
        departments = seed_departments(db)
        faculty, students = seed_people(db, departments)
        courses = seed_courses(db, departments, faculty)
        seed_enrollments(db, courses, students)
        seed_books(db)

    print(f"\n✓ Seed complete. Log in as admin@college.edu with password {SEED_PASSWORD}")


if __name__ == "__main__":
    seed_database(reset="--reset" in sys.argv[1:])
