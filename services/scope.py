"""
Role scopes and the scoped query builder.

A ``RoleScope`` is computed once per request from the authenticated user and
passed down to every query. Scope predicates come from the identity only;
request filters are applied on top and can only narrow the result.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import FrozenSet, Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.orm import Query, Session

from core.errors import AuthorizationError, NotFoundError
from database.models import (
    Course, Enrollment, EnrollmentStatus, Faculty, Student, User, UserRole, course_instructors,
)


@dataclass(frozen=True)
class StudentScope:
    user_id: int
    profile_id: int
    department_id: int
    semester: int


@dataclass(frozen=True)
class FacultyScope:
    user_id: int
    profile_id: int
    department_id: int
    course_ids: FrozenSet[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class AdminScope:
    user_id: int


@dataclass(frozen=True)
class LibrarianScope:
    user_id: int


RoleScope = Union[StudentScope, FacultyScope, AdminScope, LibrarianScope]


def faculty_course_ids(db: Session, faculty_id: int) -> FrozenSet[int]:
    """Courses where the faculty member is coordinator or one of the instructors."""
    coordinated = db.query(Course.id).filter(Course.coordinator_id == faculty_id)
    instructed = db.query(course_instructors.c.course_id).filter(
        course_instructors.c.faculty_id == faculty_id
    )
    return frozenset(row[0] for row in coordinated.union(instructed).all())


def resolve_scope(db: Session, user: User) -> RoleScope:
    """
    Build the caller's scope.

    Raises:
        NotFoundError: Student or faculty user without a profile (fails closed)
    """
    if user.role == UserRole.STUDENT:
        student = db.query(Student).filter(Student.user_id == user.id).first()
        if not student:
            raise NotFoundError("Student profile not found")
        return StudentScope(
            user_id=user.id,
            profile_id=student.id,
            department_id=student.department_id,
            semester=student.current_semester,
        )
    if user.role == UserRole.FACULTY:
        faculty = db.query(Faculty).filter(Faculty.user_id == user.id).first()
        if not faculty:
            raise NotFoundError("Faculty profile not found")
        return FacultyScope(
            user_id=user.id,
            profile_id=faculty.id,
            department_id=faculty.department_id,
            course_ids=faculty_course_ids(db, faculty.id),
        )
    if user.role == UserRole.ADMIN:
        return AdminScope(user_id=user.id)
    if user.role == UserRole.LIBRARIAN:
        return LibrarianScope(user_id=user.id)
    raise AuthorizationError("Access denied")


def students_of_courses(course_ids: FrozenSet[int]):
    """Select of student ids actively enrolled in any of ``course_ids``."""
    return select(Enrollment.student_id).where(
        Enrollment.course_id.in_(sorted(course_ids)),
        Enrollment.status == EnrollmentStatus.ACTIVE,
    )


def apply_role_scope(
    query: Query,
    scope: RoleScope,
    student_column=None,
    course_column=None,
    allow_librarian: bool = False,
) -> Query:
    """
    Narrow ``query`` to the rows ``scope`` may see.

    Args:
        query: Query over a student- and/or course-linked entity
        scope: Caller scope
        student_column: Column holding the subject student profile id
        course_column: Column holding the course id
        allow_librarian: Whether librarians get unrestricted access to this entity

    Returns:
        The restricted query
    """
    if isinstance(scope, AdminScope):
        return query
    if isinstance(scope, LibrarianScope):
        if allow_librarian:
            return query
        raise AuthorizationError("Access denied")
    if isinstance(scope, StudentScope):
        if student_column is None:
            raise AuthorizationError("Access denied")
        return query.filter(student_column == scope.profile_id)
    if isinstance(scope, FacultyScope):
        if course_column is not None:
            return query.filter(course_column.in_(sorted(scope.course_ids)))
        if student_column is not None:
            return query.filter(student_column.in_(students_of_courses(scope.course_ids)))
        raise AuthorizationError("Access denied")
    raise AuthorizationError("Access denied")


def can_access_course(scope: RoleScope, course_id: int) -> bool:
    if isinstance(scope, AdminScope):
        return True
    if isinstance(scope, FacultyScope):
        return course_id in scope.course_ids
    return False


def can_access_student(db: Session, scope: RoleScope, student_id: int) -> bool:
    """Whether ``scope`` may read data about the student profile ``student_id``."""
    if isinstance(scope, AdminScope):
        return True
    if isinstance(scope, StudentScope):
        return scope.profile_id == student_id
    if isinstance(scope, FacultyScope):
        if not scope.course_ids:
            return False
        return db.query(Enrollment.id).filter(
            Enrollment.student_id == student_id,
            Enrollment.course_id.in_(sorted(scope.course_ids)),
            Enrollment.status == EnrollmentStatus.ACTIVE,
        ).first() is not None
    return False


def apply_search(query: Query, search: Optional[str], *columns) -> Query:
    """Case-insensitive substring match over ``columns``."""
    if not search:
        return query
    pattern = f"%{search.strip()}%"
    return query.filter(or_(*(column.ilike(pattern) for column in columns)))


def apply_date_range(
    query: Query,
    column,
    start: Optional[date] = None,
    end: Optional[date] = None,
    inclusive_datetime: bool = False,
) -> Query:
    """
    Bound ``column`` by [start, end].

    With ``inclusive_datetime`` the column is a DateTime and ``end`` covers the
    whole day.
    """
    if start:
        query = query.filter(column >= (datetime.combine(start, time.min) if inclusive_datetime else start))
    if end:
        query = query.filter(column <= (datetime.combine(end, time.max) if inclusive_datetime else end))
    return query
