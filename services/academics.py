"""
Academic rules: grading scale, GPA, enrollment admission and attendance upsert.
"""
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.errors import NotFoundError, ValidationError
from database.models import (
    Attendance, AttendanceStatus, Course, Enrollment, EnrollmentStatus, RecordStatus, SessionType, Student,
)

GRADE_POINTS: Dict[str, float] = {
    "A+": 10.0,
    "A": 9.0,
    "B+": 8.0,
    "B": 7.0,
    "C+": 6.0,
    "C": 5.0,
    "D": 4.0,
    "F": 0.0,
}

PASSING_GRADES = ("A+", "A", "B+", "B", "C+", "C")

MIN_PERIOD = 1
MAX_PERIOD = 8


def grade_point(grade: str) -> float:
    if grade not in GRADE_POINTS:
        raise ValidationError(f"Invalid grade: {grade}. Must be one of {', '.join(GRADE_POINTS)}")
    return GRADE_POINTS[grade]


def is_passing(grade: Optional[str]) -> bool:
    return grade in PASSING_GRADES


def weighted_gpa(entries: Iterable[Tuple[float, int]]) -> float:
    """Credit-weighted mean of (grade point, credits) pairs, two decimals."""
    points = credits = 0
    for gp, course_credits in entries:
        if gp is None or not course_credits:
            continue
        points += gp * course_credits
        credits += course_credits
    return round(points / credits, 2) if credits else 0.0


def gpa_of(enrollments: Iterable[Enrollment]) -> float:
    return weighted_gpa(
        (e.grade_point, e.course.credits if e.course else 0)
        for e in enrollments if e.grade is not None
    )


def attendance_percentage(present: int, total: int) -> float:
    return round(present * 100.0 / total, 2) if total else 0.0


def count_by_status(statuses: Iterable[AttendanceStatus]) -> Dict[str, Any]:
    """Per-status counts plus percentage; late counts as attended."""
    counts = {status.value: 0 for status in AttendanceStatus}
    total = 0
    for status in statuses:
        counts[AttendanceStatus(status).value] += 1
        total += 1
    attended = counts[AttendanceStatus.PRESENT.value] + counts[AttendanceStatus.LATE.value]
    counts["total"] = total
    counts["percentage"] = attendance_percentage(attended, total)
    return counts


def active_enrollment_count(db: Session, course_id: int) -> int:
    return db.query(Enrollment).filter(
        Enrollment.course_id == course_id,
        Enrollment.status == EnrollmentStatus.ACTIVE
    ).count()


def enrollment_counts(db: Session, course_ids: List[int]) -> Dict[int, int]:
    """Active enrollment count per course id in one grouped query."""
    if not course_ids:
        return {}
    rows = db.query(Enrollment.course_id, func.count(Enrollment.id)).filter(
        Enrollment.course_id.in_(course_ids),
        Enrollment.status == EnrollmentStatus.ACTIVE
    ).group_by(Enrollment.course_id).all()
    counts = {course_id: 0 for course_id in course_ids}
    counts.update({course_id: count for course_id, count in rows})
    return counts


def missing_prerequisites(db: Session, student_id: int, course: Course) -> List[Course]:
    """Prerequisites the student has not completed with a passing grade."""
    if not course.prerequisites:
        return []
    passed = {
        row[0] for row in db.query(Enrollment.course_id).filter(
            Enrollment.student_id == student_id,
            Enrollment.course_id.in_([p.id for p in course.prerequisites]),
            Enrollment.status == EnrollmentStatus.COMPLETED,
            Enrollment.grade.in_(PASSING_GRADES)
        ).all()
    }
    return [p for p in course.prerequisites if p.id not in passed]


def enroll_student(db: Session, student: Student, course_id: int, academic_year: Optional[str] = None) -> Enrollment:
    """
    Admit ``student`` to a course.

    The course row is locked for the capacity check (on databases that support
    row locks) and the (student, course, academic year) unique constraint
    catches a duplicate that races past the lookup. The caller commits.

    Raises:
        ValidationError: Inactive course, duplicate, full course or missing prerequisites
    """
    course = db.query(Course).filter(Course.id == course_id).with_for_update().first()
    if not course:
        raise NotFoundError("Course not found")
    if course.status != RecordStatus.ACTIVE:
        raise ValidationError("Course is not open for enrollment")

    academic_year = academic_year or student.academic_year
    existing = db.query(Enrollment).filter(
        Enrollment.student_id == student.id,
        Enrollment.course_id == course.id,
        Enrollment.academic_year == academic_year
    ).first()
    if existing and existing.status != EnrollmentStatus.WITHDRAWN:
        raise ValidationError("Student is already enrolled in this course")

    if active_enrollment_count(db, course.id) >= course.max_enrollment:
        raise ValidationError("Course is at maximum capacity")

    if missing_prerequisites(db, student.id, course):
        raise ValidationError("Student has not completed required prerequisites")

    if existing:
        # Re-enrollment after a withdrawal in the same academic year
        existing.status = EnrollmentStatus.ACTIVE
        existing.withdrawn_at = None
        existing.enrolled_at = datetime.utcnow()
        db.flush()
        return existing

    enrollment = Enrollment(
        student_id=student.id,
        course_id=course.id,
        academic_year=academic_year,
        semester=course.semester,
        status=EnrollmentStatus.ACTIVE,
    )
    db.add(enrollment)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Student is already enrolled in this course")
    return enrollment


def validate_attendance_slot(on: date, period: int, today: Optional[date] = None):
    today = today or datetime.utcnow().date()
    if on > today:
        raise ValidationError("Cannot mark attendance for future dates")
    if period is None or period < MIN_PERIOD or period > MAX_PERIOD:
        raise ValidationError(f"Invalid period. Must be between {MIN_PERIOD}-{MAX_PERIOD}")


def upsert_attendance(
    db: Session,
    student_id: int,
    course_id: int,
    on: date,
    period: int,
    status: AttendanceStatus,
    marked_by: Optional[int],
    session_type: SessionType = SessionType.LECTURE,
    remarks: Optional[str] = None,
) -> Tuple[Attendance, bool]:
    """
    Create or update the record for (student, course, date, period).

    Returns:
        Tuple of (record, created)
    """
    lookup = db.query(Attendance).filter(
        Attendance.student_id == student_id,
        Attendance.course_id == course_id,
        Attendance.date == on,
        Attendance.period == period
    )
    record = lookup.first()
    if record is None:
        record = Attendance(
            student_id=student_id,
            course_id=course_id,
            date=on,
            period=period,
            status=status,
            session_type=session_type,
            remarks=remarks,
            marked_by=marked_by,
        )
        try:
            with db.begin_nested():
                db.add(record)
            return record, True
        except IntegrityError:
            # Concurrent insert for the same slot won; fall through to update it
            record = lookup.first()

    record.status = status
    record.session_type = session_type
    record.marked_by = marked_by
    if remarks is not None:
        record.remarks = remarks
    record.updated_at = datetime.utcnow()
    db.flush()
    return record, False


def group_terms(enrollments: Iterable[Enrollment]) -> List[Dict[str, Any]]:
    """Enrollments grouped by (academic year, semester) with a term GPA, oldest first."""
    terms: Dict[Tuple[str, int], List[Enrollment]] = defaultdict(list)
    for enrollment in enrollments:
        terms[(enrollment.academic_year, enrollment.semester)].append(enrollment)

    history = []
    for (academic_year, semester), items in sorted(terms.items(), key=lambda kv: (kv[0][0], kv[0][1])):
        graded = [e for e in items if e.grade is not None]
        history.append({
            "academicYear": academic_year,
            "semester": semester,
            "enrollments": items,
            "credits": sum(e.course.credits for e in graded if e.course and is_passing(e.grade)),
            "gpa": gpa_of(graded),
        })
    return history


def mark_attendance(
    db: Session,
    course: Course,
    on: date,
    period: int,
    entries: Iterable[Any],
    marked_by: Optional[int],
    session_type: SessionType = SessionType.LECTURE,
) -> Dict[str, Any]:
    """
    Mark one slot for many students. Entries carry ``studentId``, ``status``
    and optional ``remarks``; students without an active enrollment in the
    course are reported per entry instead of failing the batch.
    """
    validate_attendance_slot(on, period)

    entries = list(entries)
    student_ids = {entry.studentId for entry in entries}
    enrolled = {
        row[0] for row in db.query(Enrollment.student_id).filter(
            Enrollment.course_id == course.id,
            Enrollment.student_id.in_(sorted(student_ids)),
            Enrollment.status == EnrollmentStatus.ACTIVE
        ).all()
    } if student_ids else set()

    records, errors = [], []
    created = updated = 0
    for entry in entries:
        if entry.studentId not in enrolled:
            errors.append({
                "studentId": entry.studentId,
                "message": f"Student {entry.studentId} is not enrolled in this course",
            })
            continue
        record, was_created = upsert_attendance(
            db,
            student_id=entry.studentId,
            course_id=course.id,
            on=on,
            period=period,
            status=entry.status,
            marked_by=marked_by,
            session_type=session_type,
            remarks=getattr(entry, "remarks", None),
        )
        records.append(record)
        if was_created:
            created += 1
        else:
            updated += 1

    return {
        "course": {"id": course.id, "code": course.code, "name": course.name},
        "date": on,
        "period": period,
        "recordsProcessed": len(records),
        "created": created,
        "updated": updated,
        "errors": errors,
        "records": records,
    }
