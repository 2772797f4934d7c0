"""
Aggregations behind the fee and administration reports and dashboards.
"""
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from database.models import (
    Attendance, Book, BorrowRecord, BorrowStatus, Course, Department, Enrollment, EnrollmentStatus,
    Faculty, Fee, FeeEntryKind, FeePayment, Student, User,
)
from services import fee_rules
from services.academics import count_by_status
from services.scope import apply_date_range


def month_keys(months: int, today: Optional[date] = None) -> List[Tuple[int, int]]:
    """The last ``months`` calendar months as (year, month), oldest first."""
    today = today or datetime.utcnow().date()
    year, month = today.year, today.month
    keys = []
    for _ in range(months):
        keys.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def monthly_counts(stamps: Iterable[datetime], months: int, today: Optional[date] = None) -> List[Dict[str, int]]:
    counts = {key: 0 for key in month_keys(months, today)}
    for stamp in stamps:
        key = (stamp.year, stamp.month)
        if key in counts:
            counts[key] += 1
    return [{"year": y, "month": m, "count": c} for (y, m), c in counts.items()]


def _grouped(rows):
    return [
        {"group": key.value if hasattr(key, "value") else key, "totalAmount": round(total or 0.0, 2), "count": count}
        for key, total, count in rows
    ]


def collection_report(db: Session, start, end, department_id):
    query = db.query(Fee.fee_type, func.sum(FeePayment.amount), func.count(FeePayment.id)).join(
        Fee, FeePayment.fee_id == Fee.id
    )
    if department_id:
        query = query.join(Student, Fee.student_id == Student.id).filter(Student.department_id == department_id)
    query = apply_date_range(query, FeePayment.paid_at, start, end, inclusive_datetime=True)
    return _grouped(query.group_by(Fee.fee_type).all())


def outstanding_report(db: Session, department_id, semester, academic_year, overdue_only: bool):
    query = db.query(
        Fee.fee_type, func.sum(Fee.amount_total - Fee.amount_paid), func.count(Fee.id)
    ).filter(
        Fee.entry_kind == FeeEntryKind.CHARGE,
        Fee.amount_paid < Fee.amount_total
    )
    if overdue_only:
        query = query.filter(Fee.due_date < datetime.utcnow())
    if department_id:
        query = query.join(Student, Fee.student_id == Student.id).filter(Student.department_id == department_id)
    if semester:
        query = query.filter(Fee.semester == semester)
    if academic_year:
        query = query.filter(Fee.academic_year == academic_year)
    return _grouped(query.group_by(Fee.fee_type).all())


def concessions_report(db: Session, start, end, department_id):
    query = db.query(Fee.concession_type, func.sum(-Fee.amount_total), func.count(Fee.id)).filter(
        Fee.entry_kind == FeeEntryKind.CONCESSION
    )
    if department_id:
        query = query.join(Student, Fee.student_id == Student.id).filter(Student.department_id == department_id)
    query = apply_date_range(query, Fee.created_at, start, end, inclusive_datetime=True)
    return _grouped(query.group_by(Fee.concession_type).all())


def summary_report(db: Session, semester, academic_year):
    """Charges grouped by the status their amounts and due date imply right now."""
    query = db.query(Fee).filter(Fee.entry_kind == FeeEntryKind.CHARGE)
    if semester:
        query = query.filter(Fee.semester == semester)
    if academic_year:
        query = query.filter(Fee.academic_year == academic_year)

    now = datetime.utcnow()
    totals = defaultdict(lambda: [0.0, 0])
    for fee in query.all():
        key = fee_rules.derive_fee_status(fee.amount_total, fee.amount_paid, fee.due_date, now)
        totals[key][0] += fee.amount_total
        totals[key][1] += 1
    return _grouped((key, total, count) for key, (total, count) in totals.items())


def fee_totals(db: Session) -> Dict[str, float]:
    collected = db.query(func.sum(FeePayment.amount)).scalar() or 0.0
    outstanding = db.query(func.sum(Fee.amount_total - Fee.amount_paid)).filter(
        Fee.entry_kind == FeeEntryKind.CHARGE,
        Fee.amount_paid < Fee.amount_total
    ).scalar() or 0.0
    return {"totalCollected": round(collected, 2), "pendingAmount": round(outstanding, 2)}


def users_by_role(db: Session) -> List[Dict[str, Any]]:
    rows = db.query(User.role, func.count(User.id)).group_by(User.role).all()
    return [{"role": role.value, "count": count} for role, count in rows]


def people_by_department(db: Session) -> List[Dict[str, Any]]:
    students = dict(db.query(Student.department_id, func.count(Student.id)).group_by(Student.department_id).all())
    faculty = dict(db.query(Faculty.department_id, func.count(Faculty.id)).group_by(Faculty.department_id).all())
    return [
        {
            "department": {"id": d.id, "name": d.name, "code": d.code},
            "students": students.get(d.id, 0),
            "faculty": faculty.get(d.id, 0),
        }
        for d in db.query(Department).order_by(Department.name).all()
    ]


def users_report(db: Session, start: Optional[date], end: Optional[date]) -> Dict[str, Any]:
    query = apply_date_range(db.query(User), User.created_at, start, end, inclusive_datetime=True)
    users = query.all()
    by_status = defaultdict(int)
    for user in users:
        by_status[user.status.value] += 1
    return {
        "registrations": len(users),
        "byStatus": dict(by_status),
        "byRole": users_by_role(db),
        "neverLoggedIn": db.query(func.count(User.id)).filter(User.last_login.is_(None)).scalar() or 0,
        "byDepartment": people_by_department(db),
    }


def academic_report(db: Session, department_id: Optional[int]) -> Dict[str, Any]:
    enrollments = db.query(Enrollment.status, func.count(Enrollment.id))
    attendance = db.query(Attendance.status)
    courses = db.query(Course)
    if department_id:
        enrollments = enrollments.join(Course, Enrollment.course_id == Course.id).filter(
            Course.department_id == department_id
        )
        attendance = attendance.join(Course, Attendance.course_id == Course.id).filter(
            Course.department_id == department_id
        )
        courses = courses.filter(Course.department_id == department_id)

    graded = db.query(Enrollment.grade, func.count(Enrollment.id)).filter(Enrollment.grade.isnot(None))
    if department_id:
        graded = graded.join(Course, Enrollment.course_id == Course.id).filter(Course.department_id == department_id)

    by_status = dict(enrollments.group_by(Enrollment.status).all())
    passed = by_status.get(EnrollmentStatus.COMPLETED, 0)
    failed = by_status.get(EnrollmentStatus.FAILED, 0)
    return {
        "courses": courses.count(),
        "enrollmentsByStatus": {status.value: count for status, count in by_status.items()},
        "gradeDistribution": {grade: count for grade, count in graded.group_by(Enrollment.grade).all()},
        "passRate": round(passed / (passed + failed) * 100, 2) if passed + failed else 0,
        "attendance": count_by_status(row[0] for row in attendance.all()),
    }


def financial_report(db: Session, start: Optional[date], end: Optional[date], department_id: Optional[int]):
    return {
        **fee_totals(db),
        "collection": collection_report(db, start, end, department_id),
        "pending": outstanding_report(db, department_id, None, None, overdue_only=False),
        "overdue": outstanding_report(db, department_id, None, None, overdue_only=True),
        "concessions": concessions_report(db, start, end, department_id),
    }


def library_report(db: Session, start: Optional[date], end: Optional[date]) -> Dict[str, Any]:
    borrows = apply_date_range(
        db.query(BorrowRecord), BorrowRecord.borrow_date, start, end, inclusive_datetime=True
    ).all()
    now = datetime.utcnow()
    by_status = defaultdict(int)
    popular = defaultdict(int)
    for record in borrows:
        by_status[record.status.value] += 1
        popular[record.book_id] += 1

    top_ids = sorted(popular, key=lambda book_id: (-popular[book_id], book_id))[:10]
    books = {b.id: b for b in db.query(Book).filter(Book.id.in_(top_ids)).all()} if top_ids else {}

    return {
        "titles": db.query(func.count(Book.id)).scalar() or 0,
        "totalCopies": db.query(func.sum(Book.total_copies)).scalar() or 0,
        "availableCopies": db.query(func.sum(Book.available_copies)).scalar() or 0,
        "borrows": len(borrows),
        "byStatus": dict(by_status),
        "currentlyOverdue": db.query(func.count(BorrowRecord.id)).filter(
            BorrowRecord.status == BorrowStatus.BORROWED,
            BorrowRecord.due_date < now
        ).scalar() or 0,
        "finesCollected": round(
            db.query(func.sum(BorrowRecord.fine_amount)).filter(BorrowRecord.fine_paid == True).scalar() or 0.0, 2
        ),
        "finesOutstanding": round(
            db.query(func.sum(BorrowRecord.fine_amount)).filter(BorrowRecord.fine_paid == False).scalar() or 0.0, 2
        ),
        "mostBorrowed": [
            {"bookId": book_id, "title": books[book_id].title, "borrows": popular[book_id]}
            for book_id in top_ids if book_id in books
        ],
    }
