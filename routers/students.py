"""
Student self-service APIs. Every query is pinned to the caller's own student profile.
"""
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session, joinedload

from auth.dependencies import get_db_session, get_role_scope, require_student
from core.errors import NotFoundError
from core.responses import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, paginate, paginated_response, success_response
from core.validators import parse_date, parse_enum
from database.models import (
    Attendance, AttendanceStatus, BorrowRecord, BorrowStatus, Enrollment, EnrollmentStatus, Fee,
    FeePayment, Student, Timetable, User,
)
from services import academics, fee_rules
from services.audit_service import annotate_audit, audited_route
from services.library_service import overdue_snapshot
from services.notice_service import ordered, visible_notices
from services.scope import StudentScope, apply_date_range, apply_role_scope
from services.serializers import (
    attendance_to_dict, borrow_to_dict, enrollment_to_dict, fee_to_dict, notice_to_dict,
    payment_to_dict, student_to_dict, timetable_to_dict,
)
from core.logger import logger


# Mounted under both /api/student and /api/students by the app
router = APIRouter(
    tags=["student"],
    dependencies=[Depends(require_student)],
    route_class=audited_route("Student"),
)


class StudentProfileUpdate(BaseModel):
    """Contact fields a student may edit."""
    phone: Optional[str] = None
    address: Optional[str] = None
    guardianName: Optional[str] = None
    guardianPhone: Optional[str] = None


def load_student(db: Session, scope: StudentScope) -> Student:
    student = db.query(Student).options(
        joinedload(Student.user), joinedload(Student.department)
    ).filter(Student.id == scope.profile_id).first()
    if not student:
        raise NotFoundError("Student profile not found")
    return student


@router.get("/dashboard")
async def fetch_dashboard_data(
    request: Request,
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    student = load_student(db, scope)

    enrollments = db.query(Enrollment).filter(
        Enrollment.student_id == student.id,
        Enrollment.status == EnrollmentStatus.ACTIVE
    ).all()

    since = (datetime.utcnow() - timedelta(days=30)).date()
    recent_attendance = db.query(Attendance).filter(
        Attendance.student_id == student.id,
        Attendance.date >= since
    ).order_by(Attendance.date.desc(), Attendance.period.desc()).all()
    summary = academics.count_by_status(a.status for a in recent_attendance)

    fees = db.query(Fee).filter(Fee.student_id == student.id).all()
    borrowed = db.query(BorrowRecord).filter(
        BorrowRecord.student_id == student.id,
        BorrowRecord.status == BorrowStatus.BORROWED
    ).count()

    notices = ordered(visible_notices(db, scope, request.state.user.role)).limit(5).all()

    data = {
        "profile": student_to_dict(student),
        "stats": {
            "enrolledCourses": len(enrollments),
            "attendancePercentage": summary["percentage"],
            "pendingFees": fee_rules.summarize(fees)["dueAmount"],
            "borrowedBooks": borrowed,
        },
        "recentActivity": {
            "notices": [notice_to_dict(n, scope.user_id) for n in notices],
            "attendance": [attendance_to_dict(a) for a in recent_attendance[:5]],
            "enrollments": [enrollment_to_dict(e) for e in enrollments],
        },
    }
    logger.info(f"Dashboard data fetched for student: {scope.user_id}")
    return success_response("Dashboard data retrieved successfully", data=data)


@router.get("/profile")
async def fetch_profile(scope: StudentScope = Depends(get_role_scope), db: Session = Depends(get_db_session)):
    student = load_student(db, scope)
    logger.info(f"Profile fetched for student: {scope.user_id}")
    return success_response("Profile retrieved successfully", data=student_to_dict(student))


@router.put("/profile")
async def update_profile(
    body: StudentProfileUpdate,
    request: Request,
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    student = load_student(db, scope)
    changed = []
    if body.phone is not None:
        student.user.phone = body.phone
        changed.append("phone")
    if body.address is not None:
        student.address = body.address
        changed.append("address")
    if body.guardianName is not None:
        student.guardian_name = body.guardianName
        changed.append("guardianName")
    if body.guardianPhone is not None:
        student.guardian_phone = body.guardianPhone
        changed.append("guardianPhone")
    db.commit()
    db.refresh(student)

    annotate_audit(
        request,
        resource_id=student.id,
        description=f"Student profile updated: {', '.join(changed) or 'no changes'}",
    )
    logger.info(f"Profile updated for student: {scope.user_id}")
    return success_response("Profile updated successfully", data=student_to_dict(student))


@router.get("/grades")
async def fetch_grades(
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    semester: Optional[int] = Query(None),
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = apply_role_scope(db.query(Enrollment), scope, student_column=Enrollment.student_id)
    query = query.filter(Enrollment.grade.isnot(None))
    if academic_year:
        query = query.filter(Enrollment.academic_year == academic_year)
    if semester:
        query = query.filter(Enrollment.semester == semester)
    graded = query.order_by(Enrollment.academic_year.desc(), Enrollment.semester.desc()).all()

    logger.info(f"Grades fetched for student: {scope.user_id}")
    return success_response(
        "Grades retrieved successfully",
        data={
            "grades": [enrollment_to_dict(e) for e in graded],
            "gpa": academics.gpa_of(graded),
            "totalCredits": sum(e.course.credits for e in graded if academics.is_passing(e.grade)),
        },
    )


@router.get("/attendance")
async def fetch_attendance(
    course_id: Optional[int] = Query(None, alias="courseId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = apply_role_scope(db.query(Attendance), scope, student_column=Attendance.student_id)
    if course_id:
        query = query.filter(Attendance.course_id == course_id)
    status_enum = parse_enum(AttendanceStatus, status_filter, "status")
    if status_enum:
        query = query.filter(Attendance.status == status_enum)
    query = apply_date_range(query, Attendance.date, parse_date(start_date, "startDate"), parse_date(end_date, "endDate"))

    summary = academics.count_by_status(row[0] for row in query.with_entities(Attendance.status).all())
    records, pagination = paginate(query.order_by(Attendance.date.desc(), Attendance.period.desc()), page, limit)

    logger.info(f"Attendance fetched for student: {scope.user_id}")
    body = paginated_response(
        "Attendance retrieved successfully",
        [attendance_to_dict(r) for r in records],
        pagination,
    )
    body["summary"] = summary
    return body


@router.get("/enrollments")
async def fetch_enrollments(
    status_filter: Optional[str] = Query(None, alias="status"),
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = apply_role_scope(db.query(Enrollment), scope, student_column=Enrollment.student_id)
    status_enum = parse_enum(EnrollmentStatus, status_filter, "status")
    if status_enum:
        query = query.filter(Enrollment.status == status_enum)
    enrollments = query.order_by(Enrollment.enrolled_at.desc()).all()
    return success_response("Enrollments retrieved successfully", data=[enrollment_to_dict(e) for e in enrollments])


@router.get("/academic-history")
async def fetch_academic_history(scope: StudentScope = Depends(get_role_scope), db: Session = Depends(get_db_session)):
    student = load_student(db, scope)
    enrollments = db.query(Enrollment).filter(Enrollment.student_id == student.id).all()
    terms = academics.group_terms(enrollments)
    graded = [e for e in enrollments if e.grade is not None]

    for term in terms:
        term["enrollments"] = [enrollment_to_dict(e) for e in term["enrollments"]]

    logger.info(f"Academic history fetched for student: {scope.user_id}")
    return success_response(
        "Academic history retrieved successfully",
        data={
            "terms": terms,
            "cgpa": academics.gpa_of(graded),
            "totalCredits": sum(t["credits"] for t in terms),
        },
    )


@router.get("/fees")
async def fetch_fees(
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = apply_role_scope(db.query(Fee), scope, student_column=Fee.student_id)
    if academic_year:
        query = query.filter(Fee.academic_year == academic_year)
    fees = query.order_by(Fee.due_date.asc()).all()
    for fee in fees:
        fee_rules.refresh_status(fee)
    db.commit()

    return success_response(
        "Fee details retrieved successfully",
        data={"fees": [fee_to_dict(f) for f in fees], "summary": fee_rules.summarize(fees)},
    )


@router.get("/payment-history")
async def fetch_payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = apply_role_scope(
        db.query(FeePayment).join(Fee, FeePayment.fee_id == Fee.id), scope, student_column=Fee.student_id
    )
    payments, pagination = paginate(query.order_by(FeePayment.paid_at.desc()), page, limit)
    return paginated_response(
        "Payment history retrieved successfully",
        [payment_to_dict(p) for p in payments],
        pagination,
    )


@router.get("/library-books")
async def fetch_library_books(scope: StudentScope = Depends(get_role_scope), db: Session = Depends(get_db_session)):
    records = apply_role_scope(
        db.query(BorrowRecord), scope, student_column=BorrowRecord.student_id
    ).order_by(BorrowRecord.borrow_date.desc()).all()

    current, history = [], []
    for record in records:
        item = borrow_to_dict(record)
        if record.status == BorrowStatus.BORROWED:
            item.update(overdue_snapshot(record))
            current.append(item)
        else:
            history.append(item)

    return success_response(
        "Library records retrieved successfully",
        data={"current": current, "history": history, "totalFine": round(sum(i["fine"] for i in current + history), 2)},
    )


@router.get("/notices")
async def fetch_notices(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    user: User = request.state.user
    notices, pagination = paginate(ordered(visible_notices(db, scope, user.role)), page, limit)
    return paginated_response(
        "Notices retrieved successfully",
        [notice_to_dict(n, user.id) for n in notices],
        pagination,
    )


@router.get("/timetable")
async def fetch_timetable(scope: StudentScope = Depends(get_role_scope), db: Session = Depends(get_db_session)):
    timetable = db.query(Timetable).filter(
        Timetable.department_id == scope.department_id,
        Timetable.semester == scope.semester,
        Timetable.is_active == True
    ).order_by(Timetable.approved_at.desc()).first()

    return success_response(
        "Timetable retrieved successfully",
        data=timetable_to_dict(timetable) if timetable else None,
    )
