"""
Attendance APIs: marking, corrections, scoped listing, statistics and CSV export.
"""
from collections import OrderedDict, defaultdict
from datetime import date, datetime
from typing import List, Optional
import csv
import io

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.dependencies import get_db_session, get_role_scope, require_admin_or_faculty, require_authenticated
from core.errors import AuthorizationError, NotFoundError, ValidationError
from core.responses import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, paginate, paginated_response, success_response
from core.validators import parse_date, parse_enum
from database.models import Attendance, AttendanceStatus, Course, SessionType, Student, User
from services import academics
from services.audit_service import annotate_audit, audited_route
from services.scope import (
    FacultyScope, RoleScope, StudentScope, apply_date_range, apply_role_scope, can_access_course, can_access_student,
)
from services.serializers import attendance_to_dict, course_summary
from core.logger import logger


router = APIRouter(prefix="/api/attendance", tags=["attendance"], route_class=audited_route("Attendance"))


class AttendanceEntry(BaseModel):
    studentId: int
    status: AttendanceStatus
    remarks: Optional[str] = None


class AttendanceMarkRequest(BaseModel):
    courseId: int
    date: date
    period: int
    sessionType: SessionType = SessionType.LECTURE
    attendanceData: List[AttendanceEntry]


class AttendanceUpdate(BaseModel):
    status: Optional[AttendanceStatus] = None
    remarks: Optional[str] = None


def owned_course(db: Session, scope: RoleScope, course_id: int) -> Course:
    course = db.query(Course).filter(Course.id == course_id).first()
    if not course:
        raise NotFoundError("Course not found")
    if not can_access_course(scope, course.id):
        raise AuthorizationError("Access denied for this course")
    return course


def mark_for_course(db: Session, scope: RoleScope, user: User, body: AttendanceMarkRequest, request: Request) -> dict:
    """Shared by the attendance and faculty routers."""
    course = owned_course(db, scope, body.courseId)
    result = academics.mark_attendance(
        db,
        course,
        on=body.date,
        period=body.period,
        entries=body.attendanceData,
        marked_by=user.id,
        session_type=body.sessionType,
    )
    db.commit()

    result["records"] = [attendance_to_dict(r) for r in result["records"]]
    annotate_audit(
        request,
        resource_id=course.id,
        description=(
            f"Marked attendance for course {course.code} on {body.date.isoformat()}, "
            f"period {body.period} ({result['created']} created, {result['updated']} updated)"
        ),
    )
    logger.info(f"Attendance marked by user: {user.id}, course: {course.id}, records: {result['recordsProcessed']}")
    return result


def scoped_attendance(
    db: Session,
    scope: RoleScope,
    course_id: Optional[int] = None,
    student_id: Optional[int] = None,
    status_filter: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    query = apply_role_scope(
        db.query(Attendance), scope, student_column=Attendance.student_id, course_column=Attendance.course_id
    )
    if course_id:
        query = query.filter(Attendance.course_id == course_id)
    # A student's own scope already fixes the subject
    if student_id and not isinstance(scope, StudentScope):
        query = query.filter(Attendance.student_id == student_id)
    status_enum = parse_enum(AttendanceStatus, status_filter, "status")
    if status_enum:
        query = query.filter(Attendance.status == status_enum)
    return apply_date_range(
        query, Attendance.date, parse_date(start_date, "startDate"), parse_date(end_date, "endDate")
    )


@router.post("/mark")
async def mark_attendance(
    body: AttendanceMarkRequest,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    result = mark_for_course(db, scope, current_user, body, request)
    return success_response("Attendance marked successfully", data=result)


@router.get("/stats")
async def fetch_attendance_statistics(
    course_id: Optional[int] = Query(None, alias="courseId"),
    student_id: Optional[int] = Query(None, alias="studentId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = scoped_attendance(db, scope, course_id, student_id, None, start_date, end_date)
    rows = query.with_entities(Attendance.course_id, Attendance.date, Attendance.status).all()

    overall = academics.count_by_status(status for _, _, status in rows)

    per_course = defaultdict(list)
    for course_ref, _, status in rows:
        per_course[course_ref].append(status)
    courses = {
        c.id: c for c in db.query(Course).filter(Course.id.in_(sorted(per_course))).all()
    } if per_course else {}
    by_course = [
        {"course": course_summary(courses.get(course_ref)), **academics.count_by_status(statuses)}
        for course_ref, statuses in per_course.items()
    ]

    # Last six calendar months, oldest first
    today = datetime.utcnow().date()
    months = OrderedDict()
    year, month = today.year, today.month
    for _ in range(6):
        months[(year, month)] = []
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    months = OrderedDict(reversed(list(months.items())))
    for _, on, status in rows:
        key = (on.year, on.month)
        if key in months:
            months[key].append(status)
    trend = [
        {"year": y, "month": m, **academics.count_by_status(statuses)}
        for (y, m), statuses in months.items()
    ]

    logger.info(f"Attendance statistics fetched by user: {current_user.id}")
    return success_response(
        "Attendance statistics retrieved successfully",
        data={"overall": overall, "byCourse": by_course, "monthlyTrend": trend},
    )


@router.get("/export")
async def export_attendance(
    course_id: Optional[int] = Query(None, alias="courseId"),
    student_id: Optional[int] = Query(None, alias="studentId"),
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    """CSV of the caller's scoped attendance list."""
    query = scoped_attendance(db, scope, course_id, student_id, status_filter, start_date, end_date)
    records = query.order_by(Attendance.date.desc(), Attendance.period.asc()).all()

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["Date", "Period", "Course Code", "Course", "Roll Number", "Student", "Status", "Session", "Remarks"])
    for record in records:
        student = record.student
        writer.writerow([
            record.date.isoformat(),
            record.period,
            record.course.code if record.course else "",
            record.course.name if record.course else "",
            student.roll_number if student else "",
            student.user.full_name if student and student.user else "",
            record.status.value,
            record.session_type.value,
            record.remarks or "",
        ])

    logger.info(f"Attendance exported by user: {current_user.id}, rows: {len(records)}")
    filename = f"attendance_{datetime.utcnow().strftime('%Y%m%d')}.csv"
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/student/{student_id}/summary")
async def fetch_student_attendance_summary(
    student_id: int,
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    student = db.query(Student).filter(Student.id == student_id).first()
    if not student:
        raise NotFoundError("Student not found")
    if not can_access_student(db, scope, student.id):
        raise AuthorizationError("Access denied for this student")

    query = db.query(Attendance).filter(Attendance.student_id == student.id)
    if isinstance(scope, FacultyScope):
        query = query.filter(Attendance.course_id.in_(sorted(scope.course_ids)))
    rows = query.with_entities(Attendance.course_id, Attendance.status).all()

    per_course = defaultdict(list)
    for course_ref, status in rows:
        per_course[course_ref].append(status)
    courses = {
        c.id: c for c in db.query(Course).filter(Course.id.in_(sorted(per_course))).all()
    } if per_course else {}

    return success_response(
        "Attendance summary retrieved successfully",
        data={
            "student": {"id": student.id, "rollNumber": student.roll_number, "name": student.user.full_name},
            "overall": academics.count_by_status(status for _, status in rows),
            "byCourse": [
                {"course": course_summary(courses.get(course_ref)), **academics.count_by_status(statuses)}
                for course_ref, statuses in per_course.items()
            ],
        },
    )


@router.get("")
async def fetch_attendance_records(
    course_id: Optional[int] = Query(None, alias="courseId"),
    student_id: Optional[int] = Query(None, alias="studentId"),
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = scoped_attendance(db, scope, course_id, student_id, status_filter, start_date, end_date)
    records, pagination = paginate(
        query.order_by(Attendance.date.desc(), Attendance.period.desc(), Attendance.id.desc()), page, limit
    )
    logger.info(f"Attendance records fetched by user: {current_user.id}")
    return paginated_response(
        "Attendance records retrieved successfully",
        [attendance_to_dict(r) for r in records],
        pagination,
    )


@router.put("/{attendance_id}")
async def update_attendance_record(
    attendance_id: int,
    body: AttendanceUpdate,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    record = db.query(Attendance).filter(Attendance.id == attendance_id).first()
    if not record:
        raise NotFoundError("Attendance record not found")
    if not can_access_course(scope, record.course_id):
        raise AuthorizationError("Access denied for this course")
    if body.status is None and body.remarks is None:
        raise ValidationError("Nothing to update")

    previous = record.status.value
    if body.status is not None:
        record.status = body.status
    if body.remarks is not None:
        record.remarks = body.remarks
    record.marked_by = current_user.id
    record.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(record)

    annotate_audit(
        request,
        resource_id=record.id,
        description=f"Attendance updated: {previous} -> {record.status.value}",
    )
    logger.info(f"Attendance record updated by user: {current_user.id}, record: {record.id}")
    return success_response("Attendance record updated successfully", data=attendance_to_dict(record))
