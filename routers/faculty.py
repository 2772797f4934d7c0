"""
Faculty self-service APIs. Course-level access is limited to courses the caller coordinates or teaches.
"""
from collections import defaultdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional
import secrets

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session, joinedload

from auth.dependencies import get_db_session, get_role_scope, require_faculty
from core.errors import NotFoundError, ValidationError
from core.responses import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, paginate, paginated_response, success_response
from core.validators import parse_date, sanitize_filename, validate_file_extension, validate_file_size
from database.models import (
    Attendance, Course, Enrollment, EnrollmentStatus, Faculty, Notice, Student, Timetable,
    TimetablePeriod, User, Weekday,
)
from routers.attendance import AttendanceMarkRequest, mark_for_course
from services import academics
from services.audit_service import annotate_audit, audited_route
from services.notice_service import ordered, visible_notices
from services.scope import FacultyScope, apply_date_range, apply_search, can_access_course, students_of_courses
from services.serializers import (
    attendance_to_dict, course_to_dict, enrollment_to_dict, faculty_to_dict, notice_to_dict,
    period_to_dict, student_summary, student_to_dict,
)
from services.timetable_service import group_by_day
from core.logger import logger
import config


router = APIRouter(
    prefix="/api/faculty",
    tags=["faculty"],
    dependencies=[Depends(require_faculty)],
    route_class=audited_route("Faculty"),
)

COURSE_ACCESS_DENIED = "Course not found or access denied"


class FacultyProfileUpdate(BaseModel):
    phone: Optional[str] = None
    qualification: Optional[str] = None
    specialization: Optional[str] = None
    officeLocation: Optional[str] = None


class GradeEntry(BaseModel):
    enrollmentId: int
    internalMarks: Optional[float] = None
    externalMarks: Optional[float] = None
    totalMarks: Optional[float] = None
    grade: str


class GradeSubmission(BaseModel):
    courseId: int
    grades: List[GradeEntry]


def load_faculty(db: Session, scope: FacultyScope) -> Faculty:
    faculty = db.query(Faculty).options(
        joinedload(Faculty.user), joinedload(Faculty.department)
    ).filter(Faculty.id == scope.profile_id).first()
    if not faculty:
        raise NotFoundError("Faculty profile not found")
    return faculty


def owned_course_or_404(db: Session, scope: FacultyScope, course_id: int) -> Course:
    if not can_access_course(scope, course_id):
        raise NotFoundError(COURSE_ACCESS_DENIED)
    course = db.query(Course).filter(Course.id == course_id).first()
    if not course:
        raise NotFoundError(COURSE_ACCESS_DENIED)
    return course


def taught_periods(db: Session, faculty_id: int):
    return db.query(TimetablePeriod).join(
        Timetable, TimetablePeriod.timetable_id == Timetable.id
    ).filter(
        TimetablePeriod.faculty_id == faculty_id,
        Timetable.is_active == True
    ).all()


@router.get("/dashboard")
async def fetch_dashboard_data(
    request: Request,
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    faculty = load_faculty(db, scope)
    course_ids = sorted(scope.course_ids)

    coordinating = db.query(Course).filter(Course.coordinator_id == faculty.id).count()
    total_students = db.query(Enrollment).filter(
        Enrollment.course_id.in_(course_ids),
        Enrollment.status == EnrollmentStatus.ACTIVE
    ).count() if course_ids else 0
    pending_grades = db.query(Enrollment).filter(
        Enrollment.course_id.in_(course_ids),
        Enrollment.status == EnrollmentStatus.ACTIVE,
        Enrollment.grade.is_(None)
    ).count() if course_ids else 0

    now = datetime.utcnow()
    # No classes on Sunday
    today = Weekday(now.strftime("%A")) if now.weekday() < 6 else None
    todays = sorted(
        (p for p in taught_periods(db, faculty.id) if p.day == today),
        key=lambda p: p.start_time,
    )

    since = (datetime.utcnow() - timedelta(days=7)).date()
    recent_attendance = db.query(Attendance).filter(
        Attendance.marked_by == scope.user_id,
        Attendance.date >= since
    ).order_by(Attendance.date.desc()).limit(10).all()

    recent_notices = db.query(Notice).filter(
        Notice.published_by == scope.user_id
    ).order_by(Notice.created_at.desc()).limit(5).all()

    data = {
        "profile": faculty_to_dict(faculty),
        "stats": {
            "coordinatingCourses": coordinating,
            "instructingCourses": len(course_ids) - coordinating,
            "totalCourses": len(course_ids),
            "totalStudents": total_students,
            "todaysClasses": len(todays),
            "pendingGrades": pending_grades,
        },
        "todaysSchedule": [period_to_dict(p) for p in todays],
        "recentActivity": {
            "attendance": [attendance_to_dict(a) for a in recent_attendance],
            "notices": [notice_to_dict(n) for n in recent_notices],
        },
    }
    logger.info(f"Dashboard data fetched for faculty: {scope.user_id}")
    return success_response("Dashboard data retrieved successfully", data=data)


@router.get("/profile")
async def fetch_profile(scope: FacultyScope = Depends(get_role_scope), db: Session = Depends(get_db_session)):
    faculty = load_faculty(db, scope)
    logger.info(f"Profile fetched for faculty: {scope.user_id}")
    return success_response("Profile retrieved successfully", data=faculty_to_dict(faculty))


@router.put("/profile")
async def update_profile(
    body: FacultyProfileUpdate,
    request: Request,
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    faculty = load_faculty(db, scope)
    if body.phone is not None:
        faculty.user.phone = body.phone
    if body.qualification is not None:
        faculty.qualification = body.qualification
    if body.specialization is not None:
        faculty.specialization = body.specialization
    if body.officeLocation is not None:
        faculty.office_location = body.officeLocation
    db.commit()
    db.refresh(faculty)

    annotate_audit(request, resource_id=faculty.id, description="Faculty profile updated")
    logger.info(f"Profile updated for faculty: {scope.user_id}")
    return success_response("Profile updated successfully", data=faculty_to_dict(faculty))


@router.get("/classes")
async def fetch_classes(scope: FacultyScope = Depends(get_role_scope), db: Session = Depends(get_db_session)):
    course_ids = sorted(scope.course_ids)
    courses = db.query(Course).filter(Course.id.in_(course_ids)).order_by(Course.code).all() if course_ids else []
    counts = academics.enrollment_counts(db, course_ids)

    classes = []
    for course in courses:
        item = course_to_dict(course, enrollment_count=counts.get(course.id, 0))
        item["role"] = "coordinator" if course.coordinator_id == scope.profile_id else "instructor"
        classes.append(item)

    logger.info(f"Classes fetched for faculty: {scope.user_id}")
    return success_response("Classes retrieved successfully", data=classes)


@router.get("/students")
async def fetch_students(
    course_id: Optional[int] = Query(None, alias="courseId"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    """Students actively enrolled in the caller's courses."""
    if course_id is not None:
        owned_course_or_404(db, scope, course_id)
        course_ids = frozenset([course_id])
    else:
        course_ids = scope.course_ids

    query = db.query(Student).join(User, Student.user_id == User.id).filter(
        Student.id.in_(students_of_courses(course_ids))
    )
    query = apply_search(query, search, User.first_name, User.last_name, User.email, Student.roll_number, Student.student_id)
    students, pagination = paginate(query.order_by(Student.roll_number), page, limit)

    return paginated_response(
        "Students retrieved successfully",
        [student_to_dict(s) for s in students],
        pagination,
    )


@router.get("/courses/{course_id}")
async def fetch_course_details(
    course_id: int,
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    course = owned_course_or_404(db, scope, course_id)
    enrollments = db.query(Enrollment).filter(
        Enrollment.course_id == course.id,
        Enrollment.status == EnrollmentStatus.ACTIVE
    ).all()

    data = course_to_dict(course, enrollment_count=len(enrollments))
    data["syllabus"] = course.syllabus
    data["enrolledStudents"] = [enrollment_to_dict(e, include_student=True) for e in enrollments]
    return success_response("Course details retrieved successfully", data=data)


@router.post("/attendance/mark")
async def mark_attendance(
    body: AttendanceMarkRequest,
    request: Request,
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    if not can_access_course(scope, body.courseId):
        raise NotFoundError(COURSE_ACCESS_DENIED)
    result = mark_for_course(db, scope, request.state.user, body, request)
    return success_response("Attendance marked successfully", data=result)


@router.get("/attendance/report")
async def fetch_attendance_report(
    course_id: int = Query(..., alias="courseId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    course = owned_course_or_404(db, scope, course_id)
    query = db.query(Attendance).filter(Attendance.course_id == course.id)
    query = apply_date_range(query, Attendance.date, parse_date(start_date, "startDate"), parse_date(end_date, "endDate"))
    records = query.all()

    by_student = defaultdict(list)
    students = {}
    for record in records:
        by_student[record.student_id].append(record.status)
        students[record.student_id] = record.student

    report = [
        {"student": student_summary(students[student_ref]), **academics.count_by_status(statuses)}
        for student_ref, statuses in by_student.items()
    ]
    report.sort(key=lambda row: (row["student"] or {}).get("rollNumber") or "")

    logger.info(f"Attendance report fetched for faculty: {scope.user_id}")
    return success_response(
        "Attendance report retrieved successfully",
        data={
            "course": {"id": course.id, "code": course.code, "name": course.name},
            "report": report,
            "totalRecords": len(records),
        },
    )


@router.post("/grades/submit")
async def submit_grades(
    body: GradeSubmission,
    request: Request,
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    course = owned_course_or_404(db, scope, body.courseId)

    # Reject the whole batch on an unknown grade before touching any row
    for entry in body.grades:
        academics.grade_point(entry.grade)

    enrollments = {
        e.id: e for e in db.query(Enrollment).filter(
            Enrollment.course_id == course.id,
            Enrollment.id.in_(sorted({g.enrollmentId for g in body.grades}))
        ).all()
    } if body.grades else {}

    now = datetime.utcnow()
    submitted, errors = [], []
    for entry in body.grades:
        enrollment = enrollments.get(entry.enrollmentId)
        if enrollment is None:
            errors.append({"enrollmentId": entry.enrollmentId, "message": "Enrollment not found in this course"})
            continue
        if enrollment.status == EnrollmentStatus.WITHDRAWN:
            errors.append({"enrollmentId": entry.enrollmentId, "message": "Cannot grade a withdrawn enrollment"})
            continue

        enrollment.internal_marks = entry.internalMarks
        enrollment.external_marks = entry.externalMarks
        if entry.totalMarks is not None:
            enrollment.total_marks = entry.totalMarks
        elif entry.internalMarks is not None or entry.externalMarks is not None:
            enrollment.total_marks = (entry.internalMarks or 0) + (entry.externalMarks or 0)
        enrollment.grade = entry.grade
        enrollment.grade_point = academics.grade_point(entry.grade)
        enrollment.status = EnrollmentStatus.COMPLETED if academics.is_passing(entry.grade) else EnrollmentStatus.FAILED
        enrollment.grades_submitted_by = scope.profile_id
        enrollment.grades_submitted_at = now
        submitted.append(enrollment)
    db.commit()

    annotate_audit(
        request,
        resource_id=course.id,
        description=f"Grades submitted for course {course.code}: {len(submitted)} enrollment(s)",
    )
    logger.info(f"Grades submitted by faculty: {scope.user_id}, course: {course.id}")
    return success_response(
        "Grades submitted successfully",
        data={
            "course": course.name,
            "gradesSubmitted": len(submitted),
            "errors": errors,
        },
    )


@router.get("/grades/history")
async def fetch_grade_history(
    course_id: Optional[int] = Query(None, alias="courseId"),
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    if course_id is not None:
        owned_course_or_404(db, scope, course_id)
        course_ids = [course_id]
    else:
        course_ids = sorted(scope.course_ids)

    history = db.query(Enrollment).filter(
        Enrollment.course_id.in_(course_ids),
        Enrollment.grade.isnot(None),
        Enrollment.grades_submitted_by == scope.profile_id
    ).order_by(Enrollment.grades_submitted_at.desc()).all() if course_ids else []

    logger.info(f"Grade history fetched for faculty: {scope.user_id}")
    return success_response(
        "Grade history retrieved successfully",
        data=[enrollment_to_dict(e, include_student=True) for e in history],
    )


@router.get("/timetable")
async def fetch_timetable(scope: FacultyScope = Depends(get_role_scope), db: Session = Depends(get_db_session)):
    periods = taught_periods(db, scope.profile_id)
    logger.info(f"Timetable fetched for faculty: {scope.user_id}")
    return success_response(
        "Timetable retrieved successfully",
        data={"schedule": group_by_day(periods, period_to_dict), "totalPeriods": len(periods)},
    )


@router.get("/notices")
async def fetch_notices(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    user: User = request.state.user
    notices, pagination = paginate(ordered(visible_notices(db, scope, user.role)), page, limit)
    return paginated_response(
        "Notices retrieved successfully",
        [notice_to_dict(n, user.id) for n in notices],
        pagination,
    )


@router.post("/upload-material")
async def upload_material(
    request: Request,
    course_id: int = Form(..., alias="courseId"),
    title: str = Form(...),
    description: Optional[str] = Form(None),
    material_type: Optional[str] = Form(None, alias="materialType"),
    file: UploadFile = File(...),
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    """Store a course file under the uploads directory; it is served from ``/uploads``."""
    course = owned_course_or_404(db, scope, course_id)

    try:
        filename = sanitize_filename(file.filename or "")
    except ValueError as e:
        raise ValidationError(str(e))
    if not validate_file_extension(filename, config.ALLOWED_UPLOAD_EXTENSIONS):
        raise ValidationError(
            f"File type not allowed. Allowed: {', '.join(sorted(config.ALLOWED_UPLOAD_EXTENSIONS))}"
        )

    content = await file.read()
    ok, message = validate_file_size(len(content), config.MAX_UPLOAD_SIZE_MB * 1024 * 1024)
    if not ok:
        raise ValidationError(message)

    stored_name = f"{datetime.utcnow().strftime('%Y%m%d%H%M%S')}_{secrets.token_hex(4)}_{filename}"
    target_dir = Path(config.UPLOADS_DIR) / "materials" / course.code
    target_dir.mkdir(parents=True, exist_ok=True)
    (target_dir / stored_name).write_bytes(content)

    material = {
        "courseId": course.id,
        "title": title,
        "description": description,
        "type": material_type,
        "fileName": filename,
        "size": len(content),
        "url": f"/uploads/materials/{course.code}/{stored_name}",
        "uploadedBy": scope.profile_id,
        "uploadedAt": datetime.utcnow(),
    }

    annotate_audit(request, resource_id=course.id, description=f"Material uploaded for course {course.code}: {title}")
    logger.info(f"Material uploaded by faculty: {scope.user_id}, course: {course.id}")
    return success_response("Material uploaded successfully", data=material)
