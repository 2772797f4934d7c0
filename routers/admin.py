"""
Administration APIs (admin only): dashboard, user and department management,
system statistics, reports and the audit trail.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth.dependencies import get_db_session, require_admin
from core.errors import NotFoundError, ValidationError
from core.responses import MAX_PAGE_SIZE, paginate, paginated_response, success_response
from core.validators import parse_date, parse_enum
from database.models import (
    Attendance, AuditAction, AuditLog, AuditStatus, BorrowRecord, BorrowStatus, Course, Department, Designation,
    Enrollment, EnrollmentStatus, Faculty, FacultyStatus, Fee, FeePayment, Notice, NoticeView, RecordStatus, Student,
    StudentStatus, Timetable, TimetablePeriod, User, UserRole, UserStatus,
)
from routers.auth import profile_payload
from services import reports
from services.audit_service import annotate_audit, audited_route
from services.auth_service import AuthService
from services.scope import apply_date_range, apply_search
from services.serializers import audit_to_dict, department_to_dict, user_to_dict
from core.logger import logger


router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
    route_class=audited_route("User"),
)

REPORT_TYPES = ("users", "academic", "financial", "library")


class UserCreateRequest(BaseModel):
    firstName: str
    lastName: str
    email: EmailStr
    password: str
    role: UserRole
    phone: Optional[str] = None
    studentData: Optional[Dict[str, Any]] = None
    facultyData: Optional[Dict[str, Any]] = None


class StudentProfileChanges(BaseModel):
    department: Optional[int] = None
    batch: Optional[str] = None
    currentSemester: Optional[int] = Field(None, ge=1, le=8)
    academicYear: Optional[str] = None
    status: Optional[StudentStatus] = None


class FacultyProfileChanges(BaseModel):
    department: Optional[int] = None
    designation: Optional[Designation] = None
    qualification: Optional[str] = None
    specialization: Optional[str] = None
    experienceYears: Optional[int] = Field(None, ge=0)
    officeLocation: Optional[str] = None
    status: Optional[FacultyStatus] = None


class UserUpdateRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    status: Optional[UserStatus] = None
    role: Optional[UserRole] = None
    studentProfile: Optional[StudentProfileChanges] = None
    facultyProfile: Optional[FacultyProfileChanges] = None


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=10)
    description: Optional[str] = None
    headId: Optional[int] = None
    establishedYear: Optional[int] = None


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=1, max_length=10)
    description: Optional[str] = None
    headId: Optional[int] = None
    establishedYear: Optional[int] = None
    status: Optional[RecordStatus] = None


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def get_department_or_404(db: Session, department_id: int) -> Department:
    department = db.query(Department).filter(Department.id == department_id).first()
    if not department:
        raise NotFoundError("Department not found")
    return department


def check_department(db: Session, department_id: int):
    if not db.query(Department.id).filter(Department.id == department_id).first():
        raise ValidationError("Invalid department ID")


def check_head(db: Session, head_id: Optional[int]):
    if head_id is not None and not db.query(User.id).filter(User.id == head_id).first():
        raise ValidationError("Invalid head user ID")


def live_audit_entries(db: Session):
    now = datetime.utcnow()
    return db.query(AuditLog).filter(or_(AuditLog.expires_at.is_(None), AuditLog.expires_at > now))


def purge_user(db: Session, user: User):
    """Hard-delete ``user`` with its profile and the records that hang off it."""
    student = user.student_profile
    if student is not None:
        if db.query(BorrowRecord.id).filter(
            BorrowRecord.student_id == student.id,
            BorrowRecord.status == BorrowStatus.BORROWED
        ).first():
            raise ValidationError("Cannot delete a student with books on loan")
        fee_ids = db.query(Fee.id).filter(Fee.student_id == student.id)
        db.query(FeePayment).filter(FeePayment.fee_id.in_(fee_ids)).delete(synchronize_session=False)
        db.query(Fee).filter(Fee.student_id == student.id).update({"related_fee_id": None}, synchronize_session=False)
        db.query(Fee).filter(Fee.student_id == student.id).delete(synchronize_session=False)
        db.query(Attendance).filter(Attendance.student_id == student.id).delete(synchronize_session=False)
        db.query(BorrowRecord).filter(BorrowRecord.student_id == student.id).delete(synchronize_session=False)

    faculty = user.faculty_profile
    if faculty is not None:
        db.query(TimetablePeriod).filter(TimetablePeriod.faculty_id == faculty.id).update(
            {"faculty_id": None}, synchronize_session=False
        )

    db.query(NoticeView).filter(NoticeView.user_id == user.id).delete(synchronize_session=False)
    db.delete(user)


@router.get("/dashboard")
async def fetch_dashboard_data(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    now = datetime.utcnow()
    since_month = now - timedelta(days=30)
    since_half_year = now - timedelta(days=186)

    enrollment_stamps = [
        row[0] for row in db.query(Enrollment.enrolled_at).filter(Enrollment.enrolled_at >= since_half_year).all()
    ]
    recent = live_audit_entries(db).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(10).all()

    data = {
        "stats": {
            "users": {
                "total": db.query(func.count(User.id)).scalar() or 0,
                "students": db.query(func.count(Student.id)).scalar() or 0,
                "faculty": db.query(func.count(Faculty.id)).scalar() or 0,
                "recent": db.query(func.count(User.id)).filter(User.created_at >= since_month).scalar() or 0,
            },
            "academic": {
                "departments": db.query(func.count(Department.id)).scalar() or 0,
                "courses": db.query(func.count(Course.id)).scalar() or 0,
                "activeEnrollments": db.query(func.count(Enrollment.id)).filter(
                    Enrollment.status == EnrollmentStatus.ACTIVE
                ).scalar() or 0,
                "completedEnrollments": db.query(func.count(Enrollment.id)).filter(
                    Enrollment.status == EnrollmentStatus.COMPLETED
                ).scalar() or 0,
            },
            "financial": reports.fee_totals(db),
        },
        "charts": {
            "usersByRole": reports.users_by_role(db),
            "studentsByDepartment": reports.people_by_department(db),
            "enrollmentTrends": reports.monthly_counts(enrollment_stamps, 6, now.date()),
        },
        "recentActivity": [audit_to_dict(entry) for entry in recent],
    }
    logger.info(f"Admin dashboard data fetched by: {current_user.id}")
    return success_response("Dashboard data retrieved successfully", data=data)


@router.get("/users")
async def list_users(
    role: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    query = db.query(User)
    role_enum = parse_enum(UserRole, role, "role")
    if role_enum:
        query = query.filter(User.role == role_enum)
    status_enum = parse_enum(UserStatus, status_filter, "status")
    if status_enum:
        query = query.filter(User.status == status_enum)
    query = apply_search(query, search, User.first_name, User.last_name, User.email)

    users, pagination = paginate(query.order_by(User.created_at.desc(), User.id.desc()), page, limit)
    logger.info(f"Users fetched by admin: {current_user.id}")
    return paginated_response("Users retrieved successfully", [user_to_dict(u) for u in users], pagination)


@router.post("/users", status_code=201)
async def create_user(
    body: UserCreateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    user = AuthService.create_user(
        db,
        first_name=body.firstName,
        last_name=body.lastName,
        email=body.email,
        password=body.password,
        role=body.role,
        phone=body.phone,
        student_data=body.studentData,
        faculty_data=body.facultyData,
    )
    annotate_audit(request, resource_id=user.id, description=f"Created {user.role.value} account {user.email}")
    logger.info(f"User created by admin: {current_user.id}, user: {user.id}")
    return success_response(
        "User created successfully",
        data={"user": user_to_dict(user), "profile": profile_payload(user)},
    )


@router.get("/users/stats")
async def fetch_user_statistics(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    now = datetime.utcnow()
    stamps = [row[0] for row in db.query(User.created_at).filter(User.created_at >= now - timedelta(days=366)).all()]
    data = {
        "overview": {
            "total": db.query(func.count(User.id)).scalar() or 0,
            "active": db.query(func.count(User.id)).filter(User.status == UserStatus.ACTIVE).scalar() or 0,
            "inactive": db.query(func.count(User.id)).filter(User.status == UserStatus.INACTIVE).scalar() or 0,
        },
        "byRole": reports.users_by_role(db),
        "byDepartment": reports.people_by_department(db),
        "trends": reports.monthly_counts(stamps, 12, now.date()),
    }
    logger.info(f"User statistics fetched by admin: {current_user.id}")
    return success_response("User statistics retrieved successfully", data=data)


@router.get("/users/{user_id}")
async def fetch_user_details(
    user_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    user = get_user_or_404(db, user_id)
    return success_response(
        "User details retrieved successfully",
        data={"user": user_to_dict(user), "profile": profile_payload(user)},
    )


@router.put("/users/{user_id}")
async def update_user(
    user_id: int,
    body: UserUpdateRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    user = get_user_or_404(db, user_id)
    previous_role = user.role

    if body.firstName is not None:
        user.first_name = body.firstName.strip()
    if body.lastName is not None:
        user.last_name = body.lastName.strip()
    if body.email is not None:
        user.email = body.email.strip().lower()
    if body.phone is not None:
        user.phone = body.phone
    if body.status is not None:
        if user.id == current_user.id and body.status != UserStatus.ACTIVE:
            raise ValidationError("You cannot deactivate your own account")
        user.status = body.status

    if body.role is not None and body.role != user.role:
        if user.id == current_user.id:
            raise ValidationError("You cannot change your own role")
        if body.role == UserRole.STUDENT and user.student_profile is None:
            raise ValidationError("A student profile is required for the student role")
        if body.role == UserRole.FACULTY and user.faculty_profile is None:
            raise ValidationError("A faculty profile is required for the faculty role")
        user.role = body.role

    if body.studentProfile is not None:
        student = user.student_profile
        if student is None:
            raise ValidationError("User has no student profile")
        changes = body.studentProfile
        if changes.department is not None:
            check_department(db, changes.department)
            student.department_id = changes.department
        if changes.batch is not None:
            student.batch = changes.batch
        if changes.currentSemester is not None:
            student.current_semester = changes.currentSemester
        if changes.academicYear is not None:
            student.academic_year = changes.academicYear
        if changes.status is not None:
            student.status = changes.status

    if body.facultyProfile is not None:
        faculty = user.faculty_profile
        if faculty is None:
            raise ValidationError("User has no faculty profile")
        changes = body.facultyProfile
        if changes.department is not None:
            check_department(db, changes.department)
            faculty.department_id = changes.department
        for field, attr in (
            ("designation", "designation"),
            ("qualification", "qualification"),
            ("specialization", "specialization"),
            ("experienceYears", "experience_years"),
            ("officeLocation", "office_location"),
            ("status", "status"),
        ):
            value = getattr(changes, field)
            if value is not None:
                setattr(faculty, attr, value)

    user.updated_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("User already exists with this email")
    db.refresh(user)

    if user.status == UserStatus.INACTIVE:
        AuthService.revoke_all_refresh_tokens(db, user.id)

    if user.role != previous_role:
        annotate_audit(
            request,
            action=AuditAction.ROLE_CHANGE,
            resource_id=user.id,
            description=f"Changed role of {user.email}: {previous_role.value} -> {user.role.value}",
        )
    else:
        annotate_audit(request, resource_id=user.id, description=f"Updated user information for {user.full_name}")
    logger.info(f"User updated by admin: {current_user.id}, user: {user.id}")
    return success_response(
        "User updated successfully",
        data={"user": user_to_dict(user), "profile": profile_payload(user)},
    )


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    request: Request,
    permanent: bool = Query(False),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    """Deactivate by default; ``permanent=true`` removes the user and its profile."""
    user = get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise ValidationError("You cannot delete your own account")
    name = user.full_name

    if permanent:
        purge_user(db, user)
        db.commit()
    else:
        user.status = UserStatus.INACTIVE
        user.updated_at = datetime.utcnow()
        db.commit()
        AuthService.revoke_all_refresh_tokens(db, user.id)

    verb = "deleted" if permanent else "deactivated"
    annotate_audit(
        request,
        action=AuditAction.DELETE if permanent else AuditAction.UPDATE,
        resource_id=user_id,
        description=f"{'Permanently deleted' if permanent else 'Deactivated'} user {name}",
    )
    logger.info(f"User {verb} by admin: {current_user.id}, user: {user_id}")
    return success_response(f"User {verb} successfully")


@router.get("/departments")
async def list_departments(
    search: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    query = apply_search(db.query(Department), search, Department.name, Department.code)
    status_enum = parse_enum(RecordStatus, status_filter, "status")
    if status_enum:
        query = query.filter(Department.status == status_enum)
    departments = query.order_by(Department.name).all()

    students = dict(db.query(Student.department_id, func.count(Student.id)).group_by(Student.department_id).all())
    faculty = dict(db.query(Faculty.department_id, func.count(Faculty.id)).group_by(Faculty.department_id).all())
    courses = dict(db.query(Course.department_id, func.count(Course.id)).group_by(Course.department_id).all())

    items = []
    for department in departments:
        item = department_to_dict(department)
        item["counts"] = {
            "students": students.get(department.id, 0),
            "faculty": faculty.get(department.id, 0),
            "courses": courses.get(department.id, 0),
        }
        items.append(item)

    logger.info(f"Departments fetched by admin: {current_user.id}")
    return success_response("Departments retrieved successfully", data=items)


@router.post("/departments", status_code=201)
async def create_department(
    body: DepartmentCreate,
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    check_head(db, body.headId)
    department = Department(
        name=body.name.strip(),
        code=body.code.strip().upper(),
        description=body.description,
        head_id=body.headId,
        established_year=body.establishedYear,
    )
    db.add(department)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Department with this name or code already exists")
    db.refresh(department)

    annotate_audit(
        request,
        resource_type="Department",
        resource_id=department.id,
        description=f"Created department: {department.name} ({department.code})",
    )
    logger.info(f"Department created by admin: {current_user.id}, department: {department.id}")
    return success_response("Department created successfully", data=department_to_dict(department))


@router.get("/departments/{department_id}")
async def fetch_department_details(
    department_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    department = get_department_or_404(db, department_id)
    data = department_to_dict(department)
    data["counts"] = {
        "students": db.query(func.count(Student.id)).filter(Student.department_id == department.id).scalar() or 0,
        "faculty": db.query(func.count(Faculty.id)).filter(Faculty.department_id == department.id).scalar() or 0,
        "courses": db.query(func.count(Course.id)).filter(Course.department_id == department.id).scalar() or 0,
    }
    return success_response("Department details retrieved successfully", data=data)


@router.put("/departments/{department_id}")
async def update_department(
    department_id: int,
    body: DepartmentUpdate,
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    department = get_department_or_404(db, department_id)
    check_head(db, body.headId)

    if body.name is not None:
        department.name = body.name.strip()
    if body.code is not None:
        department.code = body.code.strip().upper()
    if body.description is not None:
        department.description = body.description
    if body.headId is not None:
        department.head_id = body.headId
    if body.establishedYear is not None:
        department.established_year = body.establishedYear
    if body.status is not None:
        department.status = body.status

    department.updated_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Department with this name or code already exists")
    db.refresh(department)

    annotate_audit(
        request,
        resource_type="Department",
        resource_id=department.id,
        description=f"Updated department: {department.name}",
    )
    logger.info(f"Department updated by admin: {current_user.id}, department: {department.id}")
    return success_response("Department updated successfully", data=department_to_dict(department))


@router.delete("/departments/{department_id}")
async def delete_department(
    department_id: int,
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    department = get_department_or_404(db, department_id)
    if (
        db.query(Student.id).filter(Student.department_id == department.id).first()
        or db.query(Faculty.id).filter(Faculty.department_id == department.id).first()
    ):
        raise ValidationError("Cannot delete department with existing students or faculty")
    if (
        db.query(Course.id).filter(Course.department_id == department.id).first()
        or db.query(Timetable.id).filter(Timetable.department_id == department.id).first()
    ):
        raise ValidationError("Cannot delete department with existing courses or timetables")

    name = department.name
    db.delete(department)
    db.commit()

    annotate_audit(request, resource_type="Department", resource_id=department_id, description=f"Deleted department: {name}")
    logger.info(f"Department deleted by admin: {current_user.id}, department: {department_id}")
    return success_response("Department deleted successfully")


@router.get("/system-stats")
async def fetch_system_statistics(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    since = datetime.utcnow() - timedelta(hours=24)
    data = {
        "database": {
            "users": db.query(func.count(User.id)).scalar() or 0,
            "students": db.query(func.count(Student.id)).scalar() or 0,
            "faculty": db.query(func.count(Faculty.id)).scalar() or 0,
            "departments": db.query(func.count(Department.id)).scalar() or 0,
            "courses": db.query(func.count(Course.id)).scalar() or 0,
            "enrollments": db.query(func.count(Enrollment.id)).scalar() or 0,
            "attendanceRecords": db.query(func.count(Attendance.id)).scalar() or 0,
            "feeRecords": db.query(func.count(Fee.id)).scalar() or 0,
            "borrowRecords": db.query(func.count(BorrowRecord.id)).scalar() or 0,
            "notices": db.query(func.count(Notice.id)).scalar() or 0,
            "timetables": db.query(func.count(Timetable.id)).scalar() or 0,
            "auditEntries": live_audit_entries(db).count(),
        },
        "activity": {
            "logins": live_audit_entries(db).filter(
                AuditLog.action == AuditAction.LOGIN,
                AuditLog.status == AuditStatus.SUCCESS,
                AuditLog.created_at >= since
            ).count(),
            "failedLogins": live_audit_entries(db).filter(
                AuditLog.action == AuditAction.LOGIN,
                AuditLog.status == AuditStatus.FAILURE,
                AuditLog.created_at >= since
            ).count(),
            "registrations": db.query(func.count(User.id)).filter(User.created_at >= since).scalar() or 0,
            "attendanceMarked": db.query(func.count(Attendance.id)).filter(Attendance.created_at >= since).scalar() or 0,
            "paymentsReceived": db.query(func.count(FeePayment.id)).filter(FeePayment.paid_at >= since).scalar() or 0,
            "booksBorrowed": db.query(func.count(BorrowRecord.id)).filter(BorrowRecord.borrow_date >= since).scalar() or 0,
        },
        "lastUpdated": datetime.utcnow(),
    }
    logger.info(f"System statistics fetched by admin: {current_user.id}")
    return success_response("System statistics retrieved successfully", data=data)


@router.get("/reports")
async def generate_report(
    report_type: str = Query(..., alias="type"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    department_id: Optional[int] = Query(None, alias="department"),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    if report_type not in REPORT_TYPES:
        raise ValidationError("Invalid report type")
    start = parse_date(start_date, "startDate")
    end = parse_date(end_date, "endDate")

    if report_type == "users":
        data = reports.users_report(db, start, end)
    elif report_type == "academic":
        data = reports.academic_report(db, department_id)
    elif report_type == "financial":
        data = reports.financial_report(db, start, end, department_id)
    else:
        data = reports.library_report(db, start, end)

    logger.info(f"Report generated by admin: {current_user.id}, type: {report_type}")
    return success_response(
        "Report generated successfully",
        data={"reportType": report_type, "generatedAt": datetime.utcnow(), "data": data},
    )


@router.get("/audit-logs")
async def fetch_audit_logs(
    user_id: Optional[int] = Query(None, alias="userId"),
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None, alias="resourceType"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    query = live_audit_entries(db)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    action_enum = parse_enum(AuditAction, action, "action")
    if action_enum:
        query = query.filter(AuditLog.action == action_enum)
    if resource_type:
        query = query.filter(AuditLog.resource_type == resource_type)
    query = apply_date_range(
        query,
        AuditLog.created_at,
        parse_date(start_date, "startDate"),
        parse_date(end_date, "endDate"),
        inclusive_datetime=True,
    )

    entries, pagination = paginate(query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()), page, limit)
    logger.info(f"Audit logs fetched by admin: {current_user.id}")
    return paginated_response("Audit logs retrieved successfully", [audit_to_dict(e) for e in entries], pagination)
