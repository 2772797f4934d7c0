"""
Course catalogue, syllabus and enrollment APIs.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth.dependencies import (
    get_db_session, get_role_scope, require_admin, require_admin_or_faculty, require_admin_or_student,
    require_authenticated,
)
from core.errors import AuthorizationError, NotFoundError, ValidationError
from core.responses import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, paginate, paginated_response, success_response
from core.validators import parse_enum
from database.models import (
    Attendance, AuditAction, Course, CourseType, Department, Enrollment, EnrollmentStatus, Faculty, RecordStatus, Student,
    TimetablePeriod, User, course_prerequisites,
)
from services import academics
from services.audit_service import annotate_audit, audited_route
from services.scope import AdminScope, FacultyScope, RoleScope, StudentScope, apply_search, can_access_course
from services.serializers import course_to_dict, enrollment_to_dict
from core.logger import logger
import config


router = APIRouter(prefix="/api/courses", tags=["courses"], route_class=audited_route("Course"))


class CourseCreate(BaseModel):
    code: str
    name: str
    description: Optional[str] = None
    departmentId: int
    credits: int = 3
    courseType: CourseType = CourseType.THEORY
    semester: int
    coordinatorId: Optional[int] = None
    instructorIds: List[int] = []
    prerequisiteIds: List[int] = []
    maxEnrollment: int = config.DEFAULT_MAX_ENROLLMENT
    internalWeight: int = 40
    externalWeight: int = 60
    syllabus: Optional[Dict[str, Any]] = None


class CourseUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    credits: Optional[int] = None
    courseType: Optional[CourseType] = None
    semester: Optional[int] = None
    coordinatorId: Optional[int] = None
    instructorIds: Optional[List[int]] = None
    prerequisiteIds: Optional[List[int]] = None
    maxEnrollment: Optional[int] = None
    internalWeight: Optional[int] = None
    externalWeight: Optional[int] = None
    status: Optional[RecordStatus] = None


class SyllabusUpdate(BaseModel):
    syllabus: Dict[str, Any]


class EnrollRequest(BaseModel):
    studentId: Optional[int] = None
    academicYear: Optional[str] = None


def get_course_or_404(db: Session, course_id: int) -> Course:
    course = db.query(Course).filter(Course.id == course_id).first()
    if not course:
        raise NotFoundError("Course not found")
    return course


def load_faculty_members(db: Session, ids: List[int], message: str) -> List[Faculty]:
    unique_ids = sorted(set(ids))
    if not unique_ids:
        return []
    members = db.query(Faculty).filter(Faculty.id.in_(unique_ids)).all()
    if len(members) != len(unique_ids):
        raise ValidationError(message)
    return members


def load_prerequisites(db: Session, ids: List[int], course_id: Optional[int] = None) -> List[Course]:
    unique_ids = sorted(set(ids))
    if course_id is not None and course_id in unique_ids:
        raise ValidationError("A course cannot be its own prerequisite")
    if not unique_ids:
        return []
    courses = db.query(Course).filter(Course.id.in_(unique_ids)).all()
    if len(courses) != len(unique_ids):
        raise ValidationError("One or more prerequisite course IDs are invalid")
    return courses


def check_weights(internal: int, external: int):
    if internal < 0 or external < 0 or internal + external != 100:
        raise ValidationError("Internal and external assessment weights must add up to 100")


def subject_student(db: Session, scope: RoleScope, student_id: Optional[int]) -> Student:
    """The student an enroll/withdraw call acts on: the caller, or ``studentId`` for admins."""
    if isinstance(scope, StudentScope):
        student_id = scope.profile_id
    elif not isinstance(scope, AdminScope):
        raise AuthorizationError("Insufficient permissions to manage enrollments")
    if student_id is None:
        raise ValidationError("studentId is required")
    student = db.query(Student).filter(Student.id == student_id).first()
    if not student:
        raise NotFoundError("Student not found")
    return student


@router.get("")
async def list_courses(
    search: Optional[str] = Query(None),
    department_id: Optional[int] = Query(None, alias="department"),
    semester: Optional[int] = Query(None),
    course_type: Optional[str] = Query(None, alias="type"),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_authenticated),
    db: Session = Depends(get_db_session)
):
    query = db.query(Course)
    query = apply_search(query, search, Course.code, Course.name, Course.description)
    if department_id:
        query = query.filter(Course.department_id == department_id)
    if semester:
        query = query.filter(Course.semester == semester)
    type_enum = parse_enum(CourseType, course_type, "type")
    if type_enum:
        query = query.filter(Course.course_type == type_enum)
    status_enum = parse_enum(RecordStatus, status_filter, "status")
    if status_enum:
        query = query.filter(Course.status == status_enum)

    courses, pagination = paginate(query.order_by(Course.code.asc()), page, limit)
    counts = academics.enrollment_counts(db, [c.id for c in courses])

    logger.info(f"Courses fetched by user: {current_user.id}")
    return paginated_response(
        "Courses retrieved successfully",
        [course_to_dict(c, enrollment_count=counts.get(c.id, 0)) for c in courses],
        pagination,
    )


@router.get("/{course_id}")
async def fetch_course_details(
    course_id: int,
    current_user: User = Depends(require_authenticated),
    db: Session = Depends(get_db_session)
):
    course = get_course_or_404(db, course_id)
    data = course_to_dict(course, enrollment_count=academics.active_enrollment_count(db, course.id))
    data["syllabus"] = course.syllabus
    return success_response("Course details retrieved successfully", data=data)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_course(
    body: CourseCreate,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    code = body.code.strip().upper()
    if db.query(Course.id).filter(Course.code == code).first():
        raise ValidationError("Course with this code already exists")
    if not db.query(Department.id).filter(Department.id == body.departmentId).first():
        raise ValidationError("Invalid department ID")
    if body.maxEnrollment < 1:
        raise ValidationError("Maximum enrollment must be at least 1")
    check_weights(body.internalWeight, body.externalWeight)

    coordinator_id = body.coordinatorId
    if coordinator_id is None and isinstance(scope, FacultyScope):
        coordinator_id = scope.profile_id
    if coordinator_id is not None:
        load_faculty_members(db, [coordinator_id], "Invalid coordinator faculty ID")
    instructors = load_faculty_members(db, body.instructorIds, "One or more instructor faculty IDs are invalid")
    prerequisites = load_prerequisites(db, body.prerequisiteIds)

    course = Course(
        code=code,
        name=body.name,
        description=body.description,
        department_id=body.departmentId,
        credits=body.credits,
        course_type=body.courseType,
        semester=body.semester,
        coordinator_id=coordinator_id,
        max_enrollment=body.maxEnrollment,
        internal_weight=body.internalWeight,
        external_weight=body.externalWeight,
        syllabus=body.syllabus,
        created_by=current_user.id,
    )
    course.instructors = instructors
    course.prerequisites = prerequisites
    db.add(course)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Course with this code already exists")
    db.refresh(course)

    annotate_audit(request, resource_id=course.id, description=f"Course created: {course.code}")
    logger.info(f"Course created by user: {current_user.id}, course: {course.code}")
    return success_response("Course created successfully", data=course_to_dict(course, enrollment_count=0))


@router.put("/{course_id}")
async def update_course(
    course_id: int,
    body: CourseUpdate,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    course = get_course_or_404(db, course_id)
    if isinstance(scope, FacultyScope) and course.coordinator_id != scope.profile_id:
        raise AuthorizationError("Insufficient permissions to update this course")

    if body.name is not None:
        course.name = body.name
    if body.description is not None:
        course.description = body.description
    if body.credits is not None:
        course.credits = body.credits
    if body.courseType is not None:
        course.course_type = body.courseType
    if body.semester is not None:
        course.semester = body.semester
    if body.maxEnrollment is not None:
        if body.maxEnrollment < academics.active_enrollment_count(db, course.id):
            raise ValidationError("Maximum enrollment cannot be below the current enrollment count")
        course.max_enrollment = body.maxEnrollment
    if body.internalWeight is not None or body.externalWeight is not None:
        internal = body.internalWeight if body.internalWeight is not None else course.internal_weight
        external = body.externalWeight if body.externalWeight is not None else course.external_weight
        check_weights(internal, external)
        course.internal_weight = internal
        course.external_weight = external
    if body.coordinatorId is not None:
        load_faculty_members(db, [body.coordinatorId], "Invalid coordinator faculty ID")
        course.coordinator_id = body.coordinatorId
    if body.instructorIds is not None:
        course.instructors = load_faculty_members(
            db, body.instructorIds, "One or more instructor faculty IDs are invalid"
        )
    if body.prerequisiteIds is not None:
        course.prerequisites = load_prerequisites(db, body.prerequisiteIds, course.id)
    if body.status is not None:
        course.status = body.status
    course.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(course)

    annotate_audit(request, resource_id=course.id, description=f"Course updated: {course.code}")
    logger.info(f"Course updated by user: {current_user.id}, course: {course.id}")
    return success_response(
        "Course updated successfully",
        data=course_to_dict(course, enrollment_count=academics.active_enrollment_count(db, course.id)),
    )


@router.delete("/{course_id}")
async def delete_course(
    course_id: int,
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    course = get_course_or_404(db, course_id)
    if academics.active_enrollment_count(db, course.id) > 0:
        raise ValidationError("Cannot delete course with active enrollments")

    graded = db.query(Enrollment.id).filter(
        Enrollment.course_id == course.id,
        Enrollment.status.in_([EnrollmentStatus.COMPLETED, EnrollmentStatus.FAILED]),
    ).first()
    attended = db.query(Attendance.id).filter(Attendance.course_id == course.id).first()
    if graded or attended:
        raise ValidationError("Cannot delete course with grade or attendance history; set its status to inactive instead")

    code = course.code
    # Only withdrawn enrollments remain here; they go with the course, as do prerequisite links
    db.query(Enrollment).filter(Enrollment.course_id == course.id).delete(synchronize_session=False)
    db.execute(delete(course_prerequisites).where(course_prerequisites.c.prerequisite_id == course.id))
    db.query(TimetablePeriod).filter(TimetablePeriod.course_id == course.id).update(
        {TimetablePeriod.course_id: None}, synchronize_session=False
    )
    db.delete(course)
    db.commit()

    annotate_audit(request, resource_id=course_id, description=f"Course deleted: {code}")
    logger.info(f"Course deleted by user: {current_user.id}, course: {code}")
    return success_response("Course deleted successfully")


@router.get("/{course_id}/syllabus")
async def fetch_course_syllabus(
    course_id: int,
    current_user: User = Depends(require_authenticated),
    db: Session = Depends(get_db_session)
):
    course = get_course_or_404(db, course_id)
    return success_response(
        "Syllabus retrieved successfully",
        data={"course": {"id": course.id, "code": course.code, "name": course.name}, "syllabus": course.syllabus},
    )


@router.put("/{course_id}/syllabus")
async def update_course_syllabus(
    course_id: int,
    body: SyllabusUpdate,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    course = get_course_or_404(db, course_id)
    if not can_access_course(scope, course.id):
        raise AuthorizationError("Insufficient permissions to update syllabus")

    course.syllabus = body.syllabus
    course.updated_at = datetime.utcnow()
    db.commit()

    annotate_audit(request, resource_id=course.id, description=f"Syllabus updated for course {course.code}")
    logger.info(f"Syllabus updated by user: {current_user.id}, course: {course.id}")
    return success_response("Syllabus updated successfully", data={"syllabus": course.syllabus})


@router.get("/{course_id}/enrollments")
async def fetch_course_enrollments(
    course_id: int,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    course = get_course_or_404(db, course_id)
    if not can_access_course(scope, course.id):
        raise AuthorizationError("Access denied for this course")

    query = db.query(Enrollment).filter(Enrollment.course_id == course.id)
    status_enum = parse_enum(EnrollmentStatus, status_filter, "status")
    if status_enum:
        query = query.filter(Enrollment.status == status_enum)
    enrollments, pagination = paginate(query.order_by(Enrollment.enrolled_at.desc()), page, limit)

    return paginated_response(
        "Course enrollments retrieved successfully",
        [enrollment_to_dict(e, include_student=True) for e in enrollments],
        pagination,
    )


@router.post("/{course_id}/enroll", status_code=status.HTTP_201_CREATED)
async def enroll_student(
    course_id: int,
    request: Request,
    body: Optional[EnrollRequest] = None,
    current_user: User = Depends(require_admin_or_student),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    body = body or EnrollRequest()
    student = subject_student(db, scope, body.studentId)
    enrollment = academics.enroll_student(db, student, course_id, body.academicYear)
    db.commit()
    db.refresh(enrollment)

    annotate_audit(
        request,
        resource_id=enrollment.id,
        resource_type="Enrollment",
        description=f"Student {student.roll_number} enrolled in course {enrollment.course.code}",
    )
    logger.info(f"Student {student.id} enrolled in course {course_id} by user: {current_user.id}")
    return success_response("Student enrolled successfully", data=enrollment_to_dict(enrollment, include_student=True))


@router.delete("/{course_id}/withdraw")
async def withdraw_student(
    course_id: int,
    request: Request,
    student_id: Optional[int] = Query(None, alias="studentId"),
    current_user: User = Depends(require_admin_or_student),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    student = subject_student(db, scope, student_id)
    enrollment = db.query(Enrollment).filter(
        Enrollment.student_id == student.id,
        Enrollment.course_id == course_id,
        Enrollment.status == EnrollmentStatus.ACTIVE
    ).first()
    if not enrollment:
        raise NotFoundError("Active enrollment not found")

    enrollment.status = EnrollmentStatus.WITHDRAWN
    enrollment.withdrawn_at = datetime.utcnow()
    db.commit()
    db.refresh(enrollment)

    annotate_audit(
        request,
        action=AuditAction.UPDATE,
        resource_id=enrollment.id,
        resource_type="Enrollment",
        description=f"Student {student.roll_number} withdrew from course {course_id}",
    )
    logger.info(f"Student {student.id} withdrawn from course {course_id} by user: {current_user.id}")
    return success_response("Student withdrawn successfully", data=enrollment_to_dict(enrollment))
