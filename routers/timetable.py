"""
Timetable APIs: scoped listing, draft/approval lifecycle, exports and conflict checks.
"""
from datetime import date, datetime
from typing import List, Optional
import csv
import io

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm import Session

from auth.dependencies import (
    get_db_session, get_role_scope, require_admin, require_admin_or_faculty, require_authenticated, require_faculty,
)
from core.errors import AuthorizationError, NotFoundError, ValidationError
from core.responses import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, paginate, paginated_response, success_response
from core.validators import parse_enum, time_to_minutes
from database.models import (
    AuditAction, Department, SessionType, Timetable, TimetablePeriod, TimetableStatus, TimetableType, User, Weekday,
)
from routers.faculty import taught_periods
from services import timetable_service
from services.audit_service import annotate_audit, audited_route
from services.scope import AdminScope, FacultyScope, RoleScope, StudentScope
from services.serializers import period_to_dict, timetable_to_dict
from core.logger import logger


router = APIRouter(prefix="/api/timetable", tags=["timetable"], route_class=audited_route("Timetable"))


class PeriodIn(BaseModel):
    day: Weekday
    periodNumber: int = Field(..., ge=1)
    startTime: str
    endTime: str
    courseId: Optional[int] = None
    facultyId: Optional[int] = None
    room: Optional[str] = None
    sessionType: SessionType = SessionType.LECTURE
    isBreak: bool = False


class TimetableCreate(BaseModel):
    departmentId: int
    semester: int = Field(..., ge=1, le=8)
    academicYear: str
    batch: Optional[str] = None
    type: TimetableType = TimetableType.REGULAR
    effectiveFrom: Optional[date] = None
    effectiveTo: Optional[date] = None
    schedule: List[PeriodIn] = []


class TimetableUpdate(BaseModel):
    batch: Optional[str] = None
    effectiveFrom: Optional[date] = None
    effectiveTo: Optional[date] = None
    schedule: Optional[List[PeriodIn]] = None


def _padded(value: str) -> str:
    minutes = time_to_minutes(value)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def build_periods(db: Session, schedule: List[PeriodIn]) -> List[TimetablePeriod]:
    """Validated, not yet attached period rows."""
    periods = [
        TimetablePeriod(
            day=p.day,
            period_number=p.periodNumber,
            start_time=p.startTime.strip(),
            end_time=p.endTime.strip(),
            course_id=p.courseId,
            faculty_id=p.facultyId,
            room=p.room,
            session_type=p.sessionType,
            is_break=p.isBreak,
        )
        for p in schedule
    ]
    timetable_service.validate_periods(periods)
    timetable_service.validate_references(db, periods)
    for period in periods:
        period.start_time = _padded(period.start_time)
        period.end_time = _padded(period.end_time)
    return periods


def check_effective_range(start: Optional[date], end: Optional[date]):
    if start and end and end < start:
        raise ValidationError("Effective end date must be on or after the start date")


def get_timetable_or_404(db: Session, timetable_id: int) -> Timetable:
    timetable = db.query(Timetable).filter(Timetable.id == timetable_id).first()
    if not timetable:
        raise NotFoundError("Timetable not found")
    return timetable


def can_view(scope: RoleScope, timetable: Timetable) -> bool:
    if isinstance(scope, AdminScope):
        return True
    if isinstance(scope, StudentScope):
        return (
            timetable.is_active
            and timetable.department_id == scope.department_id
            and timetable.semester == scope.semester
        )
    if isinstance(scope, FacultyScope):
        return timetable.department_id == scope.department_id
    return False


def viewable_timetable(db: Session, scope: RoleScope, timetable_id: int) -> Timetable:
    timetable = get_timetable_or_404(db, timetable_id)
    if not can_view(scope, timetable):
        raise AuthorizationError("Access denied for this timetable")
    return timetable


def editable_timetable(db: Session, scope: RoleScope, timetable_id: int) -> Timetable:
    timetable = get_timetable_or_404(db, timetable_id)
    if isinstance(scope, FacultyScope) and timetable.department_id != scope.department_id:
        raise AuthorizationError("Access denied for this timetable")
    return timetable


@router.get("")
async def fetch_timetables(
    department: Optional[int] = Query(None),
    semester: Optional[int] = Query(None),
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    status_filter: Optional[str] = Query(None, alias="status"),
    timetable_type: Optional[str] = Query(None, alias="type"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = db.query(Timetable)

    if isinstance(scope, StudentScope):
        query = query.filter(
            Timetable.department_id == scope.department_id,
            Timetable.semester == scope.semester,
            Timetable.is_active == True
        )
    else:
        if isinstance(scope, FacultyScope):
            query = query.filter(Timetable.department_id == scope.department_id)
        elif department:
            query = query.filter(Timetable.department_id == department)
        if semester:
            query = query.filter(Timetable.semester == semester)
        status_enum = parse_enum(TimetableStatus, status_filter, "status")
        if status_enum:
            query = query.filter(Timetable.status == status_enum)
        if is_active is not None:
            query = query.filter(Timetable.is_active == is_active)

    if academic_year:
        query = query.filter(Timetable.academic_year == academic_year)
    type_enum = parse_enum(TimetableType, timetable_type, "type")
    if type_enum:
        query = query.filter(Timetable.timetable_type == type_enum)

    timetables, pagination = paginate(
        query.order_by(Timetable.academic_year.desc(), Timetable.semester.desc(), Timetable.id.desc()),
        page,
        limit,
    )
    logger.info(f"Timetable fetched by user: {current_user.id}")
    return paginated_response("Timetable retrieved successfully", [timetable_to_dict(t) for t in timetables], pagination)


@router.get("/conflicts")
async def check_schedule_conflicts(
    department: Optional[int] = Query(None),
    semester: Optional[int] = Query(None),
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    current_user: User = Depends(require_admin_or_faculty),
    db: Session = Depends(get_db_session)
):
    """Double-booked faculty and rooms among active and pending timetables."""
    query = db.query(Timetable).filter(
        or_(Timetable.is_active == True, Timetable.status == TimetableStatus.PENDING_APPROVAL)
    )
    if department:
        query = query.filter(Timetable.department_id == department)
    if semester:
        query = query.filter(Timetable.semester == semester)
    if academic_year:
        query = query.filter(Timetable.academic_year == academic_year)
    timetable_ids = [t.id for t in query.with_entities(Timetable.id).all()]

    periods = db.query(TimetablePeriod).filter(
        TimetablePeriod.timetable_id.in_(timetable_ids),
        TimetablePeriod.is_break == False
    ).order_by(TimetablePeriod.timetable_id, TimetablePeriod.id).all() if timetable_ids else []
    conflicts = timetable_service.detect_conflicts(periods)

    logger.info(f"Schedule conflicts checked by user: {current_user.id}")
    return success_response(
        "Schedule conflicts retrieved successfully",
        data={"timetablesChecked": len(timetable_ids), "totalConflicts": len(conflicts), "conflicts": conflicts},
    )


@router.get("/my-schedule")
async def fetch_my_schedule(
    current_user: User = Depends(require_faculty),
    scope: FacultyScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    periods = taught_periods(db, scope.profile_id)
    logger.info(f"Personal schedule fetched by user: {current_user.id}")
    return success_response(
        "Schedule retrieved successfully",
        data={
            "schedule": timetable_service.group_by_day(periods, period_to_dict),
            "statistics": timetable_service.timetable_stats(periods),
        },
    )


@router.get("/{timetable_id}")
async def fetch_timetable_details(
    timetable_id: int,
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    timetable = viewable_timetable(db, scope, timetable_id)
    logger.info(f"Timetable details fetched by user: {current_user.id}, timetable: {timetable.id}")
    return success_response(
        "Timetable details retrieved successfully",
        data={
            "timetable": timetable_to_dict(timetable),
            "statistics": timetable_service.timetable_stats([p for p in timetable.periods if not p.is_break]),
        },
    )


@router.get("/{timetable_id}/export")
async def export_timetable(
    timetable_id: int,
    export_format: str = Query("json", alias="format"),
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    timetable = viewable_timetable(db, scope, timetable_id)
    if export_format not in ("json", "csv"):
        raise ValidationError("Invalid export format")
    grid = timetable_service.group_by_day(timetable.periods, period_to_dict)
    logger.info(f"Timetable exported by user: {current_user.id}, timetable: {timetable.id}, format: {export_format}")

    if export_format == "csv":
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["Day", "Period", "Start", "End", "Course Code", "Course", "Faculty", "Room", "Session"])
        for day, periods in grid.items():
            for period in periods:
                course = period["course"] or {}
                faculty = period["faculty"] or {}
                writer.writerow([
                    day,
                    period["periodNumber"],
                    period["startTime"],
                    period["endTime"],
                    course.get("code", ""),
                    "Break" if period["isBreak"] else course.get("name", ""),
                    faculty.get("name", ""),
                    period["room"] or "",
                    period["sessionType"],
                ])
        filename = f"timetable_{timetable.id}_v{timetable.version}.csv"
        return Response(
            content=buffer.getvalue(),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return success_response(
        "Timetable exported successfully",
        data={
            "format": export_format,
            "exportedAt": datetime.utcnow(),
            "data": {**timetable_to_dict(timetable, include_periods=False), "grid": grid},
        },
    )


@router.post("", status_code=201)
async def create_timetable(
    body: TimetableCreate,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    if not db.query(Department.id).filter(Department.id == body.departmentId).first():
        raise ValidationError("Invalid department ID")
    if isinstance(scope, FacultyScope) and body.departmentId != scope.department_id:
        raise AuthorizationError("Access denied for this timetable")
    check_effective_range(body.effectiveFrom, body.effectiveTo)
    if timetable_service.active_timetable_exists(
        db, body.departmentId, body.semester, body.academicYear.strip(), body.type
    ):
        raise ValidationError("Active timetable already exists for this combination")

    timetable = Timetable(
        department_id=body.departmentId,
        semester=body.semester,
        academic_year=body.academicYear.strip(),
        batch=body.batch,
        timetable_type=body.type,
        status=TimetableStatus.DRAFT,
        is_active=False,
        version=1,
        effective_from=body.effectiveFrom,
        effective_to=body.effectiveTo,
        created_by=current_user.id,
        periods=build_periods(db, body.schedule),
    )
    db.add(timetable)
    db.commit()
    db.refresh(timetable)

    annotate_audit(
        request,
        resource_id=timetable.id,
        description=f"Created timetable for semester {timetable.semester}, {timetable.academic_year}",
    )
    logger.info(f"Timetable created by user: {current_user.id}, timetable: {timetable.id}")
    return success_response("Timetable created successfully", data=timetable_to_dict(timetable))


@router.put("/{timetable_id}")
async def update_timetable(
    timetable_id: int,
    body: TimetableUpdate,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    timetable = editable_timetable(db, scope, timetable_id)
    if timetable.status == TimetableStatus.APPROVED and not isinstance(scope, AdminScope):
        raise AuthorizationError("Cannot update approved timetable")
    if timetable.status == TimetableStatus.ARCHIVED:
        raise ValidationError("Archived timetables cannot be modified")

    if body.batch is not None:
        timetable.batch = body.batch
    if body.effectiveFrom is not None:
        timetable.effective_from = body.effectiveFrom
    if body.effectiveTo is not None:
        timetable.effective_to = body.effectiveTo
    check_effective_range(timetable.effective_from, timetable.effective_to)

    if body.schedule is not None:
        timetable.periods = build_periods(db, body.schedule)
        timetable.version += 1
        if timetable.status == TimetableStatus.APPROVED:
            timetable.status = TimetableStatus.PENDING_APPROVAL
            timetable.approved_by = None
            timetable.approved_at = None

    timetable.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(timetable)

    annotate_audit(request, resource_id=timetable.id, description=f"Updated timetable (version {timetable.version})")
    logger.info(f"Timetable updated by user: {current_user.id}, timetable: {timetable.id}")
    return success_response("Timetable updated successfully", data=timetable_to_dict(timetable))


@router.post("/{timetable_id}/submit")
async def submit_timetable(
    timetable_id: int,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    timetable = editable_timetable(db, scope, timetable_id)
    if timetable.status != TimetableStatus.DRAFT:
        raise ValidationError("Only draft timetables can be submitted for approval")
    if not timetable.periods:
        raise ValidationError("Cannot submit an empty timetable")

    timetable.status = TimetableStatus.PENDING_APPROVAL
    timetable.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(timetable)

    annotate_audit(
        request,
        action=AuditAction.UPDATE,
        resource_id=timetable.id,
        description="Submitted timetable for approval",
    )
    logger.info(f"Timetable submitted by user: {current_user.id}, timetable: {timetable.id}")
    return success_response("Timetable submitted for approval", data=timetable_to_dict(timetable))


@router.post("/{timetable_id}/approve")
async def approve_timetable(
    timetable_id: int,
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    timetable = get_timetable_or_404(db, timetable_id)
    if timetable.status == TimetableStatus.ARCHIVED:
        raise ValidationError("Archived timetables cannot be approved")
    timetable = timetable_service.approve_timetable(db, timetable, current_user.id)

    annotate_audit(
        request,
        action=AuditAction.UPDATE,
        resource_id=timetable.id,
        description=f"Approved timetable for semester {timetable.semester}, {timetable.academic_year}",
    )
    logger.info(f"Timetable approved by user: {current_user.id}, timetable: {timetable.id}")
    return success_response("Timetable approved successfully", data=timetable_to_dict(timetable))
