"""
Notice board APIs: targeted listing, read tracking, publishing and statistics.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from auth.dependencies import get_db_session, get_role_scope, require_admin_or_faculty, require_authenticated
from core.errors import AuthorizationError, NotFoundError, ValidationError
from core.responses import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, paginate, paginated_response, success_response
from core.validators import parse_enum
from database.models import (
    Department, Notice, NoticeAudience, NoticeCategory, NoticePriority, NoticeStatus, NoticeTarget, NoticeView,
    User,
)
from services import notice_service
from services.audit_service import annotate_audit, audited_route
from services.scope import AdminScope, RoleScope, apply_search
from services.serializers import notice_to_dict, user_summary
from core.logger import logger


router = APIRouter(prefix="/api/notices", tags=["notices"], route_class=audited_route("Notice"))


class NoticeCreate(BaseModel):
    title: str
    content: str
    category: NoticeCategory = NoticeCategory.GENERAL
    priority: NoticePriority = NoticePriority.MEDIUM
    status: NoticeStatus = NoticeStatus.PUBLISHED
    targetRoles: Optional[List[NoticeAudience]] = None
    targetDepartments: Optional[List[int]] = None
    publishDate: Optional[datetime] = None
    expiryDate: Optional[datetime] = None
    isPinned: bool = False


class NoticeUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[NoticeCategory] = None
    priority: Optional[NoticePriority] = None
    status: Optional[NoticeStatus] = None
    targetRoles: Optional[List[NoticeAudience]] = None
    targetDepartments: Optional[List[int]] = None
    publishDate: Optional[datetime] = None
    expiryDate: Optional[datetime] = None
    isPinned: Optional[bool] = None


def build_targets(db: Session, roles: Optional[List[NoticeAudience]], departments: Optional[List[int]]) -> List[NoticeTarget]:
    departments = sorted(set(departments or []))
    if departments:
        found = db.query(func.count(Department.id)).filter(Department.id.in_(departments)).scalar()
        if found != len(departments):
            raise ValidationError("One or more invalid department IDs")
    roles = list(dict.fromkeys(roles or []))
    if not roles and not departments:
        roles = [NoticeAudience.ALL]
    return (
        [NoticeTarget(audience=role) for role in roles]
        + [NoticeTarget(department_id=department_id) for department_id in departments]
    )


def check_dates(publish_date: Optional[datetime], expiry_date: Optional[datetime]):
    if expiry_date and publish_date and expiry_date <= publish_date:
        raise ValidationError("Expiry date must be after publish date")


def get_notice_or_404(db: Session, notice_id: int) -> Notice:
    notice = db.query(Notice).filter(Notice.id == notice_id, Notice.status != NoticeStatus.DELETED).first()
    if not notice:
        raise NotFoundError("Notice not found")
    return notice


def readable_notice(db: Session, scope: RoleScope, user: User, notice_id: int) -> Notice:
    notice = get_notice_or_404(db, notice_id)
    if notice.published_by == user.id:
        return notice
    visible = notice_service.visible_notices(db, scope, user.role).filter(Notice.id == notice.id).first()
    if not visible:
        raise AuthorizationError("Access denied for this notice")
    return notice


def editable_notice(db: Session, scope: RoleScope, user: User, notice_id: int, verb: str) -> Notice:
    notice = get_notice_or_404(db, notice_id)
    if not isinstance(scope, AdminScope) and notice.published_by != user.id:
        raise AuthorizationError(f"Insufficient permissions to {verb} this notice")
    return notice


@router.get("")
async def list_notices(
    category: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    unread_only: bool = Query(False, alias="unreadOnly"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = notice_service.visible_notices(db, scope, current_user.role)
    category_enum = parse_enum(NoticeCategory, category, "category")
    if category_enum:
        query = query.filter(Notice.category == category_enum)
    priority_enum = parse_enum(NoticePriority, priority, "priority")
    if priority_enum:
        query = query.filter(Notice.priority == priority_enum)
    query = apply_search(query, search, Notice.title, Notice.content)
    if unread_only:
        query = notice_service.unread_filter(query, current_user.id)

    notices, pagination = paginate(notice_service.ordered(query), page, limit)
    logger.info(f"Notices fetched by user: {current_user.id}")
    return paginated_response(
        "Notices retrieved successfully",
        [notice_to_dict(n, user_id=current_user.id) for n in notices],
        pagination,
    )


@router.get("/unread-count")
async def fetch_unread_notices_count(
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = notice_service.visible_notices(db, scope, current_user.role)
    count = notice_service.unread_filter(query, current_user.id).count()
    return success_response("Unread notices count retrieved successfully", data={"unreadCount": count})


@router.get("/stats")
async def fetch_notice_statistics(
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    """Admins see every notice; faculty only the ones they published."""
    base = db.query(Notice).filter(Notice.status != NoticeStatus.DELETED)
    if not isinstance(scope, AdminScope):
        base = base.filter(Notice.published_by == current_user.id)

    rows = base.with_entities(Notice.id, Notice.status, Notice.category, Notice.priority, Notice.publish_date).all()
    notice_ids = [row[0] for row in rows]
    view_counts = dict(
        db.query(NoticeView.notice_id, func.count(NoticeView.id))
        .filter(NoticeView.notice_id.in_(notice_ids))
        .group_by(NoticeView.notice_id)
        .all()
    ) if notice_ids else {}

    total = len(rows)
    total_views = sum(view_counts.values())

    def grouped(index):
        counts, views = Counter(), Counter()
        for row in rows:
            key = row[index].value
            counts[key] += 1
            views[key] += view_counts.get(row[0], 0)
        return [{"value": key, "count": count, "totalViews": views[key]} for key, count in counts.most_common()]

    since = datetime.utcnow() - timedelta(days=30)
    daily = Counter(row[4].date().isoformat() for row in rows if row[4] >= since)

    top_ids = [notice_id for notice_id, _ in Counter(view_counts).most_common(5)]
    top = {n.id: n for n in db.query(Notice).filter(Notice.id.in_(top_ids)).all()} if top_ids else {}

    logger.info(f"Notice statistics fetched by user: {current_user.id}")
    return success_response(
        "Notice statistics retrieved successfully",
        data={
            "overall": {
                "totalNotices": total,
                "urgentNotices": sum(1 for row in rows if row[3] == NoticePriority.URGENT),
                "totalViews": total_views,
                "avgViewsPerNotice": round(total_views / total, 2) if total else 0,
            },
            "byStatus": grouped(1),
            "byCategory": grouped(2),
            "byPriority": grouped(3),
            "recentActivity": [{"date": day, "count": daily[day]} for day in sorted(daily)],
            "topNotices": [
                {
                    "id": top[notice_id].id,
                    "title": top[notice_id].title,
                    "category": top[notice_id].category.value,
                    "views": view_counts[notice_id],
                    "publishDate": top[notice_id].publish_date,
                    "publishedBy": user_summary(top[notice_id].publisher),
                }
                for notice_id in top_ids if notice_id in top
            ],
        },
    )


@router.get("/my-notices")
async def fetch_my_notices(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin_or_faculty),
    db: Session = Depends(get_db_session)
):
    query = db.query(Notice).filter(Notice.published_by == current_user.id, Notice.status != NoticeStatus.DELETED)
    status_enum = parse_enum(NoticeStatus, status_filter, "status")
    if status_enum:
        query = query.filter(Notice.status == status_enum)

    notices, pagination = paginate(query.order_by(Notice.created_at.desc(), Notice.id.desc()), page, limit)
    logger.info(f"Own notices fetched by user: {current_user.id}")
    return paginated_response("My notices retrieved successfully", [notice_to_dict(n) for n in notices], pagination)


@router.get("/{notice_id}")
async def fetch_notice_details(
    notice_id: int,
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    notice = readable_notice(db, scope, current_user, notice_id)
    if notice_service.record_view(db, notice, current_user.id):
        db.commit()
        db.refresh(notice)
    logger.info(f"Notice details fetched by user: {current_user.id}, notice: {notice.id}")
    return success_response("Notice details retrieved successfully", data=notice_to_dict(notice, user_id=current_user.id))


@router.post("/{notice_id}/read")
async def mark_notice_as_read(
    notice_id: int,
    request: Request,
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    notice = readable_notice(db, scope, current_user, notice_id)
    first_view = notice_service.record_view(db, notice, current_user.id)
    db.commit()

    annotate_audit(request, skip=True)
    return success_response(
        "Notice marked as read",
        data={"noticeId": notice.id, "isRead": True, "firstView": first_view},
    )


@router.post("", status_code=201)
async def create_notice(
    body: NoticeCreate,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    db: Session = Depends(get_db_session)
):
    if not body.title.strip() or not body.content.strip():
        raise ValidationError("Title and content are required")
    if body.status == NoticeStatus.DELETED:
        raise ValidationError("Invalid notice status")
    publish_date = body.publishDate or datetime.utcnow()
    check_dates(publish_date, body.expiryDate)

    notice = Notice(
        title=body.title.strip(),
        content=body.content,
        category=body.category,
        priority=body.priority,
        status=body.status,
        is_pinned=body.isPinned,
        publish_date=publish_date,
        expiry_date=body.expiryDate,
        published_by=current_user.id,
        targets=build_targets(db, body.targetRoles, body.targetDepartments),
    )
    db.add(notice)
    db.commit()
    db.refresh(notice)

    annotate_audit(request, resource_id=notice.id, description=f"Created notice: {notice.title}")
    logger.info(f"Notice created by user: {current_user.id}, notice: {notice.id}")
    return success_response("Notice created successfully", data=notice_to_dict(notice))


@router.put("/{notice_id}")
async def update_notice(
    notice_id: int,
    body: NoticeUpdate,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    notice = editable_notice(db, scope, current_user, notice_id, "update")
    if body.status == NoticeStatus.DELETED:
        raise ValidationError("Use DELETE to remove a notice")

    for field, attr in (
        ("title", "title"),
        ("content", "content"),
        ("category", "category"),
        ("priority", "priority"),
        ("status", "status"),
        ("publishDate", "publish_date"),
        ("expiryDate", "expiry_date"),
        ("isPinned", "is_pinned"),
    ):
        value = getattr(body, field)
        if value is not None:
            setattr(notice, attr, value)
    check_dates(notice.publish_date, notice.expiry_date)

    if body.targetRoles is not None or body.targetDepartments is not None:
        roles = body.targetRoles
        departments = body.targetDepartments
        if roles is None:
            roles = [t.audience for t in notice.targets if t.audience is not None]
        if departments is None:
            departments = [t.department_id for t in notice.targets if t.department_id is not None]
        notice.targets = build_targets(db, roles, departments)

    notice.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(notice)

    annotate_audit(request, resource_id=notice.id, description=f"Updated notice: {notice.title}")
    logger.info(f"Notice updated by user: {current_user.id}, notice: {notice.id}")
    return success_response("Notice updated successfully", data=notice_to_dict(notice))


@router.delete("/{notice_id}")
async def delete_notice(
    notice_id: int,
    request: Request,
    current_user: User = Depends(require_admin_or_faculty),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    notice = editable_notice(db, scope, current_user, notice_id, "delete")
    notice.status = NoticeStatus.DELETED
    notice.is_pinned = False
    notice.updated_at = datetime.utcnow()
    db.commit()

    annotate_audit(request, resource_id=notice.id, description=f"Deleted notice: {notice.title}")
    logger.info(f"Notice deleted by user: {current_user.id}, notice: {notice.id}")
    return success_response("Notice deleted successfully")
