"""
Notice targeting and read tracking.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from database.models import Notice, NoticeAudience, NoticeStatus, NoticeTarget, NoticeView, UserRole
from services.scope import AdminScope, FacultyScope, RoleScope, StudentScope


def scope_department(scope: RoleScope) -> Optional[int]:
    if isinstance(scope, (StudentScope, FacultyScope)):
        return scope.department_id
    return None


def visible_notices(db: Session, scope: RoleScope, role: UserRole, now: Optional[datetime] = None) -> Query:
    """
    Notices the caller can read: published, already live, not expired and
    targeted at everyone, the caller's role or the caller's department.
    Administrators see every non-deleted notice.
    """
    now = now or datetime.utcnow()
    query = db.query(Notice)
    if isinstance(scope, AdminScope):
        return query.filter(Notice.status != NoticeStatus.DELETED)

    query = query.filter(
        Notice.status == NoticeStatus.PUBLISHED,
        Notice.publish_date <= now,
        or_(Notice.expiry_date.is_(None), Notice.expiry_date > now),
    )

    matches = [
        NoticeTarget.audience == NoticeAudience.ALL,
        NoticeTarget.audience == NoticeAudience(role.value),
    ]
    department_id = scope_department(scope)
    if department_id is not None:
        matches.append(NoticeTarget.department_id == department_id)

    return query.filter(
        or_(
            Notice.targets.any(or_(*matches)),
            ~Notice.targets.any(),
        )
    )


def unread_filter(query: Query, user_id: int) -> Query:
    return query.filter(~Notice.views.any(NoticeView.user_id == user_id))


def record_view(db: Session, notice: Notice, user_id: int) -> bool:
    """
    Log the first view of ``notice`` by ``user_id``.

    Returns:
        True if this was the first view
    """
    exists = db.query(NoticeView.id).filter(
        NoticeView.notice_id == notice.id,
        NoticeView.user_id == user_id
    ).first()
    if exists:
        return False
    try:
        with db.begin_nested():
            db.add(NoticeView(notice_id=notice.id, user_id=user_id, viewed_at=datetime.utcnow()))
    except IntegrityError:
        return False
    return True


def ordered(query: Query) -> Query:
    """Pinned first, then newest."""
    return query.order_by(Notice.is_pinned.desc(), Notice.publish_date.desc(), Notice.id.desc())
