"""
Audit logging service for security and compliance.

Mutating endpoints are audited automatically: routers built with
``audited_route(resource_type)`` as their ``route_class`` write one AuditLog
row for every successful POST/PUT/PATCH/DELETE. Handlers refine the entry with
``annotate_audit``.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union

from fastapi import Request, Response
from fastapi.routing import APIRoute
from sqlalchemy.orm import Session

from database.models import AuditAction, AuditLog, AuditStatus
from core.logger import logger
import config

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

METHOD_ACTIONS = {
    "POST": AuditAction.CREATE,
    "PUT": AuditAction.UPDATE,
    "PATCH": AuditAction.UPDATE,
    "DELETE": AuditAction.DELETE,
}


class AuditService:
    """Service for audit logging."""

    @staticmethod
    def log_action(
        db: Session,
        action: Union[AuditAction, str],
        user_id: Optional[int] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        description: Optional[str] = None,
        status: AuditStatus = AuditStatus.SUCCESS,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_method: Optional[str] = None,
        request_path: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """
        Log an action to audit log.

        Args:
            db: Database session
            action: One of AuditAction (CREATE, UPDATE, LOGIN, ...)
            user_id: Acting user ID
            resource_type: Type of resource (e.g., "Course", "Fee")
            resource_id: ID of resource
            description: Human readable summary
            status: success, failure or error
            ip_address: IP address
            user_agent: User agent string
            request_method: HTTP method
            request_path: Request path
            details: Additional details

        Returns:
            Created AuditLog
        """
        now = datetime.utcnow()
        audit_log = AuditLog(
            user_id=user_id,
            action=AuditAction(action),
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            description=description[:500] if description else None,
            status=status,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            request_method=request_method,
            request_path=request_path,
            details=details,
            created_at=now,
            expires_at=now + timedelta(days=config.AUDIT_RETENTION_DAYS),
        )
        db.add(audit_log)
        db.commit()
        return audit_log

    @staticmethod
    def log_from_request(
        db: Session,
        request: Request,
        action: Union[AuditAction, str],
        user_id: Optional[int] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        description: Optional[str] = None,
        status: AuditStatus = AuditStatus.SUCCESS,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """
        Log an action from a FastAPI request (captures IP, user agent, method and path).
        """
        return AuditService.log_action(
            db=db,
            action=action,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            description=description,
            status=status,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            request_method=request.method,
            request_path=request.url.path,
            details=details,
        )

    @staticmethod
    def safe_log_from_request(db: Session, request: Request, **kwargs) -> Optional[AuditLog]:
        """Like ``log_from_request`` but never raises: audit failures must not fail the request."""
        try:
            return AuditService.log_from_request(db, request, **kwargs)
        except Exception as e:
            logger.error(f"Failed to write audit log for {request.method} {request.url.path}: {e}", exc_info=True)
            db.rollback()
            return None

    @staticmethod
    def purge_expired(db: Session) -> int:
        """Delete audit entries past their retention window."""
        deleted = db.query(AuditLog).filter(
            AuditLog.expires_at.isnot(None),
            AuditLog.expires_at < datetime.utcnow()
        ).delete(synchronize_session=False)
        db.commit()
        if deleted:
            logger.info(f"Purged {deleted} expired audit log entries")
        return deleted


def annotate_audit(
    request: Request,
    action: Optional[AuditAction] = None,
    resource_id: Optional[Any] = None,
    description: Optional[str] = None,
    resource_type: Optional[str] = None,
    user_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    skip: bool = False,
):
    """Attach audit details to the current request for the route-level audit writer."""
    annotation = getattr(request.state, "audit", None) or {}
    for key, value in (
        ("action", action),
        ("resource_id", resource_id),
        ("description", description),
        ("resource_type", resource_type),
        ("user_id", user_id),
        ("details", details),
    ):
        if value is not None:
            annotation[key] = value
    if skip:
        annotation["skip"] = True
    request.state.audit = annotation


def record_request_audit(request: Request, resource_type: Optional[str]):
    """Write the audit row for a successful mutating request."""
    annotation = getattr(request.state, "audit", None) or {}
    if annotation.get("skip"):
        return

    resource_id = annotation.get("resource_id")
    if resource_id is None and request.path_params:
        resource_id = next(iter(request.path_params.values()))

    kwargs = dict(
        action=annotation.get("action") or METHOD_ACTIONS[request.method],
        user_id=annotation.get("user_id") or getattr(request.state, "user_id", None),
        resource_type=annotation.get("resource_type") or resource_type,
        resource_id=resource_id,
        description=annotation.get("description") or f"{request.method} {request.url.path}",
        details=annotation.get("details"),
    )

    db = getattr(request.state, "db", None)
    if db is not None:
        AuditService.safe_log_from_request(db, request, **kwargs)
        return

    try:
        with config.db.get_session() as session:
            AuditService.log_from_request(session, request, **kwargs)
    except Exception as e:
        logger.error(f"Failed to write audit log for {request.method} {request.url.path}: {e}", exc_info=True)


class AuditedRoute(APIRoute):
    """APIRoute that audits every successful mutating request."""

    resource_type: Optional[str] = None

    def get_route_handler(self) -> Callable:
        original_handler = super().get_route_handler()
        resource_type = self.resource_type

        async def audited_handler(request: Request) -> Response:
            response = await original_handler(request)
            if request.method in MUTATING_METHODS and 200 <= response.status_code < 300:
                record_request_audit(request, resource_type)
            return response

        return audited_handler


def audited_route(resource_type: str) -> type:
    """Route class for a router whose mutations concern ``resource_type``."""
    return type(f"{resource_type}AuditedRoute", (AuditedRoute,), {"resource_type": resource_type})
