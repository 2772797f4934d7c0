"""
Authentication dependencies for FastAPI.
"""
from typing import List, Optional

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from core.errors import AuthenticationError, AuthorizationError
from database.models import User
from auth.security import security_optional, verify_access_token
from services.scope import RoleScope, resolve_scope
import config


def get_db_session(request: Request):
    """Get database session. The session is also exposed on ``request.state.db`` for the audit trail."""
    if not config.db:
        raise HTTPException(status_code=503, detail="Database not initialized")
    with config.db.get_session() as session:
        request.state.db = session
        yield session


def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Bearer header first, then the ``token`` cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(config.ACCESS_COOKIE_NAME)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security_optional),
    db: Session = Depends(get_db_session)
) -> User:
    """
    Get current authenticated user from the JWT access token.

    Args:
        request: Incoming request (cookie fallback)
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        Current user

    Raises:
        AuthenticationError: No credential, expired or malformed credential,
            user deleted or deactivated since the token was issued
    """
    token = extract_token(request, credentials)
    if not token:
        raise AuthenticationError("Not authorized, no token provided")

    payload = verify_access_token(token)

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    request.state.user = user
    request.state.user_id = user.id
    return user


def require_role(allowed_roles: List[str]):
    """
    Dependency factory for role-based access control.

    Args:
        allowed_roles: List of allowed roles; empty means any authenticated user

    Returns:
        Dependency function
    """
    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if allowed_roles and current_user.role.value not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {', '.join(allowed_roles)}"
            )
        return current_user

    return role_checker


async def get_role_scope(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session)
) -> RoleScope:
    """Caller's role scope, resolved once per request."""
    return resolve_scope(db, current_user)


# Role dependencies
require_admin = require_role(["admin"])
require_student = require_role(["student"])
require_faculty = require_role(["faculty"])
require_admin_or_faculty = require_role(["admin", "faculty"])
require_admin_or_student = require_role(["admin", "student"])
require_library_staff = require_role(["admin", "librarian"])
require_authenticated = require_role([])
