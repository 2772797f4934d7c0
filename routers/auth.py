"""
Authentication endpoints: registration, login, token refresh, password recovery and email verification.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from auth.dependencies import get_current_user, get_db_session
from core.errors import AuthenticationError, ValidationError
from core.responses import success_response
from database.models import AuditAction, AuditStatus, User, UserRole
from middleware.security import client_ip, login_rate_limiter, password_reset_rate_limiter
from services.audit_service import AuditService, annotate_audit, audited_route
from services.auth_service import AuthService
from services.email_service import EmailService
from services.serializers import faculty_to_dict, student_to_dict, user_to_dict
from core.logger import logger
import config


router = APIRouter(prefix="/api/auth", tags=["authentication"], route_class=audited_route("User"))

SELF_REGISTER_ROLES = {UserRole.STUDENT, UserRole.FACULTY}


# Request Models
class RegisterRequest(BaseModel):
    firstName: str
    lastName: str
    email: EmailStr
    password: str
    confirmPassword: str
    role: str = "student"
    phone: Optional[str] = None
    studentData: Optional[Dict[str, Any]] = None
    facultyData: Optional[Dict[str, Any]] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    rememberMe: bool = False


class RefreshTokenRequest(BaseModel):
    refreshToken: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str
    confirmPassword: str


class ChangePasswordRequest(BaseModel):
    currentPassword: str
    newPassword: str
    confirmPassword: Optional[str] = None


def profile_payload(user: User) -> Optional[Dict[str, Any]]:
    profile = AuthService.profile_of(user)
    if profile is None:
        return None
    if user.role == UserRole.STUDENT:
        return student_to_dict(profile, include_user=False)
    return faculty_to_dict(profile, include_user=False)


def set_auth_cookies(response: Response, access_token: str, refresh_token: str, remember_me: bool = False):
    secure = config.ENVIRONMENT == "production"
    response.set_cookie(
        config.ACCESS_COOKIE_NAME,
        access_token,
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=secure,
        samesite="strict",
    )
    days = config.REMEMBER_ME_EXPIRE_DAYS if remember_me else config.REFRESH_TOKEN_EXPIRE_DAYS
    response.set_cookie(
        config.REFRESH_COOKIE_NAME,
        refresh_token,
        max_age=days * 24 * 3600,
        httponly=True,
        secure=secure,
        samesite="strict",
    )


def clear_auth_cookies(response: Response):
    response.delete_cookie(config.ACCESS_COOKIE_NAME)
    response.delete_cookie(config.REFRESH_COOKIE_NAME)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_user(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db_session)
):
    """Self-registration for students and faculty."""
    if body.password != body.confirmPassword:
        raise ValidationError("Passwords do not match")

    try:
        role = UserRole(body.role)
    except ValueError:
        raise ValidationError(f"Invalid role: {body.role}")
    if role not in SELF_REGISTER_ROLES:
        raise ValidationError("Only student and faculty accounts can self-register")

    user = AuthService.create_user(
        db,
        first_name=body.firstName,
        last_name=body.lastName,
        email=body.email,
        password=body.password,
        role=role,
        phone=body.phone,
        student_data=body.studentData,
        faculty_data=body.facultyData,
    )

    access_token, refresh_token = AuthService.issue_session(
        db, user, device_info=request.headers.get("user-agent"), ip_address=client_ip(request)
    )
    set_auth_cookies(response, access_token, refresh_token)

    fm = request.app.state.mail
    verification_token = AuthService.start_email_verification(db, user)
    await EmailService.send_email_verification(user, verification_token, fm)
    await EmailService.send_welcome_email(user, fm)

    annotate_audit(
        request,
        action=AuditAction.CREATE,
        resource_id=user.id,
        user_id=user.id,
        description=f"User registered: {user.email} ({role.value})",
    )
    logger.info(f"New user registered: {user.id} ({role.value})")
    return success_response(
        "User registered successfully",
        data={
            "user": user_to_dict(user),
            "profile": profile_payload(user),
            "token": access_token,
            "refreshToken": refresh_token,
        },
    )


@router.post("/login", dependencies=[Depends(login_rate_limiter)])
async def login_user(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db_session)
):
    """Email and password login."""
    user = AuthService.authenticate_user(db, body.email, body.password)
    if not user:
        logger.warning(f"Failed login for {body.email} from {client_ip(request)}")
        AuditService.safe_log_from_request(
            db,
            request,
            action=AuditAction.LOGIN,
            resource_type="User",
            description=f"Failed login attempt for {body.email}",
            status=AuditStatus.FAILURE,
        )
        raise AuthenticationError("Invalid email or password")

    if not user.is_active:
        AuditService.safe_log_from_request(
            db,
            request,
            action=AuditAction.LOGIN,
            user_id=user.id,
            resource_type="User",
            resource_id=user.id,
            description="Login attempt on inactive account",
            status=AuditStatus.FAILURE,
        )
        raise AuthenticationError("Account is inactive. Please contact administrator")

    AuthService.record_login(db, user)
    access_token, refresh_token = AuthService.issue_session(
        db,
        user,
        remember_me=body.rememberMe,
        device_info=request.headers.get("user-agent"),
        ip_address=client_ip(request),
    )
    set_auth_cookies(response, access_token, refresh_token, body.rememberMe)

    annotate_audit(
        request,
        action=AuditAction.LOGIN,
        resource_id=user.id,
        user_id=user.id,
        description=f"User logged in: {user.email}",
    )
    logger.info(f"User logged in: {user.id}")
    return success_response(
        "Login successful",
        data={
            "user": user_to_dict(user),
            "profile": profile_payload(user),
            "token": access_token,
            "refreshToken": refresh_token,
        },
    )


@router.post("/refresh-token")
async def refresh_access_token(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
    db: Session = Depends(get_db_session)
):
    """Rotate the refresh token and issue a new access token."""
    token = (body.refreshToken if body else None) or request.cookies.get(config.REFRESH_COOKIE_NAME)
    if not token:
        raise AuthenticationError("Refresh token not provided")

    user, access_token, refresh_token = AuthService.rotate_refresh_token(
        db, token, device_info=request.headers.get("user-agent"), ip_address=client_ip(request)
    )
    set_auth_cookies(response, access_token, refresh_token)
    annotate_audit(request, skip=True)
    return success_response(
        "Token refreshed successfully",
        data={"token": access_token, "refreshToken": refresh_token},
    )


@router.post("/forgot-password", dependencies=[Depends(password_reset_rate_limiter)])
async def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """Email a reset link. The answer does not reveal whether the address is registered."""
    message = "If an account exists with this email, a password reset link has been sent"
    user = db.query(User).filter(User.email == body.email.lower()).first()
    if not user or not user.is_active:
        annotate_audit(request, skip=True)
        return success_response(message)

    token = AuthService.start_password_reset(db, user)
    sent = await EmailService.send_password_reset_email(user, token, request.app.state.mail)
    if not sent and request.app.state.mail is not None:
        AuthService.clear_password_reset(db, user)

    annotate_audit(
        request,
        action=AuditAction.UPDATE,
        resource_id=user.id,
        user_id=user.id,
        description="Password reset requested",
    )
    return success_response(message)


@router.post("/reset-password/{token}")
async def reset_password(
    token: str,
    body: ResetPasswordRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    if body.password != body.confirmPassword:
        raise ValidationError("Passwords do not match")

    user = AuthService.reset_password(db, token, body.password)
    annotate_audit(
        request,
        action=AuditAction.PASSWORD_CHANGE,
        resource_id=user.id,
        user_id=user.id,
        description="Password reset via email token",
    )
    return success_response("Password reset successful. Please log in with your new password")


@router.get("/verify-email/{token}")
async def verify_email(token: str, db: Session = Depends(get_db_session)):
    user = AuthService.verify_email(db, token)
    logger.info(f"Email verified for user: {user.id}")
    return success_response("Email verified successfully", data={"emailVerified": True})


@router.post("/logout")
async def logout_user(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session)
):
    """Revoke the caller's refresh tokens and clear the auth cookies."""
    revoked = AuthService.revoke_all_refresh_tokens(db, current_user.id)
    clear_auth_cookies(response)
    annotate_audit(
        request,
        action=AuditAction.LOGOUT,
        resource_id=current_user.id,
        description=f"User logged out ({revoked} session(s) revoked)",
    )
    logger.info(f"User logged out: {current_user.id}")
    return success_response("Logged out successfully")


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)):
    return success_response(
        "User profile retrieved successfully",
        data={"user": user_to_dict(current_user), "profile": profile_payload(current_user)},
    )


@router.put("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session)
):
    """Change password; every existing session must log in again."""
    if body.confirmPassword is not None and body.newPassword != body.confirmPassword:
        raise ValidationError("Passwords do not match")

    AuthService.change_password(db, current_user, body.currentPassword, body.newPassword)
    clear_auth_cookies(response)
    annotate_audit(
        request,
        action=AuditAction.PASSWORD_CHANGE,
        resource_id=current_user.id,
        description="Password changed",
    )
    logger.info(f"Password changed for user: {current_user.id}")
    return success_response("Password changed successfully")
