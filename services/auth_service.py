"""
Authentication service: account provisioning, credential checks, refresh-token rotation,
and the one-time tokens behind password reset and email verification.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.errors import AuthenticationError, ValidationError
from database.models import (
    Department, Designation, Faculty, RefreshToken, Student, User, UserRole, UserStatus,
)
from auth.security import (
    create_access_token, create_refresh_token, decode_refresh_token, generate_one_time_token,
    get_password_hash, hash_token, validate_password, verify_password,
)
from core.validators import parse_date, parse_enum
from core.logger import logger
import config


class AuthService:
    """Service for authentication operations."""

    @staticmethod
    def check_password_strength(password: str):
        is_valid, error_message = validate_password(password)
        if not is_valid:
            raise ValidationError(error_message)

    @staticmethod
    def _department_or_error(db: Session, department_id: Optional[int]) -> Department:
        if department_id is None:
            raise ValidationError("Department is required")
        department = db.query(Department).filter(Department.id == department_id).first()
        if not department:
            raise ValidationError("Department not found")
        return department

    @staticmethod
    def _build_student_profile(db: Session, data: Dict[str, Any]) -> Student:
        student_id = (data.get("studentId") or "").strip()
        roll_number = (data.get("rollNumber") or "").strip()
        if not student_id or not roll_number:
            raise ValidationError("Student ID and roll number are required")
        department = AuthService._department_or_error(db, data.get("department"))

        clash = db.query(Student).filter(
            (Student.student_id == student_id) | (Student.roll_number == roll_number)
        ).first()
        if clash:
            raise ValidationError("Student ID or roll number already exists")

        return Student(
            student_id=student_id,
            roll_number=roll_number,
            department_id=department.id,
            batch=data.get("batch") or "",
            current_semester=int(data.get("semester") or data.get("currentSemester") or 1),
            academic_year=data.get("academicYear") or "",
            admission_date=parse_date(data.get("admissionDate"), "admissionDate"),
            date_of_birth=parse_date(data.get("dateOfBirth"), "dateOfBirth"),
            address=data.get("address"),
            guardian_name=data.get("guardianName"),
            guardian_phone=data.get("guardianPhone"),
        )

    @staticmethod
    def _build_faculty_profile(db: Session, data: Dict[str, Any]) -> Faculty:
        employee_id = (data.get("employeeId") or "").strip()
        if not employee_id:
            raise ValidationError("Employee ID is required")
        department = AuthService._department_or_error(db, data.get("department"))

        if db.query(Faculty).filter(Faculty.employee_id == employee_id).first():
            raise ValidationError("Employee ID already exists")

        designation = Designation.ASSISTANT_PROFESSOR
        if data.get("designation"):
            designation = parse_enum(Designation, data["designation"], "designation")

        return Faculty(
            employee_id=employee_id,
            department_id=department.id,
            designation=designation,
            qualification=data.get("qualification"),
            specialization=data.get("specialization"),
            experience_years=int(data.get("experience") or data.get("experienceYears") or 0),
            joining_date=parse_date(data.get("joiningDate"), "joiningDate"),
            office_location=data.get("officeLocation"),
        )

    @staticmethod
    def create_user(
        db: Session,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        role: UserRole,
        phone: Optional[str] = None,
        student_data: Optional[Dict[str, Any]] = None,
        faculty_data: Optional[Dict[str, Any]] = None,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> User:
        """
        Create a user and, for students and faculty, the matching profile.

        Args:
            db: Database session
            first_name: First name
            last_name: Last name
            email: Email address (unique, stored lower-cased)
            password: Plain text password
            role: User role
            phone: Optional phone number
            student_data: Profile fields when role is student
            faculty_data: Profile fields when role is faculty
            status: Initial account status

        Returns:
            Created User

        Raises:
            ValidationError: Weak password, missing or clashing profile fields,
                unknown department, or an email already in use
        """
        AuthService.check_password_strength(password)
        email = email.strip().lower()

        user = User(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            hashed_password=get_password_hash(password),
            role=role,
            status=status,
            phone=phone,
            password_changed_at=datetime.utcnow(),
        )

        if role == UserRole.STUDENT:
            if not student_data:
                raise ValidationError("Student data is required for student registration")
            user.student_profile = AuthService._build_student_profile(db, student_data)
        elif role == UserRole.FACULTY:
            if not faculty_data:
                raise ValidationError("Faculty data is required for faculty registration")
            user.faculty_profile = AuthService._build_faculty_profile(db, faculty_data)

        db.add(user)
        try:
            # Email uniqueness is decided by the unique constraint, not a prior lookup
            db.flush()
        except IntegrityError:
            db.rollback()
            raise ValidationError("User already exists with this email")

        db.commit()
        db.refresh(user)
        logger.info(f"Created user: {email} (role: {role.value})")
        return user

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
        """
        Check credentials.

        Returns:
            The user when the email exists and the password matches, None otherwise
        """
        user = db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()
        if not user or not user.hashed_password:
            return None
        if not verify_password(password, user.hashed_password):
            return None
        return user

    @staticmethod
    def record_login(db: Session, user: User):
        user.last_login = datetime.utcnow()
        db.commit()

    @staticmethod
    def token_claims(user: User) -> Dict[str, Any]:
        return {"sub": str(user.id), "email": user.email, "role": user.role.value}

    @staticmethod
    def create_tokens(user: User, remember_me: bool = False) -> Tuple[str, str, datetime]:
        """
        Create access and refresh tokens for user.

        Returns:
            Tuple of (access_token, refresh_token, refresh_expires_at)
        """
        days = config.REMEMBER_ME_EXPIRE_DAYS if remember_me else config.REFRESH_TOKEN_EXPIRE_DAYS
        refresh_delta = timedelta(days=days)
        data = AuthService.token_claims(user)
        access_token = create_access_token(data)
        refresh_token = create_refresh_token(data, expires_delta=refresh_delta)
        return access_token, refresh_token, datetime.utcnow() + refresh_delta

    @staticmethod
    def save_refresh_token(
        db: Session,
        user_id: int,
        refresh_token: str,
        expires_at: datetime,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> RefreshToken:
        """Store the sha256 of a refresh token."""
        refresh_token_obj = RefreshToken(
            user_id=user_id,
            token_hash=hash_token(refresh_token),
            device_info=device_info[:500] if device_info else None,
            ip_address=ip_address,
            expires_at=expires_at,
        )
        db.add(refresh_token_obj)
        db.commit()
        return refresh_token_obj

    @staticmethod
    def issue_session(
        db: Session,
        user: User,
        remember_me: bool = False,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> Tuple[str, str]:
        """Create a token pair and persist the refresh half."""
        access_token, refresh_token, expires_at = AuthService.create_tokens(user, remember_me)
        AuthService.save_refresh_token(db, user.id, refresh_token, expires_at, device_info, ip_address)
        return access_token, refresh_token

    @staticmethod
    def rotate_refresh_token(
        db: Session,
        refresh_token: str,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> Tuple[User, str, str]:
        """
        Exchange a refresh token for a new pair; the presented token is revoked.

        Raises:
            AuthenticationError: Token malformed, expired, unknown, revoked, or user inactive
        """
        payload = decode_refresh_token(refresh_token)
        if not payload:
            raise AuthenticationError("Invalid refresh token")

        stored = db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(refresh_token)
        ).first()
        if not stored or stored.is_revoked or stored.expires_at < datetime.utcnow():
            raise AuthenticationError("Invalid refresh token")

        user = db.query(User).filter(User.id == stored.user_id).first()
        if not user or not user.is_active:
            raise AuthenticationError("User not found or inactive")

        stored.is_revoked = True
        stored.revoked_at = datetime.utcnow()

        remaining = stored.expires_at - stored.created_at
        remember_me = remaining > timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS)
        access_token, new_refresh, _ = AuthService.create_tokens(user, remember_me)
        db.add(RefreshToken(
            user_id=user.id,
            token_hash=hash_token(new_refresh),
            device_info=device_info[:500] if device_info else None,
            ip_address=ip_address,
            expires_at=stored.expires_at if remember_me else
            datetime.utcnow() + timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS),
        ))
        db.commit()
        return user, access_token, new_refresh

    @staticmethod
    def revoke_all_refresh_tokens(db: Session, user_id: int) -> int:
        revoked = db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked == False
        ).update({"is_revoked": True, "revoked_at": datetime.utcnow()}, synchronize_session=False)
        db.commit()
        return revoked

    @staticmethod
    def start_password_reset(db: Session, user: User) -> str:
        """Store the hash of a fresh reset token and return the raw token for the email link."""
        raw, digest = generate_one_time_token()
        user.password_reset_token = digest
        user.password_reset_expires = datetime.utcnow() + timedelta(minutes=config.PASSWORD_RESET_EXPIRE_MINUTES)
        db.commit()
        return raw

    @staticmethod
    def clear_password_reset(db: Session, user: User):
        user.password_reset_token = None
        user.password_reset_expires = None
        db.commit()

    @staticmethod
    def reset_password(db: Session, token: str, new_password: str) -> User:
        """
        Apply a password reset.

        Raises:
            ValidationError: Unknown or expired token, weak password
        """
        user = db.query(User).filter(
            User.password_reset_token == hash_token(token),
            User.password_reset_expires > datetime.utcnow()
        ).first()
        if not user:
            raise ValidationError("Invalid or expired reset token")

        AuthService.check_password_strength(new_password)
        user.hashed_password = get_password_hash(new_password)
        user.password_changed_at = datetime.utcnow()
        user.password_reset_token = None
        user.password_reset_expires = None
        db.commit()
        AuthService.revoke_all_refresh_tokens(db, user.id)
        logger.info(f"Password reset completed for user: {user.id}")
        return user

    @staticmethod
    def start_email_verification(db: Session, user: User) -> str:
        raw, digest = generate_one_time_token()
        user.email_verification_token = digest
        user.email_verification_expires = datetime.utcnow() + timedelta(hours=config.EMAIL_VERIFICATION_EXPIRE_HOURS)
        db.commit()
        return raw

    @staticmethod
    def verify_email(db: Session, token: str) -> User:
        user = db.query(User).filter(
            User.email_verification_token == hash_token(token),
            User.email_verification_expires > datetime.utcnow()
        ).first()
        if not user:
            raise ValidationError("Invalid or expired verification token")
        user.email_verified = True
        user.email_verification_token = None
        user.email_verification_expires = None
        db.commit()
        return user

    @staticmethod
    def change_password(db: Session, user: User, current_password: str, new_password: str):
        """
        Raises:
            ValidationError: Wrong current password, weak or unchanged new password
        """
        if not verify_password(current_password, user.hashed_password):
            raise ValidationError("Current password is incorrect")
        if current_password == new_password:
            raise ValidationError("New password must be different from current password")
        AuthService.check_password_strength(new_password)

        user.hashed_password = get_password_hash(new_password)
        user.password_changed_at = datetime.utcnow()
        db.commit()
        AuthService.revoke_all_refresh_tokens(db, user.id)

    @staticmethod
    def profile_of(user: User):
        """The student or faculty profile attached to ``user``, if any."""
        if user.role == UserRole.STUDENT:
            return user.student_profile
        if user.role == UserRole.FACULTY:
            return user.faculty_profile
        return None
