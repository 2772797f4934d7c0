"""
Database models for the College ERP.
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Date, DateTime, Text,
    ForeignKey, JSON, Index, Table, TypeDecorator, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()


# ============================================================================
# Custom Type Decorator for Enum Values
# ============================================================================

class EnumValue(TypeDecorator):
    """Type decorator to ensure enum values (not names) are stored."""
    impl = String
    cache_ok = True

    def __init__(self, enum_class, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        """Convert enum to its value when writing to database."""
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            return value.value
        return value

    def process_result_value(self, value, dialect):
        """Convert database value back to enum when reading."""
        if value is None:
            return None
        if isinstance(value, str):
            try:
                return self.enum_class(value)
            except ValueError:
                return value
        return value


# ============================================================================
# Enums - Must be defined before models that use them
# ============================================================================

class UserRole(str, enum.Enum):
    """User roles for authorization."""
    ADMIN = "admin"
    FACULTY = "faculty"
    STUDENT = "student"
    LIBRARIAN = "librarian"


class UserStatus(str, enum.Enum):
    """User account lifecycle."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class RecordStatus(str, enum.Enum):
    """Lifecycle for departments and courses."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class StudentStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    GRADUATED = "graduated"
    DROPPED = "dropped"
    SUSPENDED = "suspended"


class FacultyStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ON_LEAVE = "on_leave"
    RETIRED = "retired"


class Designation(str, enum.Enum):
    PROFESSOR = "Professor"
    ASSOCIATE_PROFESSOR = "Associate Professor"
    ASSISTANT_PROFESSOR = "Assistant Professor"
    LECTURER = "Lecturer"
    LAB_ASSISTANT = "Lab Assistant"
    HOD = "HOD"


class CourseType(str, enum.Enum):
    THEORY = "theory"
    PRACTICAL = "practical"
    PROJECT = "project"
    SEMINAR = "seminar"


class EnrollmentStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    WITHDRAWN = "withdrawn"
    FAILED = "failed"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


class SessionType(str, enum.Enum):
    LECTURE = "lecture"
    LAB = "lab"
    TUTORIAL = "tutorial"
    SEMINAR = "seminar"


class FeeType(str, enum.Enum):
    TUITION = "tuition"
    HOSTEL = "hostel"
    TRANSPORT = "transport"
    LIBRARY = "library"
    LAB = "lab"
    EXAMINATION = "examination"
    SPORTS = "sports"
    OTHER = "other"


class FeeEntryKind(str, enum.Enum):
    """Ledger entry kind. Concessions and excess credits carry negative totals."""
    CHARGE = "charge"
    CONCESSION = "concession"
    EXCESS_CREDIT = "excess_credit"


class FeeStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CHEQUE = "cheque"
    ONLINE = "online"
    CARD = "card"
    UPI = "upi"


class ConcessionType(str, enum.Enum):
    SCHOLARSHIP = "scholarship"
    MERIT = "merit"
    NEED_BASED = "need_based"
    SPORTS = "sports"
    OTHER = "other"


class BookCategory(str, enum.Enum):
    COMPUTER_SCIENCE = "Computer Science"
    ELECTRONICS = "Electronics"
    MECHANICAL = "Mechanical"
    CIVIL = "Civil"
    MATHEMATICS = "Mathematics"
    PHYSICS = "Physics"
    CHEMISTRY = "Chemistry"
    LITERATURE = "Literature"
    MANAGEMENT = "Management"
    OTHER = "Other"


class BookStatus(str, enum.Enum):
    AVAILABLE = "available"
    MAINTENANCE = "maintenance"
    LOST = "lost"
    DAMAGED = "damaged"
    REMOVED = "removed"


class BorrowStatus(str, enum.Enum):
    BORROWED = "borrowed"
    RETURNED = "returned"
    LOST = "lost"


class NoticeCategory(str, enum.Enum):
    ACADEMIC = "academic"
    ADMINISTRATIVE = "administrative"
    EVENT = "event"
    EXAMINATION = "examination"
    HOLIDAY = "holiday"
    EMERGENCY = "emergency"
    GENERAL = "general"


class NoticePriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NoticeStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    DELETED = "deleted"


class NoticeAudience(str, enum.Enum):
    ALL = "all"
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"
    LIBRARIAN = "librarian"


class Weekday(str, enum.Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"


class TimetableType(str, enum.Enum):
    REGULAR = "regular"
    EXAM = "exam"
    SPECIAL = "special"


class TimetableStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    ARCHIVED = "archived"


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    ROLE_CHANGE = "ROLE_CHANGE"


class AuditStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


# ============================================================================
# Association tables
# ============================================================================

course_instructors = Table(
    "course_instructors",
    Base.metadata,
    Column("course_id", Integer, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
    Column("faculty_id", Integer, ForeignKey("faculty.id", ondelete="CASCADE"), primary_key=True),
)

course_prerequisites = Table(
    "course_prerequisites",
    Base.metadata,
    Column("course_id", Integer, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
    Column("prerequisite_id", Integer, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
)


# ============================================================================
# Models
# ============================================================================

class User(Base):
    """User model for authentication and authorization."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(EnumValue(UserRole), nullable=False, default=UserRole.STUDENT)
    status = Column(EnumValue(UserStatus), default=UserStatus.ACTIVE, nullable=False)
    phone = Column(String(20), nullable=True)
    avatar_url = Column(String(512), nullable=True)

    email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token = Column(String(64), nullable=True)  # sha256 hex
    email_verification_expires = Column(DateTime, nullable=True)
    password_reset_token = Column(String(64), nullable=True)  # sha256 hex
    password_reset_expires = Column(DateTime, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)

    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student_profile = relationship("Student", back_populates="user", uselist=False, cascade="all, delete-orphan")
    faculty_profile = relationship("Faculty", back_populates="user", uselist=False, cascade="all, delete-orphan")
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_user_role', 'role'),
        Index('idx_user_status', 'status'),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class RefreshToken(Base):
    """Refresh tokens, stored hashed and rotated on use."""
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(255), unique=True, nullable=False, index=True)
    device_info = Column(String(500), nullable=True)
    ip_address = Column(String(45), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="refresh_tokens")

    __table_args__ = (
        Index('idx_refresh_token_user', 'user_id'),
        Index('idx_refresh_token_expires', 'expires_at'),
    )


class Department(Base):
    """Organizational unit referenced by students, faculty and courses."""
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    code = Column(String(10), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    head_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    established_year = Column(Integer, nullable=True)
    status = Column(EnumValue(RecordStatus), default=RecordStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    head = relationship("User", foreign_keys=[head_id])
    students = relationship("Student", back_populates="department")
    faculty_members = relationship("Faculty", back_populates="department")
    courses = relationship("Course", back_populates="department")


class Student(Base):
    """Academic profile attached 1:1 to a student user."""
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    student_id = Column(String(50), unique=True, nullable=False)
    roll_number = Column(String(50), unique=True, nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False)
    batch = Column(String(20), nullable=False)  # e.g. "2022-2026"
    current_semester = Column(Integer, default=1, nullable=False)
    academic_year = Column(String(20), nullable=False)  # e.g. "2024-2025"
    admission_date = Column(Date, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    address = Column(Text, nullable=True)
    guardian_name = Column(String(100), nullable=True)
    guardian_phone = Column(String(20), nullable=True)
    cgpa = Column(Float, default=0.0, nullable=False)
    total_credits = Column(Integer, default=0, nullable=False)
    status = Column(EnumValue(StudentStatus), default=StudentStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="student_profile")
    department = relationship("Department", back_populates="students")
    enrollments = relationship("Enrollment", back_populates="student", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_student_department', 'department_id'),
        Index('idx_student_semester', 'current_semester'),
    )


class Faculty(Base):
    """Teaching profile attached 1:1 to a faculty user."""
    __tablename__ = "faculty"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    employee_id = Column(String(50), unique=True, nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False)
    designation = Column(EnumValue(Designation), default=Designation.ASSISTANT_PROFESSOR, nullable=False)
    qualification = Column(String(255), nullable=True)
    specialization = Column(String(255), nullable=True)
    experience_years = Column(Integer, default=0, nullable=False)
    joining_date = Column(Date, nullable=True)
    office_location = Column(String(100), nullable=True)
    status = Column(EnumValue(FacultyStatus), default=FacultyStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="faculty_profile")
    department = relationship("Department", back_populates="faculty_members")
    coordinated_courses = relationship("Course", back_populates="coordinator")
    taught_courses = relationship("Course", secondary=course_instructors, back_populates="instructors")

    __table_args__ = (
        Index('idx_faculty_department', 'department_id'),
    )


class Course(Base):
    """Academic offering. Enrollment count is derived, never stored."""
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False)
    credits = Column(Integer, default=3, nullable=False)
    course_type = Column(EnumValue(CourseType), default=CourseType.THEORY, nullable=False)
    semester = Column(Integer, nullable=False)
    coordinator_id = Column(Integer, ForeignKey("faculty.id", ondelete="SET NULL"), nullable=True)
    max_enrollment = Column(Integer, default=100, nullable=False)
    internal_weight = Column(Integer, default=40, nullable=False)
    external_weight = Column(Integer, default=60, nullable=False)
    syllabus = Column(JSON, nullable=True)  # {"units": [...], "textbooks": [...], "references": [...]}
    status = Column(EnumValue(RecordStatus), default=RecordStatus.ACTIVE, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    department = relationship("Department", back_populates="courses")
    coordinator = relationship("Faculty", back_populates="coordinated_courses")
    instructors = relationship("Faculty", secondary=course_instructors, back_populates="taught_courses")
    prerequisites = relationship(
        "Course",
        secondary=course_prerequisites,
        primaryjoin=id == course_prerequisites.c.course_id,
        secondaryjoin=id == course_prerequisites.c.prerequisite_id,
    )
    enrollments = relationship("Enrollment", back_populates="course")

    __table_args__ = (
        Index('idx_course_department', 'department_id'),
        Index('idx_course_semester', 'semester'),
    )


class Enrollment(Base):
    """Student x Course x academic year, with grade fields."""
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    academic_year = Column(String(20), nullable=False)
    semester = Column(Integer, nullable=False)
    status = Column(EnumValue(EnrollmentStatus), default=EnrollmentStatus.ACTIVE, nullable=False)
    enrolled_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    withdrawn_at = Column(DateTime, nullable=True)
    internal_marks = Column(Float, nullable=True)
    external_marks = Column(Float, nullable=True)
    total_marks = Column(Float, nullable=True)
    grade = Column(String(2), nullable=True)
    grade_point = Column(Float, nullable=True)
    grades_submitted_by = Column(Integer, ForeignKey("faculty.id", ondelete="SET NULL"), nullable=True)
    grades_submitted_at = Column(DateTime, nullable=True)

    student = relationship("Student", back_populates="enrollments")
    course = relationship("Course", back_populates="enrollments")

    __table_args__ = (
        UniqueConstraint('student_id', 'course_id', 'academic_year', name='uq_enrollment_student_course_year'),
        Index('idx_enrollment_course_status', 'course_id', 'status'),
    )


class Attendance(Base):
    """One row per (student, course, date, period)."""
    __tablename__ = "attendance"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    period = Column(Integer, nullable=False)  # 1-8
    status = Column(EnumValue(AttendanceStatus), nullable=False)
    session_type = Column(EnumValue(SessionType), default=SessionType.LECTURE, nullable=False)
    remarks = Column(String(255), nullable=True)
    marked_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("Student")
    course = relationship("Course")

    __table_args__ = (
        UniqueConstraint('student_id', 'course_id', 'date', 'period', name='uq_attendance_slot'),
        Index('idx_attendance_course_date', 'course_id', 'date'),
    )


class Fee(Base):
    """
    Fee ledger entry for a student.

    Charges carry a positive ``amount_total``; concessions and excess credits
    carry a negative one. Balances are the signed sum of totals minus payments.
    """
    __tablename__ = "fees"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    entry_kind = Column(EnumValue(FeeEntryKind), default=FeeEntryKind.CHARGE, nullable=False)
    fee_type = Column(EnumValue(FeeType), default=FeeType.TUITION, nullable=False)
    description = Column(String(255), nullable=True)
    academic_year = Column(String(20), nullable=False)
    semester = Column(Integer, nullable=True)
    amount_total = Column(Float, nullable=False)
    amount_paid = Column(Float, default=0.0, nullable=False)
    fine = Column(Float, default=0.0, nullable=False)
    due_date = Column(DateTime, nullable=False)
    status = Column(EnumValue(FeeStatus), default=FeeStatus.PENDING, nullable=False)
    concession_type = Column(EnumValue(ConcessionType), nullable=True)
    concession_percentage = Column(Float, nullable=True)
    related_fee_id = Column(Integer, ForeignKey("fees.id", ondelete="SET NULL"), nullable=True)
    receipt_number = Column(String(50), unique=True, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("Student")
    payments = relationship("FeePayment", back_populates="fee", cascade="all, delete-orphan", order_by="FeePayment.paid_at")

    __table_args__ = (
        Index('idx_fee_student_status', 'student_id', 'status'),
        Index('idx_fee_due_date', 'due_date'),
    )

    @property
    def amount_due(self) -> float:
        return max(self.amount_total - self.amount_paid, 0.0)


class FeePayment(Base):
    """A single payment applied to a fee charge."""
    __tablename__ = "fee_payments"

    id = Column(Integer, primary_key=True, index=True)
    fee_id = Column(Integer, ForeignKey("fees.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Float, nullable=False)
    method = Column(EnumValue(PaymentMethod), nullable=False)
    transaction_id = Column(String(100), nullable=True)
    receipt_number = Column(String(50), nullable=False)
    paid_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    fee = relationship("Fee", back_populates="payments")

    __table_args__ = (
        Index('idx_fee_payment_fee', 'fee_id'),
    )


class Book(Base):
    """Library catalog item."""
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, index=True)
    isbn = Column(String(20), unique=True, nullable=False)
    title = Column(String(255), nullable=False)
    authors = Column(JSON, nullable=False, default=list)
    publisher = Column(String(255), nullable=True)
    edition = Column(String(50), nullable=True)
    language = Column(String(50), default="English", nullable=False)
    category = Column(EnumValue(BookCategory), nullable=False)
    subject = Column(String(100), nullable=True)
    total_copies = Column(Integer, default=1, nullable=False)
    available_copies = Column(Integer, default=1, nullable=False)
    location = Column(String(100), nullable=True)  # shelf / rack
    published_year = Column(Integer, nullable=True)
    price = Column(Float, nullable=True)
    status = Column(EnumValue(BookStatus), default=BookStatus.AVAILABLE, nullable=False)
    added_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    borrow_records = relationship("BorrowRecord", back_populates="book")

    __table_args__ = (
        Index('idx_book_title', 'title'),
        Index('idx_book_category', 'category'),
    )


class BorrowRecord(Base):
    """A student's loan of one book copy."""
    __tablename__ = "borrow_records"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    borrow_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(EnumValue(BorrowStatus), default=BorrowStatus.BORROWED, nullable=False)
    renewal_count = Column(Integer, default=0, nullable=False)
    is_overdue = Column(Boolean, default=False, nullable=False)  # set at return time
    days_overdue = Column(Integer, default=0, nullable=False)
    fine_amount = Column(Float, default=0.0, nullable=False)
    fine_paid = Column(Boolean, default=False, nullable=False)
    issued_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    returned_to = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(String(255), nullable=True)

    student = relationship("Student")
    book = relationship("Book", back_populates="borrow_records")

    __table_args__ = (
        Index('idx_borrow_student_status', 'student_id', 'status'),
        Index('idx_borrow_book_status', 'book_id', 'status'),
    )


class Notice(Base):
    """Announcement targeted at roles and/or departments."""
    __tablename__ = "notices"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    category = Column(EnumValue(NoticeCategory), default=NoticeCategory.GENERAL, nullable=False)
    priority = Column(EnumValue(NoticePriority), default=NoticePriority.MEDIUM, nullable=False)
    status = Column(EnumValue(NoticeStatus), default=NoticeStatus.PUBLISHED, nullable=False)
    is_pinned = Column(Boolean, default=False, nullable=False)
    publish_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    expiry_date = Column(DateTime, nullable=True)
    published_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    publisher = relationship("User", foreign_keys=[published_by])
    targets = relationship("NoticeTarget", back_populates="notice", cascade="all, delete-orphan")
    views = relationship("NoticeView", back_populates="notice", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_notice_status_publish', 'status', 'publish_date'),
    )


class NoticeTarget(Base):
    """Audience row: exactly one of ``audience`` or ``department_id`` is set."""
    __tablename__ = "notice_targets"

    id = Column(Integer, primary_key=True, index=True)
    notice_id = Column(Integer, ForeignKey("notices.id", ondelete="CASCADE"), nullable=False)
    audience = Column(EnumValue(NoticeAudience), nullable=True)
    department_id = Column(Integer, ForeignKey("departments.id", ondelete="CASCADE"), nullable=True)

    notice = relationship("Notice", back_populates="targets")

    __table_args__ = (
        Index('idx_notice_target_notice', 'notice_id'),
    )


class NoticeView(Base):
    """View log entry. Doubles as the read marker."""
    __tablename__ = "notice_views"

    id = Column(Integer, primary_key=True, index=True)
    notice_id = Column(Integer, ForeignKey("notices.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    viewed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    notice = relationship("Notice", back_populates="views")

    __table_args__ = (
        UniqueConstraint('notice_id', 'user_id', name='uq_notice_view'),
    )


class Timetable(Base):
    """Weekly schedule for a (department, semester, academic year, batch)."""
    __tablename__ = "timetables"

    id = Column(Integer, primary_key=True, index=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False)
    semester = Column(Integer, nullable=False)
    academic_year = Column(String(20), nullable=False)
    batch = Column(String(20), nullable=True)
    timetable_type = Column(EnumValue(TimetableType), default=TimetableType.REGULAR, nullable=False)
    status = Column(EnumValue(TimetableStatus), default=TimetableStatus.DRAFT, nullable=False)
    is_active = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    effective_from = Column(Date, nullable=True)
    effective_to = Column(Date, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    department = relationship("Department")
    periods = relationship(
        "TimetablePeriod",
        back_populates="timetable",
        cascade="all, delete-orphan",
        order_by="TimetablePeriod.period_number",
    )

    __table_args__ = (
        # At most one active timetable per key, enforced by the database
        Index(
            'uq_timetable_active_key',
            'department_id', 'semester', 'academic_year', 'timetable_type',
            unique=True,
            postgresql_where=text('is_active'),
            sqlite_where=text('is_active'),
        ),
        Index('idx_timetable_department_semester', 'department_id', 'semester'),
    )


class TimetablePeriod(Base):
    __tablename__ = "timetable_periods"

    id = Column(Integer, primary_key=True, index=True)
    timetable_id = Column(Integer, ForeignKey("timetables.id", ondelete="CASCADE"), nullable=False)
    day = Column(EnumValue(Weekday), nullable=False)
    period_number = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=True)
    faculty_id = Column(Integer, ForeignKey("faculty.id"), nullable=True)
    room = Column(String(50), nullable=True)
    session_type = Column(EnumValue(SessionType), default=SessionType.LECTURE, nullable=False)
    is_break = Column(Boolean, default=False, nullable=False)

    timetable = relationship("Timetable", back_populates="periods")
    course = relationship("Course")
    faculty = relationship("Faculty")

    __table_args__ = (
        Index('idx_period_faculty_day', 'faculty_id', 'day'),
    )


class AuditLog(Base):
    """Append-only audit trail for compliance. Rows expire after the retention window."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(EnumValue(AuditAction), nullable=False)
    resource_type = Column(String(50), nullable=True)  # e.g. "Course", "Fee", "User"
    resource_id = Column(String(100), nullable=True)
    description = Column(String(500), nullable=True)
    status = Column(EnumValue(AuditStatus), default=AuditStatus.SUCCESS, nullable=False)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    user_agent = Column(String(500), nullable=True)
    request_method = Column(String(10), nullable=True)
    request_path = Column(String(255), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=True)

    user = relationship("User")

    __table_args__ = (
        Index('idx_audit_user', 'user_id'),
        Index('idx_audit_action', 'action'),
        Index('idx_audit_resource', 'resource_type', 'resource_id'),
        Index('idx_audit_expires', 'expires_at'),
    )
