"""
Response shapes for ORM entities (camelCase, as consumed by the web client).
"""
from typing import Any, Dict, Optional

from database.models import (
    Attendance, AuditLog, Book, BorrowRecord, Course, Department, Enrollment, Faculty, Fee,
    FeePayment, Notice, Student, Timetable, TimetablePeriod, User,
)


def _value(enum_member):
    return enum_member.value if enum_member is not None and hasattr(enum_member, "value") else enum_member


def user_to_dict(user: User) -> Dict[str, Any]:
    """Non-sensitive user fields."""
    return {
        "id": user.id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "fullName": user.full_name,
        "email": user.email,
        "role": _value(user.role),
        "status": _value(user.status),
        "phone": user.phone,
        "avatarUrl": user.avatar_url,
        "emailVerified": user.email_verified,
        "lastLogin": user.last_login,
        "createdAt": user.created_at,
    }


def user_summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.full_name, "email": user.email}


def department_to_dict(department: Department) -> Dict[str, Any]:
    return {
        "id": department.id,
        "name": department.name,
        "code": department.code,
        "description": department.description,
        "headId": department.head_id,
        "head": user_summary(department.head),
        "establishedYear": department.established_year,
        "status": _value(department.status),
        "createdAt": department.created_at,
        "updatedAt": department.updated_at,
    }


def department_summary(department: Optional[Department]) -> Optional[Dict[str, Any]]:
    if department is None:
        return None
    return {"id": department.id, "name": department.name, "code": department.code}


def student_to_dict(student: Student, include_user: bool = True) -> Dict[str, Any]:
    data = {
        "id": student.id,
        "userId": student.user_id,
        "studentId": student.student_id,
        "rollNumber": student.roll_number,
        "department": department_summary(student.department),
        "batch": student.batch,
        "currentSemester": student.current_semester,
        "academicYear": student.academic_year,
        "admissionDate": student.admission_date,
        "dateOfBirth": student.date_of_birth,
        "address": student.address,
        "guardianName": student.guardian_name,
        "guardianPhone": student.guardian_phone,
        "cgpa": student.cgpa,
        "totalCredits": student.total_credits,
        "status": _value(student.status),
    }
    if include_user:
        data["user"] = user_to_dict(student.user)
    return data


def student_summary(student: Optional[Student]) -> Optional[Dict[str, Any]]:
    if student is None:
        return None
    return {
        "id": student.id,
        "studentId": student.student_id,
        "rollNumber": student.roll_number,
        "name": student.user.full_name if student.user else None,
    }


def faculty_to_dict(faculty: Faculty, include_user: bool = True) -> Dict[str, Any]:
    data = {
        "id": faculty.id,
        "userId": faculty.user_id,
        "employeeId": faculty.employee_id,
        "department": department_summary(faculty.department),
        "designation": _value(faculty.designation),
        "qualification": faculty.qualification,
        "specialization": faculty.specialization,
        "experienceYears": faculty.experience_years,
        "joiningDate": faculty.joining_date,
        "officeLocation": faculty.office_location,
        "status": _value(faculty.status),
    }
    if include_user:
        data["user"] = user_to_dict(faculty.user)
    return data


def faculty_summary(faculty: Optional[Faculty]) -> Optional[Dict[str, Any]]:
    if faculty is None:
        return None
    return {
        "id": faculty.id,
        "employeeId": faculty.employee_id,
        "name": faculty.user.full_name if faculty.user else None,
    }


def course_to_dict(course: Course, enrollment_count: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": course.id,
        "code": course.code,
        "name": course.name,
        "description": course.description,
        "department": department_summary(course.department),
        "credits": course.credits,
        "courseType": _value(course.course_type),
        "semester": course.semester,
        "coordinator": faculty_summary(course.coordinator),
        "instructors": [faculty_summary(f) for f in course.instructors],
        "prerequisites": [{"id": p.id, "code": p.code, "name": p.name} for p in course.prerequisites],
        "maxEnrollment": course.max_enrollment,
        "assessment": {"internal": course.internal_weight, "external": course.external_weight},
        "status": _value(course.status),
        "createdAt": course.created_at,
    }
    if enrollment_count is not None:
        data["enrollmentCount"] = enrollment_count
    return data


def course_summary(course: Optional[Course]) -> Optional[Dict[str, Any]]:
    if course is None:
        return None
    return {"id": course.id, "code": course.code, "name": course.name, "credits": course.credits}


def enrollment_to_dict(enrollment: Enrollment, include_student: bool = False) -> Dict[str, Any]:
    data = {
        "id": enrollment.id,
        "course": course_summary(enrollment.course),
        "academicYear": enrollment.academic_year,
        "semester": enrollment.semester,
        "status": _value(enrollment.status),
        "enrolledAt": enrollment.enrolled_at,
        "withdrawnAt": enrollment.withdrawn_at,
        "grades": {
            "internal": enrollment.internal_marks,
            "external": enrollment.external_marks,
            "total": enrollment.total_marks,
            "grade": enrollment.grade,
            "gradePoint": enrollment.grade_point,
            "submittedAt": enrollment.grades_submitted_at,
        },
    }
    if include_student:
        data["student"] = student_summary(enrollment.student)
    return data


def attendance_to_dict(record: Attendance) -> Dict[str, Any]:
    return {
        "id": record.id,
        "student": student_summary(record.student),
        "course": course_summary(record.course),
        "date": record.date,
        "period": record.period,
        "status": _value(record.status),
        "sessionType": _value(record.session_type),
        "remarks": record.remarks,
        "markedBy": record.marked_by,
        "updatedAt": record.updated_at,
    }


def payment_to_dict(payment: FeePayment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "feeId": payment.fee_id,
        "amount": payment.amount,
        "method": _value(payment.method),
        "transactionId": payment.transaction_id,
        "receiptNumber": payment.receipt_number,
        "paidAt": payment.paid_at,
        "processedBy": payment.processed_by,
    }


def fee_to_dict(fee: Fee, include_payments: bool = False) -> Dict[str, Any]:
    data = {
        "id": fee.id,
        "studentId": fee.student_id,
        "entryKind": _value(fee.entry_kind),
        "feeType": _value(fee.fee_type),
        "description": fee.description,
        "academicYear": fee.academic_year,
        "semester": fee.semester,
        "amount": {
            "total": fee.amount_total,
            "paid": fee.amount_paid,
            "due": fee.amount_due,
            "fine": fee.fine,
        },
        "dueDate": fee.due_date,
        "status": _value(fee.status),
        "concession": {
            "type": _value(fee.concession_type),
            "percentage": fee.concession_percentage,
        } if fee.concession_type else None,
        "relatedFeeId": fee.related_fee_id,
        "receiptNumber": fee.receipt_number,
        "paidAt": fee.paid_at,
        "createdAt": fee.created_at,
    }
    if include_payments:
        data["payments"] = [payment_to_dict(p) for p in fee.payments]
    return data


def book_to_dict(book: Book) -> Dict[str, Any]:
    return {
        "id": book.id,
        "isbn": book.isbn,
        "title": book.title,
        "authors": book.authors or [],
        "publisher": book.publisher,
        "edition": book.edition,
        "language": book.language,
        "category": _value(book.category),
        "subject": book.subject,
        "totalCopies": book.total_copies,
        "availableCopies": book.available_copies,
        "location": book.location,
        "publishedYear": book.published_year,
        "price": book.price,
        "status": _value(book.status),
    }


def borrow_to_dict(record: BorrowRecord, include_student: bool = False) -> Dict[str, Any]:
    data = {
        "id": record.id,
        "book": {
            "id": record.book.id,
            "title": record.book.title,
            "authors": record.book.authors or [],
            "isbn": record.book.isbn,
        } if record.book else None,
        "borrowDate": record.borrow_date,
        "dueDate": record.due_date,
        "returnDate": record.return_date,
        "status": _value(record.status),
        "renewalCount": record.renewal_count,
        "isOverdue": record.is_overdue,
        "daysOverdue": record.days_overdue,
        "fine": record.fine_amount,
        "finePaid": record.fine_paid,
    }
    if include_student:
        data["student"] = student_summary(record.student)
    return data


def notice_to_dict(notice: Notice, user_id: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": notice.id,
        "title": notice.title,
        "content": notice.content,
        "category": _value(notice.category),
        "priority": _value(notice.priority),
        "status": _value(notice.status),
        "isPinned": notice.is_pinned,
        "publishDate": notice.publish_date,
        "expiryDate": notice.expiry_date,
        "publishedBy": user_summary(notice.publisher),
        "targetRoles": [_value(t.audience) for t in notice.targets if t.audience is not None],
        "targetDepartments": [t.department_id for t in notice.targets if t.department_id is not None],
        "viewCount": len(notice.views),
    }
    if user_id is not None:
        data["isRead"] = any(view.user_id == user_id for view in notice.views)
    return data


def period_to_dict(period: TimetablePeriod) -> Dict[str, Any]:
    return {
        "id": period.id,
        "day": _value(period.day),
        "periodNumber": period.period_number,
        "startTime": period.start_time,
        "endTime": period.end_time,
        "course": course_summary(period.course),
        "faculty": faculty_summary(period.faculty),
        "room": period.room,
        "sessionType": _value(period.session_type),
        "isBreak": period.is_break,
    }


def timetable_to_dict(timetable: Timetable, include_periods: bool = True) -> Dict[str, Any]:
    data = {
        "id": timetable.id,
        "department": department_summary(timetable.department),
        "semester": timetable.semester,
        "academicYear": timetable.academic_year,
        "batch": timetable.batch,
        "type": _value(timetable.timetable_type),
        "status": _value(timetable.status),
        "isActive": timetable.is_active,
        "version": timetable.version,
        "effectiveFrom": timetable.effective_from,
        "effectiveTo": timetable.effective_to,
        "createdBy": timetable.created_by,
        "approvedBy": timetable.approved_by,
        "approvedAt": timetable.approved_at,
        "updatedAt": timetable.updated_at,
    }
    if include_periods:
        data["schedule"] = [period_to_dict(p) for p in timetable.periods]
    return data


def audit_to_dict(entry: AuditLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "user": user_summary(entry.user),
        "action": _value(entry.action),
        "resourceType": entry.resource_type,
        "resourceId": entry.resource_id,
        "description": entry.description,
        "status": _value(entry.status),
        "ipAddress": entry.ip_address,
        "userAgent": entry.user_agent,
        "method": entry.request_method,
        "path": entry.request_path,
        "details": entry.details,
        "timestamp": entry.created_at,
    }
