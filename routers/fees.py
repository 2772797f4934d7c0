"""
Fee ledger APIs: structure, payments, receipts, concessions, bulk charges and reports.
"""
from collections import defaultdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.dependencies import (
    get_db_session, get_role_scope, require_admin, require_admin_or_faculty, require_admin_or_student,
    require_authenticated,
)
from core.errors import AuthorizationError, NotFoundError, ValidationError
from core.responses import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, paginate, paginated_response, success_response
from core.validators import parse_date
from database.models import (
    ConcessionType, Fee, FeeEntryKind, FeePayment, FeeStatus, FeeType, PaymentMethod, Student, User,
)
from services import fee_rules
from services.reports import collection_report, concessions_report, outstanding_report, summary_report
from services.audit_service import annotate_audit, audited_route
from services.scope import (
    RoleScope, StudentScope, apply_date_range, apply_role_scope, can_access_student,
)
from services.serializers import fee_to_dict, payment_to_dict, student_summary
from core.logger import logger


router = APIRouter(prefix="/api/fees", tags=["fees"], route_class=audited_route("Fee"))

REPORT_TYPES = ("collection", "pending", "overdue", "concessions", "summary")


class PaymentRequest(BaseModel):
    feeId: int
    amount: float
    paymentMethod: PaymentMethod = PaymentMethod.ONLINE
    transactionId: Optional[str] = None


class ConcessionRequest(BaseModel):
    studentId: int
    feeId: Optional[int] = None
    feeType: Optional[FeeType] = None
    concessionType: ConcessionType
    amount: Optional[float] = None
    percentage: Optional[float] = None
    description: Optional[str] = None


class StudentFilters(BaseModel):
    department: Optional[int] = None
    semester: Optional[int] = None
    batch: Optional[str] = None


class BulkFeeRequest(BaseModel):
    feeType: FeeType
    amount: float
    description: Optional[str] = None
    dueDate: datetime
    academicYear: str
    semester: Optional[int] = None
    studentFilters: StudentFilters = StudentFilters()


def student_in_scope(db: Session, scope: RoleScope, student_id: Optional[int]) -> Student:
    """Students resolve to themselves; other roles must name a student they may see."""
    if isinstance(scope, StudentScope):
        student_id = scope.profile_id
    elif student_id is None:
        raise ValidationError("Student ID is required")

    student = db.query(Student).filter(Student.id == student_id).first()
    if not student:
        raise NotFoundError("Student not found")
    if not can_access_student(db, scope, student.id):
        raise AuthorizationError("Access denied")
    return student


@router.get("/structure")
async def fetch_fee_structure(
    student_id: Optional[int] = Query(None, alias="studentId"),
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    student = student_in_scope(db, scope, student_id)
    fees = db.query(Fee).filter(Fee.student_id == student.id).order_by(Fee.due_date.desc()).all()

    now = datetime.utcnow()
    for fee in fees:
        if fee.entry_kind == FeeEntryKind.CHARGE:
            fee_rules.refresh_status(fee, now)
    db.commit()

    by_type = defaultdict(list)
    for fee in fees:
        by_type[fee.fee_type.value].append(fee_to_dict(fee))

    logger.info(f"Fee structure fetched for student: {student.id} by user: {current_user.id}")
    return success_response(
        "Fee structure retrieved successfully",
        data={
            "student": student_summary(student),
            "summary": fee_rules.summarize(fees, now),
            "fees": [fee_to_dict(f) for f in fees],
            "feesByType": dict(by_type),
        },
    )


@router.post("/payment")
async def process_payment(
    body: PaymentRequest,
    request: Request,
    current_user: User = Depends(require_admin_or_student),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    fee = db.query(Fee).filter(Fee.id == body.feeId).with_for_update().first()
    if not fee:
        raise NotFoundError("Fee record not found")
    if isinstance(scope, StudentScope) and fee.student_id != scope.profile_id:
        raise AuthorizationError("Access denied")

    payment, credit = fee_rules.apply_payment(
        db,
        fee,
        body.amount,
        method=body.paymentMethod,
        processed_by=current_user.id,
        transaction_id=body.transactionId,
    )
    db.commit()
    db.refresh(fee)

    annotate_audit(
        request,
        resource_id=fee.id,
        description=f"Payment of {payment.amount} recorded on fee {fee.id}, receipt {payment.receipt_number}",
        details={"excessCredit": -credit.amount_total} if credit else None,
    )
    logger.info(f"Payment processed by user: {current_user.id}, fee: {fee.id}, amount: {payment.amount}")
    return success_response(
        "Payment processed successfully",
        data={
            "fee": fee_to_dict(fee),
            "payment": payment_to_dict(payment),
            "receiptNumber": payment.receipt_number,
            "excessCredit": fee_to_dict(credit) if credit else None,
        },
    )


@router.get("/payment-history")
async def fetch_payment_history(
    student_id: Optional[int] = Query(None, alias="studentId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    query = apply_role_scope(
        db.query(FeePayment).join(Fee, FeePayment.fee_id == Fee.id), scope, student_column=Fee.student_id
    )
    if student_id and not isinstance(scope, StudentScope):
        query = query.filter(Fee.student_id == student_id)
    query = apply_date_range(
        query,
        FeePayment.paid_at,
        parse_date(start_date, "startDate"),
        parse_date(end_date, "endDate"),
        inclusive_datetime=True,
    )
    payments, pagination = paginate(query.order_by(FeePayment.paid_at.desc()), page, limit)

    logger.info(f"Payment history fetched by user: {current_user.id}")
    return paginated_response(
        "Payment history retrieved successfully",
        [payment_to_dict(p) for p in payments],
        pagination,
    )


@router.get("/receipt/{fee_id}")
async def generate_receipt(
    fee_id: int,
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    fee = db.query(Fee).filter(Fee.id == fee_id).first()
    if not fee:
        raise NotFoundError("Fee record not found")
    if not can_access_student(db, scope, fee.student_id):
        raise AuthorizationError("Access denied")
    if fee.entry_kind != FeeEntryKind.CHARGE or fee.status != FeeStatus.PAID:
        raise ValidationError("Receipt can only be generated for paid fees")

    student = fee.student
    logger.info(f"Receipt generated by user: {current_user.id}, fee: {fee.id}")
    return success_response(
        "Receipt generated successfully",
        data={
            "receiptNumber": fee.receipt_number,
            "student": {
                **student_summary(student),
                "department": student.department.name if student.department else None,
            },
            "fee": {
                "type": fee.fee_type.value,
                "description": fee.description,
                "amount": fee.amount_total,
                "amountPaid": fee.amount_paid,
                "academicYear": fee.academic_year,
                "semester": fee.semester,
            },
            "payments": [payment_to_dict(p) for p in fee.payments],
            "paidAt": fee.paid_at,
            "generatedAt": datetime.utcnow(),
            "generatedBy": current_user.id,
        },
    )


@router.post("/concession", status_code=status.HTTP_201_CREATED)
async def create_concession(
    body: ConcessionRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    student = db.query(Student).filter(Student.id == body.studentId).first()
    if not student:
        raise NotFoundError("Student not found")

    base = db.query(Fee).filter(Fee.student_id == student.id, Fee.entry_kind == FeeEntryKind.CHARGE)
    if body.feeId is not None:
        base = base.filter(Fee.id == body.feeId)
    elif body.feeType is not None:
        base = base.filter(Fee.fee_type == body.feeType, Fee.status != FeeStatus.PAID)
    else:
        raise ValidationError("Either feeId or feeType is required")
    base_fee = base.order_by(Fee.due_date.desc()).first()
    if not base_fee:
        raise NotFoundError("No matching fee charge found for this student")

    value = fee_rules.concession_amount(base_fee.amount_total, amount=body.amount, percentage=body.percentage)
    now = datetime.utcnow()
    concession = Fee(
        student_id=student.id,
        entry_kind=FeeEntryKind.CONCESSION,
        fee_type=base_fee.fee_type,
        description=body.description or f"{body.concessionType.value} concession for {base_fee.fee_type.value}",
        academic_year=base_fee.academic_year,
        semester=base_fee.semester,
        amount_total=-value,
        amount_paid=0.0,
        due_date=now,
        status=FeeStatus.PAID,
        concession_type=body.concessionType,
        concession_percentage=body.percentage,
        related_fee_id=base_fee.id,
        paid_at=now,
        created_by=current_user.id,
    )
    db.add(concession)
    db.commit()
    db.refresh(concession)

    annotate_audit(
        request,
        resource_id=concession.id,
        description=f"Created {body.concessionType.value} concession of {value} for student {student.roll_number}",
    )
    logger.info(f"Fee concession created by admin: {current_user.id}, student: {student.id}, amount: {value}")
    return success_response("Fee concession created successfully", data=fee_to_dict(concession))


@router.post("/bulk-create", status_code=status.HTTP_201_CREATED)
async def create_bulk_fees(
    body: BulkFeeRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    if body.amount <= 0:
        raise ValidationError("Fee amount must be greater than 0")

    query = db.query(Student)
    filters = body.studentFilters
    if filters.department:
        query = query.filter(Student.department_id == filters.department)
    if filters.semester:
        query = query.filter(Student.current_semester == filters.semester)
    if filters.batch:
        query = query.filter(Student.batch == filters.batch)
    students = query.all()
    if not students:
        raise NotFoundError("No students found matching the criteria")

    due_date = body.dueDate.replace(tzinfo=None)
    now = datetime.utcnow()
    fees = [
        Fee(
            student_id=student.id,
            entry_kind=FeeEntryKind.CHARGE,
            fee_type=body.feeType,
            description=body.description,
            academic_year=body.academicYear,
            semester=body.semester or student.current_semester,
            amount_total=round(body.amount, 2),
            amount_paid=0.0,
            due_date=due_date,
            status=fee_rules.derive_fee_status(body.amount, 0.0, due_date, now),
            created_by=current_user.id,
        )
        for student in students
    ]
    db.add_all(fees)
    db.commit()

    annotate_audit(
        request,
        description=f"Created {len(fees)} fee records of type {body.feeType.value}",
        details={"amount": body.amount, "academicYear": body.academicYear},
    )
    logger.info(f"Bulk fees created by admin: {current_user.id}, count: {len(fees)}")
    return success_response(
        "Bulk fees created successfully",
        data={
            "count": len(fees),
            "feeType": body.feeType.value,
            "amount": body.amount,
            "studentsAffected": len(students),
        },
    )


@router.get("/reports")
async def fetch_fee_reports(
    report_type: str = Query(..., alias="type"),
    start_date: Optional[str] = Query(None, alias="fromDate"),
    end_date: Optional[str] = Query(None, alias="toDate"),
    department_id: Optional[int] = Query(None, alias="department"),
    semester: Optional[int] = Query(None),
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    current_user: User = Depends(require_admin_or_faculty),
    db: Session = Depends(get_db_session)
):
    if report_type not in REPORT_TYPES:
        raise ValidationError("Invalid report type")
    start = parse_date(start_date, "fromDate")
    end = parse_date(end_date, "toDate")

    if report_type == "collection":
        data = collection_report(db, start, end, department_id)
    elif report_type == "pending":
        data = outstanding_report(db, department_id, semester, academic_year, overdue_only=False)
    elif report_type == "overdue":
        data = outstanding_report(db, department_id, semester, academic_year, overdue_only=True)
    elif report_type == "concessions":
        data = concessions_report(db, start, end, department_id)
    else:
        data = summary_report(db, semester, academic_year)

    logger.info(f"Fee report generated by user: {current_user.id}, type: {report_type}")
    return success_response(
        "Fee report generated successfully",
        data={"reportType": report_type, "generatedAt": datetime.utcnow(), "data": data},
    )
