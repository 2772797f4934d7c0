"""
Fee ledger rules.

Charges, concessions and excess credits share the ``fees`` table and are told
apart by ``entry_kind``; credits carry a negative ``amount_total``. Payments
against a charge are stored as ``FeePayment`` rows.
"""
import secrets
from datetime import datetime
from typing import Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from core.errors import ValidationError
from database.models import Fee, FeeEntryKind, FeePayment, FeeStatus, PaymentMethod


def derive_fee_status(amount_total: float, amount_paid: float, due_date: datetime, now: Optional[datetime] = None) -> FeeStatus:
    """Status as a pure function of total, paid and due date."""
    now = now or datetime.utcnow()
    if amount_paid >= amount_total:
        return FeeStatus.PAID
    if amount_paid > 0:
        return FeeStatus.PARTIAL
    if due_date is not None and now > due_date:
        return FeeStatus.OVERDUE
    return FeeStatus.PENDING


def amount_due(amount_total: float, amount_paid: float) -> float:
    return max(amount_total - amount_paid, 0.0)


def refresh_status(fee: Fee, now: Optional[datetime] = None) -> FeeStatus:
    fee.status = derive_fee_status(fee.amount_total, fee.amount_paid, fee.due_date, now)
    return fee.status


def generate_receipt_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    return f"RCP{now.strftime('%Y%m%d%H%M%S')}{secrets.token_hex(3).upper()}"


def split_payment(fee: Fee, amount: float) -> Tuple[float, float]:
    """
    Split ``amount`` into the part applied to ``fee`` and the surplus.

    Raises:
        ValidationError: Non-positive amount, fee already paid, or not a charge
    """
    if amount is None or amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    if fee.entry_kind != FeeEntryKind.CHARGE:
        raise ValidationError("Payments can only be made against charges")
    if fee.status == FeeStatus.PAID or fee.amount_paid >= fee.amount_total:
        raise ValidationError("Fee has already been paid")

    due = amount_due(fee.amount_total, fee.amount_paid)
    applied = min(amount, due)
    return applied, round(amount - applied, 2)


def apply_payment(
    db: Session,
    fee: Fee,
    amount: float,
    method: PaymentMethod,
    processed_by: Optional[int] = None,
    transaction_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[FeePayment, Optional[Fee]]:
    """
    Record a payment against ``fee`` and recompute its status.

    Any surplus beyond the amount due becomes a separate ``excess_credit``
    entry with a negative amount. The caller commits.

    Returns:
        Tuple of (payment row, excess credit entry or None)
    """
    now = now or datetime.utcnow()
    applied, surplus = split_payment(fee, amount)
    receipt = generate_receipt_number(now)

    payment = FeePayment(
        fee_id=fee.id,
        amount=applied,
        method=method,
        transaction_id=transaction_id,
        receipt_number=receipt,
        paid_at=now,
        processed_by=processed_by,
    )
    db.add(payment)

    fee.amount_paid = round(fee.amount_paid + applied, 2)
    refresh_status(fee, now)
    if fee.status == FeeStatus.PAID:
        fee.paid_at = now
        fee.receipt_number = receipt

    credit = None
    if surplus > 0:
        credit = Fee(
            student_id=fee.student_id,
            entry_kind=FeeEntryKind.EXCESS_CREDIT,
            fee_type=fee.fee_type,
            description=f"Excess payment on fee #{fee.id}",
            academic_year=fee.academic_year,
            semester=fee.semester,
            amount_total=-surplus,
            amount_paid=0.0,
            due_date=now,
            status=FeeStatus.PAID,
            related_fee_id=fee.id,
            created_by=processed_by,
        )
        db.add(credit)

    return payment, credit


def concession_amount(base_amount: float, amount: Optional[float] = None, percentage: Optional[float] = None) -> float:
    """
    Positive concession value from a flat amount or a percentage of ``base_amount``.

    Raises:
        ValidationError: Neither or both given, or out of range
    """
    if (amount is None) == (percentage is None):
        raise ValidationError("Provide either a concession amount or a percentage")
    if percentage is not None:
        if percentage <= 0 or percentage > 100:
            raise ValidationError("Concession percentage must be between 0 and 100")
        return round(base_amount * percentage / 100, 2)
    if amount <= 0:
        raise ValidationError("Concession amount must be greater than 0")
    if amount > base_amount:
        raise ValidationError("Concession cannot exceed the fee amount")
    return round(amount, 2)


def summarize(fees: Iterable[Fee], now: Optional[datetime] = None) -> dict:
    """
    Balance summary over a student's ledger. Credits reduce the amount due.
    """
    now = now or datetime.utcnow()
    total = paid = credits = 0.0
    overdue = 0
    for fee in fees:
        if fee.entry_kind == FeeEntryKind.CHARGE:
            total += fee.amount_total
            paid += fee.amount_paid
            if derive_fee_status(fee.amount_total, fee.amount_paid, fee.due_date, now) == FeeStatus.OVERDUE:
                overdue += 1
        else:
            credits += -fee.amount_total
    return {
        "totalAmount": round(total, 2),
        "paidAmount": round(paid, 2),
        "credits": round(credits, 2),
        "dueAmount": round(max(total - paid - credits, 0.0), 2),
        "overdueCount": overdue,
    }
