from datetime import datetime, timedelta

import pytest

from core.errors import ValidationError
from database.models import Fee, FeeEntryKind, FeeStatus, FeeType, PaymentMethod
from services import fee_rules

NOW = datetime(2024, 10, 1, 12, 0)


class RecordingSession:
    def __init__(self):
        self.added = []

    def add(self, obj):
        self.added.append(obj)


def charge(total=1000.0, paid=0.0, due=None, status=FeeStatus.PENDING):
    return Fee(
        id=1,
        student_id=7,
        entry_kind=FeeEntryKind.CHARGE,
        fee_type=FeeType.TUITION,
        academic_year="2024-2025",
        semester=1,
        amount_total=total,
        amount_paid=paid,
        due_date=due or NOW + timedelta(days=30),
        status=status,
    )


@pytest.mark.parametrize("total, paid, due_offset, expected", [
    (1000, 1000, 10, FeeStatus.PAID),
    (1000, 1200, -10, FeeStatus.PAID),
    (1000, 300, -10, FeeStatus.PARTIAL),
    (1000, 0, -1, FeeStatus.OVERDUE),
    (1000, 0, 1, FeeStatus.PENDING),
])
def test_status_is_derived_from_amounts_and_due_date(total, paid, due_offset, expected):
    due = NOW + timedelta(days=due_offset)
    assert fee_rules.derive_fee_status(total, paid, due, NOW) == expected


def test_partial_payment_updates_status_without_receipt_on_fee():
    fee = charge()
    payment, credit = fee_rules.apply_payment(RecordingSession(), fee, 400, PaymentMethod.UPI, now=NOW)

    assert payment.amount == 400
    assert payment.receipt_number.startswith("RCP20241001")
    assert credit is None
    assert fee.amount_paid == 400
    assert fee.status == FeeStatus.PARTIAL
    assert fee.receipt_number is None


def test_overpayment_creates_negative_excess_credit():
    fee = charge(total=1000, paid=600, status=FeeStatus.PARTIAL)
    session = RecordingSession()
    payment, credit = fee_rules.apply_payment(session, fee, 500, PaymentMethod.CASH, now=NOW)

    assert payment.amount == 400
    assert fee.status == FeeStatus.PAID
    assert fee.paid_at == NOW
    assert credit.entry_kind == FeeEntryKind.EXCESS_CREDIT
    assert credit.amount_total == -100
    assert credit.related_fee_id == fee.id
    assert session.added == [payment, credit]


def test_paid_fee_rejects_further_payment():
    fee = charge(total=500, paid=500, status=FeeStatus.PAID)
    with pytest.raises(ValidationError):
        fee_rules.split_payment(fee, 10)


def test_payment_must_be_positive():
    with pytest.raises(ValidationError):
        fee_rules.split_payment(charge(), 0)


def test_only_charges_accept_payments():
    credit = charge(total=-100, status=FeeStatus.PAID)
    credit.entry_kind = FeeEntryKind.CONCESSION
    with pytest.raises(ValidationError):
        fee_rules.split_payment(credit, 10)


def test_concession_from_percentage_or_amount():
    assert fee_rules.concession_amount(2000, percentage=25) == 500
    assert fee_rules.concession_amount(2000, amount=300) == 300


@pytest.mark.parametrize("kwargs", [
    {},
    {"amount": 100, "percentage": 10},
    {"percentage": 0},
    {"percentage": 120},
    {"amount": -5},
    {"amount": 2500},
])
def test_invalid_concessions(kwargs):
    with pytest.raises(ValidationError):
        fee_rules.concession_amount(2000, **kwargs)


def test_summary_subtracts_credits_from_amount_due():
    overdue = charge(total=1000, paid=0, due=NOW - timedelta(days=3))
    partial = charge(total=500, paid=200)
    concession = charge(total=-150, status=FeeStatus.PAID)
    concession.entry_kind = FeeEntryKind.CONCESSION

    summary = fee_rules.summarize([overdue, partial, concession], NOW)

    assert summary["totalAmount"] == 1500
    assert summary["paidAmount"] == 200
    assert summary["credits"] == 150
    assert summary["dueAmount"] == 1150
    assert summary["overdueCount"] == 1
