"""
Library circulation: borrow eligibility, loans, returns, renewals and fines.
"""
import math
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from core.errors import NotFoundError, ValidationError
from database.models import Book, BookStatus, BorrowRecord, BorrowStatus
from core.logger import logger
import config


def days_late(due_date: datetime, when: datetime) -> int:
    """Whole days past ``due_date``, rounded up. Zero when not late."""
    if when <= due_date:
        return 0
    return math.ceil((when - due_date).total_seconds() / 86400)


def compute_fine(days_overdue: int, fine_per_day: float = None) -> float:
    rate = config.FINE_PER_DAY if fine_per_day is None else fine_per_day
    return round(days_overdue * rate, 2)


def overdue_snapshot(record: BorrowRecord, now: Optional[datetime] = None) -> dict:
    """Live overdue figures for an open loan (stored figures are only set on return)."""
    now = now or datetime.utcnow()
    if record.status != BorrowStatus.BORROWED:
        return {
            "isOverdue": record.is_overdue,
            "daysOverdue": record.days_overdue,
            "fine": record.fine_amount,
        }
    late = days_late(record.due_date, now)
    return {"isOverdue": late > 0, "daysOverdue": late, "fine": compute_fine(late)}


class LibraryService:
    """Circulation operations. Callers commit."""

    @staticmethod
    def active_borrow_count(db: Session, student_id: int) -> int:
        return db.query(BorrowRecord).filter(
            BorrowRecord.student_id == student_id,
            BorrowRecord.status == BorrowStatus.BORROWED
        ).count()

    @staticmethod
    def has_overdue(db: Session, student_id: int, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return db.query(BorrowRecord.id).filter(
            BorrowRecord.student_id == student_id,
            BorrowRecord.status == BorrowStatus.BORROWED,
            BorrowRecord.due_date < now
        ).first() is not None

    @staticmethod
    def check_eligibility(db: Session, student_id: int, book: Book, now: Optional[datetime] = None):
        """
        Raises:
            ValidationError: Book unavailable, already held, borrow limit reached, or an overdue loan
        """
        if book.status != BookStatus.AVAILABLE or book.available_copies <= 0:
            raise ValidationError("Book is not available for borrowing")

        already = db.query(BorrowRecord.id).filter(
            BorrowRecord.student_id == student_id,
            BorrowRecord.book_id == book.id,
            BorrowRecord.status == BorrowStatus.BORROWED
        ).first()
        if already:
            raise ValidationError("You have already borrowed this book")

        if LibraryService.active_borrow_count(db, student_id) >= config.BORROW_LIMIT:
            raise ValidationError(f"You can only borrow a maximum of {config.BORROW_LIMIT} books")

        if LibraryService.has_overdue(db, student_id, now):
            raise ValidationError("You have overdue books. Please return them before borrowing new books")

    @staticmethod
    def borrow(
        db: Session,
        student_id: int,
        book_id: int,
        issued_by: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> BorrowRecord:
        """
        Lend one copy of ``book_id`` to ``student_id``.

        The copy count is decremented with a single conditional UPDATE, so two
        requests racing for the last copy cannot both succeed.
        """
        now = now or datetime.utcnow()
        book = db.query(Book).filter(Book.id == book_id).first()
        if not book:
            raise NotFoundError("Book not found")

        LibraryService.check_eligibility(db, student_id, book, now)

        result = db.execute(
            update(Book)
            .where(Book.id == book_id, Book.available_copies > 0, Book.status == BookStatus.AVAILABLE)
            .values(available_copies=Book.available_copies - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ValidationError("Book is not available for borrowing")

        record = BorrowRecord(
            student_id=student_id,
            book_id=book_id,
            borrow_date=now,
            due_date=now + timedelta(days=config.LOAN_PERIOD_DAYS),
            status=BorrowStatus.BORROWED,
            issued_by=issued_by,
        )
        db.add(record)
        db.flush()
        db.refresh(book)
        return record

    @staticmethod
    def return_book(
        db: Session,
        record: BorrowRecord,
        returned_to: Optional[int] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> BorrowRecord:
        """Close a loan; overdue days and fine are fixed at this point."""
        if record.status != BorrowStatus.BORROWED:
            raise ValidationError("Book has already been returned")

        now = now or datetime.utcnow()
        late = days_late(record.due_date, now)

        record.status = BorrowStatus.RETURNED
        record.return_date = now
        record.is_overdue = late > 0
        record.days_overdue = late
        record.fine_amount = compute_fine(late)
        record.returned_to = returned_to
        if notes:
            record.notes = notes[:255]

        db.execute(
            update(Book)
            .where(Book.id == record.book_id, Book.available_copies < Book.total_copies)
            .values(available_copies=Book.available_copies + 1)
            .execution_options(synchronize_session=False)
        )
        db.flush()
        if record.book is not None:
            db.refresh(record.book)
        if late:
            logger.info(f"Borrow record {record.id} returned {late} days late, fine {record.fine_amount}")
        return record

    @staticmethod
    def renew(db: Session, record: BorrowRecord, now: Optional[datetime] = None) -> Tuple[BorrowRecord, datetime]:
        """
        Extend a loan by the loan period.

        Returns:
            Tuple of (record, previous due date)
        """
        now = now or datetime.utcnow()
        if record.status != BorrowStatus.BORROWED:
            raise ValidationError("Only borrowed books can be renewed")
        if record.renewal_count >= config.MAX_RENEWALS:
            raise ValidationError(f"Maximum renewal limit ({config.MAX_RENEWALS}) reached")
        if now > record.due_date:
            raise ValidationError("Overdue books cannot be renewed")

        previous_due = record.due_date
        record.due_date = previous_due + timedelta(days=config.LOAN_PERIOD_DAYS)
        record.renewal_count += 1
        db.flush()
        return record, previous_due

    @staticmethod
    def adjust_copies(book: Book, adjustment: int):
        """Change the total copy count, keeping the borrowed count intact."""
        borrowed = book.total_copies - book.available_copies
        new_total = book.total_copies + adjustment
        if new_total < borrowed:
            raise ValidationError("Cannot reduce copies below currently borrowed amount")
        if new_total < 0:
            raise ValidationError("Total copies cannot be negative")
        book.total_copies = new_total
        book.available_copies = new_total - borrowed
