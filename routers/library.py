"""
Library APIs: catalogue, circulation (borrow, return, renew), history and inventory.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy import String, cast
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth.dependencies import (
    get_db_session, get_role_scope, require_authenticated, require_library_staff, require_student,
)
from core.errors import AuthorizationError, NotFoundError, ValidationError
from core.responses import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, paginate, paginated_response, success_response
from core.validators import parse_date, parse_enum
from database.models import Book, BookCategory, BookStatus, BorrowRecord, BorrowStatus, User
from services.audit_service import annotate_audit, audited_route
from services.library_service import LibraryService, overdue_snapshot
from services.scope import FacultyScope, RoleScope, StudentScope, apply_date_range, apply_role_scope, apply_search
from services.serializers import book_to_dict, borrow_to_dict
from core.logger import logger


router = APIRouter(prefix="/api/library", tags=["library"], route_class=audited_route("Book"))

INVENTORY_ACTIONS = ("add", "update", "remove", "adjust_copies")


class BorrowRequest(BaseModel):
    bookId: int


class ReturnRequest(BaseModel):
    borrowId: int
    notes: Optional[str] = None


class RenewRequest(BaseModel):
    borrowId: int


class BookData(BaseModel):
    bookId: Optional[int] = None
    isbn: Optional[str] = None
    title: Optional[str] = None
    authors: Optional[List[str]] = None
    publisher: Optional[str] = None
    edition: Optional[str] = None
    language: Optional[str] = None
    category: Optional[BookCategory] = None
    subject: Optional[str] = None
    totalCopies: Optional[int] = None
    location: Optional[str] = None
    publishedYear: Optional[int] = None
    price: Optional[float] = None
    status: Optional[BookStatus] = None
    adjustment: Optional[int] = None


class InventoryRequest(BaseModel):
    action: str
    bookData: BookData


def get_book_or_404(db: Session, book_id: Optional[int]) -> Book:
    if book_id is None:
        raise ValidationError("bookId is required")
    book = db.query(Book).filter(Book.id == book_id).first()
    if not book:
        raise NotFoundError("Book not found")
    return book


def get_borrow_or_404(db: Session, borrow_id: int) -> BorrowRecord:
    record = db.query(BorrowRecord).filter(BorrowRecord.id == borrow_id).first()
    if not record:
        raise NotFoundError("Borrow record not found")
    return record


@router.get("/books")
async def list_books(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    availability: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_authenticated),
    db: Session = Depends(get_db_session)
):
    query = db.query(Book).filter(Book.status != BookStatus.REMOVED)
    query = apply_search(query, search, Book.title, cast(Book.authors, String), Book.isbn, Book.publisher, Book.subject)
    if category and category != "all":
        query = query.filter(Book.category == parse_enum(BookCategory, category, "category"))
    if availability == "available":
        query = query.filter(Book.available_copies > 0)
    elif availability == "unavailable":
        query = query.filter(Book.available_copies <= 0)

    books, pagination = paginate(query.order_by(Book.title.asc()), page, limit)
    logger.info(f"Books fetched by user: {current_user.id}")
    return paginated_response("Books retrieved successfully", [book_to_dict(b) for b in books], pagination)


@router.get("/books/{book_id}")
async def fetch_book_details(
    book_id: int,
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    book = get_book_or_404(db, book_id)
    data = book_to_dict(book)

    if isinstance(scope, StudentScope):
        data["currentBorrowers"] = []
    else:
        current = db.query(BorrowRecord).filter(
            BorrowRecord.book_id == book.id,
            BorrowRecord.status == BorrowStatus.BORROWED
        ).order_by(BorrowRecord.due_date.asc()).all()
        data["currentBorrowers"] = [borrow_to_dict(r, include_student=True) for r in current]

    return success_response("Book details retrieved successfully", data=data)


@router.get("/availability/{book_id}")
async def check_book_availability(
    book_id: int,
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    book = get_book_or_404(db, book_id)
    current = db.query(BorrowRecord).filter(
        BorrowRecord.book_id == book.id,
        BorrowRecord.status == BorrowStatus.BORROWED
    ).order_by(BorrowRecord.due_date.asc()).all()

    estimated = current[0].due_date if book.available_copies == 0 and current else None
    logger.info(f"Book availability checked by user: {current_user.id}, book: {book.id}")
    return success_response(
        "Book availability retrieved successfully",
        data={
            "book": {"id": book.id, "title": book.title, "authors": book.authors or [], "isbn": book.isbn},
            "availability": {
                "isAvailable": book.status == BookStatus.AVAILABLE and book.available_copies > 0,
                "totalCopies": book.total_copies,
                "availableCopies": book.available_copies,
                "borrowedCopies": len(current),
                "estimatedAvailableDate": estimated,
            },
            "currentBorrows": [] if isinstance(scope, StudentScope) else [
                borrow_to_dict(r, include_student=True) for r in current
            ],
        },
    )


@router.post("/borrow")
async def borrow_book(
    body: BorrowRequest,
    request: Request,
    current_user: User = Depends(require_student),
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    record = LibraryService.borrow(db, scope.profile_id, body.bookId, issued_by=current_user.id)
    db.commit()
    db.refresh(record)

    annotate_audit(
        request,
        resource_id=record.book_id,
        description=f"Book borrowed: {record.book.title}, due {record.due_date.date().isoformat()}",
    )
    logger.info(f"Book borrowed by student: {scope.profile_id}, book: {record.book_id}")
    return success_response("Book borrowed successfully", data=borrow_to_dict(record))


@router.post("/return")
async def return_book(
    body: ReturnRequest,
    request: Request,
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    record = get_borrow_or_404(db, body.borrowId)
    if isinstance(scope, StudentScope):
        if record.student_id != scope.profile_id:
            raise AuthorizationError("You can only return your own books")
    elif isinstance(scope, FacultyScope):
        raise AuthorizationError("Access denied")

    LibraryService.return_book(db, record, returned_to=current_user.id, notes=body.notes)
    db.commit()
    db.refresh(record)

    annotate_audit(
        request,
        resource_id=record.book_id,
        description=f"Book returned: {record.book.title}" + (f", fine {record.fine_amount}" if record.fine_amount else ""),
    )
    logger.info(f"Book returned, borrow record: {record.id}, by user: {current_user.id}")
    return success_response("Book returned successfully", data=borrow_to_dict(record))


@router.post("/renew")
async def renew_book(
    body: RenewRequest,
    request: Request,
    current_user: User = Depends(require_student),
    scope: StudentScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    record = get_borrow_or_404(db, body.borrowId)
    if record.student_id != scope.profile_id:
        raise AuthorizationError("You can only renew your own books")

    record, previous_due = LibraryService.renew(db, record)
    db.commit()
    db.refresh(record)

    annotate_audit(
        request,
        resource_id=record.book_id,
        description=f"Book renewed: {record.book.title}, due {record.due_date.date().isoformat()}",
    )
    logger.info(f"Book renewed by student: {scope.profile_id}, borrow record: {record.id}")
    return success_response(
        "Book renewed successfully",
        data={**borrow_to_dict(record), "previousDueDate": previous_due},
    )


@router.get("/borrow-history")
async def fetch_borrow_history(
    student_id: Optional[int] = Query(None, alias="studentId"),
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[str] = Query(None, alias="fromDate"),
    end_date: Optional[str] = Query(None, alias="toDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_authenticated),
    scope: RoleScope = Depends(get_role_scope),
    db: Session = Depends(get_db_session)
):
    if isinstance(scope, FacultyScope):
        raise AuthorizationError("Access denied")

    query = apply_role_scope(
        db.query(BorrowRecord), scope, student_column=BorrowRecord.student_id, allow_librarian=True
    )
    if student_id and not isinstance(scope, StudentScope):
        query = query.filter(BorrowRecord.student_id == student_id)
    status_enum = parse_enum(BorrowStatus, status_filter, "status")
    if status_enum:
        query = query.filter(BorrowRecord.status == status_enum)
    query = apply_date_range(
        query,
        BorrowRecord.borrow_date,
        parse_date(start_date, "fromDate"),
        parse_date(end_date, "toDate"),
        inclusive_datetime=True,
    )
    records, pagination = paginate(query.order_by(BorrowRecord.borrow_date.desc()), page, limit)

    items = []
    now = datetime.utcnow()
    for record in records:
        item = borrow_to_dict(record, include_student=not isinstance(scope, StudentScope))
        if record.status == BorrowStatus.BORROWED:
            item.update(overdue_snapshot(record, now))
        items.append(item)

    logger.info(f"Borrow history fetched by user: {current_user.id}")
    return paginated_response("Borrow history retrieved successfully", items, pagination)


def add_book(db: Session, data: BookData, user_id: int) -> Book:
    if not data.isbn or not data.title or data.category is None:
        raise ValidationError("ISBN, title and category are required")
    total = data.totalCopies if data.totalCopies is not None else 1
    if total < 1:
        raise ValidationError("Total copies must be at least 1")
    book = Book(
        isbn=data.isbn.strip(),
        title=data.title,
        authors=data.authors or [],
        publisher=data.publisher,
        edition=data.edition,
        language=data.language or "English",
        category=data.category,
        subject=data.subject,
        total_copies=total,
        available_copies=total,
        location=data.location,
        published_year=data.publishedYear,
        price=data.price,
        added_by=user_id,
    )
    db.add(book)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ValidationError("A book with this ISBN already exists")
    return book


def update_book(book: Book, data: BookData):
    for field, attr in (
        ("title", "title"),
        ("authors", "authors"),
        ("publisher", "publisher"),
        ("edition", "edition"),
        ("language", "language"),
        ("category", "category"),
        ("subject", "subject"),
        ("location", "location"),
        ("publishedYear", "published_year"),
        ("price", "price"),
        ("status", "status"),
    ):
        value = getattr(data, field)
        if value is not None:
            setattr(book, attr, value)
    if data.totalCopies is not None:
        LibraryService.adjust_copies(book, data.totalCopies - book.total_copies)


@router.post("/inventory")
async def manage_inventory(
    body: InventoryRequest,
    request: Request,
    current_user: User = Depends(require_library_staff),
    db: Session = Depends(get_db_session)
):
    action = body.action
    if action not in INVENTORY_ACTIONS:
        raise ValidationError("Invalid inventory action")
    data = body.bookData

    if action == "add":
        book = add_book(db, data, current_user.id)
        details = f"Added new book: {book.title}"
    elif action == "update":
        book = get_book_or_404(db, data.bookId)
        update_book(book, data)
        details = f"Updated book: {book.title}"
    elif action == "remove":
        book = get_book_or_404(db, data.bookId)
        if book.available_copies < book.total_copies:
            raise ValidationError("Cannot remove book with active borrows")
        book.status = BookStatus.REMOVED
        details = f"Removed book: {book.title}"
    else:
        book = get_book_or_404(db, data.bookId)
        if not data.adjustment:
            raise ValidationError("adjustment must be a non-zero integer")
        LibraryService.adjust_copies(book, data.adjustment)
        details = f"Adjusted copies for {book.title}: {data.adjustment:+d}"

    book.updated_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("A book with this ISBN already exists")
    db.refresh(book)

    annotate_audit(request, resource_id=book.id, description=f"Inventory {action}: {details}")
    logger.info(f"Inventory managed by user: {current_user.id}, action: {action}")
    return success_response(f"Inventory {action} completed successfully", data=book_to_dict(book))
