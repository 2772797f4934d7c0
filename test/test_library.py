from datetime import datetime, timedelta

import config
from conftest import create_account, create_book
from database.models import BorrowRecord, UserRole


def borrow(client, account, book_id):
    return client.post("/api/library/borrow", headers=account.headers, json={"bookId": book_id})


def backdate_loan(borrow_id, days):
    """Move the due date back so the loan is exactly ``days`` days late when checked right away."""
    with config.db.get_session() as db:
        record = db.query(BorrowRecord).filter(BorrowRecord.id == borrow_id).one()
        record.due_date = datetime.utcnow() - timedelta(days=days) + timedelta(minutes=5)


def book_details(client, account, book_id):
    return client.get(f"/api/library/books/{book_id}", headers=account.headers).json()["data"]


def test_borrow_takes_a_copy(client, student):
    book_id = create_book(copies=2)

    response = borrow(client, student, book_id)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "borrowed"
    assert data["book"]["id"] == book_id

    assert book_details(client, student, book_id)["availableCopies"] == 1


def test_same_book_cannot_be_borrowed_twice(client, student):
    book_id = create_book(copies=3)
    borrow(client, student, book_id)

    response = borrow(client, student, book_id)
    assert response.status_code == 400
    assert response.json()["message"] == "You have already borrowed this book"


def test_last_copy_goes_to_one_student(client, department, student):
    book_id = create_book(copies=1)
    other = create_account(UserRole.STUDENT, department)

    assert borrow(client, student, book_id).status_code == 200
    response = borrow(client, other, book_id)
    assert response.status_code == 400
    assert response.json()["message"] == "Book is not available for borrowing"


def test_borrow_limit(client, student):
    loans = []
    for _ in range(config.BORROW_LIMIT):
        response = borrow(client, student, create_book())
        assert response.status_code == 200
        loans.append(response.json()["data"]["id"])

    extra_book = create_book()
    response = borrow(client, student, extra_book)
    assert response.status_code == 400
    assert response.json()["message"] == f"You can only borrow a maximum of {config.BORROW_LIMIT} books"

    returned = client.post("/api/library/return", headers=student.headers, json={"borrowId": loans[0]})
    assert returned.status_code == 200
    assert borrow(client, student, extra_book).status_code == 200


def test_overdue_loan_blocks_new_borrows(client, student):
    loan = borrow(client, student, create_book()).json()["data"]
    backdate_loan(loan["id"], days=1)

    response = borrow(client, student, create_book())
    assert response.status_code == 400
    assert "overdue" in response.json()["message"]


def test_only_students_borrow(client, faculty, librarian):
    book_id = create_book()
    assert borrow(client, faculty, book_id).status_code == 403
    assert borrow(client, librarian, book_id).status_code == 403


def test_late_return_records_fine(client, student):
    book_id = create_book(copies=1)
    loan = borrow(client, student, book_id).json()["data"]
    backdate_loan(loan["id"], days=3)

    response = client.post("/api/library/return", headers=student.headers, json={"borrowId": loan["id"]})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "returned"
    assert data["daysOverdue"] == 3
    assert data["fine"] == 3 * config.FINE_PER_DAY

    assert book_details(client, student, book_id)["availableCopies"] == 1

    again = client.post("/api/library/return", headers=student.headers, json={"borrowId": loan["id"]})
    assert again.status_code == 400


def test_return_permissions(client, department, student, faculty, librarian):
    loan = borrow(client, student, create_book()).json()["data"]
    other = create_account(UserRole.STUDENT, department)

    assert client.post(
        "/api/library/return", headers=other.headers, json={"borrowId": loan["id"]}
    ).status_code == 403
    assert client.post(
        "/api/library/return", headers=faculty.headers, json={"borrowId": loan["id"]}
    ).status_code == 403
    assert client.post(
        "/api/library/return", headers=librarian.headers, json={"borrowId": loan["id"]}
    ).status_code == 200


def test_renewal_extends_due_date_up_to_limit(client, student):
    loan = borrow(client, student, create_book()).json()["data"]

    for count in range(1, config.MAX_RENEWALS + 1):
        response = client.post("/api/library/renew", headers=student.headers, json={"borrowId": loan["id"]})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["renewalCount"] == count
        assert data["dueDate"] > data["previousDueDate"]

    response = client.post("/api/library/renew", headers=student.headers, json={"borrowId": loan["id"]})
    assert response.status_code == 400


def test_overdue_loan_cannot_be_renewed(client, student):
    loan = borrow(client, student, create_book()).json()["data"]
    backdate_loan(loan["id"], days=2)

    response = client.post("/api/library/renew", headers=student.headers, json={"borrowId": loan["id"]})
    assert response.status_code == 400
    assert response.json()["message"] == "Overdue books cannot be renewed"


def test_borrow_history_shows_live_overdue_figures(client, student):
    loan = borrow(client, student, create_book()).json()["data"]
    backdate_loan(loan["id"], days=2)

    history = client.get("/api/library/borrow-history", headers=student.headers).json()
    assert history["pagination"]["totalItems"] == 1
    assert history["data"][0]["isOverdue"] is True
    assert history["data"][0]["daysOverdue"] == 2


def test_inventory_add_adjust_and_remove(client, librarian, student):
    added = client.post(
        "/api/library/inventory",
        headers=librarian.headers,
        json={
            "action": "add",
            "bookData": {
                "isbn": "9780262033848", "title": "Introduction to Algorithms",
                "authors": ["Cormen"], "category": "Computer Science", "totalCopies": 2,
            },
        },
    )
    assert added.status_code == 200
    assert added.json()["message"] == "Inventory add completed successfully"
    book_id = added.json()["data"]["id"]

    loan = borrow(client, student, book_id).json()["data"]

    shrink = client.post(
        "/api/library/inventory",
        headers=librarian.headers,
        json={"action": "adjust_copies", "bookData": {"bookId": book_id, "adjustment": -2}},
    )
    assert shrink.status_code == 400

    blocked = client.post(
        "/api/library/inventory", headers=librarian.headers, json={"action": "remove", "bookData": {"bookId": book_id}}
    )
    assert blocked.status_code == 400

    client.post("/api/library/return", headers=student.headers, json={"borrowId": loan["id"]})
    removed = client.post(
        "/api/library/inventory", headers=librarian.headers, json={"action": "remove", "bookData": {"bookId": book_id}}
    )
    assert removed.json()["data"]["status"] == "removed"

    catalogue = client.get("/api/library/books", headers=student.headers).json()
    assert book_id not in [b["id"] for b in catalogue["data"]]


def test_duplicate_isbn_is_rejected(client, librarian):
    payload = {
        "action": "add",
        "bookData": {"isbn": "9780131103627", "title": "The C Programming Language", "category": "Computer Science"},
    }
    assert client.post("/api/library/inventory", headers=librarian.headers, json=payload).status_code == 200
    response = client.post("/api/library/inventory", headers=librarian.headers, json=payload)
    assert response.status_code == 400


def test_students_cannot_manage_inventory(client, student):
    response = client.post(
        "/api/library/inventory", headers=student.headers, json={"action": "remove", "bookData": {"bookId": 1}}
    )
    assert response.status_code == 403
