import pytest
from fastapi.testclient import TestClient

from lending.api.dependencies import get_lending_engine
from lending.api.main import app

from .conftest import BOOK_ID


@pytest.fixture
def client(engine, members):
    app.dependency_overrides[get_lending_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_borrow_and_return(client, copy, clock):
    response = client.post("/lending/borrowings", json={"copy_id": copy.copy_id, "member_id": 1})
    assert response.status_code == 201
    borrowing = response.json()
    assert borrowing["status"] == "ACTIVE"
    assert borrowing["due_date"].startswith("2024-03-15")

    clock.advance(days=20)
    response = client.post(f"/lending/borrowings/{borrowing['borrowing_id']}/return", json={})
    assert response.status_code == 200
    assert response.json()["status"] == "RETURNED"

    fines = client.get(f"/lending/borrowings/{borrowing['borrowing_id']}/fines").json()
    assert len(fines) == 1
    assert fines[0]["status"] == "PENDING"


def test_business_rule_violation_is_422(client, copy):
    client.post("/lending/borrowings", json={"copy_id": copy.copy_id, "member_id": 1})
    response = client.post("/lending/borrowings", json={"copy_id": copy.copy_id, "member_id": 2})

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "BusinessRuleViolation"
    assert body["rule"] == "BOOK_NOT_AVAILABLE"
    assert body["context"]["copy_id"] == copy.copy_id


def test_unknown_borrowing_is_404(client):
    response = client.get("/lending/borrowings/999")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_renew_overdue_is_rejected(client, copy, clock):
    borrowing = client.post("/lending/borrowings", json={"copy_id": copy.copy_id, "member_id": 1}).json()
    clock.advance(days=15)

    response = client.post(f"/lending/borrowings/{borrowing['borrowing_id']}/renew", json={})

    assert response.status_code == 422
    assert response.json()["rule"] == "CANNOT_RENEW_OVERDUE"


def test_reserve_pickup_and_cancel(client, copy):
    response = client.post("/lending/reservations", json={"book_id": BOOK_ID, "member_id": 2})
    assert response.status_code == 201
    held = response.json()
    assert held["status"] == "READY_FOR_PICKUP"

    queued = client.post("/lending/reservations", json={"book_id": BOOK_ID, "member_id": 3}).json()
    assert queued["queue_position"] == 1
    assert [r["member_id"] for r in client.get(f"/lending/books/{BOOK_ID}/queue").json()] == [3]

    response = client.post(f"/lending/reservations/{held['reservation_id']}/pickup")
    assert response.status_code == 201
    assert response.json()["member_id"] == 2

    response = client.delete(f"/lending/reservations/{queued['reservation_id']}")
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"
    assert client.get(f"/lending/books/{BOOK_ID}/queue").json() == []


def test_malformed_request_is_rejected(client):
    response = client.post("/lending/borrowings", json={"member_id": 1})
    assert response.status_code == 422


def test_health(client):
    assert client.get("/health/").json()["status"] == "healthy"

    detailed = client.get("/health/detailed").json()
    assert detailed["services"]["database"] == "healthy"
    assert detailed["policy"]["max_active_borrowings"] == 2


def test_copies_of_a_book(client, copy, engine):
    engine.register_copy(BOOK_ID, 2)
    copies = client.get(f"/lending/books/{BOOK_ID}/copies").json()
    assert [(c["copy_number"], c["status"], c["is_available"]) for c in copies] == [
        (1, "AVAILABLE", True), (2, "AVAILABLE", True)
    ]


def test_borrow_with_offset_due_date(client, copy):
    response = client.post(
        "/lending/borrowings",
        json={"copy_id": copy.copy_id, "member_id": 1, "due_date": "2030-01-01T00:00:00Z"},
    )

    assert response.status_code == 201
    due_date = response.json()["due_date"]
    assert due_date[:4] in ("2029", "2030")
    assert not due_date.endswith("Z") and "+" not in due_date


def test_offset_due_date_in_the_past_is_422(client, copy):
    response = client.post(
        "/lending/borrowings",
        json={"copy_id": copy.copy_id, "member_id": 1, "due_date": "2024-02-01T00:00:00+00:00"},
    )

    assert response.status_code == 422
    assert response.json()["rule"] == "INVALID_DUE_DATE"


def test_renew_with_offset_due_date(client, copy):
    borrowing = client.post("/lending/borrowings", json={"copy_id": copy.copy_id, "member_id": 1}).json()

    response = client.post(
        f"/lending/borrowings/{borrowing['borrowing_id']}/renew",
        json={"new_due_date": "2024-04-10T12:00:00+02:00"},
    )
    assert response.status_code == 200
    assert response.json()["renewal_count"] == 1

    response = client.post(
        f"/lending/borrowings/{borrowing['borrowing_id']}/renew",
        json={"new_due_date": "2024-03-05T12:00:00+02:00"},
    )
    assert response.status_code == 422
    assert response.json()["rule"] == "INVALID_DUE_DATE"
