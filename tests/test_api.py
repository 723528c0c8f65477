from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from receiptbot import crud
from receiptbot.db import get_db
from receiptbot.domain.entities import ExpenseRecord
from receiptbot.main import app

from conftest import GROUP_CHAT_ID, recognized


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_link_job_is_queued(client):
    response = client.post(
        "/api/jobs",
        json={"telegram_chat_id": GROUP_CHAT_ID, "submitter_id": 7, "payload": "  https://example.com/r/1 "},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["payload_kind"] == "link"
    assert body["payload"] == "https://example.com/r/1"


def test_text_job_is_queued(client):
    response = client.post(
        "/api/jobs",
        json={"telegram_chat_id": GROUP_CHAT_ID, "submitter_id": 7, "kind": "text", "payload": "BREAD 3.00"},
    )

    assert response.status_code == 201
    assert response.json()["payload_kind"] == "text"


@pytest.mark.parametrize(
    "body",
    [
        {"telegram_chat_id": GROUP_CHAT_ID, "submitter_id": 7, "payload": "not a link"},
        {"telegram_chat_id": GROUP_CHAT_ID, "submitter_id": 7, "payload": "   "},
        {"telegram_chat_id": GROUP_CHAT_ID, "submitter_id": 7, "kind": "photo", "payload": "file-id"},
    ],
)
def test_invalid_jobs_are_rejected(client, body):
    assert client.post("/api/jobs", json=body).status_code == 422


def test_job_detail(client, session_factory, group_id, seed_job):
    job_id = seed_job(group_id, [recognized("Bread", "3.00", "Groceries"), recognized("Milk", "1.20", "Groceries")])

    response = client.get(f"/api/jobs/{job_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "processing"
    assert [item["name_localized"] for item in body["items"]] == ["Bread", "Milk"]
    assert body["items"][0]["status"] == "pending"
    assert body["summary"] is None
    assert body["correction_history"] == []


def test_missing_job(client):
    assert client.get("/api/jobs/999").status_code == 404


def test_group_jobs_filtered_by_status(client, session_factory, group_id, seed_job):
    processing = seed_job(group_id, [recognized("Bread", "3.00", "Groceries")])
    client.post("/api/jobs", json={"telegram_chat_id": GROUP_CHAT_ID, "submitter_id": 7, "payload": "https://a.example"})

    all_jobs = client.get(f"/api/groups/{group_id}/jobs").json()
    only_processing = client.get(f"/api/groups/{group_id}/jobs", params={"status": "processing"}).json()

    assert len(all_jobs) == 2
    assert [job["id"] for job in only_processing] == [processing]
    assert client.get("/api/groups/999/jobs").status_code == 404


def test_group_expenses(client, session_factory, group_id):
    with session_factory() as db:
        crud.create_expense(
            db,
            group_id,
            ExpenseRecord(
                date=date(2026, 10, 1),
                category="Groceries",
                comment="Bread",
                amount=Decimal("3.00"),
                currency="EUR",
            ),
        )

    [expense] = client.get(f"/api/groups/{group_id}/expenses").json()

    assert expense["category"] == "Groceries"
    assert expense["amount"] == 3.0
    assert expense["date"] == "2026-10-01"
