"""Integration tests for the FastAPI web application."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from fastapi.testclient import TestClient

from fakes import (
    NOW,
    FrozenClock,
    StubGmail,
    StubLLM,
    StubRefresher,
    make_credential,
    make_raw_message,
    push_envelope,
)
from lead_intake.core.config import (
    AppSettings,
    AutomationSettings,
    GoogleSettings,
    StorageSettings,
    WebSettings,
)
from lead_intake.core.models import Lead, PendingEmail, PendingStatus
from lead_intake.notify import EventDispatcher
from lead_intake.storage import SqliteCrmRepository
from lead_intake.web import create_app

LEAD_VERDICT = '{"classification": "lead", "confidence": 0.8, "reason": "wants a quote"}'
API_HEADERS = {"Authorization": "Bearer api-secret"}


def _settings(db_path: Path, **web) -> AppSettings:
    return AppSettings(storage=StorageSettings(db_path=db_path), web=WebSettings(**web))


def _client(settings: AppSettings, gmail: StubGmail | None = None) -> TestClient:
    app = create_app(
        settings,
        gmail_client=gmail or StubGmail(),
        oauth_client=StubRefresher(),
        llm_client=StubLLM(output=LEAD_VERDICT),
        dispatcher=EventDispatcher(AutomationSettings()),
        clock=FrozenClock(),
    )
    return TestClient(app)


def _seed_pending(db_path: Path, pending_id: str, status: PendingStatus) -> None:
    with SqliteCrmRepository(StorageSettings(db_path=db_path)) as repository:
        repository.insert_pending_email(
            PendingEmail(
                id=pending_id,
                user_id="user-1",
                from_email=f"{pending_id}@example.com",
                from_name="Sender",
                subject="Question",
                content="Can you help?",
                gmail_message_id=f"g-{pending_id}",
                received_at=NOW - timedelta(hours=1),
                status=status,
            )
        )


def test_health_reports_configuration(tmp_path: Path) -> None:
    client = _client(_settings(tmp_path / "web.db"))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "classifier": "stub", "automation": False}


def test_health_reports_missing_classifier(tmp_path: Path) -> None:
    app = create_app(
        _settings(tmp_path / "web.db"),
        gmail_client=StubGmail(),
        oauth_client=StubRefresher(),
        dispatcher=EventDispatcher(AutomationSettings()),
        clock=FrozenClock(),
    )

    response = TestClient(app).get("/health")

    assert response.json()["classifier"] is None


def test_webhook_processes_notification(tmp_path: Path) -> None:
    db_path = tmp_path / "web.db"
    with SqliteCrmRepository(StorageSettings(db_path=db_path)) as repository:
        repository.upsert_credential(make_credential(history_id="100"))
        repository.insert_lead(Lead(id="lead-1", email="jane@acme.com"))
    gmail = StubGmail(
        [
            make_raw_message("m-1", sender="jane@acme.com"),
            make_raw_message("m-2", sender="someone@new.io"),
        ]
    )
    client = _client(_settings(db_path, webhook_token="push-secret"), gmail)

    response = client.post(
        "/webhooks/gmail?token=push-secret", json=push_envelope("m1@example.com", 250)
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "processed": 2}
    with SqliteCrmRepository(StorageSettings(db_path=db_path)) as repository:
        assert len(repository.list_messages("lead-1")) == 1
        pending = repository.list_pending_emails([PendingStatus.LIKELY_LEAD])
        assert [record.from_email for record in pending] == ["someone@new.io"]
        credential = repository.get_credential("user-1")
        assert credential is not None
        assert credential.history_id == "250"


def test_webhook_acknowledges_bad_requests(tmp_path: Path) -> None:
    db_path = tmp_path / "web.db"
    gmail = StubGmail()
    client = _client(_settings(db_path, webhook_token="push-secret"), gmail)

    wrong_token = client.post(
        "/webhooks/gmail?token=nope", json=push_envelope("m1@example.com", 1)
    )
    not_json = client.post(
        "/webhooks/gmail",
        content=b"not json",
        headers={"Authorization": "Bearer push-secret", "Content-Type": "text/plain"},
    )
    malformed = client.post(
        "/webhooks/gmail?token=push-secret", json={"message": {"data": "@@@"}}
    )
    unknown = client.post(
        "/webhooks/gmail?token=push-secret", json=push_envelope("who@example.com", 5)
    )

    for response in (wrong_token, not_json, malformed, unknown):
        assert response.status_code == 200
        assert response.text == "OK"
    assert gmail.history_calls == []


def test_review_api_requires_token(tmp_path: Path) -> None:
    client = _client(_settings(tmp_path / "web.db", api_token="api-secret"))

    assert client.get("/api/pending-emails").status_code == 401
    assert (
        client.get(
            "/api/pending-emails", headers={"Authorization": "Bearer wrong"}
        ).status_code
        == 401
    )
    assert client.get("/api/pending-emails", headers=API_HEADERS).status_code == 200


def test_review_listing_and_actions(tmp_path: Path) -> None:
    db_path = tmp_path / "web.db"
    _seed_pending(db_path, "p1", PendingStatus.NEEDS_REVIEW)
    _seed_pending(db_path, "p2", PendingStatus.LIKELY_LEAD)
    _seed_pending(db_path, "d1", PendingStatus.AUTO_DISMISSED)
    with SqliteCrmRepository(StorageSettings(db_path=db_path)) as repository:
        repository.insert_lead(Lead(id="lead-1", email="known@example.com"))
    client = _client(_settings(db_path, api_token="api-secret"))

    listing = client.get("/api/pending-emails", headers=API_HEADERS).json()
    assert [item["id"] for item in listing["items"]] == ["p2", "p1"]
    assert listing["items"][0]["status"] == "likely_lead"

    dismissed = client.get(
        "/api/pending-emails/dismissed?limit=5", headers=API_HEADERS
    ).json()
    assert [item["id"] for item in dismissed["items"]] == ["d1"]

    approved = client.post(
        "/api/pending-emails/p2/approve",
        json={"first_name": "Pat", "last_name": "Lee", "company": "Acme"},
        headers=API_HEADERS,
    )
    assert approved.status_code == 200
    body = approved.json()
    assert body["lead"]["email"] == "p2@example.com"
    assert body["lead"]["lead_source"] == "inbound_email"
    assert body["message"]["direction"] == "inbound"

    linked = client.post(
        "/api/pending-emails/p1/link", json={"lead_id": "lead-1"}, headers=API_HEADERS
    )
    assert linked.status_code == 200
    assert linked.json()["message"]["lead_id"] == "lead-1"

    restored = client.post("/api/pending-emails/d1/restore", headers=API_HEADERS)
    assert restored.json() == {"success": True}
    deleted = client.delete("/api/pending-emails/d1", headers=API_HEADERS)
    assert deleted.json() == {"success": True}

    remaining = client.get("/api/pending-emails", headers=API_HEADERS).json()
    assert remaining["items"] == []


def test_review_actions_return_404_for_missing_records(tmp_path: Path) -> None:
    db_path = tmp_path / "web.db"
    _seed_pending(db_path, "p1", PendingStatus.NEEDS_REVIEW)
    client = _client(_settings(db_path))

    missing = client.delete("/api/pending-emails/nope")
    bad_lead = client.post("/api/pending-emails/p1/link", json={"lead_id": "ghost"})
    cleanup = client.post("/api/pending-emails/cleanup?retention_days=-1")

    assert missing.status_code == 404
    assert bad_lead.status_code == 404
    assert cleanup.status_code == 400


def test_watch_renewal_endpoint(tmp_path: Path) -> None:
    db_path = tmp_path / "web.db"
    with SqliteCrmRepository(StorageSettings(db_path=db_path)) as repository:
        repository.upsert_credential(make_credential())
    settings = _settings(db_path).model_copy(
        update={"google": GoogleSettings(gcp_project_id="demo")}
    )
    gmail = StubGmail()

    response = _client(settings, gmail).post("/api/watch/renew")

    assert response.status_code == 200
    payload = response.json()
    assert (payload["renewed"], payload["failed"], payload["skipped"]) == (1, 0, 0)
    assert gmail.watch_calls == [
        ("stored-token", "projects/demo/topics/gmail-notifications")
    ]
