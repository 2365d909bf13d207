from datetime import datetime, timezone

from conftest import MINIMAL_BODY, SUBJECT_ALERT, make_message
from cardalerts.core.config import settings
from cardalerts.core.exceptions import MailboxConnectionError


def recent(uid, **kwargs):
    return make_message(uid, arrival=datetime.now(timezone.utc), **kwargs)


def test_root(client):
    assert client.get("/").status_code == 200


def test_missing_secret_header_is_unauthorized(client):
    response = client.post("/api/email/sync", json={})
    assert response.status_code == 401
    assert response.json()["detail"] == "unauthorized"


def test_wrong_secret_is_unauthorized(client):
    response = client.post("/api/email/sync", json={}, headers={"X-Email-Secret": "nope"})
    assert response.status_code == 401


def test_alias_header_accepted(client):
    response = client.post("/api/email/sync", json={}, headers={"X-Email-Sync-Secret": "test-secret"})
    assert response.status_code == 200


def test_unset_server_secret_is_server_error(client, monkeypatch):
    monkeypatch.setattr(settings, "EMAIL_INGEST_SECRET", None)
    response = client.post("/api/email/sync", json={}, headers={"X-Email-Secret": "test-secret"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Missing EMAIL_INGEST_SECRET"


def test_missing_user_is_bad_request(client, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_USER_ID", None)
    response = client.post("/api/email/sync", json={}, headers=auth_headers)
    assert response.status_code == 400


def test_limit_validation(client, auth_headers):
    response = client.post("/api/email/sync", json={"limit": 0}, headers=auth_headers)
    assert response.status_code == 422


def test_trigger_runs_both_stages(client, auth_headers, fake_mailbox):
    fake_mailbox.messages = {
        1: recent(1, subject=SUBJECT_ALERT),
        2: recent(2, body=MINIMAL_BODY),
    }

    response = client.post("/api/email/trigger", json={"debug": True}, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["sync"]["succeeded"] == 2
    assert body["sync"]["cursor_after"] == 2
    assert body["promote"]["succeeded"] == 2
    assert body["promote"]["status"] == "completed"
    assert {d["status"] for d in body["promote"]["details"]} == {"inserted"}

    again = client.post("/api/email/trigger", json={}, headers=auth_headers).json()
    assert again["sync"]["attempted"] == 0
    assert again["promote"]["attempted"] == 0


def test_sync_from_alias(client, auth_headers, fake_mailbox):
    fake_mailbox.messages = {1: recent(1, subject=SUBJECT_ALERT)}

    response = client.post("/api/email/sync", json={"from": "bank.com", "debug": True},
                           headers=auth_headers)

    body = response.json()
    assert body["attempted"] == 0
    assert body["details"][0]["reason"] == "sender_mismatch"


def test_fatal_mailbox_error_is_bad_gateway(client, auth_headers, fake_mailbox):
    fake_mailbox.fail_connect = MailboxConnectionError("IMAP authentication failed")

    response = client.post("/api/email/trigger", json={}, headers=auth_headers)

    assert response.status_code == 502
    assert response.json() == {"ok": False, "error": "IMAP authentication failed"}


def test_missing_imap_config_is_server_error(client, auth_headers, monkeypatch):
    from cardalerts.main import app
    from cardalerts.routes.emails import get_mailbox_factory

    monkeypatch.setattr(settings, "IMAP_HOST", None)
    app.dependency_overrides.pop(get_mailbox_factory)

    response = client.post("/api/email/sync", json={}, headers=auth_headers)

    assert response.status_code == 500
    assert response.json()["ok"] is False
    assert "IMAP_HOST" in response.json()["error"]


def test_promote_endpoint(client, auth_headers):
    client.post("/api/email/ingest", json={"subject": SUBJECT_ALERT, "date": "2024-03-10T15:00:00Z"},
                headers=auth_headers)

    response = client.post("/api/email/promote", json={"limit": 500}, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["stage"] == "promote"
    assert body["succeeded"] == 1
    assert "subject" not in body["details"][0]


def test_ingest_and_list(client, auth_headers):
    payload = {"subject": SUBJECT_ALERT, "body": "", "sender": "Visa <alertas@visa.com.ar>"}

    first = client.post("/api/email/ingest", json=payload, headers=auth_headers).json()
    second = client.post("/api/email/ingest", json=payload, headers=auth_headers).json()

    assert first["staged"] is True
    assert first["amount"] == "1234.56"
    assert second["staged"] is False

    listing = client.get("/api/email/", headers=auth_headers).json()
    assert listing["total"] == 1
    assert listing["emails"][0]["merchant"] == "RAPPI ARGENTINA"

    sample = client.get("/api/email/sample", headers=auth_headers).json()
    assert sample["count"] == 1
