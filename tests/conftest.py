import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("EMAIL_INGEST_SECRET", "test-secret")
os.environ.setdefault("DEFAULT_USER_ID", "owner-1")
os.environ.setdefault("EMAIL_SYNC_FROM", "")
os.environ.setdefault("EMAIL_SYNC_SUBJECT", "")
os.environ.setdefault("LOG_LEVEL", "warning")

from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from cardalerts.core.database import Base, SessionLocal, engine, get_db
from cardalerts.main import app
from cardalerts.routes.emails import get_mailbox_factory
from cardalerts.services.mailbox_client import FetchedMessage

SECRET = "test-secret"

SUBJECT_ALERT = "Compra aprobada en RAPPI ARGENTINA por ARS 1.234,56 con tu tarjeta terminada en 1234"
LABELED_BODY = "Comercio: RAPPI ARGENTINA País: AR\nMonto: 1.234,56\nMoneda: ARS\nTarjeta: XXXX-1234"
AUTHORIZED_BODY = (
    "Te informamos que se autorizó una compra con tu tarjeta Visa terminada en 4321 "
    "en el comercio MERCADOLIBRE por $ 15.999,00."
)
MINIMAL_BODY = "Compra en CAFE MARTINEZ - Importe: $ 2.500,00\nTarjeta terminada en 9999"


def make_message(uid, subject="Aviso de compra", body="", sender="Visa Alertas <alertas@visa.com.ar>",
                 arrival=None, message_id=None):
    name, _, address = sender.partition("<")
    return FetchedMessage(
        uid=uid,
        subject=subject,
        sender_name=name.strip(),
        sender_address=address.rstrip(">").strip(),
        text=body,
        html="",
        arrival_time=arrival or datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc),
        message_id=message_id or f"<msg-{uid}@visa.com.ar>",
    )


class FakeMailbox:
    """In-memory stand-in for MailboxClient."""

    def __init__(self, messages=(), mailbox="INBOX", fail_connect=None, fail_uids=()):
        self.messages = {m.uid: m for m in messages}
        self.mailbox = mailbox
        self.provider = "imap"
        self.fail_connect = fail_connect
        self.fail_uids = set(fail_uids)
        self.connects = 0
        self.closes = 0
        self.fetched = []
        self.searches = []

    def __enter__(self):
        self.connect()
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def connect(self):
        self.connects += 1
        if self.fail_connect:
            raise self.fail_connect

    def open(self, mailbox=None):
        pass

    def search_by_date_window(self, since: date, before: date = None):
        self.searches.append((since, before))
        return sorted(
            uid for uid, m in self.messages.items()
            if m.arrival_time.date() >= since and (before is None or m.arrival_time.date() < before)
        )

    def fetch_one(self, uid):
        self.fetched.append(uid)
        if uid in self.fail_uids:
            from cardalerts.core.exceptions import MailboxFetchError
            raise MailboxFetchError(uid, "boom")
        return self.messages[uid]

    def close(self):
        self.closes += 1


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_mailbox():
    return FakeMailbox()


@pytest.fixture
def client(db_session, fake_mailbox):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailbox_factory] = lambda: (lambda: fake_mailbox)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"X-Email-Secret": SECRET}
