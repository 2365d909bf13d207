import email
import imaplib
import re
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from email import policy
from email.utils import parseaddr, parsedate_to_datetime
from typing import Optional

from cardalerts.core.config import Settings
from cardalerts.core.exceptions import (
    ConfigurationError,
    MailboxConnectionError,
    MailboxFetchError,
)
from cardalerts.core.logging_config import get_logger
from cardalerts.utils.normalizer import strip_html

logger = get_logger("mailbox_client")

# IMAP dates are always English month names regardless of locale
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_GM_MSGID_RE = re.compile(rb"X-GM-MSGID\s+(\d+)")
_UID_RE = re.compile(rb"UID\s+(\d+)")


def imap_date(d: date) -> str:
    return f"{d.day:02d}-{_MONTHS[d.month - 1]}-{d.year}"


@dataclass
class FetchedMessage:
    uid: int
    subject: str
    sender_name: str
    sender_address: str
    text: str
    html: str
    arrival_time: datetime
    message_id: Optional[str] = None
    gmail_message_id: Optional[str] = None

    @property
    def body_text(self) -> str:
        return self.text.strip() or strip_html(self.html)

    @property
    def sender(self) -> str:
        return f"{self.sender_name} {self.sender_address}".strip()


def parse_message(uid: int, raw: bytes, internal_date: Optional[datetime] = None,
                  gmail_message_id: Optional[str] = None) -> FetchedMessage:
    """Turn an RFC822 source into the fields the pipeline uses."""
    msg = email.message_from_bytes(raw, policy=policy.default)

    sender_name, sender_address = parseaddr(str(msg.get("From", "")))

    text = ""
    html = ""
    plain_part = msg.get_body(preferencelist=("plain",))
    if plain_part is not None:
        text = plain_part.get_content()
    html_part = msg.get_body(preferencelist=("html",))
    if html_part is not None:
        html = html_part.get_content()

    arrival = internal_date
    if arrival is None and msg.get("Date"):
        try:
            arrival = parsedate_to_datetime(str(msg["Date"]))
        except (TypeError, ValueError):
            arrival = None
    if arrival is None:
        arrival = datetime.now(timezone.utc)
    elif arrival.tzinfo is None:
        arrival = arrival.replace(tzinfo=timezone.utc)
    else:
        arrival = arrival.astimezone(timezone.utc)

    message_id = msg.get("Message-ID")

    return FetchedMessage(
        uid=uid,
        subject=str(msg.get("Subject", "") or ""),
        sender_name=sender_name or "",
        sender_address=sender_address or "",
        text=text or "",
        html=html or "",
        arrival_time=arrival,
        message_id=str(message_id).strip() if message_id else None,
        gmail_message_id=gmail_message_id,
    )


class MailboxClient:
    """
    One IMAP session. Use as a context manager so the session is always
    logged out, including when the run fails half-way.
    """

    def __init__(self, host: str, port: int, user: str, password: str,
                 secure: bool = True, mailbox: str = "INBOX", timeout: int = 30):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.secure = secure
        self.mailbox = mailbox
        self.timeout = timeout
        self.provider = "gmail" if "gmail" in (host or "").lower() else "imap"
        self._conn = None
        self._selected = False

    def __enter__(self):
        self.connect()
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def connect(self):
        if self._conn is not None:
            return
        try:
            if self.secure:
                conn = imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout)
            else:
                conn = imaplib.IMAP4(self.host, self.port, timeout=self.timeout)
        except (OSError, imaplib.IMAP4.error) as e:
            raise MailboxConnectionError(f"Cannot connect to {self.host}:{self.port}: {e}") from e

        try:
            conn.login(self.user, self.password)
        except (OSError, imaplib.IMAP4.error) as e:
            try:
                conn.shutdown()
            except OSError:
                pass
            raise MailboxConnectionError(f"IMAP authentication failed for {self.user}: {e}") from e

        self._conn = conn
        logger.info(f"[{self.user}] Connected to {self.host}:{self.port}")

    def open(self, mailbox: Optional[str] = None):
        if self._conn is None:
            raise MailboxConnectionError("IMAP session is not connected")
        if mailbox:
            self.mailbox = mailbox
        try:
            typ, data = self._conn.select(self.mailbox, readonly=True)
        except (OSError, imaplib.IMAP4.error) as e:
            raise MailboxConnectionError(f"Cannot open mailbox {self.mailbox}: {e}") from e
        if typ != "OK":
            raise MailboxConnectionError(f"Cannot open mailbox {self.mailbox}: {data!r}")
        self._selected = True

    def search_by_date_window(self, since: date, before: Optional[date] = None) -> list[int]:
        """UIDs of messages that arrived on/after `since` and strictly before `before`."""
        self._require_selected()

        criteria = ["SINCE", imap_date(since)]
        if before is not None:
            criteria += ["BEFORE", imap_date(before)]

        try:
            typ, data = self._conn.uid("SEARCH", None, *criteria)
        except (OSError, imaplib.IMAP4.error) as e:
            raise MailboxConnectionError(f"IMAP search failed: {e}") from e
        if typ != "OK":
            raise MailboxConnectionError(f"IMAP search failed: {data!r}")

        raw = data[0] if data and data[0] else b""
        return sorted(int(uid) for uid in raw.split())

    def fetch_one(self, uid: int) -> FetchedMessage:
        self._require_selected()

        items = "(UID INTERNALDATE RFC822 X-GM-MSGID)" if self.provider == "gmail" \
            else "(UID INTERNALDATE RFC822)"
        try:
            typ, data = self._conn.uid("FETCH", str(uid), items)
        except (OSError, imaplib.IMAP4.error) as e:
            raise MailboxFetchError(uid, str(e)) from e
        if typ != "OK":
            raise MailboxFetchError(uid, f"fetch returned {typ}")

        for part in data or []:
            if not isinstance(part, tuple) or len(part) < 2:
                continue
            envelope, raw = part[0], part[1]
            uid_match = _UID_RE.search(envelope)
            if uid_match and int(uid_match.group(1)) != int(uid):
                continue

            internal_date = None
            date_tuple = imaplib.Internaldate2tuple(envelope)
            if date_tuple is not None:
                internal_date = datetime.fromtimestamp(time.mktime(date_tuple), tz=timezone.utc)

            gm_match = _GM_MSGID_RE.search(envelope)
            try:
                return parse_message(
                    uid,
                    raw,
                    internal_date=internal_date,
                    gmail_message_id=gm_match.group(1).decode() if gm_match else None,
                )
            except (ValueError, LookupError) as e:
                raise MailboxFetchError(uid, f"unparseable message: {e}") from e

        raise MailboxFetchError(uid, "message not found")

    def close(self):
        """Release the session; never raises, safe to call twice."""
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            if self._selected:
                conn.close()
        except (OSError, imaplib.IMAP4.error) as e:
            logger.warning(f"[{self.user}] IMAP close failed: {e}")
        finally:
            self._selected = False
            try:
                conn.logout()
            except (OSError, imaplib.IMAP4.error) as e:
                logger.warning(f"[{self.user}] IMAP logout failed: {e}")
        logger.info(f"[{self.user}] IMAP session closed.")

    def _require_selected(self):
        if self._conn is None or not self._selected:
            raise MailboxConnectionError("IMAP mailbox is not open")


def build_mailbox_client(settings: Settings) -> MailboxClient:
    missing = [
        name for name in ("IMAP_HOST", "IMAP_USER", "IMAP_PASSWORD")
        if not getattr(settings, name)
    ]
    if missing:
        raise ConfigurationError(f"Missing IMAP configuration: {', '.join(missing)}")

    return MailboxClient(
        host=settings.IMAP_HOST,
        port=settings.IMAP_PORT,
        user=settings.IMAP_USER,
        password=settings.IMAP_PASSWORD,
        secure=settings.IMAP_SECURE,
        mailbox=settings.IMAP_MAILBOX,
        timeout=settings.IMAP_TIMEOUT,
    )
