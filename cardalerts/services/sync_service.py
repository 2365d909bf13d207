"""
Sync stage: pull new alert messages from the mailbox into the staging table.

The per-mailbox UID cursor is the only durable progress marker. It is
advanced once, after the batch, so a crash mid-run makes the next run
re-read the same UIDs; the content-hash unique key turns those re-reads
into no-ops.
"""
import re
import time
from email.utils import parseaddr
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from cardalerts.core.config import settings
from cardalerts.core.constants import ItemStatus
from cardalerts.core.logging_config import get_logger
from cardalerts.schemas.email_message import IngestResponse, RunItemDetail, SyncReport
from cardalerts.services.email_service import advance_cursor, get_cursor, stage_message
from cardalerts.services.mailbox_client import FetchedMessage, MailboxClient
from cardalerts.utils.hashing import compute_content_hash
from cardalerts.utils.normalizer import normalize_for_match, to_local_date
from cardalerts.utils.parser import ExtractionResult, extract_transaction_fields

logger = get_logger("email_sync")

# matched against normalize_for_match(subject)
REPLY_FORWARD_RE = re.compile(r"^(?:re|fw|fwd|rv|tr|reenviado|respuesta)\s*:")


def is_reply_or_forward(subject: Optional[str]) -> bool:
    return bool(REPLY_FORWARD_RE.match(normalize_for_match(subject)))


def sender_matches(message: FetchedMessage, from_filter: Optional[str]) -> bool:
    needle = normalize_for_match(from_filter)
    if not needle:
        return True
    return needle in normalize_for_match(message.sender)


def subject_matches(subject: Optional[str], required: Optional[str]) -> bool:
    needle = normalize_for_match(required)
    if not needle:
        return True
    return needle in normalize_for_match(subject)


def filter_reason(message: FetchedMessage, from_filter: Optional[str],
                  subject_filter: Optional[str]) -> Optional[str]:
    if is_reply_or_forward(message.subject):
        return "reply_or_forward"
    if not sender_matches(message, from_filter):
        return "sender_mismatch"
    if not subject_matches(message.subject, subject_filter):
        return "subject_mismatch"
    return None


def build_staging_payload(
    user_id: str,
    message: FetchedMessage,
    extracted: ExtractionResult,
    provider: str,
    mailbox: str,
    tz_name: str,
) -> dict:
    local_date = to_local_date(message.arrival_time, tz_name)
    return {
        "user_id": user_id,
        "provider": provider,
        "mailbox": mailbox,
        "provider_uid": message.uid,
        "message_id": message.message_id,
        "gmail_message_id": message.gmail_message_id,
        "subject": message.subject,
        "email_datetime": message.arrival_time.astimezone(timezone.utc),
        "date_local": local_date,
        "source": "email",
        "sender_name": message.sender_name or None,
        "sender_address": message.sender_address or None,
        "merchant": extracted.merchant,
        "amount": extracted.amount,
        "currency": extracted.currency,
        "card_last4": extracted.last4,
        "processed": False,
        "hash": compute_content_hash(
            user_id,
            local_date,
            extracted.merchant,
            extracted.amount,
            extracted.currency,
            message.subject,
            message_id=None if extracted.usable else message.message_id,
        ),
    }


def run_sync(
    db: Session,
    mailbox_factory: Callable[[], MailboxClient],
    user_id: str,
    days: int = settings.SYNC_DAYS,
    limit: int = settings.SYNC_LIMIT,
    from_filter: Optional[str] = None,
    subject_filter: Optional[str] = None,
    debug: bool = False,
    now: Optional[datetime] = None,
) -> SyncReport:
    """
    One sync pass for one owner.

    Raises FatalPipelineError subclasses when the mailbox cannot be reached;
    everything that goes wrong with a single message is reported per item.
    """
    started = time.monotonic()
    now = now or datetime.now(timezone.utc)
    from_filter = settings.EMAIL_SYNC_FROM if from_filter is None else from_filter
    subject_filter = settings.EMAIL_SYNC_SUBJECT if subject_filter is None else subject_filter

    client = mailbox_factory()
    mailbox = client.mailbox
    cursor = get_cursor(db, user_id, mailbox)
    report = SyncReport(mailbox=mailbox, cursor_before=cursor, cursor_after=cursor)

    since = (now - timedelta(days=days)).date()
    logger.info(f"[{user_id}] Sync start: mailbox={mailbox} since={since} cursor={cursor} limit={limit}")

    highest_seen = cursor
    with client:
        uids = client.search_by_date_window(since)
        new_uids = sorted((uid for uid in uids if uid > cursor), reverse=True)
        logger.info(f"[{user_id}] {len(uids)} messages in window, {len(new_uids)} newer than cursor.")

        staged_count = 0
        for uid in new_uids:
            if staged_count >= limit:
                break

            try:
                message = client.fetch_one(uid)

                reason = filter_reason(message, from_filter, subject_filter)
                if reason:
                    highest_seen = max(highest_seen, uid)
                    if debug:
                        report.add(RunItemDetail(
                            status=ItemStatus.FILTERED, uid=uid, reason=reason, subject=message.subject,
                        ))
                    continue

                staged_count += 1
                report.attempted += 1

                extracted = extract_transaction_fields(
                    message.subject, message.body_text, settings.DEFAULT_CURRENCY,
                )
                payload = build_staging_payload(
                    user_id, message, extracted, client.provider, mailbox, settings.BUSINESS_TIMEZONE,
                )
                staged_id = stage_message(db, payload)
                highest_seen = max(highest_seen, uid)

                detail = RunItemDetail(
                    status=ItemStatus.STAGED if staged_id else ItemStatus.DUPLICATE,
                    staged_id=staged_id,
                    uid=uid,
                    hash=payload["hash"],
                    merchant=extracted.merchant,
                    amount=extracted.amount,
                    currency=extracted.currency,
                    card_last4=extracted.last4,
                    matcher=extracted.matcher,
                    subject=message.subject if debug else None,
                )
                if staged_id:
                    report.succeeded += 1
                    logger.info(f"[{user_id}] Staged UID {uid} as row {staged_id} ({extracted.matcher or 'no match'}).")
                else:
                    report.duplicates += 1
                    logger.info(f"[{user_id}] UID {uid} already staged, skipping.")
                report.add(detail)

            except Exception as e:
                db.rollback()
                report.errors += 1
                report.add(RunItemDetail(status=ItemStatus.ERROR, uid=uid, error=str(e)))
                logger.error(f"[{user_id}] Failed to stage UID {uid}: {e}")

    if highest_seen > cursor:
        report.cursor_after = advance_cursor(db, user_id, mailbox, highest_seen)

    report.elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        f"[{user_id}] Sync done: attempted={report.attempted} staged={report.succeeded} "
        f"duplicates={report.duplicates} errors={report.errors} cursor={report.cursor_after}"
    )
    return report


def ingest_message(
    db: Session,
    user_id: str,
    subject: str,
    body: str,
    arrival_time: Optional[datetime] = None,
    sender: Optional[str] = None,
    message_id: Optional[str] = None,
) -> IngestResponse:
    """
    Stage one alert delivered by a mail forwarder instead of read over IMAP.

    Goes through the same extraction and content hash as a synced message,
    so an alert that arrives both ways is staged once.
    """
    arrival_time = arrival_time or datetime.now(timezone.utc)
    if arrival_time.tzinfo is None:
        arrival_time = arrival_time.replace(tzinfo=timezone.utc)
    # SQLite drops the offset, so rows always hold UTC
    arrival_time = arrival_time.astimezone(timezone.utc)

    sender_name, sender_address = parseaddr(sender or "")
    looks_html = "</" in body or "<br" in body.lower()
    message = FetchedMessage(
        uid=0,
        subject=subject,
        sender_name=sender_name,
        sender_address=sender_address,
        text="" if looks_html else body,
        html=body if looks_html else "",
        arrival_time=arrival_time,
        message_id=message_id,
    )

    extracted = extract_transaction_fields(message.subject, message.body_text, settings.DEFAULT_CURRENCY)
    payload = build_staging_payload(
        user_id, message, extracted, "push", "ingest", settings.BUSINESS_TIMEZONE,
    )
    payload["provider_uid"] = None
    staged_id = stage_message(db, payload)

    if staged_id:
        logger.info(f"[{user_id}] Ingested pushed alert as row {staged_id} ({extracted.matcher or 'no match'}).")
    else:
        logger.info(f"[{user_id}] Pushed alert already staged, skipping.")

    return IngestResponse(
        staged=staged_id is not None,
        staged_id=staged_id,
        hash=payload["hash"],
        merchant=extracted.merchant,
        amount=extracted.amount,
        currency=extracted.currency,
        card_last4=extracted.last4,
        matcher=extracted.matcher,
    )
