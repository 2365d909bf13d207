"""
Promote stage: turn staged alert rows into ledger transactions.

Every row is committed on its own, so a run that stops early (time budget,
fatal mailbox error) leaves processed rows processed and the rest untouched
for the next run.
"""
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from cardalerts.core.config import settings
from cardalerts.core.constants import ItemStatus, RunStatus, LEDGER_TAGS, PaymentType
from cardalerts.core.exceptions import FatalPipelineError, MailboxFetchError
from cardalerts.core.logging_config import get_logger
from cardalerts.models.email_message import StagedMessage
from cardalerts.schemas.email_message import PromoteReport, RunItemDetail
from cardalerts.schemas.transaction import LedgerTransactionCreate
from cardalerts.services.email_service import get_staged_by_hash, list_unprocessed, mark_processed
from cardalerts.services.mailbox_client import FetchedMessage, MailboxClient
from cardalerts.services.rules_service import load_active_rules, match_rule
from cardalerts.services.sync_service import sender_matches
from cardalerts.services.transaction_service import get_transaction_by_hash, upsert_ledger_transaction
from cardalerts.utils.hashing import compute_content_hash
from cardalerts.utils.normalizer import to_local_date
from cardalerts.utils.parser import ExtractionResult, extract_transaction_fields

logger = get_logger("email_promote")


class BudgetExceeded(Exception):
    """Internal signal: the run deadline passed while scanning the mailbox."""


class PromoteContext:
    """
    Per-run resources: the deadline and a mailbox session that is opened on
    first use and always released when the context exits.
    """

    def __init__(self, mailbox_factory: Callable[[], MailboxClient], deadline: float,
                 clock: Callable[[], float] = time.monotonic):
        self._mailbox_factory = mailbox_factory
        self._mailbox: Optional[MailboxClient] = None
        self.deadline = deadline
        self.clock = clock

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def expired(self) -> bool:
        return self.clock() >= self.deadline

    @property
    def mailbox(self) -> MailboxClient:
        if self._mailbox is None:
            client = self._mailbox_factory()
            client.connect()
            try:
                client.open()
            except Exception:
                client.close()
                raise
            self._mailbox = client
        return self._mailbox

    def close(self):
        if self._mailbox is not None:
            self._mailbox.close()
            self._mailbox = None


@dataclass
class ResolvedFields:
    merchant: str
    amount: object
    currency: str
    last4: Optional[str]
    subject: Optional[str]
    arrival_time: datetime
    source: str  # "staged" | "mailbox"
    matcher: Optional[str] = None


def candidate_hash(staged: StagedMessage, message: FetchedMessage, result: ExtractionResult) -> str:
    """Content hash the candidate alert gets when it is staged on its own."""
    return compute_content_hash(
        staged.user_id,
        to_local_date(message.arrival_time, settings.BUSINESS_TIMEZONE),
        result.merchant,
        result.amount,
        result.currency,
        message.subject,
    )


def claimed_elsewhere(db: Session, staged: StagedMessage, content_hash: str) -> bool:
    """True when the alert is already another staged row or a ledger entry."""
    other = get_staged_by_hash(db, staged.user_id, content_hash)
    if other is not None and other.id != staged.id:
        return True
    return get_transaction_by_hash(db, content_hash) is not None


def find_in_mailbox(db: Session, ctx: PromoteContext, staged: StagedMessage) -> Optional[ResolvedFields]:
    """
    Re-read the mailbox around the staged arrival time for the row's alert.

    The row's own message (same Message-ID) wins. Otherwise the newest usable
    alert from a sender passing the from-filter is taken, unless that alert
    is already staged as another row or already in the ledger.
    """
    window = timedelta(hours=settings.PROMOTE_FALLBACK_WINDOW_HOURS)
    arrival = staged.email_datetime
    since = (arrival - window).date()
    before = (arrival + window).date() + timedelta(days=1)

    client = ctx.mailbox
    uids = client.search_by_date_window(since, before)
    candidates = sorted(uids, reverse=True)[:settings.PROMOTE_FALLBACK_SCAN_LIMIT]
    logger.info(f"[Staged {staged.id}] Scanning {len(candidates)} mailbox candidates between {since} and {before}.")

    fallback = None
    for uid in candidates:
        if ctx.expired:
            raise BudgetExceeded()

        try:
            message = client.fetch_one(uid)
        except MailboxFetchError as e:
            logger.warning(f"[Staged {staged.id}] Skipping unreadable candidate: {e}")
            continue

        if not sender_matches(message, settings.EMAIL_SYNC_FROM):
            continue

        result = extract_transaction_fields(message.subject, message.body_text, settings.DEFAULT_CURRENCY)
        if not result.usable:
            continue

        own = bool(staged.message_id) and message.message_id == staged.message_id
        if own:
            return _resolved_from_message(staged, message, result)

        if fallback is not None:
            continue
        if claimed_elsewhere(db, staged, candidate_hash(staged, message, result)):
            logger.info(f"[Staged {staged.id}] UID {uid} belongs to another alert, not borrowing it.")
            continue

        fallback = _resolved_from_message(staged, message, result)
        if not staged.message_id:
            break

    return fallback


def _resolved_from_message(staged: StagedMessage, message: FetchedMessage, result: ExtractionResult) -> ResolvedFields:
    if not staged.message_id and message.message_id:
        staged.message_id = message.message_id
    return ResolvedFields(
        merchant=result.merchant,
        amount=result.amount,
        currency=result.currency,
        last4=result.last4 or staged.card_last4,
        subject=message.subject,
        arrival_time=message.arrival_time,
        source="mailbox",
        matcher=result.matcher,
    )


def resolve_fields(db: Session, ctx: PromoteContext, staged: StagedMessage) -> Optional[ResolvedFields]:
    if staged.has_fields:
        return ResolvedFields(
            merchant=staged.merchant,
            amount=staged.amount,
            currency=staged.currency,
            last4=staged.card_last4,
            subject=staged.subject,
            arrival_time=staged.email_datetime,
            source="staged",
        )

    return find_in_mailbox(db, ctx, staged)


def payment_type_for(last4: Optional[str]) -> str:
    mapped = settings.CARD_PAYMENT_TYPES.get(last4 or "")
    if mapped in (PaymentType.CREDIT.value, PaymentType.DEBIT.value):
        return mapped
    return PaymentType.CREDIT.value


def build_ledger_transaction(staged: StagedMessage, fields: ResolvedFields, rule) -> LedgerTransactionCreate:
    local_date = to_local_date(fields.arrival_time, settings.BUSINESS_TIMEZONE)
    return LedgerTransactionCreate(
        user_id=staged.user_id,
        amount=fields.amount,
        currency=fields.currency,
        date=local_date,
        description=fields.merchant,
        category_id=rule.category_id if rule else None,
        subcategory_id=rule.subcategory_id if rule else None,
        payment_type=payment_type_for(fields.last4),
        merchant=fields.merchant,
        source="email",
        raw_description=fields.subject,
        hash=compute_content_hash(
            staged.user_id, local_date, fields.merchant, fields.amount, fields.currency, fields.subject,
        ),
        tags=list(LEDGER_TAGS),
    )


def promote_one(db: Session, ctx: PromoteContext, staged: StagedMessage, rules: list,
                debug: bool = False) -> RunItemDetail:
    fields = resolve_fields(db, ctx, staged)
    if fields is None:
        missing = staged.missing_fields
        logger.warning(f"[Staged {staged.id}] Still missing {', '.join(missing)}; leaving unprocessed.")
        return RunItemDetail(
            status=ItemStatus.SKIPPED,
            staged_id=staged.id,
            reason="insufficient_fields",
            missing=missing,
            subject=staged.subject if debug else None,
        )

    rule = match_rule(rules, fields.merchant)
    tx = build_ledger_transaction(staged, fields, rule)
    inserted = upsert_ledger_transaction(db, tx)

    mark_processed(db, staged, {
        "merchant": fields.merchant,
        "amount": fields.amount,
        "currency": fields.currency,
        "card_last4": fields.last4,
        "date_local": tx.date,
    })

    return RunItemDetail(
        status=ItemStatus.INSERTED if inserted else ItemStatus.DUPLICATE,
        staged_id=staged.id,
        hash=tx.hash,
        merchant=tx.merchant,
        amount=tx.amount,
        currency=tx.currency,
        card_last4=fields.last4,
        category_id=tx.category_id,
        subcategory_id=tx.subcategory_id,
        source=fields.source,
        matcher=fields.matcher,
        subject=staged.subject if debug else None,
    )


def run_promote(
    db: Session,
    mailbox_factory: Callable[[], MailboxClient],
    user_id: Optional[str] = None,
    limit: int = settings.PROMOTE_LIMIT,
    time_budget: float = settings.PROMOTE_TIME_BUDGET_SECONDS,
    debug: bool = False,
    clock: Callable[[], float] = time.monotonic,
) -> PromoteReport:
    """
    Drain unprocessed staged rows into the ledger within `time_budget` seconds.

    Raises FatalPipelineError subclasses if the fallback mailbox session
    cannot be opened; rows committed before that stay committed.
    """
    started = clock()
    limit = max(1, min(int(limit), settings.PROMOTE_MAX_LIMIT))
    report = PromoteReport()
    rules_by_owner: dict[str, list] = {}

    pending = list_unprocessed(db, limit, user_id)
    logger.info(f"Promote start: {len(pending)} pending rows (user={user_id or 'all'}, budget={time_budget}s)")

    with PromoteContext(mailbox_factory, deadline=started + time_budget, clock=clock) as ctx:
        for staged in pending:
            if ctx.expired:
                report.status = RunStatus.BUDGET_EXCEEDED
                break

            report.attempted += 1
            staged_id = staged.id
            try:
                if staged.user_id not in rules_by_owner:
                    rules_by_owner[staged.user_id] = load_active_rules(db, staged.user_id)

                detail = promote_one(db, ctx, staged, rules_by_owner[staged.user_id], debug)

            except BudgetExceeded:
                db.rollback()
                report.attempted -= 1
                report.status = RunStatus.BUDGET_EXCEEDED
                break

            except FatalPipelineError:
                db.rollback()
                raise

            except Exception as e:
                db.rollback()
                report.errors += 1
                report.add(RunItemDetail(status=ItemStatus.ERROR, staged_id=staged_id, error=str(e)))
                logger.error(f"[Staged {staged_id}] Promotion failed: {e}")
                continue

            if detail.status == ItemStatus.SKIPPED:
                report.skipped += 1
            elif detail.status == ItemStatus.DUPLICATE:
                report.succeeded += 1
                report.duplicates += 1
            else:
                report.succeeded += 1
            report.add(detail)

    if report.status == RunStatus.BUDGET_EXCEEDED:
        logger.info(f"Promote stopped early: time budget of {time_budget}s exhausted.")

    report.elapsed_ms = int((clock() - started) * 1000)
    logger.info(
        f"Promote done: status={report.status.value} attempted={report.attempted} succeeded={report.succeeded} "
        f"duplicates={report.duplicates} skipped={report.skipped} errors={report.errors}"
    )
    return report

