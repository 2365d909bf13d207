from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from cardalerts.core.database import insert_for
from cardalerts.models.email_message import StagedMessage, SyncCursor
from cardalerts.core.logging_config import get_logger

logger = get_logger(__name__)


def stage_message(db: Session, payload: dict) -> Optional[int]:
    """
    Insert a staging row unless (user_id, hash) is already staged.

    Returns the new row id, or None when the message was staged before.
    """
    stmt = insert_for(db, StagedMessage).values(**payload)
    stmt = stmt.on_conflict_do_nothing(
        index_elements=["user_id", "hash"],
    ).returning(StagedMessage.id)
    new_id = db.execute(stmt).scalar_one_or_none()
    db.commit()
    return new_id


def get_staged_by_hash(db: Session, user_id: str, hash_: str) -> Optional[StagedMessage]:
    return (
        db.query(StagedMessage)
        .filter(StagedMessage.user_id == user_id, StagedMessage.hash == hash_)
        .first()
    )


def list_unprocessed(db: Session, limit: int, user_id: Optional[str] = None) -> list[StagedMessage]:
    q = db.query(StagedMessage).filter(StagedMessage.processed.is_(False))
    if user_id:
        q = q.filter(StagedMessage.user_id == user_id)
    return (
        q.order_by(StagedMessage.email_datetime.asc(), StagedMessage.id.asc())
        .limit(limit)
        .all()
    )


def mark_processed(db: Session, staged: StagedMessage, fields: Optional[dict] = None) -> StagedMessage:
    for key, value in (fields or {}).items():
        setattr(staged, key, value)
    staged.processed = True
    staged.processed_at = datetime.now(timezone.utc)
    db.add(staged)
    db.commit()
    db.refresh(staged)
    return staged


def list_emails(db: Session, skip: int = 0, limit: int = 100, user_id: Optional[str] = None):
    q = db.query(StagedMessage)
    if user_id:
        q = q.filter(StagedMessage.user_id == user_id)
    total = q.count()
    items = q.order_by(StagedMessage.email_datetime.desc()).offset(skip).limit(limit).all()
    return items, total


# -----------------------------------------------------
# Sync cursor
# -----------------------------------------------------

def get_cursor(db: Session, user_id: str, mailbox: str) -> int:
    cursor = (
        db.query(SyncCursor)
        .filter(SyncCursor.user_id == user_id, SyncCursor.mailbox == mailbox)
        .first()
    )
    return int(cursor.last_uid) if cursor else 0


def advance_cursor(db: Session, user_id: str, mailbox: str, uid: int) -> int:
    """Move the cursor forward to `uid`; never moves it back."""
    stmt = insert_for(db, SyncCursor).values(user_id=user_id, mailbox=mailbox, last_uid=uid)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "mailbox"],
        set_={"last_uid": stmt.excluded.last_uid, "updated_at": datetime.now(timezone.utc)},
        where=SyncCursor.last_uid < stmt.excluded.last_uid,
    )
    db.execute(stmt)
    db.commit()

    current = get_cursor(db, user_id, mailbox)
    logger.info(f"[{user_id}] Cursor for {mailbox} is now {current}")
    return current
