from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from cardalerts.core.database import insert_for
from cardalerts.models.transaction import LedgerTransaction
from cardalerts.schemas.transaction import LedgerTransactionCreate


def upsert_ledger_transaction(db: Session, tx: LedgerTransactionCreate) -> bool:
    """
    Insert a ledger row keyed by its content hash.

    Returns True when a new row was written and False when the hash was
    already in the ledger. Either outcome is a successful promotion. The
    caller owns the commit so the ledger row and the staging flag land
    together.
    """
    stmt = insert_for(db, LedgerTransaction).values(**tx.model_dump())
    stmt = stmt.on_conflict_do_nothing(index_elements=["hash"]).returning(LedgerTransaction.id)
    return db.execute(stmt).scalar_one_or_none() is not None


def get_transaction_by_hash(db: Session, hash_: str) -> Optional[LedgerTransaction]:
    return db.query(LedgerTransaction).filter(LedgerTransaction.hash == hash_).first()


def list_transactions(
    db: Session,
    user_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    q = db.query(LedgerTransaction).filter(LedgerTransaction.user_id == user_id)
    if start_date:
        q = q.filter(LedgerTransaction.date >= start_date)
    if end_date:
        q = q.filter(LedgerTransaction.date <= end_date)
    return q.order_by(LedgerTransaction.date.asc(), LedgerTransaction.id.asc())
