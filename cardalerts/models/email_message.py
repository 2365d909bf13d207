from sqlalchemy import (
    Column, Integer, BigInteger, String, Date, DateTime, Boolean, Numeric,
    UniqueConstraint, func,
)
from cardalerts.core.database import Base


class StagedMessage(Base):
    __tablename__ = 'email_transactions'
    __table_args__ = (
        UniqueConstraint('user_id', 'hash', name='uq_email_transactions_user_hash'),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    provider = Column(String(20), nullable=False, default='imap')
    mailbox = Column(String(255), nullable=False, default='INBOX')
    provider_uid = Column(BigInteger, nullable=True, index=True)
    message_id = Column(String(998), nullable=True)
    gmail_message_id = Column(String(64), nullable=True)

    subject = Column(String, nullable=True)
    email_datetime = Column(DateTime(timezone=True), nullable=False)
    date_local = Column(Date, nullable=False)
    source = Column(String(20), nullable=False, default='email')
    sender_name = Column(String(255), nullable=True)
    sender_address = Column(String(320), nullable=True)

    # filled during sync when possible, otherwise by promote
    merchant = Column(String(120), nullable=True)
    amount = Column(Numeric(14, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    card_last4 = Column(String(4), nullable=True)

    processed = Column(Boolean, nullable=False, default=False, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    hash = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def has_fields(self) -> bool:
        return bool(self.merchant) and self.amount is not None and bool(self.currency)

    @property
    def missing_fields(self) -> list[str]:
        missing = []
        if not self.merchant:
            missing.append('merchant')
        if self.amount is None:
            missing.append('amount')
        if not self.currency:
            missing.append('currency')
        return missing


class SyncCursor(Base):
    __tablename__ = 'email_sync_cursors'
    __table_args__ = (
        UniqueConstraint('user_id', 'mailbox', name='uq_email_sync_cursors_user_mailbox'),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    mailbox = Column(String(255), nullable=False)
    last_uid = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
