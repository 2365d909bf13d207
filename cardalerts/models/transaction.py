from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, Boolean, Numeric, JSON,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from cardalerts.core.database import Base


class LedgerTransaction(Base):
    __tablename__ = 'transactions'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False, default='ARS')
    date = Column(Date, nullable=False, index=True)
    description = Column(Text, nullable=True)
    category_id = Column(String(64), nullable=True)
    subcategory_id = Column(String(64), nullable=True)
    payment_type = Column(String(20), nullable=False, default='credit')
    expense_mode = Column(String(20), nullable=False, default='variable')
    merchant = Column(String(120), nullable=True)
    source = Column(String(20), nullable=False, default='email')  # email | manual | other
    raw_description = Column(Text, nullable=True)
    hash = Column(String(64), nullable=False, unique=True)
    tags = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MerchantRule(Base):
    __tablename__ = 'merchant_rules'
    __table_args__ = (
        UniqueConstraint('user_id', 'pattern', name='uq_merchant_rules_user_pattern'),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    pattern = Column(String(255), nullable=False)
    is_regex = Column(Boolean, nullable=False, default=False)
    category_id = Column(String(64), nullable=True)
    subcategory_id = Column(String(64), nullable=True)
    priority = Column(Integer, nullable=False, default=100)  # ascending = higher precedence
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
