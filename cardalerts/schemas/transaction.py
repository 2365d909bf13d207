from datetime import date as DateType, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from cardalerts.core.constants import PaymentType, ExpenseMode, TransactionSource


# ------------------- Ledger -------------------
class LedgerTransactionBase(BaseModel):
    user_id: str = Field(..., max_length=64)
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    currency: str = Field(..., min_length=3, max_length=3, description="ISO currency code")
    date: DateType
    description: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    payment_type: PaymentType = PaymentType.CREDIT
    expense_mode: ExpenseMode = ExpenseMode.VARIABLE
    merchant: Optional[str] = Field(None, max_length=120)
    source: TransactionSource = TransactionSource.EMAIL
    raw_description: Optional[str] = None
    hash: str = Field(..., min_length=64, max_length=64)
    tags: list[str] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class LedgerTransactionCreate(LedgerTransactionBase):
    """Row written by promote; enums dumped as plain strings."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class LedgerTransactionResponse(LedgerTransactionBase):
    id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

