from enum import Enum


class TransactionSource(str, Enum):
    EMAIL = 'email'
    MANUAL = 'manual'
    OTHER = 'other'


class PaymentType(str, Enum):
    CREDIT = 'credit'
    DEBIT = 'debit'


class ExpenseMode(str, Enum):
    VARIABLE = 'variable'
    FIXED = 'fixed'


class RunStatus(str, Enum):
    COMPLETED = 'completed'
    BUDGET_EXCEEDED = 'budget_exceeded'


# Per-item outcome tags reported by sync / promote runs
class ItemStatus(str, Enum):
    STAGED = 'staged'
    INSERTED = 'inserted'
    DUPLICATE = 'duplicate'
    FILTERED = 'filtered'
    SKIPPED = 'skipped'
    ERROR = 'error'


LEDGER_TAGS = ['visa_alert']
