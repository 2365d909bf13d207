from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional

from cardalerts.core.constants import ItemStatus, RunStatus


# ------------------- Staged messages -------------------
class StagedMessageResponse(BaseModel):
    id: int
    user_id: str
    provider: str
    mailbox: str
    provider_uid: Optional[int] = None
    message_id: Optional[str] = None
    subject: Optional[str] = None
    email_datetime: datetime
    date_local: date
    sender_name: Optional[str] = None
    sender_address: Optional[str] = None
    merchant: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    card_last4: Optional[str] = None
    processed: bool
    processed_at: Optional[datetime] = None
    hash: str

    model_config = ConfigDict(from_attributes=True)


class StagedMessageListResponse(BaseModel):
    emails: list[StagedMessageResponse]
    total: int


# ------------------- Trigger requests -------------------
class SyncRequest(BaseModel):
    user_id: Optional[str] = Field(None, description="Owner; defaults to DEFAULT_USER_ID")
    limit: int = Field(50, ge=1, le=500, description="Max messages staged per run")
    days: int = Field(14, ge=1, le=365, description="Search window in days")
    from_filter: Optional[str] = Field(None, alias="from", description="Sender substring override")
    debug: bool = False

    model_config = ConfigDict(populate_by_name=True)


class PromoteRequest(BaseModel):
    user_id: Optional[str] = Field(None, description="Restrict to one owner")
    limit: int = Field(50, ge=1, description="Max staged rows per run (capped server-side)")
    debug: bool = False


class TriggerRequest(SyncRequest):
    pass


class IngestRequest(BaseModel):
    """One alert pushed by a mail forwarder instead of pulled over IMAP."""
    user_id: Optional[str] = None
    subject: str = ""
    body: str = ""
    date: Optional[datetime] = None
    sender: Optional[str] = None
    message_id: Optional[str] = None


# ------------------- Run reports -------------------
class RunItemDetail(BaseModel):
    status: ItemStatus
    staged_id: Optional[int] = None
    uid: Optional[int] = None
    hash: Optional[str] = None
    merchant: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    card_last4: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    source: Optional[str] = None
    matcher: Optional[str] = None
    reason: Optional[str] = None
    missing: Optional[list[str]] = None
    error: Optional[str] = None
    subject: Optional[str] = None


class RunReport(BaseModel):
    ok: bool = True
    stage: str
    status: RunStatus = RunStatus.COMPLETED
    attempted: int = 0
    succeeded: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: int = 0
    elapsed_ms: int = 0
    details: list[RunItemDetail] = Field(default_factory=list)

    def add(self, detail: RunItemDetail):
        self.details.append(detail)


class SyncReport(RunReport):
    stage: str = "sync"
    mailbox: Optional[str] = None
    cursor_before: int = 0
    cursor_after: int = 0


class PromoteReport(RunReport):
    stage: str = "promote"


class IngestResponse(BaseModel):
    ok: bool = True
    staged: bool
    staged_id: Optional[int] = None
    hash: str
    merchant: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    card_last4: Optional[str] = None
    matcher: Optional[str] = None


class TriggerResponse(BaseModel):
    ok: bool = True
    sync: Optional[SyncReport] = None
    promote: Optional[PromoteReport] = None
    error: Optional[str] = None


class StagedSampleResponse(BaseModel):
    ok: bool = True
    count: int
    sample: list[StagedMessageResponse]
