from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cardalerts.core.auth_dependencies import require_ingest_secret, resolve_user_id
from cardalerts.core.config import settings
from cardalerts.core.database import get_db
from cardalerts.core.exceptions import ConfigurationError, FatalPipelineError
from cardalerts.core.logging_config import get_logger
from cardalerts.services.email_service import list_emails
from cardalerts.services.mailbox_client import build_mailbox_client
from cardalerts.services.promote_service import run_promote
from cardalerts.services.sync_service import ingest_message, run_sync
from cardalerts.schemas.email_message import (
    IngestRequest,
    IngestResponse,
    PromoteReport,
    PromoteRequest,
    StagedMessageListResponse,
    StagedSampleResponse,
    SyncReport,
    SyncRequest,
    TriggerRequest,
    TriggerResponse,
)

logger = get_logger("email_routes")

email_router = APIRouter(prefix="/api/email", tags=['Emails'])


def get_mailbox_factory():
    """Builds a fresh mailbox client per run; overridden in tests."""
    return lambda: build_mailbox_client(settings)


def fatal_status(exc: FatalPipelineError) -> int:
    if isinstance(exc, ConfigurationError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_502_BAD_GATEWAY


def fatal_response(exc: FatalPipelineError, **extra) -> JSONResponse:
    logger.error(f"Pipeline run aborted: {exc}")
    content = {"ok": False, "error": str(exc)}
    content.update(extra)
    return JSONResponse(status_code=fatal_status(exc), content=content)


@email_router.post("/sync", response_model=SyncReport, response_model_exclude_none=True)
def sync_emails(
    payload: SyncRequest,
    db: Session = Depends(get_db),
    mailbox_factory=Depends(get_mailbox_factory),
    _: str = Depends(require_ingest_secret),
):
    user_id = resolve_user_id(payload.user_id)
    try:
        return run_sync(
            db,
            mailbox_factory,
            user_id,
            days=payload.days,
            limit=payload.limit,
            from_filter=payload.from_filter,
            debug=payload.debug,
        )
    except FatalPipelineError as e:
        return fatal_response(e)


@email_router.post("/promote", response_model=PromoteReport, response_model_exclude_none=True)
def promote_emails(
    payload: PromoteRequest,
    db: Session = Depends(get_db),
    mailbox_factory=Depends(get_mailbox_factory),
    _: str = Depends(require_ingest_secret),
):
    try:
        return run_promote(
            db,
            mailbox_factory,
            user_id=payload.user_id or settings.DEFAULT_USER_ID,
            limit=payload.limit,
            debug=payload.debug,
        )
    except FatalPipelineError as e:
        return fatal_response(e)


@email_router.post("/trigger", response_model=TriggerResponse, response_model_exclude_none=True)
def trigger_pipeline(
    payload: TriggerRequest,
    db: Session = Depends(get_db),
    mailbox_factory=Depends(get_mailbox_factory),
    _: str = Depends(require_ingest_secret),
):
    """Sync then promote in one call; promote is not attempted if sync aborts."""
    user_id = resolve_user_id(payload.user_id)

    try:
        sync_report = run_sync(
            db,
            mailbox_factory,
            user_id,
            days=payload.days,
            limit=payload.limit,
            from_filter=payload.from_filter,
            debug=payload.debug,
        )
    except FatalPipelineError as e:
        return fatal_response(e)

    try:
        promote_report = run_promote(
            db,
            mailbox_factory,
            user_id=user_id,
            limit=payload.limit,
            debug=payload.debug,
        )
    except FatalPipelineError as e:
        return fatal_response(e, sync=sync_report.model_dump(mode="json", exclude_none=True))

    return TriggerResponse(sync=sync_report, promote=promote_report)


@email_router.post("/ingest", response_model=IngestResponse, response_model_exclude_none=True)
def ingest_email(
    payload: IngestRequest,
    db: Session = Depends(get_db),
    _: str = Depends(require_ingest_secret),
):
    user_id = resolve_user_id(payload.user_id)
    return ingest_message(
        db,
        user_id,
        subject=payload.subject,
        body=payload.body,
        arrival_time=payload.date,
        sender=payload.sender,
        message_id=payload.message_id,
    )


@email_router.get("/", response_model=StagedMessageListResponse)
def read_emails(
    skip: int = 0,
    limit: int = 100,
    user_id: str | None = None,
    db: Session = Depends(get_db),
    _: str = Depends(require_ingest_secret),
):
    items, total = list_emails(db, skip=skip, limit=limit, user_id=user_id)
    return {'emails': items, 'total': total}


@email_router.get("/sample", response_model=StagedSampleResponse)
def sample_emails(
    db: Session = Depends(get_db),
    _: str = Depends(require_ingest_secret),
):
    items, total = list_emails(db, skip=0, limit=10)
    return {'ok': True, 'count': total, 'sample': items}
