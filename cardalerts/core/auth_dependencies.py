from fastapi import HTTPException, status, Header
from typing import Optional

from cardalerts.core.config import settings


def require_ingest_secret(
    x_email_secret: Optional[str] = Header(None, alias="X-Email-Secret"),
    x_email_sync_secret: Optional[str] = Header(None, alias="X-Email-Sync-Secret"),
) -> str:
    """Shared-secret check for the pipeline trigger endpoints (exact match)."""
    expected = settings.EMAIL_INGEST_SECRET
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Missing EMAIL_INGEST_SECRET",
        )

    provided = x_email_secret or x_email_sync_secret
    if not provided or provided != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="unauthorized",
        )

    return provided


def resolve_user_id(user_id: Optional[str]) -> str:
    owner = user_id or settings.DEFAULT_USER_ID
    if not owner:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="missing user_id (or set DEFAULT_USER_ID)",
        )
    return owner
