from typing import Optional

from cardalerts.worker_app import celery_app
from cardalerts.core.config import settings
from cardalerts.core.database import SessionLocal
from cardalerts.core.exceptions import ConfigurationError, FatalPipelineError
from cardalerts.core.logging_config import get_logger
from cardalerts.services.mailbox_client import build_mailbox_client
from cardalerts.services.sync_service import run_sync

logger = get_logger("email_sync")


@celery_app.task(bind=True, max_retries=3, name="cardalerts.tasks.email_sync.sync_mailbox")
def sync_mailbox(self, user_id: Optional[str] = None, days: Optional[int] = None, limit: Optional[int] = None):
    user_id = user_id or settings.DEFAULT_USER_ID
    if not user_id:
        logger.error("No user_id given and DEFAULT_USER_ID is not set; skipping sync.")
        return {"ok": False, "error": "missing user_id"}

    db = SessionLocal()
    try:
        report = run_sync(
            db,
            lambda: build_mailbox_client(settings),
            user_id,
            days=days or settings.SYNC_DAYS,
            limit=limit or settings.SYNC_LIMIT,
        )
        return report.model_dump(mode="json", exclude_none=True)

    except ConfigurationError as e:
        # retrying cannot fix missing settings
        logger.error(f"[{user_id}] Sync not configured: {e}")
        return {"ok": False, "error": str(e)}

    except FatalPipelineError as e:
        logger.error(f"[{user_id}] Sync aborted: {e}")
        raise self.retry(exc=e, countdown=60)

    finally:
        db.close()
