from typing import Optional

from cardalerts.worker_app import celery_app
from cardalerts.core.config import settings
from cardalerts.core.database import SessionLocal
from cardalerts.core.exceptions import ConfigurationError, FatalPipelineError
from cardalerts.core.logging_config import get_logger
from cardalerts.services.mailbox_client import build_mailbox_client
from cardalerts.services.promote_service import run_promote

logger = get_logger("email_promote")


@celery_app.task(bind=True, max_retries=3, name="cardalerts.tasks.email_promote.promote_staged")
def promote_staged(self, user_id: Optional[str] = None, limit: Optional[int] = None):
    db = SessionLocal()
    try:
        report = run_promote(
            db,
            lambda: build_mailbox_client(settings),
            user_id=user_id,
            limit=limit or settings.PROMOTE_LIMIT,
        )
        return report.model_dump(mode="json", exclude_none=True)

    except ConfigurationError as e:
        logger.error(f"Promote not configured: {e}")
        return {"ok": False, "error": str(e)}

    except FatalPipelineError as e:
        logger.error(f"Promote aborted: {e}")
        raise self.retry(exc=e, countdown=30)

    finally:
        db.close()
