from celery import Celery
from datetime import timedelta
from cardalerts.core.config import settings

celery_app = Celery(
    "worker",
    broker=settings.broker_url,
    backend=settings.result_backend,
)

# Autodiscover task modules
celery_app.autodiscover_tasks(["cardalerts.tasks"])

# Force import so Celery registers tasks
import cardalerts.tasks.email_sync
import cardalerts.tasks.email_promote


celery_app.conf.beat_schedule = {

    # --------------------------------------------------------
    # 1. Pull new alerts from the mailbox into staging
    # --------------------------------------------------------
    "sync-mailbox": {
        "task": "cardalerts.tasks.email_sync.sync_mailbox",
        "schedule": timedelta(seconds=int(settings.SYNC_INTERVAL_SECONDS)),
        "args": (settings.DEFAULT_USER_ID,),
    },

    # --------------------------------------------------------
    # 2. Promote staged alerts into the ledger
    # --------------------------------------------------------
    "promote-staged": {
        "task": "cardalerts.tasks.email_promote.promote_staged",
        "schedule": timedelta(seconds=int(settings.PROMOTE_INTERVAL_SECONDS)),
        "args": (settings.DEFAULT_USER_ID,),
    },

}
