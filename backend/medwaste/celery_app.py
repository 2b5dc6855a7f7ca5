"""
Celery worker for periodic custody housekeeping (handoff expiry sweep).
"""
from celery import Celery
import logging
from .config import settings
from .database import SessionLocal
from .use_cases.handoff_hooks import HANDOFF_USE_CASE_HOOKS
from .use_cases.handoff_lifecycle import expire_overdue_handoffs_use_case

logger = logging.getLogger(__name__)

celery_app = Celery(
    "medwaste",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


@celery_app.task(name="expire_overdue_handoffs")
def expire_overdue_handoffs():
    """
    Mark open handoffs past their expires_at as expired.

    Rows are locked with FOR UPDATE SKIP LOCKED so overlapping sweeps never touch the same handoff.
    """
    db = SessionLocal()
    try:
        expired = expire_overdue_handoffs_use_case(db=db, hooks=HANDOFF_USE_CASE_HOOKS)
        logger.info(f"Expiry sweep finished: {expired} handoffs expired")
        return {"expired": expired}
    except Exception as e:
        db.rollback()
        logger.error(f"Error during handoff expiry sweep: {e}", exc_info=True)
        raise
    finally:
        db.close()


celery_app.conf.beat_schedule = {
    'expire-overdue-handoffs-every-5m': {
        'task': 'expire_overdue_handoffs',
        'schedule': settings.HANDOFF_EXPIRY_SWEEP_SECONDS,
    },
}
