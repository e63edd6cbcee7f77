import logging

from apscheduler.schedulers.background import BackgroundScheduler
import pytz

from circulation import mark_overdue_transactions
from helpers import today as current_date
from reservations import expire_due_reservations

logger = logging.getLogger(__name__)


def run_daily_sweeps(session_factory, today=None):
    logger.info("daily library sweep start")
    today = today or current_date()
    db = session_factory()
    try:
        expired = expire_due_reservations(db, today=today)
        overdue = mark_overdue_transactions(db, today=today)
    except Exception:
        db.rollback()
        logger.exception("daily library sweep failed")
        raise
    finally:
        db.close()

    logger.info("daily library sweep done: %d reservations expired, %d transactions overdue",
                len(expired), overdue)
    return len(expired), overdue


def start_scheduler(session_factory, timezone='UTC', hour=0, minute=0):
    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        run_daily_sweeps,
        'cron',
        hour=hour,
        minute=minute,
        args=[session_factory],
        timezone=pytz.timezone(timezone),
        id='library-daily-sweeps',
        replace_existing=True,
    )
    scheduler.start()
    logger.info("scheduler started, daily sweep at %02d:%02d %s", hour, minute, timezone)
    return scheduler
