"""
In-process APScheduler for the daily points expiry sweep.

Enabled in production (FLASK_ENV=production) or with ENABLE_SCHEDULER=true,
never under TESTING. With several gunicorn workers on one host only the
first one starts it; deployments running `flask ledger sweep-expired` from
cron can leave it disabled.
"""
import os
import logging

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = 'points_expiry_sweep'

_scheduler = None
_flask_app = None


def _scheduler_enabled(app) -> bool:
    if app.config.get('TESTING'):
        logger.debug('[Scheduler] Off under TESTING')
        return False
    if os.getenv('FLASK_ENV') != 'production' and os.getenv('ENABLE_SCHEDULER') != 'true':
        logger.info('[Scheduler] Off (set FLASK_ENV=production or ENABLE_SCHEDULER=true)')
        return False
    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Another worker on this host owns the scheduler')
        return False
    return True


def init_scheduler(app):
    """Start the background scheduler with the expiry sweep job, if enabled."""
    global _scheduler, _flask_app

    _flask_app = app
    if not _scheduler_enabled(app):
        return

    from apscheduler.schedulers.background import BackgroundScheduler
    from apscheduler.triggers.cron import CronTrigger

    hour = app.config.get('SWEEP_CRON_HOUR', 0)
    minute = app.config.get('SWEEP_CRON_MINUTE', 15)

    _scheduler = BackgroundScheduler(
        timezone='UTC',
        job_defaults={
            'coalesce': True,
            'max_instances': 1,  # two sweeps never overlap
            'misfire_grace_time': 3600,
        }
    )
    _scheduler.add_job(
        run_expiry_sweep,
        trigger=CronTrigger(hour=hour, minute=minute),
        id=SWEEP_JOB_ID,
        name='Expire overdue point batches',
        replace_existing=True
    )
    _scheduler.start()
    os.environ['SCHEDULER_RUNNING'] = 'true'
    logger.info(f'[Scheduler] Expiry sweep scheduled daily at {hour:02d}:{minute:02d} UTC')

    import atexit
    atexit.register(shutdown_scheduler)


def shutdown_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Stopped')
    _scheduler = None


def run_expiry_sweep():
    """Scheduled job body: one full sweep inside an app context."""
    if _flask_app is None:
        logger.error('[Scheduler] No app registered, skipping expiry sweep')
        return

    from ..services import build_expiry_sweep

    with _flask_app.app_context():
        logger.info('[Scheduler] Expiry sweep starting')
        try:
            result = build_expiry_sweep(_flask_app).sweep_expired()
        except Exception as e:
            logger.exception(f'[Scheduler] Expiry sweep aborted: {e}')
            return

        logger.info(
            f'[Scheduler] Expiry sweep done: {result.expired_batches} batches, '
            f'{result.points_expired} points, {len(result.errors)} wallet errors'
        )
