"""Dedicated APScheduler worker process."""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from planify.core.config import settings
from planify.core.logging import configure_logging
from planify.db.session import SessionLocal
from planify.services.job_runner import run_expiry_sweep


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        _register_jobs(scheduler)
        scheduler.start()
        if settings.jobs_run_on_startup:
            logger.info("Running expiry sweep once on startup")
            _run_expiry_sweep_job()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def _register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        _run_expiry_sweep_job,
        trigger="cron",
        hour=settings.expiry_sweep_hour,
        minute=settings.expiry_sweep_minute,
        id="subscription_expiry_sweep",
        replace_existing=True,
    )
    logger.info(
        "Registered expiry sweep (daily at %02d:%02d %s)",
        settings.expiry_sweep_hour,
        settings.expiry_sweep_minute,
        settings.scheduler_timezone,
    )


def _run_expiry_sweep_job() -> None:
    session = SessionLocal()
    try:
        result = run_expiry_sweep(session)
        logger.info("Expiry sweep complete: expired=%s", result.subscriptions_expired)
    except Exception:  # pragma: no cover - keep the worker alive
        logger.exception("Expiry sweep failed")
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
