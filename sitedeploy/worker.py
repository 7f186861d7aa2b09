"""
Polling worker for processing deployment jobs.

Every WORKER_POLL_INTERVAL seconds it fails jobs that have been stuck in
processing for longer than JOB_TIMEOUT_SECONDS and looks up the CI run of
dispatched jobs that have none yet. Then it claims and dispatches a batch
of pending jobs. It shares the claim protocol with the scheduled
``POST /api/deployments/process`` trigger, so running both is safe.

Usage:
    sitedeploy-worker
    python -m sitedeploy.worker --once
"""

import argparse
import logging
import time

from .database import SessionLocal
from .core.config import settings
from .core.logging_config import setup_logging
from .services.build_executor import BuildExecutor, GitHubActionsExecutor
from .services.queue_processor import QueueProcessor, ProcessResult

logger = logging.getLogger("sitedeploy.worker")


def run_once(executor: BuildExecutor) -> ProcessResult:
    """One tick: watchdog sweep, run lookup for dispatched jobs, then a bounded processing run."""
    db = SessionLocal()
    try:
        processor = QueueProcessor(db, executor, batch_size=settings.process_batch_size)
        processor.sweep_stale(settings.job_timeout_seconds)
        processor.resolve_runs()
        return processor.process_pending()
    finally:
        db.close()


def main(argv=None) -> None:
    """Poll for pending jobs until interrupted."""
    parser = argparse.ArgumentParser(description="Process pending site deployment jobs.")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    args = parser.parse_args(argv)

    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    executor = GitHubActionsExecutor.from_settings(settings)
    interval = settings.worker_poll_interval

    if args.once:
        result = run_once(executor)
        logger.info(f"Single run finished: {result.to_dict()}")
        return

    logger.info(f"Worker started, polling every {interval}s")
    logger.info(f"Job timeout: {settings.job_timeout_seconds}s, batch size: {settings.process_batch_size}")

    while True:
        try:
            result = run_once(executor)
            # Keep draining while full batches come back.
            if result.claimed < settings.process_batch_size:
                time.sleep(interval)
        except KeyboardInterrupt:
            logger.info("Worker shutting down")
            break
        except Exception as e:
            logger.error(f"Worker error: {e}")
            time.sleep(interval)


if __name__ == "__main__":
    main()
