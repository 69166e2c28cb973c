"""Background worker for processing pipeline jobs."""

import logging
import threading
import time
from typing import Optional

import sqlalchemy
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.dependencies import Services, build_services
from app.pipeline.engine import PipelineEngine
from app.schemas.run import RunStatus
from app.services.errors import PersistenceError, RunNotFoundError
from app.services.job_queue import ClaimedJob, JobQueue

logger = logging.getLogger(__name__)


class Worker:
    """Background worker for processing jobs.

    Delivery is at-least-once: a job whose worker died is redelivered after
    its lease expires, and the engine resumes the run from its checkpoint.
    """

    def __init__(
        self,
        queue: JobQueue,
        engine: PipelineEngine,
        poll_interval: float = 2,
        max_deliveries: int = 3,
    ):
        """Initialize worker."""
        self.queue = queue
        self.engine = engine
        self.poll_interval = poll_interval
        self.max_deliveries = max_deliveries

    def run(self, stop_event: Optional[threading.Event] = None):
        """Main worker loop.

        Args:
            stop_event: Optional threading.Event to signal worker to stop
        """
        stop_event = stop_event or threading.Event()
        logger.info("Worker started")

        while not stop_event.is_set():
            try:
                self.queue.requeue_stale()
                if not self.process_next():
                    stop_event.wait(self.poll_interval)
            except KeyboardInterrupt:
                logger.info("Worker shutting down")
                break
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
                stop_event.wait(self.poll_interval)

        logger.info("Worker stop signal received")

    def process_next(self) -> bool:
        """Claim and process one job. Returns False if the queue was empty."""
        job = self.queue.claim_next()
        if job is None:
            return False
        self.process_job(job)
        return True

    def process_job(self, job: ClaimedJob):
        """Process a single job."""
        logger.info(f"Processing job {job.job_id} (run: {job.run_id}, delivery {job.deliveries})")

        if job.deliveries > self.max_deliveries:
            message = f"Pipeline job delivered {job.deliveries} times without finishing"
            logger.error(f"Job {job.job_id}: {message}")
            self.engine.fail(job.run_id, message)
            self.queue.mark_failed(job.job_id, message)
            return

        try:
            outcome = self.engine.run(job.run_id, heartbeat=lambda: self.renew_lease(job))
        except RunNotFoundError as e:
            logger.error(f"Job {job.job_id} failed: {e}")
            self.queue.mark_failed(job.job_id, str(e))
            return

        if not outcome.finished:
            # Another delivery recorded a turn first and is still driving the run
            logger.warning(
                f"Job {job.job_id}: run {job.run_id} is being driven by another delivery "
                f"({outcome.status.value}), leaving the job to it"
            )
        elif outcome.status == RunStatus.FAILED:
            self.queue.mark_failed(job.job_id, outcome.error_message or "Pipeline failed")
            logger.error(f"Job {job.job_id} failed: run {job.run_id} ended FAILED")
        else:
            self.queue.mark_done(job.job_id)
            logger.info(f"Job {job.job_id} completed: run {job.run_id} ended {outcome.status.value}")

    def renew_lease(self, job: ClaimedJob):
        """Extend the job's lease after a committed stage. A failed renewal only risks a redelivery."""
        try:
            if not self.queue.renew(job.job_id):
                logger.warning(f"Job {job.job_id} is no longer running, lease not renewed")
        except PersistenceError as e:
            logger.warning(f"Job {job.job_id}: lease renewal failed: {e}")


def wait_for_database(services: Services, max_wait: int = 60) -> bool:
    """Wait until the jobs table exists (migrations may still be running)."""
    waited = 0
    while waited < max_wait:
        try:
            if sqlalchemy.inspect(services.db_engine).has_table("jobs"):
                logger.info("Database is ready, starting worker loop")
                return True
            logger.info(f"Waiting for migrations to complete... ({waited}s)")
        except SQLAlchemyError as e:
            logger.error(f"Database error: {e}")
        time.sleep(2)
        waited += 2

    logger.error(f"Database not ready after {max_wait} seconds, starting anyway...")
    return False


def build_worker(services: Services) -> Worker:
    return Worker(
        services.queue,
        services.engine,
        poll_interval=services.settings.WORKER_POLL_INTERVAL,
        max_deliveries=services.settings.MAX_JOB_DELIVERIES,
    )


def worker_loop(services: Services, stop_event: Optional[threading.Event] = None):
    """Run worker loop (for use as background thread).

    Args:
        services: Shared service handles
        stop_event: Optional threading.Event to signal worker to stop
    """
    wait_for_database(services)
    build_worker(services).run(stop_event=stop_event)


def main():
    """Entry point for standalone worker."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    services = build_services(settings)
    worker_loop(services)


if __name__ == "__main__":
    main()
