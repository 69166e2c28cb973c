"""Database-backed job queue with at-least-once delivery."""

import logging
import uuid
from datetime import timedelta
from typing import NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.database import utcnow
from app.models.job import Job
from app.services.errors import PersistenceError

logger = logging.getLogger(__name__)


class ClaimedJob(NamedTuple):
    job_id: uuid.UUID
    run_id: str
    deliveries: int


class JobQueue:
    """Queue of pipeline jobs.

    A claimed job that is never marked done or failed (its worker died) is
    handed out again once its lease expires.
    """

    def __init__(self, session_factory: sessionmaker, lease_seconds: int = 600):
        """Initialize the queue."""
        self.session_factory = session_factory
        self.lease_seconds = lease_seconds

    def add(self, db: Session, run_id: str, kind: str = "pipeline") -> uuid.UUID:
        """Queue a job inside the caller's transaction. Committing is up to the caller."""
        job = Job(
            job_id=uuid.uuid4(),
            run_id=run_id,
            kind=kind,
            status="queued",
            payload={"run_id": run_id},
        )
        db.add(job)
        logger.info(f"Enqueued {kind} job {job.job_id} for run {run_id}")
        return job.job_id

    def claim_next(self) -> Optional[ClaimedJob]:
        """Claim the oldest queued job, or return None if there is none."""
        db = self.session_factory()
        try:
            job = (
                db.query(Job)
                .filter(Job.status == "queued")
                .order_by(Job.created_at)
                .with_for_update(skip_locked=True)
                .first()
            )
            if job is None:
                db.rollback()
                return None

            job.status = "running"
            job.deliveries = (job.deliveries or 0) + 1
            job.updated_at = utcnow()
            db.commit()

            logger.info(f"Claimed job {job.job_id} for run {job.run_id} (delivery {job.deliveries})")
            return ClaimedJob(job.job_id, job.run_id, job.deliveries)
        finally:
            db.close()

    def mark_done(self, job_id: uuid.UUID) -> None:
        self._finish(job_id, "done")

    def mark_failed(self, job_id: uuid.UUID, error: str) -> None:
        self._finish(job_id, "failed", error)

    def renew(self, job_id: uuid.UUID) -> bool:
        """Extend a running job's lease. Returns False if the job is no longer running."""
        db = self.session_factory()
        try:
            job = db.query(Job).filter(Job.job_id == job_id, Job.status == "running").first()
            if job is None:
                db.rollback()
                return False
            job.updated_at = utcnow()
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to renew lease of job {job_id}: {e}") from e
        finally:
            db.close()

    def requeue_stale(self) -> int:
        """Return expired running jobs to the queue. Returns how many were requeued."""
        cutoff = utcnow() - timedelta(seconds=self.lease_seconds)
        db = self.session_factory()
        try:
            stale = (
                db.query(Job)
                .filter(Job.status == "running", Job.updated_at < cutoff)
                .with_for_update(skip_locked=True)
                .all()
            )
            for job in stale:
                job.status = "queued"
                job.updated_at = utcnow()
                logger.warning(f"Job {job.job_id} lease expired, redelivering run {job.run_id}")
            db.commit()
            return len(stale)
        finally:
            db.close()

    def get(self, job_id: uuid.UUID) -> Optional[Job]:
        db = self.session_factory()
        try:
            return db.get(Job, job_id)
        finally:
            db.close()

    def _finish(self, job_id: uuid.UUID, status: str, error: Optional[str] = None) -> None:
        db = self.session_factory()
        try:
            job = db.get(Job, job_id)
            if job is None:
                return
            job.status = status
            if error is not None:
                job.last_error = error
            db.commit()
        finally:
            db.close()
