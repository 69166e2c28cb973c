"""Job model for worker queue."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, Uuid

from app.database import Base, utcnow
from app.models.run import JSONDocument


class Job(Base):
    """Job is one delivery unit for the worker: drive a run's pipeline."""

    __tablename__ = "jobs"

    job_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(Text, ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    kind = Column(Text, nullable=False, default="pipeline")
    status = Column(Text, nullable=False)  # 'queued', 'running', 'done', 'failed'
    payload = Column(JSONDocument)
    deliveries = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_run_id", "run_id"),
    )
