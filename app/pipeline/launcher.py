"""Pipeline entry point: create a run and schedule its pipeline."""

import logging
import uuid
from datetime import datetime
from typing import Optional

from app.config import Settings
from app.database import utcnow
from app.schemas.run import RunDocument, RunStatus
from app.services.job_queue import JobQueue
from app.services.run_store import RunStateStore

logger = logging.getLogger(__name__)


def generate_run_id(now: Optional[datetime] = None) -> str:
    """Run id of the form run_YYYY-MM-DD_xxxxxxxx."""
    now = now or utcnow()
    return f"run_{now:%Y-%m-%d}_{uuid.uuid4().hex[:8]}"


class PipelineLauncher:
    """Creates runs in INIT and hands them to the worker queue."""

    def __init__(self, store: RunStateStore, queue: JobQueue, settings: Settings):
        """Initialize the launcher."""
        self.store = store
        self.queue = queue
        self.settings = settings

    def start(self, idea_text: str, preset_id: Optional[str] = None) -> RunDocument:
        """
        Create a run together with its pipeline job.

        The run row and the job row are committed in one transaction, so a
        run never exists without a job to drive it.

        Raises:
            PersistenceError: If the run cannot be created and scheduled
        """
        now = utcnow()
        document = RunDocument(
            id=generate_run_id(now),
            status=RunStatus.INIT,
            idea_text=idea_text,
            preset_id=preset_id or self.settings.DEFAULT_PRESET_ID,
            conversation=[],
            result=None,
            metadata=None,
            created_at=now,
            updated_at=now,
            ttl=self.settings.RUN_TTL_SECONDS,
        )
        run = self.store.create(document, before_commit=lambda db: self.queue.add(db, document.id))

        logger.info(f"Run created: {run.id}")
        return run
