"""Service construction and FastAPI dependencies.

Every client is built once by ``build_services`` and passed explicitly to
the components that use it.
"""

import time
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.engine import Engine

from app.agents.executor import StepExecutor
from app.config import Settings
from app.database import create_db_engine, create_session_factory
from app.pipeline.engine import PipelineEngine
from app.pipeline.launcher import PipelineLauncher
from app.services.job_queue import JobQueue
from app.services.llm_client import LLMClient
from app.services.run_store import RunStateStore


class Services:
    """Process-wide service handles."""

    def __init__(
        self,
        settings: Settings,
        db_engine: Engine,
        llm_client: LLMClient,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.db_engine = db_engine
        self.session_factory = create_session_factory(db_engine)
        self.llm_client = llm_client
        self.store = RunStateStore(self.session_factory)
        self.queue = JobQueue(self.session_factory, lease_seconds=settings.JOB_LEASE_SECONDS)
        self.executor = StepExecutor(
            llm_client,
            self.store,
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            sleep=sleep,
        )
        self.engine = PipelineEngine(self.store, self.executor)
        self.launcher = PipelineLauncher(self.store, self.queue, settings)


def build_services(
    settings: Settings,
    db_engine: Optional[Engine] = None,
    llm_client: Optional[LLMClient] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Services:
    """Build all services from settings, allowing any client to be supplied."""
    return Services(
        settings=settings,
        db_engine=db_engine or create_db_engine(settings.DATABASE_URL),
        llm_client=llm_client or LLMClient.from_settings(settings),
        sleep=sleep,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(services: Services = Depends(get_services)) -> RunStateStore:
    return services.store


def get_launcher(services: Services = Depends(get_services)) -> PipelineLauncher:
    return services.launcher
