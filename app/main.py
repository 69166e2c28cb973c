"""FastAPI application entry point."""

import logging
import os
import threading
from typing import List, Optional

import sqlalchemy
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.dependencies import Services, build_services
from app.routes import preflight, runs

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def run_migrations(services: Services):
    """Apply Alembic migrations unless the tables already exist."""
    if sqlalchemy.inspect(services.db_engine).has_table("jobs"):
        logger.info("Database tables already exist, skipping migrations")
        return

    logger.info("Running database migrations...")
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", services.settings.DATABASE_URL)
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed successfully")


def create_app(services: Optional[Services] = None, start_worker: bool = True) -> FastAPI:
    """Create the application. Services are built at startup unless supplied."""
    app = FastAPI(
        title="RoundTable",
        description="Multi-agent business idea evaluation pipeline",
        version="0.1.0",
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(runs.router)
    app.include_router(preflight.router)

    # Worker thread management
    worker_threads: List[threading.Thread] = []
    worker_stop_event = threading.Event()

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report request validation failures as 400."""
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    @app.on_event("startup")
    async def startup_event():
        """Build services, migrate, and start the background workers."""
        logger.info("Starting application...")

        if app.state.services is None:
            app.state.services = build_services(settings)

        if app.state.services.settings.RUN_MIGRATIONS:
            try:
                run_migrations(app.state.services)
            except Exception as e:
                logger.error(f"Startup database check/migration error: {e}")
                logger.info("Continuing startup - assuming database is ready")

        if not start_worker:
            return

        from app.worker import worker_loop

        for index in range(app.state.services.settings.WORKER_THREADS):
            thread = threading.Thread(
                target=worker_loop,
                args=(app.state.services, worker_stop_event),
                name=f"pipeline-worker-{index}",
                daemon=True,
            )
            thread.start()
            worker_threads.append(thread)
        logger.info(f"Started {len(worker_threads)} background worker threads")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop the background workers when the app shuts down."""
        logger.info("Shutting down application...")

        # Signal workers to stop
        worker_stop_event.set()

        # Wait for worker threads to finish (with timeout)
        for thread in worker_threads:
            if thread.is_alive():
                thread.join(timeout=10)
        logger.info("Background worker threads stopped")

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
