"""Run routes."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.dependencies import get_launcher, get_store
from app.pipeline.launcher import PipelineLauncher
from app.schemas.run import RunCreate, RunCreateResponse
from app.services.run_store import RunStateStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


@router.post("", status_code=202, response_model=RunCreateResponse)
def create_run(
    data: RunCreate,
    launcher: PipelineLauncher = Depends(get_launcher),
):
    """Create a new run and schedule its pipeline."""
    try:
        run = launcher.start(data.idea_text, preset_id=data.preset_id)
    except Exception as e:
        logger.error(f"Create run error: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(e)},
        )

    return RunCreateResponse(
        run_id=run.id,
        status=run.status,
        created_at=run.created_at,
    )


@router.get("/{run_id}")
def get_run(
    run_id: str,
    store: RunStateStore = Depends(get_store),
):
    """Get the full run document: status, conversation and result."""
    try:
        run = store.read(run_id)
    except Exception as e:
        logger.error(f"Get run error: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(e)},
        )

    if run is None:
        return JSONResponse(status_code=404, content={"error": "Run not found", "run_id": run_id})

    logger.info(f"Run retrieved: {run_id}, status: {run.status.value}")
    return run.model_dump(mode="json")
