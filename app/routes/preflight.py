"""Preflight route."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.schemas.run import PreflightRequest, PreflightResponse
from app.services.preflight import run_preflight
from app.services.validators import validate_idea_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/preflight", tags=["preflight"])


@router.post("", response_model=PreflightResponse)
def preflight(data: PreflightRequest):
    """Validate idea text and return clarification questions if needed."""
    error = validate_idea_text(data.idea_text)
    if error:
        return JSONResponse(status_code=400, content={"error": error})

    response = run_preflight(data.idea_text)
    logger.info(f"Preflight complete: {len(response.questions)} questions generated")
    return response
