from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from src.api.dependencies import get_pattern_detection_service
from src.core.config import get_settings
from src.core.errors import BadRequestError
from src.schemas.patterns import PatternDetectionFailure, PatternDetectionSummary
from src.services.pattern_detection_service import PatternDetectionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pattern-detection"])


def require_run_access(
    x_pattern_run_token: Optional[str] = Header(default=None),
) -> None:
    expected = get_settings().pattern_detection_run_token
    # Without a configured token the platform scheduler's own auth is the gate.
    if expected and x_pattern_run_token != expected:
        raise BadRequestError("Invalid pattern detection run token")


@router.api_route(
    "/detect-patterns",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    response_model=PatternDetectionSummary,
)
def detect_patterns(
    _: None = Depends(require_run_access),
    service: PatternDetectionService = Depends(get_pattern_detection_service),
) -> Any:
    try:
        return service.detect_patterns()
    except Exception as exc:
        # Terminal batch boundary: the scheduler only reads this JSON and the logs.
        logger.exception("Error in detect-patterns")
        failure = PatternDetectionFailure(error=str(exc) or exc.__class__.__name__)
        return JSONResponse(status_code=500, content=failure.model_dump(by_alias=True))
