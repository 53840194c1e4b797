from __future__ import annotations

from fastapi import APIRouter

from src.api.detect_patterns import router as detect_patterns_router
from src.api.health import router as health_router
from src.api.patterns import router as patterns_router


api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(detect_patterns_router)
api_router.include_router(patterns_router)
