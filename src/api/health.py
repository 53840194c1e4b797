from __future__ import annotations

from datetime import date
from typing import Dict

from fastapi import APIRouter

from src.core.config import get_settings
from src.shared.response import Meta, ResponseEnvelope


router = APIRouter(tags=["health"])


def _health_payload() -> ResponseEnvelope[Dict[str, str]]:
    settings = get_settings()
    meta = Meta(
        as_of_date=date.today().isoformat(),
        source="system",
        time_window="now",
        calculation_version="v1",
    )
    return ResponseEnvelope(
        data={"status": "ok", "service": settings.app_name, "environment": settings.environment},
        meta=meta,
    )


@router.get("/health")
def health_check() -> ResponseEnvelope[Dict[str, str]]:
    return _health_payload()


@router.get("/healthz")
def health_check_liveness() -> ResponseEnvelope[Dict[str, str]]:
    return _health_payload()
