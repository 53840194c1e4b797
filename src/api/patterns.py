from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_patterns_service
from src.schemas.patterns import (
    ActivePatternsFilters,
    ActivePatternsResponse,
    PatternCatalog,
    PatternSeverityName,
    PatternTypeName,
    ProducerPatternsResponse,
)
from src.services.patterns_service import PatternsService
from src.shared.response import Meta, ResponseEnvelope

router = APIRouter(prefix="/patterns", tags=["patterns"])


def get_active_pattern_filters(
    producer_id: Optional[str] = Query(default=None),
    severity: Optional[PatternSeverityName] = Query(default=None),
    pattern_type: Optional[PatternTypeName] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
) -> ActivePatternsFilters:
    return ActivePatternsFilters(
        producer_id=producer_id,
        severity=severity,
        pattern_type=pattern_type,
        page=page,
        page_size=page_size,
    )


def _build_meta(time_window: str) -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source="detected_patterns",
        time_window=time_window,
        calculation_version="v1",
    )


@router.get("")
def active_patterns(
    filters: ActivePatternsFilters = Depends(get_active_pattern_filters),
    service: PatternsService = Depends(get_patterns_service),
) -> ResponseEnvelope[ActivePatternsResponse]:
    data, pagination = service.get_active_patterns(filters)
    return ResponseEnvelope(data=data, pagination=pagination, meta=_build_meta("open"))


@router.get("/types")
def pattern_types() -> ResponseEnvelope[PatternCatalog]:
    return ResponseEnvelope(data=PatternsService.get_catalog(), meta=_build_meta("static"))


@router.get("/producers/{producer_id}")
def producer_patterns(
    producer_id: str,
    service: PatternsService = Depends(get_patterns_service),
) -> ResponseEnvelope[ProducerPatternsResponse]:
    data = service.get_producer_patterns(producer_id)
    return ResponseEnvelope(data=data, meta=_build_meta("open"))
