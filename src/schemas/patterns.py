from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from src.shared.base import BaseSchema


PatternTypeName = Literal[
    "low_conversion",
    "source_failing",
    "outside_streak",
    "zero_item_streak",
    "zip_failing",
]
PatternSeverityName = Literal["critical", "warning", "info"]


class DetectedPattern(BaseSchema):
    id: str
    producer_id: str
    producer_name: Optional[str] = None
    pattern_type: str
    severity: str
    detected_at: Optional[datetime] = None
    message: Optional[str] = None
    # Stored as-is; keys stay snake_case to match the findings table.
    context: Dict[str, Any] = Field(default_factory=dict)


class PatternCounts(BaseSchema):
    critical: int = 0
    warning: int = 0
    info: int = 0
    total: int = 0


class ActivePatternsFilters(BaseSchema):
    producer_id: Optional[str] = None
    severity: Optional[PatternSeverityName] = None
    pattern_type: Optional[PatternTypeName] = None
    page: int = 1
    page_size: int = 50


class ActivePatternsResponse(BaseSchema):
    counts: PatternCounts
    items: List[DetectedPattern]


class ProducerPatternsResponse(BaseSchema):
    producer_id: str
    counts: PatternCounts
    items: List[DetectedPattern]


class PatternTypeInfo(BaseSchema):
    pattern_type: PatternTypeName
    label: str
    description: str


class SeverityInfo(BaseSchema):
    severity: PatternSeverityName
    label: str


class PatternCatalog(BaseSchema):
    pattern_types: List[PatternTypeInfo]
    severities: List[SeverityInfo]


class PatternDetectionSummary(BaseSchema):
    success: bool = True
    patterns_detected: int
    new_patterns_inserted: int
    patterns_auto_resolved: int
    duration_ms: int


class PatternDetectionFailure(BaseSchema):
    success: bool = False
    error: str
