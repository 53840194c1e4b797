from __future__ import annotations

from typing import List, Tuple

from src.analytics.patterns import count_by_severity
from src.core.errors import BadRequestError
from src.models.detected_patterns import DetectedPatternRecord
from src.repositories.detected_patterns_repository import DetectedPatternsRepository
from src.schemas.patterns import (
    ActivePatternsFilters,
    ActivePatternsResponse,
    DetectedPattern,
    PatternCatalog,
    PatternCounts,
    PatternTypeInfo,
    ProducerPatternsResponse,
    SeverityInfo,
)
from src.shared.response import Pagination, paginate_list

PATTERN_TYPE_CATALOG = (
    ("low_conversion", "Low Conversion", "High quoting activity but no sales"),
    ("source_failing", "Source Struggling", "Lead source producing no items"),
    ("outside_streak", "Outside Framework", "Consecutive days outside framework"),
    ("zero_item_streak", "Zero Items", "Consecutive days with no items sold"),
    ("zip_failing", "ZIP Failing", "ZIP code quoted repeatedly with no sales"),
)
SEVERITY_CATALOG = (("critical", "Critical"), ("warning", "Warning"), ("info", "Info"))
SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}


class PatternsService:
    def __init__(self, repository: DetectedPatternsRepository) -> None:
        self.repository = repository

    def get_active_patterns(
        self, filters: ActivePatternsFilters
    ) -> Tuple[ActivePatternsResponse, Pagination]:
        records = self.repository.list_all_active_patterns()
        if filters.producer_id:
            records = [r for r in records if r.producer_id == filters.producer_id]
        if filters.pattern_type:
            records = [r for r in records if r.pattern_type == filters.pattern_type]
        # Counts describe the filtered scope before the severity filter narrows it.
        counts = PatternCounts(**count_by_severity(r.severity for r in records))
        if filters.severity:
            records = [r for r in records if r.severity == filters.severity]

        items = self._sorted(records)
        page_items, pagination = paginate_list(items, filters.page, filters.page_size)
        return ActivePatternsResponse(counts=counts, items=page_items), pagination

    def get_producer_patterns(self, producer_id: str) -> ProducerPatternsResponse:
        if not producer_id.strip():
            raise BadRequestError("producer_id is required")
        records = self.repository.list_producer_patterns(producer_id)
        items = self._sorted(records)
        return ProducerPatternsResponse(
            producer_id=producer_id,
            counts=PatternCounts(**count_by_severity(item.severity for item in items)),
            items=items,
        )

    @staticmethod
    def get_catalog() -> PatternCatalog:
        return PatternCatalog(
            pattern_types=[
                PatternTypeInfo(pattern_type=pattern_type, label=label, description=description)
                for pattern_type, label, description in PATTERN_TYPE_CATALOG
            ],
            severities=[
                SeverityInfo(severity=severity, label=label) for severity, label in SEVERITY_CATALOG
            ],
        )

    @staticmethod
    def _to_pattern(record: DetectedPatternRecord) -> DetectedPattern:
        message = record.context.get("message")
        return DetectedPattern(
            id=record.id,
            producer_id=record.producer_id,
            producer_name=record.producer_name,
            pattern_type=record.pattern_type,
            severity=record.severity,
            detected_at=record.detected_at,
            message=str(message) if message is not None else None,
            context=record.context,
        )

    def _sorted(self, records: List[DetectedPatternRecord]) -> List[DetectedPattern]:
        # Most severe first, newest first within a severity.
        ordered = sorted(
            records,
            key=lambda r: r.detected_at.timestamp() if r.detected_at else 0.0,
            reverse=True,
        )
        ordered.sort(key=lambda r: SEVERITY_ORDER.get(r.severity, len(SEVERITY_ORDER)))
        return [self._to_pattern(record) for record in ordered]
