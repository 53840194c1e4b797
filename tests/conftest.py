from __future__ import annotations

import os
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Set

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")

import httpx
import pytest
from fastapi.testclient import TestClient

from src.api.dependencies import get_pattern_detection_service, get_patterns_service
from src.core.config import get_settings
from src.main import create_app
from src.models.detected_patterns import (
    DetectedPatternRecord,
    FailingZipRecord,
    LowConversionEntryRecord,
    OutsideStreakRecord,
    SourceFailureStreakRecord,
    ZeroItemStreakRecord,
)
from src.services.pattern_detection_service import PatternDetectionService
from src.services.patterns_service import PatternsService

NOW = datetime(2026, 10, 19, 6, 0, 0, tzinfo=timezone.utc)
YESTERDAY = date(2026, 10, 18)


class InMemoryPatternsRepository:
    """Mirrors the PostgREST filters the real repository sends."""

    def __init__(self) -> None:
        self.daily_entries: List[LowConversionEntryRecord] = []
        self.source_streaks: List[SourceFailureStreakRecord] = []
        self.outside_streaks: List[OutsideStreakRecord] = []
        self.zero_item_streaks: List[ZeroItemStreakRecord] = []
        self.failing_zips: List[FailingZipRecord] = []
        self.patterns: List[DetectedPatternRecord] = []
        self.producer_names: Dict[str, str] = {}
        self.failing_methods: Set[str] = set()
        self.lookbacks: Dict[str, int] = {}
        self.inserted_batches: List[List[Dict[str, Any]]] = []

    def _maybe_fail(self, method: str) -> None:
        if method in self.failing_methods:
            raise httpx.ConnectError(f"{method} unavailable")

    def list_low_conversion_entries(
        self, entry_date: date, qhh_floor: int
    ) -> List[LowConversionEntryRecord]:
        self._maybe_fail("list_low_conversion_entries")
        return [
            entry
            for entry in self.daily_entries
            if entry.entry_date == entry_date
            and entry.qhh_total > qhh_floor
            and entry.items_total == 0
        ]

    def list_source_failure_streaks(self, lookback_days: int) -> List[SourceFailureStreakRecord]:
        self._maybe_fail("list_source_failure_streaks")
        self.lookbacks["source_failing"] = lookback_days
        return list(self.source_streaks)

    def list_outside_streaks(self, lookback_days: int) -> List[OutsideStreakRecord]:
        self._maybe_fail("list_outside_streaks")
        self.lookbacks["outside_streak"] = lookback_days
        return list(self.outside_streaks)

    def list_zero_item_streaks(self, lookback_days: int) -> List[ZeroItemStreakRecord]:
        self._maybe_fail("list_zero_item_streaks")
        self.lookbacks["zero_item_streak"] = lookback_days
        return list(self.zero_item_streaks)

    def list_failing_zips(self, lookback_days: int) -> List[FailingZipRecord]:
        self._maybe_fail("list_failing_zips")
        self.lookbacks["zip_failing"] = lookback_days
        return list(self.failing_zips)

    def list_open_patterns(self) -> List[DetectedPatternRecord]:
        self._maybe_fail("list_open_patterns")
        return [p for p in self.patterns if p.resolved_at is None]

    def insert_patterns(self, rows: List[Dict[str, Any]]) -> List[DetectedPatternRecord]:
        self._maybe_fail("insert_patterns")
        self.inserted_batches.append(rows)
        created = []
        for row in rows:
            record = DetectedPatternRecord.model_validate(
                {**row, "id": f"pattern-{len(self.patterns) + 1}"}
            )
            self.patterns.append(record)
            created.append(record)
        return created

    def resolve_patterns_detected_before(
        self, cutoff: datetime, resolved_at: datetime
    ) -> List[DetectedPatternRecord]:
        self._maybe_fail("resolve_patterns_detected_before")
        resolved = []
        for pattern in self.patterns:
            if pattern.resolved_at is None and pattern.detected_at and pattern.detected_at < cutoff:
                pattern.resolved_at = resolved_at
                pattern.auto_resolved = True
                resolved.append(pattern)
        return resolved

    def list_all_active_patterns(self) -> List[DetectedPatternRecord]:
        self._maybe_fail("list_all_active_patterns")
        return [
            p.model_copy(update={"producer_name": self.producer_names.get(p.producer_id)})
            for p in self.patterns
            if p.resolved_at is None
        ]

    def list_producer_patterns(self, producer_id: str) -> List[DetectedPatternRecord]:
        self._maybe_fail("list_producer_patterns")
        return [p for p in self.patterns if p.resolved_at is None and p.producer_id == producer_id]

    def add_open_pattern(
        self,
        producer_id: str,
        pattern_type: str,
        context: Dict[str, Any],
        detected_at: datetime,
        severity: str = "warning",
        resolved_at: Optional[datetime] = None,
    ) -> DetectedPatternRecord:
        record = DetectedPatternRecord(
            id=f"pattern-{len(self.patterns) + 1}",
            producer_id=producer_id,
            pattern_type=pattern_type,
            severity=severity,
            context=context,
            detected_at=detected_at,
            resolved_at=resolved_at,
            auto_resolved=False,
        )
        self.patterns.append(record)
        return record


@pytest.fixture()
def repository() -> InMemoryPatternsRepository:
    return InMemoryPatternsRepository()


@pytest.fixture()
def detection_service(repository: InMemoryPatternsRepository) -> PatternDetectionService:
    return PatternDetectionService(repository=repository)


@pytest.fixture()
def client(repository: InMemoryPatternsRepository):
    get_settings.cache_clear()
    app = create_app()
    app.dependency_overrides[get_pattern_detection_service] = lambda: PatternDetectionService(
        repository=repository
    )
    app.dependency_overrides[get_patterns_service] = lambda: PatternsService(repository=repository)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        get_settings.cache_clear()


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def yesterday() -> date:
    return YESTERDAY
