from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, TypeVar

import httpx

from src.analytics.patterns import (
    LOW_CONVERSION_QHH_FLOOR,
    build_low_conversion_patterns,
    build_outside_streak_patterns,
    build_source_failing_patterns,
    build_zero_item_streak_patterns,
    build_zip_failing_patterns,
    open_pattern_keys,
    select_new_patterns,
)
from src.core.errors import PatternPersistenceError
from src.models.detected_patterns import DetectedPatternCandidate
from src.repositories.detected_patterns_repository import DetectedPatternsRepository
from src.schemas.patterns import PatternDetectionSummary

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")

# Store reads surface HTTP failures from httpx and malformed rows as
# pydantic ValidationError, which is a ValueError.
STORE_ERRORS = (httpx.HTTPError, ValueError)


class PatternDetectionService:
    """Nightly sweep that turns daily activity into coaching findings.

    Each rule reads its own candidate rows; a failing rule is logged and
    contributes nothing. Candidates are reconciled against open findings by
    natural key, only new ones are inserted, and anything open for longer
    than ``AUTO_RESOLVE_AFTER_DAYS`` is closed as auto-resolved.
    """

    STREAK_LOOKBACK_DAYS = 14
    ZIP_LOOKBACK_DAYS = 30
    AUTO_RESOLVE_AFTER_DAYS = 7

    def __init__(self, repository: DetectedPatternsRepository) -> None:
        self.repository = repository

    @staticmethod
    def _now_utc() -> datetime:
        return datetime.now(timezone.utc)

    def detect_patterns(self, now: Optional[datetime] = None) -> PatternDetectionSummary:
        started = time.monotonic()
        now = now or self._now_utc()

        candidates = self.collect_candidates(now)

        logger.info("Deduplicating against existing patterns...")
        try:
            open_patterns = self.repository.list_open_patterns()
        except STORE_ERRORS as exc:
            raise PatternPersistenceError(f"Failed to load open patterns: {exc}") from exc
        new_patterns = select_new_patterns(candidates, open_pattern_keys(open_patterns))
        logger.info("%d total patterns, %d are new", len(candidates), len(new_patterns))

        if new_patterns:
            rows = [pattern.to_insert_row(detected_at=now) for pattern in new_patterns]
            try:
                self.repository.insert_patterns(rows)
            except STORE_ERRORS as exc:
                logger.error("Error inserting patterns: %s", exc)
                raise PatternPersistenceError(f"Failed to insert patterns: {exc}") from exc
            logger.info("Inserted %d new patterns", len(new_patterns))

        resolved_count = self.auto_resolve(now)

        return PatternDetectionSummary(
            patterns_detected=len(candidates),
            new_patterns_inserted=len(new_patterns),
            patterns_auto_resolved=resolved_count,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    def collect_candidates(self, now: datetime) -> List[DetectedPatternCandidate]:
        yesterday = (now.astimezone(timezone.utc) - timedelta(days=1)).date()
        candidates: List[DetectedPatternCandidate] = []
        candidates.extend(
            self._run_rule(
                "low conversion",
                lambda: self.repository.list_low_conversion_entries(
                    yesterday, qhh_floor=LOW_CONVERSION_QHH_FLOOR
                ),
                build_low_conversion_patterns,
            )
        )
        candidates.extend(
            self._run_rule(
                "source failure streak",
                lambda: self.repository.list_source_failure_streaks(self.STREAK_LOOKBACK_DAYS),
                build_source_failing_patterns,
            )
        )
        candidates.extend(
            self._run_rule(
                "outside framework streak",
                lambda: self.repository.list_outside_streaks(self.STREAK_LOOKBACK_DAYS),
                build_outside_streak_patterns,
            )
        )
        candidates.extend(
            self._run_rule(
                "zero item streak",
                lambda: self.repository.list_zero_item_streaks(self.STREAK_LOOKBACK_DAYS),
                build_zero_item_streak_patterns,
            )
        )
        candidates.extend(
            self._run_rule(
                "failing ZIP",
                lambda: self.repository.list_failing_zips(self.ZIP_LOOKBACK_DAYS),
                build_zip_failing_patterns,
            )
        )
        return candidates

    def auto_resolve(self, now: datetime) -> int:
        logger.info("Auto-resolving old patterns...")
        cutoff = now - timedelta(days=self.AUTO_RESOLVE_AFTER_DAYS)
        try:
            resolved = self.repository.resolve_patterns_detected_before(cutoff, resolved_at=now)
        except STORE_ERRORS:
            logger.exception("Error auto-resolving patterns")
            return 0
        logger.info("Auto-resolved %d old patterns", len(resolved))
        return len(resolved)

    @staticmethod
    def _run_rule(
        name: str,
        fetch: Callable[[], Iterable[RowT]],
        build: Callable[[Iterable[RowT]], List[DetectedPatternCandidate]],
    ) -> List[DetectedPatternCandidate]:
        logger.info("Checking %s patterns...", name)
        try:
            rows = list(fetch())
        except STORE_ERRORS:
            logger.exception("Error fetching %s rows", name)
            return []
        patterns = build(rows)
        logger.info("Found %d %s patterns", len(patterns), name)
        return patterns
