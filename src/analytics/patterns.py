from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from src.models.detected_patterns import (
    DetectedPatternCandidate,
    DetectedPatternRecord,
    FailingZipRecord,
    LowConversionContext,
    LowConversionEntryRecord,
    LowConversionPattern,
    OutsideStreakContext,
    OutsideStreakPattern,
    OutsideStreakRecord,
    PatternKey,
    PatternSeverity,
    SourceFailingContext,
    SourceFailingPattern,
    SourceFailureStreakRecord,
    ZeroItemStreakContext,
    ZeroItemStreakPattern,
    ZeroItemStreakRecord,
    ZipFailingContext,
    ZipFailingPattern,
)

# QHH of 4 is a TOP framework day, so anything above 3 with no items is a miss.
LOW_CONVERSION_QHH_FLOOR = 3
MIN_STREAK_DAYS = 3
CRITICAL_STREAK_DAYS = 5
MIN_FAILING_ZIP_QUOTES = 8


def streak_severity(streak_days: int) -> PatternSeverity:
    return "critical" if streak_days >= CRITICAL_STREAK_DAYS else "warning"


def build_low_conversion_patterns(
    entries: Iterable[LowConversionEntryRecord],
) -> List[LowConversionPattern]:
    patterns: List[LowConversionPattern] = []
    for entry in entries:
        if entry.qhh_total <= LOW_CONVERSION_QHH_FLOOR or entry.items_total != 0:
            continue
        patterns.append(
            LowConversionPattern(
                producer_id=entry.producer_id,
                severity="warning",
                context=LowConversionContext(
                    entry_date=entry.entry_date,
                    qhh_total=entry.qhh_total,
                    items_total=entry.items_total,
                    message=(
                        f"{entry.qhh_total} QHH quoted but 0 items sold on "
                        f"{entry.entry_date.isoformat()}"
                    ),
                ),
            )
        )
    return patterns


def build_source_failing_patterns(
    streaks: Iterable[SourceFailureStreakRecord],
) -> List[SourceFailingPattern]:
    patterns: List[SourceFailingPattern] = []
    for streak in streaks:
        if streak.streak_days < MIN_STREAK_DAYS:
            continue
        patterns.append(
            SourceFailingPattern(
                producer_id=streak.producer_id,
                severity=streak_severity(streak.streak_days),
                context=SourceFailingContext(
                    source_id=streak.source_id,
                    source_name=streak.source_name,
                    streak_days=streak.streak_days,
                    last_item_date=streak.last_item_date,
                    total_qhh=streak.total_qhh,
                    message=(
                        f"{streak.source_name}: {streak.streak_days} days with 0 items "
                        f"({streak.total_qhh} QHH quoted)"
                    ),
                ),
            )
        )
    return patterns


def build_outside_streak_patterns(
    streaks: Iterable[OutsideStreakRecord],
) -> List[OutsideStreakPattern]:
    patterns: List[OutsideStreakPattern] = []
    for streak in streaks:
        if streak.streak_days < MIN_STREAK_DAYS:
            continue
        patterns.append(
            OutsideStreakPattern(
                producer_id=streak.producer_id,
                severity=streak_severity(streak.streak_days),
                context=OutsideStreakContext(
                    streak_days=streak.streak_days,
                    streak_start=streak.streak_start,
                    streak_end=streak.streak_end,
                    avg_metrics=streak.avg_metrics,
                    message=(
                        f"{streak.streak_days} consecutive OUTSIDE days "
                        f"({streak.streak_start.isoformat()} to {streak.streak_end.isoformat()})"
                    ),
                ),
            )
        )
    return patterns


def build_zero_item_streak_patterns(
    streaks: Iterable[ZeroItemStreakRecord],
) -> List[ZeroItemStreakPattern]:
    patterns: List[ZeroItemStreakPattern] = []
    for streak in streaks:
        if streak.streak_days < MIN_STREAK_DAYS:
            continue
        patterns.append(
            ZeroItemStreakPattern(
                producer_id=streak.producer_id,
                severity=streak_severity(streak.streak_days),
                context=ZeroItemStreakContext(
                    streak_days=streak.streak_days,
                    streak_start=streak.streak_start,
                    streak_end=streak.streak_end,
                    total_qhh_during_streak=streak.total_qhh_during_streak,
                    message=(
                        f"{streak.streak_days} consecutive days with 0 items "
                        f"({streak.total_qhh_during_streak} QHH quoted during streak)"
                    ),
                ),
            )
        )
    return patterns


def build_zip_failing_patterns(zips: Iterable[FailingZipRecord]) -> List[ZipFailingPattern]:
    patterns: List[ZipFailingPattern] = []
    for row in zips:
        if row.quotes < MIN_FAILING_ZIP_QUOTES or row.sales != 0:
            continue
        patterns.append(
            ZipFailingPattern(
                producer_id=row.producer_id,
                severity="warning",
                context=ZipFailingContext(
                    zip_code=row.zip_code,
                    quotes=row.quotes,
                    sales=row.sales,
                    message=f"ZIP {row.zip_code}: {row.quotes} quotes, 0 sales; consider avoiding this area",
                ),
            )
        )
    return patterns


def _as_key_part(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def pattern_key_from_stored(
    producer_id: str, pattern_type: str, context: Mapping[str, Any]
) -> PatternKey:
    if pattern_type == "source_failing":
        discriminator = _as_key_part(context.get("source_id"))
    elif pattern_type == "low_conversion":
        discriminator = _as_key_part(context.get("entry_date"))
    elif pattern_type == "zip_failing":
        discriminator = _as_key_part(context.get("zip_code"))
    else:
        discriminator = _as_key_part(context.get("streak_end")) or _as_key_part(
            context.get("entry_date")
        )
    return PatternKey(producer_id, pattern_type, discriminator)


def open_pattern_keys(records: Iterable[DetectedPatternRecord]) -> Set[PatternKey]:
    return {
        pattern_key_from_stored(record.producer_id, record.pattern_type, record.context)
        for record in records
    }


def select_new_patterns(
    candidates: Iterable[DetectedPatternCandidate],
    existing_keys: Set[PatternKey],
) -> List[DetectedPatternCandidate]:
    """Keep candidates whose natural key is not already open.

    Candidates sharing a key within the same batch collapse to the first one,
    so a single run never opens two findings for one condition.
    """
    seen = set(existing_keys)
    fresh: List[DetectedPatternCandidate] = []
    for candidate in candidates:
        key = candidate.natural_key()
        if key in seen:
            continue
        seen.add(key)
        fresh.append(candidate)
    return fresh


def count_by_severity(severities: Iterable[str]) -> Dict[str, int]:
    counts = {"critical": 0, "warning": 0, "info": 0, "total": 0}
    for severity in severities:
        if severity in counts:
            counts[severity] += 1
        counts["total"] += 1
    return counts
