from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from src.analytics.patterns import (
    build_low_conversion_patterns,
    build_outside_streak_patterns,
    build_source_failing_patterns,
    build_zero_item_streak_patterns,
    build_zip_failing_patterns,
    count_by_severity,
    open_pattern_keys,
    pattern_key_from_stored,
    select_new_patterns,
    streak_severity,
)
from src.models.detected_patterns import (
    DetectedPatternRecord,
    FailingZipRecord,
    LowConversionEntryRecord,
    OutsideStreakRecord,
    PatternKey,
    SourceFailureStreakRecord,
    ZeroItemStreakRecord,
)


def _zero_item_streak(days: int, producer_id: str = "prod-1") -> ZeroItemStreakRecord:
    return ZeroItemStreakRecord(
        producer_id=producer_id,
        producer_name="Dana",
        streak_days=days,
        streak_start=date(2026, 10, 19 - days),
        streak_end=date(2026, 10, 18),
        total_qhh_during_streak=7,
    )


def _source_streak(source_id: str, days: int = 3) -> SourceFailureStreakRecord:
    return SourceFailureStreakRecord(
        producer_id="prod-1",
        producer_name="Dana",
        source_id=source_id,
        source_name=f"Source {source_id}",
        streak_days=days,
        last_item_date=None,
        total_qhh=9,
    )


@pytest.mark.parametrize(
    ("days", "expected"),
    [(2, None), (3, "warning"), (4, "warning"), (5, "critical"), (9, "critical")],
)
def test_zero_item_streak_thresholds(days: int, expected: str | None) -> None:
    patterns = build_zero_item_streak_patterns([_zero_item_streak(days)])
    if expected is None:
        assert patterns == []
    else:
        assert len(patterns) == 1
        assert patterns[0].severity == expected
        assert patterns[0].pattern_type == "zero_item_streak"


def test_streak_severity_split() -> None:
    assert streak_severity(3) == "warning"
    assert streak_severity(4) == "warning"
    assert streak_severity(5) == "critical"


def test_low_conversion_requires_more_than_three_qhh() -> None:
    entries = [
        LowConversionEntryRecord(producer_id="prod-1", entry_date=date(2026, 10, 18), qhh_total=3, items_total=0),
        LowConversionEntryRecord(producer_id="prod-2", entry_date=date(2026, 10, 18), qhh_total=4, items_total=0),
        LowConversionEntryRecord(producer_id="prod-3", entry_date=date(2026, 10, 18), qhh_total=6, items_total=1),
    ]
    patterns = build_low_conversion_patterns(entries)
    assert [p.producer_id for p in patterns] == ["prod-2"]
    assert patterns[0].severity == "warning"
    assert patterns[0].context.message == "4 QHH quoted but 0 items sold on 2026-10-18"


def test_source_failing_context_carries_wasted_quotes() -> None:
    patterns = build_source_failing_patterns([_source_streak("src-a", days=6)])
    assert len(patterns) == 1
    context = patterns[0].context
    assert patterns[0].severity == "critical"
    assert context.total_qhh == 9
    assert context.message == "Source src-a: 6 days with 0 items (9 QHH quoted)"


def test_outside_streak_keeps_average_metrics() -> None:
    streak = OutsideStreakRecord.model_validate(
        {
            "producer_id": "prod-1",
            "producer_name": "Dana",
            "streak_days": "3",
            "streak_start": "2026-10-16",
            "streak_end": "2026-10-18",
            "avg_metrics": {"avg_dials": 40.5, "avg_talk_minutes": 52, "avg_qhh": 1.3, "avg_items": 0},
        }
    )
    patterns = build_outside_streak_patterns([streak])
    assert len(patterns) == 1
    assert patterns[0].context.avg_metrics.avg_dials == 40.5
    assert patterns[0].context.message == "3 consecutive OUTSIDE days (2026-10-16 to 2026-10-18)"


def test_outside_streak_tolerates_missing_metrics() -> None:
    streak = OutsideStreakRecord.model_validate(
        {
            "producer_id": "prod-1",
            "streak_days": 4,
            "streak_start": "2026-10-15",
            "streak_end": "2026-10-18",
            "avg_metrics": None,
        }
    )
    assert streak.avg_metrics is None
    patterns = build_outside_streak_patterns([streak])
    assert patterns[0].context.avg_metrics is None


def test_outside_streak_passes_null_averages_through() -> None:
    streak = OutsideStreakRecord.model_validate(
        {
            "producer_id": "prod-1",
            "streak_days": 3,
            "streak_start": "2026-10-16",
            "streak_end": "2026-10-18",
            "avg_metrics": {"avg_dials": 12, "avg_talk_minutes": None, "avg_qhh": 0.5, "avg_items": 0},
        }
    )
    context = build_outside_streak_patterns([streak])[0].context
    assert context.avg_metrics.avg_talk_minutes is None
    assert context.avg_metrics.avg_dials == 12.0


def test_non_numeric_count_is_a_validation_error() -> None:
    with pytest.raises(ValidationError):
        ZeroItemStreakRecord.model_validate(
            {
                "producer_id": "prod-1",
                "streak_days": [3],
                "streak_start": "2026-10-16",
                "streak_end": "2026-10-18",
            }
        )


def test_zip_failing_needs_eight_quotes_and_no_sales() -> None:
    zips = [
        FailingZipRecord(producer_id="prod-1", zip_code="30301", quotes=7, sales=0),
        FailingZipRecord(producer_id="prod-1", zip_code="30302", quotes=8, sales=0),
        FailingZipRecord(producer_id="prod-1", zip_code="30303", quotes=12, sales=1),
    ]
    patterns = build_zip_failing_patterns(zips)
    assert [p.context.zip_code for p in patterns] == ["30302"]
    assert patterns[0].severity == "warning"


def test_stored_and_candidate_keys_match_for_same_condition() -> None:
    candidate = build_zero_item_streak_patterns([_zero_item_streak(4)])[0]
    stored_context = candidate.model_dump(mode="json")["context"]
    stored_key = pattern_key_from_stored("prod-1", "zero_item_streak", stored_context)
    assert candidate.natural_key() == stored_key
    assert stored_key == PatternKey("prod-1", "zero_item_streak", "2026-10-18")


def test_streak_key_falls_back_to_entry_date() -> None:
    key = pattern_key_from_stored("prod-1", "outside_streak", {"entry_date": "2026-10-12"})
    assert key.discriminator == "2026-10-12"


def test_keys_do_not_collide_across_pattern_types() -> None:
    source_key = pattern_key_from_stored("prod-1", "source_failing", {"source_id": "30301"})
    zip_key = pattern_key_from_stored("prod-1", "zip_failing", {"zip_code": "30301"})
    assert source_key != zip_key


def test_distinct_sources_are_both_new() -> None:
    candidates = build_source_failing_patterns([_source_streak("src-a"), _source_streak("src-b")])
    fresh = select_new_patterns(candidates, set())
    assert {p.context.source_id for p in fresh} == {"src-a", "src-b"}


def test_same_source_collapses_within_batch_and_against_open() -> None:
    candidates = build_source_failing_patterns([_source_streak("src-a", 3), _source_streak("src-a", 4)])
    assert len(select_new_patterns(candidates, set())) == 1

    open_record = DetectedPatternRecord(
        id="pattern-1",
        producer_id="prod-1",
        pattern_type="source_failing",
        severity="warning",
        context={"source_id": "src-a", "message": "old"},
        detected_at=datetime(2026, 10, 17, tzinfo=timezone.utc),
    )
    assert select_new_patterns(candidates, open_pattern_keys([open_record])) == []


def test_count_by_severity() -> None:
    assert count_by_severity(["critical", "warning", "warning", "info"]) == {
        "critical": 1,
        "warning": 2,
        "info": 1,
        "total": 4,
    }
