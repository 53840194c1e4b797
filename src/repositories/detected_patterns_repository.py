from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from src.core.supabase import SupabaseClient
from src.models.detected_patterns import (
    DetectedPatternRecord,
    FailingZipRecord,
    LowConversionEntryRecord,
    OutsideStreakRecord,
    SourceFailureStreakRecord,
    ZeroItemStreakRecord,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

DETECTED_PATTERN_COLUMNS = "id,producer_id,pattern_type,severity,context,detected_at,resolved_at,auto_resolved"


def _rpc_rows(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [row for row in payload if isinstance(row, dict)]
    return []


def _validate_rule_rows(
    model: Type[RecordT], rows: Iterable[Dict[str, Any]], source: str
) -> List[RecordT]:
    """Validate rule rows one at a time; a malformed row is logged and skipped."""
    records: List[RecordT] = []
    for row in rows:
        try:
            records.append(model.model_validate(row))
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid %s row for producer %s: %s", source, row.get("producer_id"), exc
            )
    return records

class DetectedPatternsRepository:
    def __init__(self, client: Optional[SupabaseClient] = None) -> None:
        self.client = client or SupabaseClient()

    @staticmethod
    def _to_iso_utc(dt: datetime) -> str:
        return dt.astimezone(timezone.utc).isoformat()

    def list_low_conversion_entries(
        self, entry_date: date, qhh_floor: int
    ) -> List[LowConversionEntryRecord]:
        rows = self.client.select(
            table="daily_entries",
            select="producer_id,entry_date,qhh_total,items_total,producers!inner(display_name,active)",
            filters=[
                ("entry_date", f"eq.{entry_date.isoformat()}"),
                ("qhh_total", f"gt.{qhh_floor}"),
                ("items_total", "eq.0"),
                ("producers.active", "eq.true"),
            ],
        )
        return _validate_rule_rows(
            LowConversionEntryRecord,
            (
                {**row, "producer_name": (row.get("producers") or {}).get("display_name")}
                for row in rows
            ),
            "daily_entries",
        )

    def list_source_failure_streaks(self, lookback_days: int) -> List[SourceFailureStreakRecord]:
        payload = self.client.rpc(
            "get_source_failure_streaks", payload={"p_lookback_days": lookback_days}
        )
        return _validate_rule_rows(
            SourceFailureStreakRecord, _rpc_rows(payload), "get_source_failure_streaks"
        )

    def list_outside_streaks(self, lookback_days: int) -> List[OutsideStreakRecord]:
        payload = self.client.rpc("get_outside_streaks", payload={"p_lookback_days": lookback_days})
        return _validate_rule_rows(OutsideStreakRecord, _rpc_rows(payload), "get_outside_streaks")

    def list_zero_item_streaks(self, lookback_days: int) -> List[ZeroItemStreakRecord]:
        payload = self.client.rpc(
            "get_zero_item_streaks", payload={"p_lookback_days": lookback_days}
        )
        return _validate_rule_rows(
            ZeroItemStreakRecord, _rpc_rows(payload), "get_zero_item_streaks"
        )

    def list_failing_zips(self, lookback_days: int) -> List[FailingZipRecord]:
        payload = self.client.rpc("get_failing_zips_v2", payload={"p_lookback_days": lookback_days})
        return _validate_rule_rows(FailingZipRecord, _rpc_rows(payload), "get_failing_zips_v2")

    def list_open_patterns(self) -> List[DetectedPatternRecord]:
        rows = self.client.select(
            table="detected_patterns",
            select=DETECTED_PATTERN_COLUMNS,
            filters=[("resolved_at", "is.null")],
        )
        return [DetectedPatternRecord.model_validate(row) for row in rows]

    def insert_patterns(self, rows: List[Dict[str, Any]]) -> List[DetectedPatternRecord]:
        if not rows:
            return []
        created = self.client.insert(table="detected_patterns", payload=rows)
        return [DetectedPatternRecord.model_validate(row) for row in created]

    def resolve_patterns_detected_before(
        self, cutoff: datetime, resolved_at: datetime
    ) -> List[DetectedPatternRecord]:
        rows = self.client.update(
            table="detected_patterns",
            payload={"resolved_at": self._to_iso_utc(resolved_at), "auto_resolved": True},
            filters=[
                ("resolved_at", "is.null"),
                ("detected_at", f"lt.{self._to_iso_utc(cutoff)}"),
            ],
        )
        return [DetectedPatternRecord.model_validate(row) for row in rows]

    def list_all_active_patterns(self) -> List[DetectedPatternRecord]:
        payload = self.client.rpc("get_all_active_patterns")
        return [DetectedPatternRecord.model_validate(row) for row in _rpc_rows(payload)]

    def list_producer_patterns(self, producer_id: str) -> List[DetectedPatternRecord]:
        payload = self.client.rpc("get_producer_patterns", payload={"p_producer_id": producer_id})
        return [
            DetectedPatternRecord.model_validate({**row, "producer_id": producer_id})
            for row in _rpc_rows(payload)
        ]
