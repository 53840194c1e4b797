from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Dict, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, BeforeValidator, Field, field_validator


PatternType = Literal[
    "low_conversion",
    "source_failing",
    "outside_streak",
    "zero_item_streak",
    "zip_failing",
]
PatternSeverity = Literal["critical", "warning", "info"]


def _coerce_int(value: Any) -> int:
    # Postgres numeric aggregates come back as strings or floats over PostgREST.
    if value is None:
        return 0
    try:
        return int(float(value))
    except TypeError as exc:
        raise ValueError(f"expected a number, got {type(value).__name__}") from exc


CountInt = Annotated[int, BeforeValidator(_coerce_int)]


# Rows returned by the store for each detection rule.


class LowConversionEntryRecord(BaseModel):
    producer_id: str
    producer_name: Optional[str] = None
    entry_date: date
    qhh_total: CountInt = 0
    items_total: CountInt = 0


class SourceFailureStreakRecord(BaseModel):
    producer_id: str
    producer_name: Optional[str] = None
    source_id: str
    source_name: str
    streak_days: CountInt
    last_item_date: Optional[date] = None
    total_qhh: CountInt = 0


class AverageDailyMetrics(BaseModel):
    avg_dials: Optional[float] = None
    avg_talk_minutes: Optional[float] = None
    avg_qhh: Optional[float] = None
    avg_items: Optional[float] = None


class OutsideStreakRecord(BaseModel):
    producer_id: str
    producer_name: Optional[str] = None
    streak_days: CountInt
    streak_start: date
    streak_end: date
    avg_metrics: Optional[AverageDailyMetrics] = None


class ZeroItemStreakRecord(BaseModel):
    producer_id: str
    producer_name: Optional[str] = None
    streak_days: CountInt
    streak_start: date
    streak_end: date
    total_qhh_during_streak: CountInt = 0


class FailingZipRecord(BaseModel):
    producer_id: str
    producer_name: Optional[str] = None
    zip_code: str
    quotes: CountInt
    sales: CountInt = 0


class DetectedPatternRecord(BaseModel):
    id: str
    producer_id: str
    pattern_type: str
    severity: str
    context: Dict[str, Any] = Field(default_factory=dict)
    detected_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    auto_resolved: Optional[bool] = None
    producer_name: Optional[str] = None

    @field_validator("context", mode="before")
    @classmethod
    def _null_context(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


# Typed findings produced by the rules, one variant per pattern type.


class LowConversionContext(BaseModel):
    entry_date: date
    qhh_total: int
    items_total: int
    message: str


class SourceFailingContext(BaseModel):
    source_id: str
    source_name: str
    streak_days: int
    last_item_date: Optional[date] = None
    total_qhh: int
    message: str


class OutsideStreakContext(BaseModel):
    streak_days: int
    streak_start: date
    streak_end: date
    avg_metrics: Optional[AverageDailyMetrics] = None
    message: str


class ZeroItemStreakContext(BaseModel):
    streak_days: int
    streak_start: date
    streak_end: date
    total_qhh_during_streak: int
    message: str


class ZipFailingContext(BaseModel):
    zip_code: str
    quotes: int
    sales: int
    message: str


class PatternKey(NamedTuple):
    """Natural identity of a finding used to keep one open row per condition."""

    producer_id: str
    pattern_type: str
    discriminator: Optional[str]


class _PatternBase(BaseModel):
    producer_id: str
    pattern_type: str
    severity: PatternSeverity

    def discriminator(self) -> Optional[str]:
        raise NotImplementedError

    def natural_key(self) -> PatternKey:
        return PatternKey(self.producer_id, self.pattern_type, self.discriminator())

    def to_insert_row(self, detected_at: datetime) -> Dict[str, Any]:
        row = self.model_dump(mode="json")
        row["detected_at"] = detected_at.isoformat()
        row["resolved_at"] = None
        row["auto_resolved"] = False
        return row


class LowConversionPattern(_PatternBase):
    pattern_type: Literal["low_conversion"] = "low_conversion"
    context: LowConversionContext

    def discriminator(self) -> Optional[str]:
        return self.context.entry_date.isoformat()


class SourceFailingPattern(_PatternBase):
    pattern_type: Literal["source_failing"] = "source_failing"
    context: SourceFailingContext

    def discriminator(self) -> Optional[str]:
        return self.context.source_id


class OutsideStreakPattern(_PatternBase):
    pattern_type: Literal["outside_streak"] = "outside_streak"
    context: OutsideStreakContext

    def discriminator(self) -> Optional[str]:
        return self.context.streak_end.isoformat()


class ZeroItemStreakPattern(_PatternBase):
    pattern_type: Literal["zero_item_streak"] = "zero_item_streak"
    context: ZeroItemStreakContext

    def discriminator(self) -> Optional[str]:
        return self.context.streak_end.isoformat()


class ZipFailingPattern(_PatternBase):
    pattern_type: Literal["zip_failing"] = "zip_failing"
    context: ZipFailingContext

    def discriminator(self) -> Optional[str]:
        return self.context.zip_code


DetectedPatternCandidate = Annotated[
    Union[
        LowConversionPattern,
        SourceFailingPattern,
        OutsideStreakPattern,
        ZeroItemStreakPattern,
        ZipFailingPattern,
    ],
    Field(discriminator="pattern_type"),
]
