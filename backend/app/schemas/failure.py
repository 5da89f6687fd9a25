"""Pydantic schemas shared by the engine services and the HTTP layer."""
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator
from app.core.config import settings


def _to_camel(value: str) -> str:
    parts = value.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


class ApiBaseModel(BaseModel):
    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True, from_attributes=True)


_WINDOW_RE = re.compile(r"^(\d+)([hd]?)$")
MAX_WINDOW_DAYS = 3650


class FailureFilters(ApiBaseModel):
    """Filter set shared by every dashboard query.

    ``time_window`` accepts ``"1h"``, ``"8h"``, ``"7d"`` or a bare number of
    days, up to ``MAX_WINDOW_DAYS``. An explicit ``start_date``/``end_date``
    pair overrides the window; aware timestamps are converted to naive UTC.
    """

    time_window: str = Field(default_factory=lambda: settings.DEFAULT_TIME_WINDOW)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    test_search: Optional[str] = None
    selected_runs: List[int] = Field(default_factory=list)

    @field_validator("time_window")
    @classmethod
    def _check_window(cls, value: str) -> str:
        value = (value or "").strip()
        if value == "custom":
            return value
        match = _WINDOW_RE.match(value)
        if match is None:
            raise ValueError(f"Unsupported time window '{value}'")
        amount, unit = int(match.group(1)), match.group(2)
        days = amount / 24 if unit == "h" else amount
        if days > MAX_WINDOW_DAYS:
            raise ValueError(f"Time window '{value}' exceeds {MAX_WINDOW_DAYS} days")
        return value

    @field_validator("start_date", "end_date")
    @classmethod
    def _to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Timestamps are stored as naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def resolve_range(self, now: datetime) -> Tuple[datetime, Optional[datetime]]:
        if self.start_date and self.end_date:
            return self.start_date, self.end_date
        match = _WINDOW_RE.match(self.time_window)
        if match is None:
            # "custom" without both dates
            match = _WINDOW_RE.match(settings.DEFAULT_TIME_WINDOW)
        amount, unit = int(match.group(1)), match.group(2)
        delta = timedelta(hours=amount) if unit == "h" else timedelta(days=amount)
        return now - delta, None


class FailureRecord(ApiBaseModel):
    """One failed test-case execution as delivered by ingestion. Never mutated."""

    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True, from_attributes=True, frozen=True)

    test_case_id: int
    project_id: int
    run_id: int
    test_name: Optional[str] = None
    error_message: Optional[str] = None
    stack_trace: Optional[str] = None
    occurred_at: datetime


class ClassificationOut(ApiBaseModel):
    id: int
    test_case_id: int
    primary_class: str
    sub_class: Optional[str] = None
    confidence: int
    signature_hash: str
    is_manually_classified: bool
    classified_by: Optional[str] = None
    classified_at: Optional[datetime] = None
    evidence_data: Optional[Dict[str, Any]] = None
    version_id: int


class ReclassifyRequest(ApiBaseModel):
    primary_class: str
    sub_class: Optional[str] = None
    changed_by: Optional[str] = None
    expected_version: Optional[int] = None
    notes: Optional[str] = None


class SummaryCounts(ApiBaseModel):
    automation_errors: int = 0
    data_issues: int = 0
    environment_issues: int = 0
    application_defects: int = 0
    unknown_failures: int = 0
    total_failures: int = 0
    classified: int = 0
    unclassified: int = 0
    classified_percent: int = 0
    duplicate_groups: int = 0


class FailureCaseView(ApiBaseModel):
    id: int
    test_name: Optional[str] = None
    suite_name: Optional[str] = None
    run_id: int
    latest_status: str
    primary_class: str
    sub_class: Optional[str] = None
    confidence: int
    is_manually_classified: bool = False
    error_message: Optional[str] = None
    stack_trace: Optional[str] = None
    last_seen: datetime


class SubClassCount(ApiBaseModel):
    sub_class: str
    count: int


class SuiteRunBreakdown(ApiBaseModel):
    suite_name: str
    run_id: int
    counts: Dict[str, int]
    top_sub_classes: List[SubClassCount]


class DefectGroupView(ApiBaseModel):
    id: int
    signature_hash: str
    primary_class: str
    sub_class: Optional[str] = None
    representative_error: Optional[str] = None
    first_seen: datetime
    last_seen: datetime
    occurrence_count: int
    is_resolved: bool = False
    ai_analysis: Optional[Dict[str, Any]] = None

    @field_validator("sub_class")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class AutoClassifyItem(ApiBaseModel):
    test_case_id: int
    outcome: str # created, updated
    classification: ClassificationOut


class AutoClassifyResult(ApiBaseModel):
    classified_count: int
    skipped_manual: int = 0
    conflicts: int = 0
    results: List[AutoClassifyItem] = Field(default_factory=list)


class EvidenceView(ApiBaseModel):
    test_name: Optional[str] = None
    error_message: Optional[str] = None
    stack_trace: Optional[str] = None
    evidence_data: Dict[str, Any] = Field(default_factory=dict)
    suite_name: Optional[str] = None
    environment: Optional[str] = None
    browser: Optional[str] = None
    timestamp: Optional[datetime] = None


class AuditEntryView(ApiBaseModel):
    id: int
    classification_id: int
    action: str
    old_primary_class: Optional[str] = None
    old_sub_class: Optional[str] = None
    new_primary_class: Optional[str] = None
    new_sub_class: Optional[str] = None
    changed_by: Optional[str] = None
    changed_at: datetime
    notes: Optional[str] = None


class ResolveGroupRequest(ApiBaseModel):
    resolved: bool = True
