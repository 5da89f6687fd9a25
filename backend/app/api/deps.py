from datetime import datetime
from typing import Optional
from fastapi import Query
from pydantic import ValidationError as PydanticValidationError
from app.core.exceptions import ValidationError
from app.schemas.failure import FailureFilters
from app.services.analysis.service import FailureAnalysisService, analysis_service


def get_analysis_service() -> FailureAnalysisService:
    return analysis_service


def _parse_runs(runs: Optional[str]) -> list:
    if not runs:
        return []
    try:
        return [int(r) for r in runs.split(",") if r.strip()]
    except ValueError:
        raise ValidationError(f"Invalid run list '{runs}', expected comma separated run ids")


def get_failure_filters(
    time_window: Optional[str] = Query(None, alias="timeWindow"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    test_search: Optional[str] = Query(None, alias="testSearch"),
    runs: Optional[str] = Query(None, description="Comma separated run ids"),
) -> FailureFilters:
    values = {
        "start_date": start_date,
        "end_date": end_date,
        "test_search": test_search or None,
        "selected_runs": _parse_runs(runs),
    }
    if time_window:
        values["time_window"] = time_window
    try:
        return FailureFilters(**values)
    except PydanticValidationError as e:
        raise ValidationError(e.errors()[0]["msg"])
