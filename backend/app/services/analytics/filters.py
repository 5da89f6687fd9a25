from datetime import datetime
from sqlalchemy import Select, func, select
from app.models.classification import Classification
from app.models.testcase import FAILURE_STATUSES, TestCase
from app.models.testrun import TestRun
from app.schemas.failure import FailureFilters


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def occurred_at_column():
    return func.coalesce(TestCase.end_time, TestRun.started_at)


def failure_query(project_id: int, filters: FailureFilters, now: datetime) -> Select:
    """The one filtered query every dashboard view is computed from.

    Yields ``(TestCase, TestRun, Classification | None)`` rows, newest first.
    """
    start, end = filters.resolve_range(now)
    stmt = (
        select(TestCase, TestRun, Classification)
        .join(TestRun, TestCase.test_run_id == TestRun.id)
        .outerjoin(Classification, Classification.test_case_id == TestCase.id)
        .where(
            TestRun.project_id == project_id,
            TestCase.status.in_(FAILURE_STATUSES),
            TestRun.started_at >= start,
        )
    )
    if end is not None:
        stmt = stmt.where(TestRun.started_at <= end)
    if filters.test_search:
        stmt = stmt.where(TestCase.name.ilike(f"%{_escape_like(filters.test_search)}%", escape="\\"))
    if filters.selected_runs:
        stmt = stmt.where(TestRun.id.in_(filters.selected_runs))
    return stmt.order_by(occurred_at_column().desc(), TestCase.id.desc())
