from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.classification import Classification
from app.models.defect import DefectGroup, DefectGroupMember
from app.models.testcase import TestCase
from app.models.testrun import TestRun
from app.schemas.failure import (
    FailureCaseView, FailureFilters, FailureRecord, SubClassCount, SuiteRunBreakdown, SummaryCounts,
)
from app.services.analytics.filters import failure_query
from app.services.classification.classifier import ClassificationResult, RuleBasedClassifier
from app.services.classification.rules import PrimaryClass

SUMMARY_FIELDS = {
    PrimaryClass.AUTOMATION_SCRIPT_ERROR.value: "automation_errors",
    PrimaryClass.DATA_ISSUE.value: "data_issues",
    PrimaryClass.ENVIRONMENT_ISSUE.value: "environment_issues",
    PrimaryClass.APPLICATION_DEFECT.value: "application_defects",
    PrimaryClass.UNKNOWN.value: "unknown_failures",
}

TOP_SUB_CLASSES = 5


def to_failure_record(case: TestCase, run: TestRun) -> FailureRecord:
    return FailureRecord(
        test_case_id=case.id,
        project_id=run.project_id,
        run_id=run.id,
        test_name=case.name,
        error_message=case.error_message,
        stack_trace=case.stack_trace,
        occurred_at=case.end_time or run.started_at,
    )


def stored_result(classification: Classification) -> ClassificationResult:
    return ClassificationResult(
        primary_class=classification.primary_class,
        sub_class=classification.sub_class,
        confidence=classification.confidence,
        is_manually_classified=classification.is_manually_classified,
        classified_by=classification.classified_by,
        evidence_data=classification.evidence_data or {},
    )


@dataclass
class FailureRow:
    failure: FailureRecord
    case: TestCase
    run: TestRun
    classification: ClassificationResult # stored, or computed on the fly
    stored: Optional[Classification] = None


class SummaryBuilder:
    """Dashboard aggregates.

    Every view is derived from the rows of a single ``load`` call, so the
    summary counts and the detail list cannot disagree for one filter set.
    """

    def __init__(self, classifier: RuleBasedClassifier):
        self.classifier = classifier

    def effective_classification(self, case: TestCase, stored: Optional[Classification]) -> ClassificationResult:
        if stored is not None:
            return stored_result(stored)
        return self.classifier.classify(case.error_message, case.stack_trace)

    async def load(self, session: AsyncSession, project_id: int, filters: FailureFilters, now: datetime) -> List[FailureRow]:
        result = await session.execute(failure_query(project_id, filters, now))
        rows = []
        for case, run, stored in result.all():
            rows.append(FailureRow(
                failure=to_failure_record(case, run),
                case=case,
                run=run,
                classification=self.effective_classification(case, stored),
                stored=stored,
            ))
        return rows

    def summarize(self, rows: List[FailureRow], duplicate_groups: int = 0) -> SummaryCounts:
        total = len(rows)
        if total == 0:
            return SummaryCounts(duplicate_groups=duplicate_groups)

        class_counts = Counter(r.classification.primary_class for r in rows)
        counts = {name: 0 for name in SUMMARY_FIELDS.values()}
        for primary, count in class_counts.items():
            counts[SUMMARY_FIELDS.get(primary, "unknown_failures")] += count

        classified = sum(1 for r in rows if r.stored is not None)
        return SummaryCounts(
            **counts,
            total_failures=total,
            classified=classified,
            unclassified=total - classified,
            classified_percent=round(classified / total * 100),
            duplicate_groups=duplicate_groups,
        )

    def case_views(self, rows: List[FailureRow]) -> List[FailureCaseView]:
        return [
            FailureCaseView(
                id=r.case.id,
                test_name=r.case.name,
                suite_name=r.case.suite or r.run.test_suite or "Unknown Suite",
                run_id=r.run.id,
                latest_status=r.case.status,
                primary_class=r.classification.primary_class,
                sub_class=r.classification.sub_class,
                confidence=r.classification.confidence,
                is_manually_classified=r.classification.is_manually_classified,
                error_message=r.case.error_message,
                stack_trace=r.case.stack_trace,
                last_seen=r.failure.occurred_at,
            )
            for r in rows
        ]

    def suite_run_breakdown(self, rows: List[FailureRow]) -> List[SuiteRunBreakdown]:
        class_counts: Dict[tuple, Counter] = defaultdict(Counter)
        sub_counts: Dict[tuple, Counter] = defaultdict(Counter)
        for r in rows:
            key = (r.run.test_suite or "Unknown Suite", r.run.id)
            class_counts[key][r.classification.primary_class] += 1
            sub_counts[key][r.classification.sub_class or "Unspecified"] += 1

        breakdown = [
            SuiteRunBreakdown(
                suite_name=suite,
                run_id=run_id,
                counts=dict(class_counts[(suite, run_id)]),
                top_sub_classes=[
                    SubClassCount(sub_class=sub, count=count)
                    for sub, count in sub_counts[(suite, run_id)].most_common(TOP_SUB_CLASSES)
                ],
            )
            for suite, run_id in class_counts
        ]
        return sorted(breakdown, key=lambda b: sum(b.counts.values()), reverse=True)

    async def count_duplicate_groups(self, session: AsyncSession, project_id: int, rows: List[FailureRow]) -> int:
        """Groups with repeat occurrences that contain at least one of ``rows``."""
        if not rows:
            return 0
        case_ids = [r.case.id for r in rows]
        result = await session.execute(
            select(DefectGroup.id)
            .join(DefectGroupMember, DefectGroupMember.group_id == DefectGroup.id)
            .where(
                DefectGroup.project_id == project_id,
                DefectGroup.occurrence_count > 1,
                DefectGroupMember.test_case_id.in_(case_ids),
            )
            .distinct()
        )
        return len(result.all())
