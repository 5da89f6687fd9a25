"""Failure classification and deduplication engine, as consumed by the API.

Each public operation runs in its own short unit of work. Batch operations
open one transaction per failure so they never block single-record
classification for long.
"""
from datetime import datetime
from typing import Callable, List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from app.core.exceptions import ConflictError, NotFoundError
from app.core.logging import get_logger
from app.core.timeutil import utcnow
from app.db.session import AsyncSessionLocal, unit_of_work
from app.models.classification import Classification
from app.models.defect import DefectGroup, DefectGroupMember
from app.models.testcase import FAILURE_STATUSES, TestCase
from app.models.testrun import TestRun
from app.schemas.failure import (
    AuditEntryView, AutoClassifyItem, AutoClassifyResult, ClassificationOut, DefectGroupView, EvidenceView,
    FailureCaseView, FailureFilters, FailureRecord, SuiteRunBreakdown, SummaryCounts,
)
from app.services.analytics.stats import SummaryBuilder, to_failure_record
from app.services.audit.recorder import (
    ACTION_AUTO_CLASSIFIED, ACTION_RECLASSIFIED, AuditTrailRecorder, audit_recorder,
)
from app.services.classification.classifier import ClassificationResult, RuleBasedClassifier, default_classifier
from app.services.classification.normalizer import signature_hash
from app.services.classification.rules import validate_classification
from app.services.classification.suggestions import suggest_fixes
from app.services.defects.deduplicator import DeduplicationEngine, defect_deduplicator
from app.services.defects.deep_analysis import DeepAnalyzer, deep_analyzer

logger = get_logger("failure_analysis")

MAX_ANALYSIS_SAMPLES = 5

# Outcomes of classifying a single failure
CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
SKIPPED_MANUAL = "skipped_manual"


class FailureAnalysisService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        classifier: RuleBasedClassifier,
        deduplicator: DeduplicationEngine = defect_deduplicator,
        recorder: AuditTrailRecorder = audit_recorder,
        analyzer: Optional[DeepAnalyzer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.classifier = classifier
        self.deduplicator = deduplicator
        self.recorder = recorder
        self.analyzer = analyzer or deep_analyzer
        self.summary_builder = SummaryBuilder(classifier)
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups

    async def _get_case(self, session: AsyncSession, test_case_id: int) -> Tuple[TestCase, TestRun]:
        row = (await session.execute(
            select(TestCase, TestRun)
            .join(TestRun, TestCase.test_run_id == TestRun.id)
            .where(TestCase.id == test_case_id)
        )).first()
        if row is None:
            raise NotFoundError(f"Test case {test_case_id} not found")
        return row[0], row[1]

    async def _get_classification(self, session: AsyncSession, test_case_id: int, lock: bool = False) -> Optional[Classification]:
        stmt = select(Classification).where(Classification.test_case_id == test_case_id)
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _get_group(self, session: AsyncSession, group_id: int) -> DefectGroup:
        group = await session.get(DefectGroup, group_id)
        if group is None:
            raise NotFoundError(f"Defect group {group_id} not found")
        return group

    async def load_failure(self, test_case_id: int) -> FailureRecord:
        async with unit_of_work(self.session_factory, "Load failure") as session:
            case, run = await self._get_case(session, test_case_id)
            if case.status not in FAILURE_STATUSES:
                raise NotFoundError(f"Test case {test_case_id} has no recorded failure")
            return to_failure_record(case, run)

    # ------------------------------------------------------------------
    # Classification

    async def _classify_in_session(self, session: AsyncSession, failure: FailureRecord, force: bool) -> Tuple[str, Classification]:
        result = self.classifier.classify(failure.error_message, failure.stack_trace)
        signature = signature_hash(failure.error_message, failure.stack_trace)
        existing = await self._get_classification(session, failure.test_case_id, lock=True)

        if existing is None:
            classification = Classification(
                test_case_id=failure.test_case_id,
                primary_class=result.primary_class,
                sub_class=result.sub_class,
                confidence=result.confidence,
                signature_hash=signature,
                is_manually_classified=False,
                classified_by=None,
                evidence_data=result.evidence_data,
            )
            session.add(classification)
            await session.flush()
            await self.recorder.record(
                session, classification.id, ACTION_AUTO_CLASSIFIED,
                old=(None, None), new=(result.primary_class, result.sub_class),
            )
            return CREATED, classification

        if existing.is_manually_classified and not force:
            return SKIPPED_MANUAL, existing

        unchanged = (
            not existing.is_manually_classified
            and existing.primary_class == result.primary_class
            and existing.sub_class == result.sub_class
            and existing.confidence == result.confidence
            and existing.signature_hash == signature
        )
        if unchanged:
            return UNCHANGED, existing

        old = (existing.primary_class, existing.sub_class)
        existing.primary_class = result.primary_class
        existing.sub_class = result.sub_class
        existing.confidence = result.confidence
        existing.signature_hash = signature
        existing.is_manually_classified = False
        existing.classified_by = None
        existing.evidence_data = result.evidence_data
        await session.flush()
        if old != (result.primary_class, result.sub_class):
            await self.recorder.record(
                session, existing.id, ACTION_AUTO_CLASSIFIED,
                old=old, new=(result.primary_class, result.sub_class),
                notes="forced over manual classification" if force else None,
            )
        return UPDATED, existing

    async def classify_failure(self, failure: FailureRecord, force: bool = False) -> ClassificationOut:
        """Classify one failure and persist the result.

        A manual classification is returned untouched unless ``force`` is set.
        """
        async with unit_of_work(self.session_factory, "Classify failure") as session:
            outcome, classification = await self._classify_in_session(session, failure, force)
            logger.debug(f"Classification of test case {failure.test_case_id}: {outcome}")
            return ClassificationOut.model_validate(classification)

    async def process_failure(self, failure: FailureRecord) -> Tuple[ClassificationOut, DefectGroupView]:
        """Ingestion hook: classify a new failure and attach it to its defect group."""
        async with unit_of_work(self.session_factory, "Process failure") as session:
            _, classification = await self._classify_in_session(session, failure, force=False)
            groups = await self.deduplicator.deduplicate(
                session, failure.project_id, [(failure, self._result_of(classification))]
            )
            return ClassificationOut.model_validate(classification), DefectGroupView.model_validate(groups[0])

    @staticmethod
    def _result_of(classification: Classification) -> ClassificationResult:
        return ClassificationResult(
            primary_class=classification.primary_class,
            sub_class=classification.sub_class,
            confidence=classification.confidence,
            is_manually_classified=classification.is_manually_classified,
            classified_by=classification.classified_by,
            evidence_data=classification.evidence_data or {},
        )

    async def reclassify_failure(
        self,
        test_case_id: int,
        primary_class: str,
        sub_class: Optional[str],
        changed_by: Optional[str],
        expected_version: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> ClassificationOut:
        """Manual override. The update and its audit entry commit together or not at all."""
        primary, sub_class = validate_classification(primary_class, sub_class)

        async with unit_of_work(self.session_factory, "Reclassify failure") as session:
            classification = await self._get_classification(session, test_case_id, lock=True)
            if classification is None:
                raise NotFoundError(f"No classification exists for test case {test_case_id}")
            if expected_version is not None and classification.version_id != expected_version:
                raise ConflictError(
                    f"Classification of test case {test_case_id} was changed by someone else, reload and retry"
                )

            old = (classification.primary_class, classification.sub_class)
            classification.primary_class = primary.value
            classification.sub_class = sub_class
            classification.is_manually_classified = True
            classification.classified_by = changed_by
            await session.flush()

            await self.recorder.record(
                session, classification.id, ACTION_RECLASSIFIED,
                old=old, new=(primary.value, sub_class), changed_by=changed_by, notes=notes,
            )
            logger.info(f"Reclassified test case {test_case_id}: {old[0]}/{old[1]} -> {primary.value}/{sub_class}")
            return ClassificationOut.model_validate(classification)

    async def auto_classify(self, project_id: int, filters: FailureFilters, force: bool = False) -> AutoClassifyResult:
        """Classify every filtered failure, one short transaction per record.

        Re-running over already classified failures changes nothing.
        """
        async with unit_of_work(self.session_factory, "Load failures") as session:
            rows = await self.summary_builder.load(session, project_id, filters, self.clock())
        failures = [r.failure for r in rows]
        logger.info(f"Auto-classifying {len(failures)} failures for project {project_id} (force={force})")

        summary = AutoClassifyResult(classified_count=0)
        for failure in failures:
            try:
                async with unit_of_work(self.session_factory, "Auto-classify failure") as session:
                    outcome, classification = await self._classify_in_session(session, failure, force)
                    view = ClassificationOut.model_validate(classification)
            except ConflictError as e:
                logger.warning(f"Skipping test case {failure.test_case_id}: {e}")
                summary.conflicts += 1
                continue

            if outcome in (CREATED, UPDATED):
                summary.classified_count += 1
                summary.results.append(AutoClassifyItem(test_case_id=failure.test_case_id, outcome=outcome, classification=view))
            elif outcome == SKIPPED_MANUAL:
                summary.skipped_manual += 1

        logger.info(
            f"Auto-classification for project {project_id} done: {summary.classified_count} classified, "
            f"{summary.skipped_manual} manual kept, {summary.conflicts} conflicts"
        )
        return summary

    # ------------------------------------------------------------------
    # Deduplication

    async def deduplicate(self, project_id: int, filters: FailureFilters) -> List[DefectGroupView]:
        async with unit_of_work(self.session_factory, "Deduplicate failures") as session:
            rows = await self.summary_builder.load(session, project_id, filters, self.clock())
            groups = await self.deduplicator.deduplicate(
                session, project_id, [(r.failure, r.classification) for r in rows]
            )
            return [DefectGroupView.model_validate(g) for g in groups]

    async def list_defect_groups(self, project_id: int, include_resolved: bool = True) -> List[DefectGroupView]:
        async with unit_of_work(self.session_factory, "List defect groups") as session:
            stmt = select(DefectGroup).where(DefectGroup.project_id == project_id)
            if not include_resolved:
                stmt = stmt.where(DefectGroup.is_resolved.is_(False))
            stmt = stmt.order_by(DefectGroup.last_seen.desc(), DefectGroup.id.desc())
            groups = (await session.execute(stmt)).scalars().all()
            return [DefectGroupView.model_validate(g) for g in groups]

    async def set_group_resolved(self, group_id: int, resolved: bool = True) -> DefectGroupView:
        async with unit_of_work(self.session_factory, "Resolve defect group") as session:
            group = await self._get_group(session, group_id)
            await self.deduplicator.set_resolved(session, group, resolved)
            return DefectGroupView.model_validate(group)

    async def deep_analyze(self, group_id: int) -> DefectGroupView:
        async with unit_of_work(self.session_factory, "Load defect group") as session:
            group = await self._get_group(session, group_id)
            cases = (await session.execute(
                select(TestCase)
                .join(DefectGroupMember, DefectGroupMember.test_case_id == TestCase.id)
                .where(DefectGroupMember.group_id == group_id)
                .order_by(DefectGroupMember.added_at.desc())
                .limit(MAX_ANALYSIS_SAMPLES)
            )).scalars().all()
            samples = [
                {"testName": c.name, "errorMessage": c.error_message, "stackTrace": c.stack_trace}
                for c in cases
            ]

        # The LLM call happens outside any open transaction
        analysis = await self.analyzer.analyze_group(group, samples)

        async with unit_of_work(self.session_factory, "Store group analysis") as session:
            group = await self._get_group(session, group_id)
            group.ai_analysis = analysis
            group.analyzed_at = self.clock()
            await session.flush()
            return DefectGroupView.model_validate(group)

    # ------------------------------------------------------------------
    # Dashboard queries

    async def get_summary(self, project_id: int, filters: FailureFilters) -> SummaryCounts:
        async with unit_of_work(self.session_factory, "Failure summary") as session:
            rows = await self.summary_builder.load(session, project_id, filters, self.clock())
            duplicates = await self.summary_builder.count_duplicate_groups(session, project_id, rows)
            return self.summary_builder.summarize(rows, duplicate_groups=duplicates)

    async def get_test_case_failures(self, project_id: int, filters: FailureFilters) -> List[FailureCaseView]:
        async with unit_of_work(self.session_factory, "Failure list") as session:
            rows = await self.summary_builder.load(session, project_id, filters, self.clock())
            return self.summary_builder.case_views(rows)

    async def get_suite_run_failures(self, project_id: int, filters: FailureFilters) -> List[SuiteRunBreakdown]:
        async with unit_of_work(self.session_factory, "Suite run breakdown") as session:
            rows = await self.summary_builder.load(session, project_id, filters, self.clock())
            return self.summary_builder.suite_run_breakdown(rows)

    # ------------------------------------------------------------------
    # Per-failure details

    async def get_evidence(self, test_case_id: int) -> EvidenceView:
        async with unit_of_work(self.session_factory, "Failure evidence") as session:
            case, run = await self._get_case(session, test_case_id)
            classification = await self._get_classification(session, test_case_id)
            return EvidenceView(
                test_name=case.name,
                error_message=case.error_message,
                stack_trace=case.stack_trace,
                evidence_data=(classification.evidence_data if classification else None) or {},
                suite_name=case.suite or run.test_suite,
                environment=run.environment,
                browser=run.browser,
                timestamp=case.end_time or run.started_at,
            )

    async def get_suggested_fixes(self, test_case_id: int) -> List[str]:
        async with unit_of_work(self.session_factory, "Suggested fixes") as session:
            case, _ = await self._get_case(session, test_case_id)
            classification = await self._get_classification(session, test_case_id)
            effective = self.summary_builder.effective_classification(case, classification)
            return suggest_fixes(effective.primary_class, effective.sub_class)

    async def get_classification_history(self, test_case_id: int) -> List[AuditEntryView]:
        async with unit_of_work(self.session_factory, "Classification history") as session:
            await self._get_case(session, test_case_id)
            classification = await self._get_classification(session, test_case_id)
            if classification is None:
                return []
            entries = await self.recorder.history(session, classification.id)
            return [AuditEntryView.model_validate(e) for e in entries]


analysis_service = FailureAnalysisService(AsyncSessionLocal, default_classifier)
