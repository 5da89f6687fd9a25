"""Signature-based grouping of failures into defect groups.

Group creation and membership are both atomic upserts keyed on unique
constraints, so concurrent callers reporting the same signature converge on
one group, and replaying a failure never adds a second membership or bumps
the occurrence count twice.
"""
from datetime import datetime
from typing import Iterable, List, Optional, Tuple
from sqlalchemy import case, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.logging import get_logger
from app.models.defect import DefectGroup, DefectGroupMember
from app.schemas.failure import FailureRecord
from app.services.classification.classifier import ClassificationResult
from app.services.classification.normalizer import signature_hash

logger = get_logger("deduplicator")

MAX_REPRESENTATIVE_CHARS = 4000


def _insert_for(session: AsyncSession, table):
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not implemented for the '{dialect}' dialect")


class DeduplicationEngine:
    async def upsert(
        self,
        session: AsyncSession,
        failure: FailureRecord,
        primary_class: str,
        sub_class: Optional[str],
    ) -> int:
        """Attach one failure to its defect group and return the group id."""
        signature = signature_hash(failure.error_message, failure.stack_trace)
        sub_class = sub_class or ""
        occurred_at = failure.occurred_at

        # 1. Group row, created empty on first sight of the key
        group_stmt = _insert_for(session, DefectGroup).values(
            project_id=failure.project_id,
            signature_hash=signature,
            primary_class=primary_class,
            sub_class=sub_class,
            representative_error=(failure.error_message or "No error message")[:MAX_REPRESENTATIVE_CHARS],
            first_seen=occurred_at,
            last_seen=occurred_at,
            occurrence_count=0,
            is_resolved=False,
        ).on_conflict_do_nothing(index_elements=["project_id", "primary_class", "sub_class", "signature_hash"])
        await session.execute(group_stmt)

        group_id = (await session.execute(
            select(DefectGroup.id).where(
                DefectGroup.project_id == failure.project_id,
                DefectGroup.primary_class == primary_class,
                DefectGroup.sub_class == sub_class,
                DefectGroup.signature_hash == signature,
            )
        )).scalar_one()

        # 2. Membership; only a newly inserted row counts as an occurrence
        member_stmt = _insert_for(session, DefectGroupMember).values(
            group_id=group_id,
            test_case_id=failure.test_case_id,
            added_at=occurred_at,
        ).on_conflict_do_nothing(index_elements=["group_id", "test_case_id"])
        inserted = (await session.execute(member_stmt)).rowcount

        if inserted:
            await session.execute(
                update(DefectGroup)
                .where(DefectGroup.id == group_id)
                .values(
                    occurrence_count=DefectGroup.occurrence_count + 1,
                    first_seen=case((DefectGroup.first_seen > occurred_at, occurred_at), else_=DefectGroup.first_seen),
                    last_seen=case((DefectGroup.last_seen < occurred_at, occurred_at), else_=DefectGroup.last_seen),
                )
                .execution_options(synchronize_session=False)
            )
        return group_id

    async def deduplicate(
        self,
        session: AsyncSession,
        project_id: int,
        items: Iterable[Tuple[FailureRecord, ClassificationResult]],
    ) -> List[DefectGroup]:
        """Group failures of one project; returns the groups touched, busiest first."""
        group_ids = []
        for failure, classification in items:
            if failure.project_id != project_id:
                logger.warning(f"Skipping test case {failure.test_case_id}: belongs to another project")
                continue
            group_id = await self.upsert(session, failure, classification.primary_class, classification.sub_class)
            if group_id not in group_ids:
                group_ids.append(group_id)

        if not group_ids:
            return []
        result = await session.execute(
            select(DefectGroup)
            .where(DefectGroup.id.in_(group_ids))
            .order_by(DefectGroup.occurrence_count.desc(), DefectGroup.last_seen.desc())
            .execution_options(populate_existing=True)
        )
        groups = list(result.scalars().all())
        logger.info(f"Deduplicated project {project_id} into {len(groups)} defect groups")
        return groups

    async def set_resolved(self, session: AsyncSession, group: DefectGroup, resolved: bool) -> DefectGroup:
        group.is_resolved = resolved
        await session.flush()
        return group

defect_deduplicator = DeduplicationEngine()
