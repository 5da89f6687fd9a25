from typing import List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.models.classification import AuditLogEntry

logger = get_logger("audit_trail")

ACTION_RECLASSIFIED = "reclassified"
ACTION_AUTO_CLASSIFIED = "auto-classified"
ACTIONS = (ACTION_RECLASSIFIED, ACTION_AUTO_CLASSIFIED)

ClassPair = Tuple[Optional[str], Optional[str]]


class AuditTrailRecorder:
    """Append-only history of classification changes.

    ``record`` joins the caller's transaction, so a failed insert rolls back
    the classification change it describes. There is deliberately no update or
    delete operation.
    """

    async def record(
        self,
        session: AsyncSession,
        classification_id: int,
        action: str,
        old: ClassPair,
        new: ClassPair,
        changed_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> AuditLogEntry:
        if action not in ACTIONS:
            raise ValidationError(f"Unknown audit action '{action}'")
        entry = AuditLogEntry(
            classification_id=classification_id,
            action=action,
            old_primary_class=old[0],
            old_sub_class=old[1],
            new_primary_class=new[0],
            new_sub_class=new[1],
            changed_by=changed_by,
            notes=notes,
        )
        session.add(entry)
        await session.flush()
        logger.debug(f"Audit {action} for classification {classification_id}: {old} -> {new}")
        return entry

    async def history(self, session: AsyncSession, classification_id: int) -> List[AuditLogEntry]:
        result = await session.execute(
            select(AuditLogEntry)
            .where(AuditLogEntry.classification_id == classification_id)
            .order_by(AuditLogEntry.id)
        )
        return list(result.scalars().all())

audit_recorder = AuditTrailRecorder()
