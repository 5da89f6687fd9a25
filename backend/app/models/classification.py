from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, JSON, Boolean, event
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.exceptions import StorageError
from app.core.timeutil import utcnow
from app.models.base import Base

class Classification(Base):
    __tablename__ = "classifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    test_case_id: Mapped[int] = mapped_column(Integer, ForeignKey("test_cases.id"), unique=True, index=True)

    primary_class: Mapped[str] = mapped_column(String(32), index=True)
    sub_class: Mapped[Optional[str]] = mapped_column(String(64))
    confidence: Mapped[int] = mapped_column(Integer, default=0) # 0-100
    signature_hash: Mapped[str] = mapped_column(String(64), index=True)

    is_manually_classified: Mapped[bool] = mapped_column(Boolean, default=False)
    classified_by: Mapped[Optional[str]] = mapped_column(String) # NULL for automatic classification
    classified_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    evidence_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)

    # Optimistic lock: an UPDATE against a stale version raises StaleDataError
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    testcase: Mapped["TestCase"] = relationship("TestCase", back_populates="classification")
    audit_entries: Mapped[list["AuditLogEntry"]] = relationship(
        "AuditLogEntry", back_populates="classification", order_by="AuditLogEntry.id"
    )

    __mapper_args__ = {"version_id_col": version_id}

class AuditLogEntry(Base):
    __tablename__ = "classification_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    classification_id: Mapped[int] = mapped_column(Integer, ForeignKey("classifications.id"), index=True)
    action: Mapped[str] = mapped_column(String(32)) # reclassified, auto-classified

    old_primary_class: Mapped[Optional[str]] = mapped_column(String(32))
    old_sub_class: Mapped[Optional[str]] = mapped_column(String(64))
    new_primary_class: Mapped[Optional[str]] = mapped_column(String(32))
    new_sub_class: Mapped[Optional[str]] = mapped_column(String(64))

    changed_by: Mapped[Optional[str]] = mapped_column(String)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    classification: Mapped["Classification"] = relationship("Classification", back_populates="audit_entries")


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise StorageError("Audit log entries cannot be modified")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise StorageError("Audit log entries cannot be deleted")
