from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, JSON, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.timeutil import utcnow
from app.models.base import Base

class DefectGroup(Base):
    __tablename__ = "defect_groups"
    __table_args__ = (
        # Identical text under different classes must stay apart
        UniqueConstraint("project_id", "primary_class", "sub_class", "signature_hash", name="uq_defect_group_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(Integer, index=True)
    signature_hash: Mapped[str] = mapped_column(String(64), index=True)

    primary_class: Mapped[str] = mapped_column(String(32), index=True)
    sub_class: Mapped[str] = mapped_column(String(64), default="") # "" when the class has no sub class
    representative_error: Mapped[Optional[str]] = mapped_column(Text)

    first_seen: Mapped[datetime] = mapped_column(DateTime)
    last_seen: Mapped[datetime] = mapped_column(DateTime)
    occurrence_count: Mapped[int] = mapped_column(Integer, default=0)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False)

    # LLM Summarized
    ai_analysis: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    analyzed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    members: Mapped[list["DefectGroupMember"]] = relationship("DefectGroupMember", back_populates="group")

class DefectGroupMember(Base):
    __tablename__ = "defect_group_members"

    group_id: Mapped[int] = mapped_column(Integer, ForeignKey("defect_groups.id"), primary_key=True)
    test_case_id: Mapped[int] = mapped_column(Integer, ForeignKey("test_cases.id"), primary_key=True)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    group: Mapped["DefectGroup"] = relationship("DefectGroup", back_populates="members")
    testcase: Mapped["TestCase"] = relationship("TestCase")
