from datetime import datetime
from typing import Optional
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base

# Statuses reported by the runners that count as a failure
FAILURE_STATUSES = ("failed", "timedOut", "interrupted", "broken")

class TestCase(Base):
    __tablename__ = "test_cases"
    __test__ = False # not a pytest class

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    test_run_id: Mapped[int] = mapped_column(Integer, ForeignKey("test_runs.id"), index=True)

    name: Mapped[str] = mapped_column(Text)
    suite: Mapped[Optional[str]] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, index=True) # passed, failed, skipped, timedOut...

    # Failure details
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    stack_trace: Mapped[Optional[str]] = mapped_column(Text)

    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime)

    run: Mapped["TestRun"] = relationship("TestRun", back_populates="testcases")
    classification: Mapped[Optional["Classification"]] = relationship("Classification", back_populates="testcase", uselist=False)

    @property
    def is_failure(self) -> bool:
        return self.status in FAILURE_STATUSES
