from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base

class TestRun(Base):
    """One execution of a suite, written by the ingestion subsystem."""

    __tablename__ = "test_runs"
    __test__ = False # not a pytest class

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(Integer, index=True)
    run_key: Mapped[Optional[str]] = mapped_column(String) # CI/build identifier
    test_suite: Mapped[Optional[str]] = mapped_column(String)
    environment: Mapped[Optional[str]] = mapped_column(String)
    browser: Mapped[Optional[str]] = mapped_column(String)
    branch: Mapped[Optional[str]] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="running") # running, passed, failed, flaky
    started_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    testcases: Mapped[list["TestCase"]] = relationship("TestCase", back_populates="run", cascade="all, delete-orphan")
