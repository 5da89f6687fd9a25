from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import pytest

from app.core.timeutil import utcnow
from app.db.session import build_engine, build_session_factory, init_db
from app.models.testcase import TestCase
from app.models.testrun import TestRun
from app.services.analysis.service import FailureAnalysisService
from app.services.classification.classifier import RuleBasedClassifier
from app.services.classification.rules import DEFAULT_RULES
from app.services.defects.deep_analysis import DeepAnalyzer


class Seeder:
    """Writes runs and test cases the way the ingestion subsystem would."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def run(
        self,
        project_id: int = 1,
        suite: str = "checkout",
        started_at: Optional[datetime] = None,
        **kwargs,
    ) -> TestRun:
        run = TestRun(
            project_id=project_id,
            test_suite=suite,
            started_at=started_at or utcnow() - timedelta(hours=1),
            status="failed",
            **kwargs,
        )
        async with self.session_factory() as session, session.begin():
            session.add(run)
        return run

    async def case(
        self,
        run: TestRun,
        name: str,
        error: Optional[str] = None,
        stack: Optional[str] = None,
        status: str = "failed",
        end_time: Optional[datetime] = None,
    ) -> TestCase:
        case = TestCase(
            test_run_id=run.id,
            name=name,
            suite=run.test_suite,
            status=status,
            error_message=error,
            stack_trace=stack,
            start_time=run.started_at,
            end_time=end_time or run.started_at + timedelta(seconds=30),
        )
        async with self.session_factory() as session, session.begin():
            session.add(case)
        return case


class FakeLLM:
    def __init__(self, response=None, error: Optional[Exception] = None, enabled: bool = True) -> None:
        self.response = response
        self.error = error
        self.enabled = enabled
        self.prompts: list[str] = []

    async def achat_completion(self, messages, expect_json=False, temperature=None):
        self.prompts.append(messages[0]["content"])
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'triage.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM(response={
        "summary": "Checkout button selector changed",
        "root_cause": "data-test-id removed in the latest UI release",
        "risk_assessment": "All checkout tests are blocked",
        "next_steps": ["Restore the data-test-id attribute"],
    })


@pytest.fixture
def service(session_factory, fake_llm) -> FailureAnalysisService:
    return FailureAnalysisService(
        session_factory,
        RuleBasedClassifier(DEFAULT_RULES),
        analyzer=DeepAnalyzer(client=fake_llm),
    )
