import pytest

from app.core.exceptions import NotFoundError
from app.schemas.failure import FailureFilters
from app.services.analysis.service import FailureAnalysisService
from app.services.classification.classifier import RuleBasedClassifier
from app.services.classification.rules import DEFAULT_RULES
from app.services.defects.deep_analysis import DeepAnalyzer

from conftest import FakeLLM


async def _grouped(service, seed):
    run = await seed.run()
    await seed.case(run, "checkout pays", "Error: locator.click: selector '#pay' did not match any elements")
    await seed.case(run, "checkout retries", "Error: locator.click: selector '#pay' did not match any elements")
    [group] = await service.deduplicate(1, FailureFilters())
    return group


def _service(session_factory, llm) -> FailureAnalysisService:
    return FailureAnalysisService(session_factory, RuleBasedClassifier(DEFAULT_RULES), analyzer=DeepAnalyzer(client=llm))


async def test_analysis_is_stored_on_the_group(service, seed, fake_llm) -> None:
    group = await _grouped(service, seed)

    analyzed = await service.deep_analyze(group.id)

    assert analyzed.ai_analysis["root_cause"].startswith("data-test-id removed")
    assert analyzed.ai_analysis["next_steps"] == ["Restore the data-test-id attribute"]
    [prompt] = fake_llm.prompts
    assert "Locator_Break" in prompt
    assert "checkout retries" in prompt
    [listed] = await service.list_defect_groups(1)
    assert listed.ai_analysis == analyzed.ai_analysis


async def test_llm_failure_degrades_to_manual_review(session_factory, seed) -> None:
    service = _service(session_factory, FakeLLM(error=ConnectionError("model endpoint unreachable")))
    group = await _grouped(service, seed)

    analyzed = await service.deep_analyze(group.id)

    assert analyzed.ai_analysis["risk_assessment"] == "Manual review required"
    assert "unreachable" in analyzed.ai_analysis["error"]


async def test_malformed_llm_reply_degrades_to_manual_review(session_factory, seed) -> None:
    service = _service(session_factory, FakeLLM(response=["not", "an", "object"]))
    group = await _grouped(service, seed)

    analyzed = await service.deep_analyze(group.id)

    assert analyzed.ai_analysis["risk_assessment"] == "Manual review required"


async def test_unconfigured_llm_is_not_called(session_factory, seed) -> None:
    llm = FakeLLM(enabled=False)
    service = _service(session_factory, llm)
    group = await _grouped(service, seed)

    analyzed = await service.deep_analyze(group.id)

    assert llm.prompts == []
    assert analyzed.ai_analysis["error"] == "LLM is not configured"


async def test_unknown_group(service) -> None:
    with pytest.raises(NotFoundError):
        await service.deep_analyze(12345)
