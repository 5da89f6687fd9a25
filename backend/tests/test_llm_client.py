import pytest

from app.core.config import settings
from app.services.llm.client import LLMClient, LLMNotConfiguredError, extract_json


@pytest.mark.parametrize(
    ("reply", "expected"),
    [
        ('{"summary": "x"}', '{"summary": "x"}'),
        ('```json\n{"summary": "x"}\n```', '{"summary": "x"}'),
        ('Here is the analysis:\n{"summary": "x"} Hope it helps', '{"summary": "x"}'),
        ('```\n[{"a": 1}]\n```', '[{"a": 1}]'),
        ("no json at all", "no json at all"),
    ],
)
def test_extract_json(reply, expected) -> None:
    assert extract_json(reply) == expected


def test_client_without_key_is_disabled(monkeypatch) -> None:
    monkeypatch.setattr(settings, "LLM_API_KEY", None)
    client = LLMClient()
    assert client.enabled is False
    with pytest.raises(LLMNotConfiguredError):
        _ = client.client
