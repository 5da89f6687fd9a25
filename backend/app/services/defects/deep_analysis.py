import json
from typing import Any, Dict, List
from app.core.logging import get_logger
from app.models.defect import DefectGroup
from app.services.llm.client import LLMClient, llm_client

logger = get_logger("deep_analysis")

MAX_SAMPLES = 5
MAX_SAMPLE_CHARS = 800


class DeepAnalyzer:
    """LLM root-cause summary for a defect group.

    Model failures never fail the caller: the group gets a fallback analysis
    flagged for manual review instead.
    """

    def __init__(self, client: LLMClient = None):
        self.llm = client or llm_client

    def _build_prompt(self, group: DefectGroup, samples: List[Dict[str, Any]]) -> str:
        group_info = {
            "primaryClass": group.primary_class,
            "subClass": group.sub_class or None,
            "occurrences": group.occurrence_count,
            "firstSeen": group.first_seen.isoformat(),
            "lastSeen": group.last_seen.isoformat(),
            "representativeError": (group.representative_error or "")[:MAX_SAMPLE_CHARS],
        }
        trimmed = [
            {
                "testName": s.get("testName"),
                "errorMessage": (s.get("errorMessage") or "")[:MAX_SAMPLE_CHARS],
                "stackTrace": (s.get("stackTrace") or "")[:MAX_SAMPLE_CHARS],
            }
            for s in samples[:MAX_SAMPLES]
        ]
        return f"""
You are a senior QA engineer triaging automated test failures.
The failures below were grouped because their normalized error signatures are identical.

Group:
{json.dumps(group_info, ensure_ascii=False, indent=2)}

Sample failures:
{json.dumps(trimmed, ensure_ascii=False, indent=2)}

Return ONLY a JSON object, no markdown, with this structure:
{{
    "summary": "one or two sentences describing the common failure",
    "root_cause": "most likely root cause",
    "risk_assessment": "impact on the product or on the test suite",
    "next_steps": ["concrete action", "..."]
}}
"""

    def _fallback(self, reason: str) -> Dict[str, Any]:
        return {
            "summary": "Automatic analysis unavailable.",
            "root_cause": None,
            "risk_assessment": "Manual review required",
            "next_steps": [],
            "error": reason,
        }

    async def analyze_group(self, group: DefectGroup, samples: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not self.llm.enabled:
            return self._fallback("LLM is not configured")

        prompt = self._build_prompt(group, samples)
        try:
            response = await self.llm.achat_completion([{"role": "user", "content": prompt}], expect_json=True)
            if not isinstance(response, dict) or "summary" not in response:
                raise ValueError("LLM response missing 'summary' key")
            return {
                "summary": response.get("summary"),
                "root_cause": response.get("root_cause"),
                "risk_assessment": response.get("risk_assessment"),
                "next_steps": list(response.get("next_steps") or []),
            }
        except Exception as e:
            logger.error(f"Deep analysis of group {group.id} failed: {e}")
            return self._fallback(str(e))

deep_analyzer = DeepAnalyzer()
