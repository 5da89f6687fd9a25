import json
import asyncio
import re
from typing import Any, Dict, List, Optional
from zhipuai import ZhipuAI
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger("llm_client")

_FENCE_RE = re.compile(r"^```[\w-]*\s*|\s*```$")


class LLMNotConfiguredError(RuntimeError):
    pass


def extract_json(content: str) -> str:
    """Strip markdown fences and chatter around the first JSON object or array in a model reply."""
    content = _FENCE_RE.sub("", content.strip())
    openers = [i for i in (content.find("{"), content.find("[")) if i != -1]
    if not openers:
        return content
    start = min(openers)
    closer = "}" if content[start] == "{" else "]"
    end = content.rfind(closer)
    return content[start:end + 1] if end > start else content


class LLMClient:
    """ZhipuAI chat wrapper. The SDK client is created on first use, so the
    service starts without an API key and reports ``enabled = False``."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self._api_key = api_key or settings.LLM_API_KEY
        self._client = None
        self.model = model or settings.LLM_MODEL
        self.total_tokens = 0

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    @property
    def client(self) -> ZhipuAI:
        if not self.enabled:
            raise LLMNotConfiguredError("LLM_API_KEY is not set")
        if self._client is None:
            self._client = ZhipuAI(api_key=self._api_key, timeout=settings.LLM_TIMEOUT)
        return self._client

    @retry(
        stop=stop_after_attempt(settings.LLM_MAX_RETRIES + 1),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((json.JSONDecodeError, ConnectionError, TimeoutError)),
        reraise=True
    )
    def chat_completion(self, messages: List[Dict[str, str]], expect_json: bool = False, temperature: Optional[float] = None) -> Any:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=settings.LLM_TEMPERATURE if temperature is None else temperature,
            max_tokens=settings.LLM_MAX_TOKENS,
        )
        usage = getattr(response, "usage", None)
        if usage:
            self.total_tokens += usage.total_tokens

        content = response.choices[0].message.content
        if not expect_json:
            return content
        try:
            return json.loads(extract_json(content))
        except json.JSONDecodeError:
            logger.warning(f"Model reply is not valid JSON, retrying: {content[:200]}")
            raise

    async def achat_completion(self, messages: List[Dict[str, str]], expect_json: bool = False, temperature: Optional[float] = None) -> Any:
        # The SDK is synchronous
        return await asyncio.to_thread(self.chat_completion, messages, expect_json, temperature)

llm_client = LLMClient()
