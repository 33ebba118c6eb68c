import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from core import config
from core.errors import ExtractionError, UpstreamAPIError
from services.retry import read_retrying

logger = logging.getLogger(__name__)

_TRANSIENT = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, _TRANSIENT)


class GenerativeModel(ABC):
    """Capability contract: prompt + output schema -> structured result."""

    @abstractmethod
    async def generate(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        """Return a JSON object conforming to ``schema`` or raise."""
        raise NotImplementedError


def parse_json_output(text: Optional[str]) -> Dict[str, Any]:
    """Parse a model reply into a JSON object.

    Tolerates markdown fences and leading/trailing prose; raises
    :class:`ExtractionError` carrying the raw text when no object is found.
    """
    s = (text or "").strip()
    if s.startswith("```"):
        s = re.sub(r"^```(?:json)?\s*|\s*```$", "", s, flags=re.DOTALL).strip()
    try:
        obj = json.loads(s)
    except json.JSONDecodeError:
        # fallback: widest {...} span that parses
        obj = None
        start, end = s.find("{"), s.rfind("}")
        if start != -1 and end > start:
            try:
                obj = json.loads(s[start:end + 1])
            except json.JSONDecodeError:
                obj = None
    if not isinstance(obj, dict):
        raise ExtractionError("Model did not return a valid JSON object", raw_output=text)
    return obj


class LLMService(GenerativeModel):
    """Central service for invoking OpenAI chat models and logging usage."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = config.OPENAI_MODEL,
        temperature: float = config.OPENAI_TEMPERATURE,
        max_tokens: int = config.OPENAI_MAX_TOKENS,
        timeout: float = config.MODEL_TIMEOUT,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = client
        self.usage = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise UpstreamAPIError("openai", "OpenAI API key is not set")
            # retries are handled below so only read-only calls are repeated
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def invoke(self, messages: List[Dict[str, str]], **opts: Any):
        """Invoke a chat completion, retrying once on a transient failure."""
        client = self._get_client()
        try:
            async for attempt in read_retrying(_is_transient):
                with attempt:
                    response = await client.chat.completions.create(
                        model=self.model, messages=messages, **opts
                    )
        except openai.APIStatusError as e:
            raise UpstreamAPIError("openai", str(e), status_code=e.status_code, transient=_is_transient(e)) from e
        except openai.APIError as e:
            raise UpstreamAPIError("openai", str(e), transient=_is_transient(e)) from e

        self._record_usage(response)
        return response

    def _record_usage(self, response: Any) -> None:
        usage = getattr(response, "usage", None)
        if not usage:
            return
        prompt = getattr(usage, "prompt_tokens", 0) or 0
        completion = getattr(usage, "completion_tokens", 0) or 0
        total = getattr(usage, "total_tokens", None) or prompt + completion
        self.usage["prompt_tokens"] += prompt
        self.usage["completion_tokens"] += completion
        self.usage["total_tokens"] += total
        logger.info(
            "LLM usage - prompt: %s, completion: %s, total: %s",
            prompt, completion, total,
        )

    async def generate(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        system = {
            "role": "system",
            "content": (
                "You convert requests into structured data. Respond with ONE JSON object "
                "that conforms to this JSON schema. No markdown, no explanations.\n"
                + json.dumps(schema, ensure_ascii=False)
            ),
        }
        user = {"role": "user", "content": prompt}
        resp = await self.invoke(
            [system, user],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )
        raw = resp.choices[0].message.content or ""
        return parse_json_output(raw)
