"""
Shared plumbing for the provider adapters.

Each adapter turns "send this prompt to that model" into a ProviderResponse,
or raises a ProviderError classified into the engine's taxonomy. Adapters
never retry on their own; retry and fallback decisions belong to the
orchestrator.
"""

import json
import logging
import math
import re
import time
from typing import Mapping, Optional

import httpx
from pydantic import ValidationError

from visibility_engine.config import DEBUG_MODELS, RATE_LIMIT_RETRY_AFTER_SECONDS
from visibility_engine.errors import MissingAPIKeyError, ProviderError, ProviderErrorKind
from visibility_engine.visibility_models import ParsedAnswer, ProviderResponse

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\n?", re.IGNORECASE)

TRANSIENT_STATUS_CODES = {500, 502, 503, 504}
PERMANENT_STATUS_CODES = {401, 403, 404, 410}
GONE_STATUS_CODES = {404, 410}


def strip_code_fences(raw: Optional[str]) -> str:
    """Remove markdown code-fence wrappers (```json ... ```) from a model answer."""
    if not raw:
        return ""
    text = raw.strip()
    if "```json" in text:
        start = text.find("```json") + 7
        end = text.find("```", start)
        if end > start:
            return text[start:end].strip()
    elif "```" in text:
        start = text.find("```") + 3
        end = text.find("```", start)
        if end > start:
            return text[start:end].strip()
    return _FENCE_RE.sub("", text).strip()


def parse_structured_answer(text: str) -> Optional[ParsedAnswer]:
    """
    Parse a fence-stripped answer into a ParsedAnswer.

    Returns None when the text is not a JSON object; callers treat that as a
    non-fatal parse failure and fall back to raw-text handling.
    """
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug("[LLM] JSON parse failed, using text fallback: %s", e)
        return None
    if not isinstance(data, dict):
        return None
    try:
        return ParsedAnswer.model_validate(data)
    except ValidationError as e:
        logger.debug("[LLM] Structured answer did not validate: %s", e)
        return None


def estimate_tokens(prompt_text: str, response_text: str) -> int:
    """Rough token estimate: four characters per token across prompt and answer."""
    return math.ceil((len(prompt_text or "") + len(response_text or "")) / 4)


def _retry_after_from(headers: Optional[Mapping[str, str]]) -> int:
    if headers:
        value = headers.get("retry-after") or headers.get("Retry-After")
        if value and value.strip().isdigit():
            return int(value.strip())
    return RATE_LIMIT_RETRY_AFTER_SECONDS


def classify_status(
    status_code: int,
    body: str = "",
    headers: Optional[Mapping[str, str]] = None,
    provider: Optional[str] = None,
    model_id: Optional[str] = None,
) -> ProviderError:
    """Map an HTTP failure onto the provider error taxonomy."""
    body_lower = (body or "").lower()
    message = (body or "").strip()[:300] or f"HTTP {status_code}"

    if status_code == 429:
        return ProviderError(
            ProviderErrorKind.RATE_LIMITED,
            "Rate limited - please wait before retrying",
            provider=provider,
            model_id=model_id,
            status_code=status_code,
            retry_after=_retry_after_from(headers),
        )
    if status_code in TRANSIENT_STATUS_CODES or "overloaded" in body_lower:
        return ProviderError(
            ProviderErrorKind.TRANSIENT,
            message,
            provider=provider,
            model_id=model_id,
            status_code=status_code,
        )
    if status_code in PERMANENT_STATUS_CODES:
        if status_code == 401:
            message = f"Unauthorized - check the {provider or 'provider'} API key"
        elif status_code == 403:
            message = "Forbidden - API key may not have access to this model"
        elif status_code == 404:
            message = f"Model not found (404) - Model: {model_id}"
        else:
            message = "Endpoint deprecated (410 Gone)"
        return ProviderError(
            ProviderErrorKind.PERMANENT,
            message,
            provider=provider,
            model_id=model_id,
            status_code=status_code,
            deprecated=status_code in GONE_STATUS_CODES,
        )
    return ProviderError(
        ProviderErrorKind.PERMANENT,
        message,
        provider=provider,
        model_id=model_id,
        status_code=status_code,
    )


def classify_transport_error(
    error: Exception,
    provider: Optional[str] = None,
    model_id: Optional[str] = None,
) -> ProviderError:
    """Timeouts and connection failures are transient."""
    timed_out = isinstance(error, httpx.TimeoutException)
    message = "Request timed out" if timed_out else f"Connection failed: {error}"
    return ProviderError(
        ProviderErrorKind.TRANSIENT,
        message,
        provider=provider,
        model_id=model_id,
        timed_out=timed_out,
    )


class ProviderAdapter:
    """
    Base class for one upstream AI provider.

    Subclasses implement `invoke`, which sends one prompt to one model and
    returns a ProviderResponse or raises ProviderError.
    """

    provider: str = ""
    env_var: str = ""

    def __init__(self, api_key: Optional[str], http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def require_api_key(self, model_id: Optional[str] = None) -> str:
        if not self.api_key:
            raise MissingAPIKeyError(self.provider, self.env_var, model_id=model_id)
        return self.api_key

    async def invoke(
        self,
        model_id: str,
        prompt_text: str,
        timeout_ms: int,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        max_output_tokens: Optional[int] = None,
    ) -> ProviderResponse:
        raise NotImplementedError

    async def _post(self, url: str, timeout_ms: int, **kwargs) -> httpx.Response:
        timeout = timeout_ms / 1000
        if self._http_client is not None:
            return await self._http_client.post(url, timeout=timeout, **kwargs)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, **kwargs)

    def _log_error_body(self, model_id: str, response: httpx.Response) -> None:
        if DEBUG_MODELS:
            logger.debug(
                "[LLM] %s error for %s: status=%s body=%s",
                self.provider, model_id, response.status_code, response.text[:500]
            )

    def build_response(
        self,
        model_id: str,
        prompt_text: str,
        raw: Optional[str],
        started: float,
        system_prompt: Optional[str] = None,
    ) -> ProviderResponse:
        text = strip_code_fences(raw)
        full_prompt = f"{system_prompt}\n\n{prompt_text}" if system_prompt else prompt_text
        return ProviderResponse(
            provider=self.provider,
            model_id=model_id,
            raw_text=text,
            parsed=parse_structured_answer(text),
            tokens_used_estimate=estimate_tokens(full_prompt, text),
            response_time_ms=int((time.perf_counter() - started) * 1000),
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
