"""
Gemini API Client Module.
Calls Google's Generative Language REST endpoint and normalizes the answer.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from visibility_engine.config import GEMINI_API_BASE, GEMINI_API_KEY
from visibility_engine.errors import ProviderError, ProviderErrorKind
from visibility_engine.model_registry import PROVIDER_GOOGLE
from visibility_engine.provider_base import (
    ProviderAdapter,
    classify_status,
    classify_transport_error,
)
from visibility_engine.visibility_models import ProviderResponse

logger = logging.getLogger(__name__)


def extract_gemini_text(data: Dict[str, Any]) -> Optional[str]:
    """Concatenate the text parts of the first candidate, or None if there are none."""
    candidates = data.get("candidates") or []
    if not candidates:
        return None
    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    texts = [p.get("text", "") for p in parts if isinstance(p, dict)]
    text = "".join(texts)
    return text or None


class GeminiAdapter(ProviderAdapter):
    """Adapter for the Gemini generateContent endpoint."""

    provider = PROVIDER_GOOGLE
    env_var = "GEMINI_API_KEY"

    def __init__(
        self,
        api_key: Optional[str],
        api_base: str = GEMINI_API_BASE,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, http_client=http_client)
        self.api_base = api_base.rstrip("/")

    @classmethod
    def from_config(cls) -> "GeminiAdapter":
        return cls(GEMINI_API_KEY)

    def endpoint_for(self, model_id: str) -> str:
        if model_id.startswith("models/"):
            model_id = model_id[len("models/"):]
        return f"{self.api_base}/models/{model_id}:generateContent"

    async def invoke(
        self,
        model_id: str,
        prompt_text: str,
        timeout_ms: int,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        max_output_tokens: Optional[int] = None,
    ) -> ProviderResponse:
        api_key = self.require_api_key(model_id)

        generation_config: Dict[str, Any] = {"temperature": 0.7}
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        if max_output_tokens:
            generation_config["maxOutputTokens"] = max_output_tokens

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt_text}]}],
            "generationConfig": generation_config,
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        started = time.perf_counter()
        try:
            response = await self._post(
                self.endpoint_for(model_id),
                timeout_ms,
                json=payload,
                headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            )
        except httpx.TransportError as e:
            raise classify_transport_error(e, provider=self.provider, model_id=model_id) from e

        if response.status_code != 200:
            self._log_error_body(model_id, response)
            raise classify_status(
                response.status_code,
                response.text,
                response.headers,
                provider=self.provider,
                model_id=model_id,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                ProviderErrorKind.TRANSIENT,
                "Gemini returned a non-JSON body",
                provider=self.provider,
                model_id=model_id,
                status_code=response.status_code,
            ) from e

        text = extract_gemini_text(data)
        if text is None:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            logger.warning("[LLM] Gemini response had no text (block reason: %s)", block_reason)
            message = "Gemini response had no text"
            if block_reason:
                message += f" (blocked: {block_reason})"
            raise ProviderError(
                ProviderErrorKind.PERMANENT,
                message,
                provider=self.provider,
                model_id=model_id,
                status_code=response.status_code,
            )

        return self.build_response(model_id, prompt_text, text, started, system_prompt=system_prompt)
