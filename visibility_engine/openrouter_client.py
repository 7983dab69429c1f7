"""
OpenRouter API Client Module.
Uses the OpenAI-compatible interface with OpenRouter's base URL.
"""

import logging
import time
from typing import Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from visibility_engine.config import APP_TITLE, APP_URL, OPENROUTER_API_KEY, OPENROUTER_BASE_URL
from visibility_engine.errors import ProviderError, ProviderErrorKind
from visibility_engine.model_registry import PROVIDER_OPENROUTER
from visibility_engine.provider_base import ProviderAdapter, classify_status
from visibility_engine.visibility_models import ProviderResponse

logger = logging.getLogger(__name__)


class OpenRouterAdapter(ProviderAdapter):
    """Adapter for OpenRouter chat completions."""

    provider = PROVIDER_OPENROUTER
    env_var = "OPENROUTER_API_KEY"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = OPENROUTER_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, http_client=http_client)
        self.base_url = base_url
        self._client: Optional[AsyncOpenAI] = None

    @classmethod
    def from_config(cls) -> "OpenRouterAdapter":
        return cls(OPENROUTER_API_KEY)

    def get_client(self) -> AsyncOpenAI:
        """OpenAI SDK client pointed at OpenRouter. SDK retries are disabled."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.require_api_key(),
                base_url=self.base_url,
                max_retries=0,
                default_headers={"HTTP-Referer": APP_URL, "X-Title": APP_TITLE},
                http_client=self._http_client,
            )
        return self._client

    async def invoke(
        self,
        model_id: str,
        prompt_text: str,
        timeout_ms: int,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        max_output_tokens: Optional[int] = None,
    ) -> ProviderResponse:
        self.require_api_key(model_id)
        client = self.get_client()

        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt_text})

        call_kwargs = {
            "model": model_id,
            "messages": messages,
            "timeout": timeout_ms / 1000,
        }
        if json_mode:
            call_kwargs["response_format"] = {"type": "json_object"}
        if max_output_tokens:
            call_kwargs["max_tokens"] = max_output_tokens

        started = time.perf_counter()
        try:
            resp = await client.chat.completions.create(**call_kwargs)
        except openai.APITimeoutError as e:
            raise ProviderError(
                ProviderErrorKind.TRANSIENT,
                "Request timed out",
                provider=self.provider,
                model_id=model_id,
                timed_out=True,
            ) from e
        except openai.APIConnectionError as e:
            raise ProviderError(
                ProviderErrorKind.TRANSIENT,
                f"Connection failed: {e}",
                provider=self.provider,
                model_id=model_id,
            ) from e
        except openai.APIStatusError as e:
            raise classify_status(
                e.status_code,
                _status_error_body(e),
                e.response.headers if e.response is not None else None,
                provider=self.provider,
                model_id=model_id,
            ) from e

        choice = resp.choices[0] if resp.choices else None
        content = choice.message.content if choice and choice.message else None
        if content is None:
            # OpenRouter reports some upstream failures as a 200 with no choices.
            raise ProviderError(
                ProviderErrorKind.TRANSIENT,
                "OpenRouter returned no choices",
                provider=self.provider,
                model_id=model_id,
                status_code=200,
            )

        return self.build_response(model_id, prompt_text, content, started, system_prompt=system_prompt)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        await super().aclose()


def _status_error_body(error: "openai.APIStatusError") -> str:
    body = error.body
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
    return str(error.message or "")
