"""
HuggingFace Inference Router Client Module.

The router endpoint path has changed over time (the legacy api-inference
host answers 410 Gone), so the adapter carries an ordered list of endpoint
templates and tries each once, stopping at the first answer that is not a
404/410.
"""

import json
import logging
import time
from typing import Any, List, Optional

import httpx

from visibility_engine.config import HUGGINGFACE_API_KEY, HUGGINGFACE_ROUTER_BASE
from visibility_engine.errors import ProviderError, ProviderErrorKind
from visibility_engine.model_registry import PROVIDER_HUGGINGFACE
from visibility_engine.provider_base import (
    GONE_STATUS_CODES,
    ProviderAdapter,
    classify_status,
    classify_transport_error,
)
from visibility_engine.visibility_models import ProviderResponse

logger = logging.getLogger(__name__)


ENDPOINT_TEMPLATES: List[str] = [
    "{base}/hf-inference/models/{model}",
    "{base}/hf-inference/{model}",
    "{base}/models/{model}",
]


def extract_generated_text(data: Any) -> str:
    """Pull generated text out of the router's list or dict payloads."""
    if isinstance(data, list) and data:
        first = data[0]
        if isinstance(first, dict) and "generated_text" in first:
            return str(first.get("generated_text") or "")
    if isinstance(data, dict) and "generated_text" in data:
        return str(data.get("generated_text") or "")
    # Embedding and classification models answer with bare arrays.
    return json.dumps(data)[:500]


class HuggingFaceAdapter(ProviderAdapter):
    """Adapter for the HuggingFace inference router generation endpoint."""

    provider = PROVIDER_HUGGINGFACE
    env_var = "HUGGINGFACE_API_KEY"

    def __init__(
        self,
        api_key: Optional[str],
        router_base: str = HUGGINGFACE_ROUTER_BASE,
        endpoint_templates: Optional[List[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, http_client=http_client)
        self.router_base = router_base.rstrip("/")
        self.endpoint_templates = list(endpoint_templates or ENDPOINT_TEMPLATES)

    @classmethod
    def from_config(cls) -> "HuggingFaceAdapter":
        return cls(HUGGINGFACE_API_KEY)

    def endpoints_for(self, model_id: str) -> List[str]:
        return [t.format(base=self.router_base, model=model_id) for t in self.endpoint_templates]

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
        inputs = f"{system_prompt}\n\n{prompt_text}" if system_prompt else prompt_text
        payload = {
            "inputs": inputs,
            "parameters": {
                "max_new_tokens": max_output_tokens or 250,
                "temperature": 0.7,
                "return_full_text": False,
            },
        }
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

        started = time.perf_counter()
        response: Optional[httpx.Response] = None
        for endpoint in self.endpoints_for(model_id):
            try:
                response = await self._post(endpoint, timeout_ms, json=payload, headers=headers)
            except httpx.TransportError as e:
                raise classify_transport_error(e, provider=self.provider, model_id=model_id) from e
            if response.status_code not in GONE_STATUS_CODES:
                break
            logger.debug("[LLM] HuggingFace endpoint %s answered %s, trying next", endpoint, response.status_code)

        if response is None:
            raise ProviderError(
                ProviderErrorKind.PERMANENT,
                "No HuggingFace endpoint templates configured",
                provider=self.provider,
                model_id=model_id,
            )
        if response.status_code != 200:
            self._log_error_body(model_id, response)
            raise classify_status(
                response.status_code,
                _error_text(response),
                response.headers,
                provider=self.provider,
                model_id=model_id,
            )

        try:
            data = response.json()
        except ValueError:
            data = response.text
        text = data if isinstance(data, str) else extract_generated_text(data)
        return self.build_response(model_id, inputs, text, started)


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.text
