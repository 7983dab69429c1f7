import json
import time
from typing import Dict, List, Optional, Union

import pytest

from visibility_engine.errors import ProviderError, ProviderErrorKind
from visibility_engine.health_monitor import HealthMonitor
from visibility_engine.model_registry import PROVIDER_GOOGLE, PROVIDER_OPENROUTER
from visibility_engine.prompt_orchestrator import PromptOrchestrator
from visibility_engine.provider_base import ProviderAdapter
from visibility_engine.visibility_models import ProviderResponse

Outcome = Union[str, Exception]


class FakeAdapter(ProviderAdapter):
    """
    Scripted adapter. Outcomes are consumed per model in order; the last
    outcome repeats. A string becomes the raw answer text, an exception is raised.
    """

    def __init__(self, provider: str, outcomes: Optional[Dict[str, List[Outcome]]] = None,
                 default: Optional[Outcome] = None, api_key: Optional[str] = "test-key"):
        super().__init__(api_key)
        self.provider = provider
        self.env_var = f"{provider.upper()}_API_KEY"
        self.outcomes = {k: list(v) for k, v in (outcomes or {}).items()}
        self.default = default
        self.calls: List[dict] = []

    def calls_for(self, model_id: str) -> List[dict]:
        return [c for c in self.calls if c["model_id"] == model_id]

    async def invoke(self, model_id, prompt_text, timeout_ms, system_prompt=None,
                     json_mode=False, max_output_tokens=None) -> ProviderResponse:
        self.require_api_key(model_id)
        self.calls.append({
            "model_id": model_id,
            "prompt_text": prompt_text,
            "system_prompt": system_prompt,
            "json_mode": json_mode,
        })
        queue = self.outcomes.get(model_id)
        if queue:
            outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        else:
            outcome = self.default
        if outcome is None:
            raise ProviderError(ProviderErrorKind.PERMANENT, "no scripted outcome",
                                provider=self.provider, model_id=model_id)
        if isinstance(outcome, Exception):
            raise outcome
        return self.build_response(model_id, prompt_text, outcome, time.perf_counter(),
                                   system_prompt=system_prompt)


def answer_json(description: str, citations=None, mentions: bool = False) -> str:
    return json.dumps({
        "description": description,
        "citations": citations or [],
        "mentionsDomain": mentions,
        "reasoning": "test",
    })


def transient(provider: str = PROVIDER_GOOGLE) -> ProviderError:
    return ProviderError(ProviderErrorKind.TRANSIENT, "Service Unavailable",
                         provider=provider, status_code=503)


def rate_limited(provider: str = PROVIDER_GOOGLE) -> ProviderError:
    return ProviderError(ProviderErrorKind.RATE_LIMITED, "Rate limited",
                         provider=provider, status_code=429, retry_after=60)


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def gemini():
    return FakeAdapter(PROVIDER_GOOGLE)


@pytest.fixture
def openrouter():
    return FakeAdapter(PROVIDER_OPENROUTER)


@pytest.fixture
def health(gemini, openrouter):
    return HealthMonitor({PROVIDER_GOOGLE: gemini, PROVIDER_OPENROUTER: openrouter})


@pytest.fixture
def orchestrator(gemini, openrouter, health, sleep):
    return PromptOrchestrator(
        {PROVIDER_GOOGLE: gemini, PROVIDER_OPENROUTER: openrouter},
        health,
        sleep=sleep,
    )
