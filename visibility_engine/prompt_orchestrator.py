"""
Single-Prompt Orchestrator.
Drives one prompt through one or more providers with retry, health-aware
model selection and multi-provider fan-out, then scores the answer.

Provider failures never escape `run`; they become a zero-score
AnalysisResult with `error` populated.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from visibility_engine.config import (
    LLM_REQUEST_TIMEOUT_MS,
    MAX_PROVIDER_ATTEMPTS,
    RETRY_BASE_DELAY_SECONDS,
)
from visibility_engine.errors import ProviderError, ProviderErrorKind
from visibility_engine.health_monitor import HealthMonitor
from visibility_engine.model_registry import (
    GEMINI_PRIORITY,
    OPENROUTER_PRIORITY,
    PROVIDER_GOOGLE,
    PROVIDER_OPENROUTER,
)
from visibility_engine.provider_base import ProviderAdapter
from visibility_engine.recommendations import RecommendationService
from visibility_engine.response_analyzer import analyze_response
from visibility_engine.visibility_models import (
    AnalysisResult,
    PromptSpec,
    ProviderBranchResult,
    ProviderResponse,
    RunMode,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def build_visibility_instructions(domain: str) -> str:
    """System instructions asking for the structured JSON answer the analyzer expects."""
    return f"""You are a helpful assistant providing factual information about websites and companies.

IMPORTANT: Respond ONLY with valid JSON in this exact format (no markdown, no code blocks, just pure JSON):
{{
  "description": "Brief description or answer to the question",
  "citations": ["url1", "url2"],
  "mentionsDomain": true or false,
  "reasoning": "Brief explanation of your response"
}}

Include specific URLs in the citations array when relevant. If you mention the domain {domain} or any of its pages, set mentionsDomain to true."""


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


class PromptOrchestrator:
    """Runs a single prompt in single-provider or multi-provider mode."""

    def __init__(
        self,
        adapters: Dict[str, ProviderAdapter],
        health_monitor: HealthMonitor,
        recommendation_service: Optional[RecommendationService] = None,
        gemini_priority: Optional[List[str]] = None,
        openrouter_priority: Optional[List[str]] = None,
        max_attempts: int = MAX_PROVIDER_ATTEMPTS,
        retry_base_delay: float = RETRY_BASE_DELAY_SECONDS,
        timeout_ms: int = LLM_REQUEST_TIMEOUT_MS,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.adapters = adapters
        self.health = health_monitor
        self.recommendations = recommendation_service
        self.gemini_priority = list(gemini_priority or GEMINI_PRIORITY)
        self.openrouter_priority = list(openrouter_priority or OPENROUTER_PRIORITY)
        self.max_attempts = max(1, max_attempts)
        self.retry_base_delay = retry_base_delay
        self.timeout_ms = timeout_ms
        self._sleep = sleep

    def select_models(self, priority: List[str], count: int = 1) -> List[str]:
        """
        Walk the priority list, skipping models the health monitor reports as
        unavailable. When too few are available the remaining slots are filled
        in priority order anyway, so a call is always attempted.
        """
        chosen = [ref for ref in priority if self.health.is_available(ref)][:count]
        for ref in priority:
            if len(chosen) >= count:
                break
            if ref not in chosen:
                chosen.append(ref)
        return chosen

    def select_model(self, priority: List[str]) -> Optional[str]:
        chosen = self.select_models(priority, 1)
        return chosen[0] if chosen else None

    def _model_name(self, model_ref: str) -> str:
        return self.health.aliases.name_for(model_ref) or model_ref

    def _adapter(self, provider: str) -> ProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ProviderError(
                ProviderErrorKind.AUTH_MISSING,
                f"No adapter configured for provider {provider}",
                provider=provider,
            )
        return adapter

    async def call_with_retry(
        self,
        adapter: ProviderAdapter,
        model_id: str,
        prompt_text: str,
        system_prompt: Optional[str] = None,
    ) -> ProviderResponse:
        """Invoke once, retrying TRANSIENT failures with exponential backoff (1s, 2s, 4s...)."""
        attempt = 0
        while True:
            try:
                return await adapter.invoke(
                    model_id,
                    prompt_text,
                    self.timeout_ms,
                    system_prompt=system_prompt,
                    json_mode=True,
                )
            except ProviderError as e:
                attempt += 1
                if not e.retryable or attempt >= self.max_attempts:
                    raise
                delay = self.retry_base_delay * (2 ** (attempt - 1))
                logger.info(
                    "[LLM] Retry %d/%d for %s after %.1fs: %s",
                    attempt, self.max_attempts, model_id, delay, e
                )
                await self._sleep(delay)

    async def run(
        self,
        prompt_spec: PromptSpec,
        domain: str,
        brand: str,
        topic: str,
        mode: RunMode = RunMode.SINGLE_PROVIDER,
    ) -> AnalysisResult:
        """
        Run one prompt and score the answer for the domain.

        Args:
            prompt_spec: The prompt template to render
            domain: Target domain (already normalized)
            brand: Brand name substituted for {brand}
            topic: Topic substituted for {topic}
            mode: Single provider (free tier) or multi-provider fan-out

        Returns:
            AnalysisResult; provider errors are captured in its `error` field
        """
        prompt = prompt_spec.render(domain, brand, topic)
        logger.info("[LLM] Prompt: %s", prompt_spec.id)

        try:
            if mode == RunMode.MULTI_PROVIDER:
                result = await self._run_multi(prompt_spec, prompt, domain)
            else:
                result = await self._run_single(prompt_spec, prompt, domain)
        except ProviderError as e:
            logger.warning("[LLM] Call failed for prompt %s (continuing): %s", prompt_spec.id, e)
            return self._error_result(prompt_spec, prompt, str(e))

        if result.error is None and result.score == 0 and not result.citations and not result.domain_mentioned:
            if self.recommendations is not None:
                result.recommendations = await self.recommendations.get_recommendations(domain, brand)

        logger.info(
            "[LLM] Score: %s/3 | Mentioned: %s%s",
            result.score, result.domain_mentioned,
            " (Multi-LLM)" if mode == RunMode.MULTI_PROVIDER else ""
        )
        return result

    async def _run_single(self, prompt_spec: PromptSpec, prompt: str, domain: str) -> AnalysisResult:
        adapter = self._adapter(PROVIDER_GOOGLE)
        model_ref = self.select_model(self.gemini_priority)
        if model_ref is None:
            raise ProviderError(ProviderErrorKind.PERMANENT, "No Gemini model configured", provider=PROVIDER_GOOGLE)

        response = await self.call_with_retry(
            adapter,
            self._model_name(model_ref),
            f"Question: {prompt}",
            system_prompt=build_visibility_instructions(domain),
        )
        verdict = analyze_response(response.raw_text, response.parsed, domain)
        return AnalysisResult(
            prompt_id=prompt_spec.id,
            prompt=prompt,
            category=prompt_spec.category,
            response=response.raw_text,
            parsed_response=response.parsed,
            domain_mentioned=verdict.mentioned,
            score=verdict.score,
            citations=verdict.citations,
            confidence=verdict.confidence,
            tokens_used=response.tokens_used_estimate,
        )

    def _plan_branches(self) -> List[Tuple[str, str, Optional[str]]]:
        """(branch name, provider, model ref) for the Gemini branch plus two OpenRouter models."""
        branches: List[Tuple[str, str, Optional[str]]] = [
            ("gemini", PROVIDER_GOOGLE, self.select_model(self.gemini_priority)),
        ]
        for idx, model_ref in enumerate(self.select_models(self.openrouter_priority, 2), start=1):
            branches.append((f"openrouter{idx}", PROVIDER_OPENROUTER, model_ref))
        return branches

    async def _call_branch(self, provider: str, model_ref: Optional[str], prompt: str, domain: str) -> ProviderResponse:
        adapter = self._adapter(provider)
        if model_ref is None:
            raise ProviderError(ProviderErrorKind.PERMANENT, "No model configured", provider=provider)
        return await self.call_with_retry(
            adapter,
            self._model_name(model_ref),
            f"Question about {domain}: {prompt}",
            system_prompt=build_visibility_instructions(domain),
        )

    async def _run_multi(self, prompt_spec: PromptSpec, prompt: str, domain: str) -> AnalysisResult:
        branches = self._plan_branches()
        outcomes = await asyncio.gather(
            *(self._call_branch(provider, model_ref, prompt, domain) for _, provider, model_ref in branches),
            return_exceptions=True,
        )

        branch_results: List[ProviderBranchResult] = []
        successes: List[ProviderResponse] = []
        errors: List[str] = []
        for (branch, provider, model_ref), outcome in zip(branches, outcomes):
            model_name = self._model_name(model_ref) if model_ref else None
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, ProviderError):
                    logger.error("[MULTI-LLM] Unexpected %s in branch %s: %s", type(outcome).__name__, branch, outcome)
                errors.append(f"{branch}: {outcome}")
                branch_results.append(ProviderBranchResult(
                    branch=branch, provider=provider, model_id=model_name, success=False, error=str(outcome),
                ))
                continue
            answer = outcome.answer()
            successes.append(outcome)
            branch_results.append(ProviderBranchResult(
                branch=branch,
                provider=provider,
                model_id=outcome.model_id,
                success=True,
                citations=list(outcome.parsed.citations) if outcome.parsed else [],
                mentions_domain=answer.mentions_domain,
            ))

        if not successes:
            logger.warning("[MULTI-LLM] All providers failed for prompt %s", prompt_spec.id)
            result = self._error_result(prompt_spec, prompt, "All providers failed: " + "; ".join(errors))
            result.provider_results = branch_results
            return result

        primary = successes[0]
        union = _dedupe([c for r in successes if r.parsed is not None for c in r.parsed.citations])
        merged = None
        if primary.parsed is not None or union:
            merged = primary.answer().model_copy(update={"citations": union})
        verdict = analyze_response(primary.raw_text, merged, domain)

        return AnalysisResult(
            prompt_id=prompt_spec.id,
            prompt=prompt,
            category=prompt_spec.category,
            response=primary.raw_text,
            parsed_response=merged,
            domain_mentioned=verdict.mentioned,
            score=verdict.score,
            citations=verdict.citations,
            confidence=verdict.confidence,
            tokens_used=sum(r.tokens_used_estimate for r in successes),
            provider_results=branch_results,
        )

    @staticmethod
    def _error_result(prompt_spec: PromptSpec, prompt: str, error: str) -> AnalysisResult:
        return AnalysisResult(
            prompt_id=prompt_spec.id,
            prompt=prompt,
            category=prompt_spec.category,
            response=None,
            domain_mentioned=False,
            score=0,
            citations=[],
            confidence="low",
            tokens_used=0,
            error=error,
        )
