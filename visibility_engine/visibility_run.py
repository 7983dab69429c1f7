"""
Visibility Run Orchestrator.
Turns a URL into a VisibilityReport: select prompts, dispatch them one at a
time through the PromptOrchestrator, then aggregate scores and usage.

Only an invalid URL propagates to the caller. Provider failures degrade the
report (zero scores plus warnings) but the run still succeeds.
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from visibility_engine.config import (
    COST_PER_1K_TOKENS,
    GEMINI_MODEL,
    INTER_PROMPT_DELAY_SECONDS,
)
from visibility_engine.errors import InvalidURLError
from visibility_engine.gemini_client import GeminiAdapter
from visibility_engine.health_monitor import HealthMonitor
from visibility_engine.huggingface_client import HuggingFaceAdapter
from visibility_engine.model_registry import PROVIDER_GOOGLE, PROVIDER_HUGGINGFACE, PROVIDER_OPENROUTER
from visibility_engine.openrouter_client import OpenRouterAdapter
from visibility_engine.prompt_generation import (
    PROMPT_TEMPLATES,
    PromptGenerator,
    default_business_prompts,
)
from visibility_engine.prompt_orchestrator import PromptOrchestrator, SleepFn
from visibility_engine.provider_base import ProviderAdapter
from visibility_engine.recommendations import RecommendationService
from visibility_engine.visibility_models import (
    AnalysisResult,
    BusinessContext,
    PromptSpec,
    ReportMetadata,
    RunMode,
    VisibilityReport,
    round_half_up,
)

logger = logging.getLogger(__name__)

_HOST_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)+$")


def extract_domain(url: str) -> str:
    """
    Hostname of a URL with any leading www. removed.

    Bare hosts ("example.com/path") and internationalized names are accepted.
    Raises InvalidURLError when no dotted hostname can be found.
    """
    value = (url or "").strip()
    if not value:
        raise InvalidURLError("URL is required")
    if "://" not in value:
        value = f"https://{value}"
    try:
        host = (urlparse(value).hostname or "").lower()
    except ValueError as e:
        raise InvalidURLError(f"Invalid URL: {url}") from e
    if host.startswith("www."):
        host = host[4:]
    try:
        ascii_host = host.encode("idna").decode("ascii") if host else ""
    except UnicodeError as e:
        raise InvalidURLError(f"Invalid URL: {url}") from e
    if not _HOST_RE.match(ascii_host):
        raise InvalidURLError(f"Invalid URL: {url}")
    return host


def extract_brand(domain: str) -> str:
    """First domain label with its first letter capitalised (example.com -> Example)."""
    label = domain.split(".")[0]
    return label[:1].upper() + label[1:]


def guess_topic(brand: str) -> str:
    return f"{brand} and similar services"


class VisibilityRunOrchestrator:
    """Runs a complete visibility analysis for one URL."""

    def __init__(
        self,
        prompt_orchestrator: PromptOrchestrator,
        prompt_generator: Optional[PromptGenerator] = None,
        health_monitor: Optional[HealthMonitor] = None,
        inter_prompt_delay: float = INTER_PROMPT_DELAY_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.prompts = prompt_orchestrator
        self.generator = prompt_generator
        self.health = health_monitor or prompt_orchestrator.health
        self.inter_prompt_delay = inter_prompt_delay
        self._sleep = sleep

    @classmethod
    def from_config(cls) -> "VisibilityRunOrchestrator":
        """Wire adapters, health monitor and services from environment configuration."""
        adapters: Dict[str, ProviderAdapter] = {
            PROVIDER_GOOGLE: GeminiAdapter.from_config(),
            PROVIDER_OPENROUTER: OpenRouterAdapter.from_config(),
            PROVIDER_HUGGINGFACE: HuggingFaceAdapter.from_config(),
        }
        health = HealthMonitor(adapters)
        gemini = adapters[PROVIDER_GOOGLE]
        orchestrator = PromptOrchestrator(
            adapters,
            health,
            recommendation_service=RecommendationService(gemini, model_id=GEMINI_MODEL),
        )
        return cls(orchestrator, prompt_generator=PromptGenerator(gemini, model_id=GEMINI_MODEL))

    async def aclose(self) -> None:
        for adapter in self.prompts.adapters.values():
            await adapter.aclose()

    async def select_prompts(
        self,
        url: str,
        brand: str,
        topic: str,
        is_elevated_tier: bool,
        business_context: Optional[BusinessContext],
    ) -> Tuple[List[PromptSpec], str, Optional[str]]:
        """
        Returns (prompts, prompt source, generation failure).
        Prompt source is "static", "generated" or "default".
        """
        if not is_elevated_tier:
            return list(PROMPT_TEMPLATES), "static", None

        ctx = business_context or BusinessContext()
        brand_name = ctx.brand_name or brand
        industry = ctx.industry or topic
        fallback = default_business_prompts(brand_name, industry)

        if self.generator is None:
            return fallback, "default", None

        outcome = await self.generator.try_generate(
            brand_name=brand_name,
            industry=industry,
            brand_summary=ctx.brand_summary or "",
            url=url,
        )
        if outcome.succeeded:
            return outcome.or_default(fallback), "generated", None

        logger.warning("[PROMPTS] Using default prompts (%s)", outcome.failure.value)
        return outcome.or_default(fallback), "default", outcome.failure.value

    async def run_visibility_analysis(
        self,
        url: str,
        is_elevated_tier: bool = False,
        business_context: Optional[BusinessContext] = None,
    ) -> VisibilityReport:
        """
        Analyze how visible a site is in LLM answers.

        Args:
            url: Site URL or bare host
            is_elevated_tier: Use generated prompts and multi-provider fan-out
            business_context: Optional brand name, industry and summary for prompt generation

        Returns:
            VisibilityReport with per-prompt details, totals and warnings

        Raises:
            InvalidURLError: If no domain can be extracted from `url`
        """
        domain = extract_domain(url)
        brand = extract_brand(domain)
        topic = guess_topic(brand)
        logger.info("[LLM] Starting visibility analysis for: %s%s", domain, " (Elevated)" if is_elevated_tier else "")

        prompts, prompt_source, generation_failure = await self.select_prompts(
            url, brand, topic, is_elevated_tier, business_context
        )
        mode = RunMode.MULTI_PROVIDER if is_elevated_tier else RunMode.SINGLE_PROVIDER

        details: List[AnalysisResult] = []
        for idx, prompt_spec in enumerate(prompts):
            if idx > 0 and self.inter_prompt_delay > 0:
                await self._sleep(self.inter_prompt_delay)
            try:
                result = await self.prompts.run(prompt_spec, domain, brand, topic, mode)
            except Exception as e:
                logger.exception("[LLM] Unexpected failure on prompt %s", prompt_spec.id)
                result = AnalysisResult(
                    prompt_id=prompt_spec.id,
                    prompt=prompt_spec.render(domain, brand, topic),
                    category=prompt_spec.category,
                    error=f"{type(e).__name__}: {e}",
                )
            details.append(result)

        report = self.aggregate(url, domain, brand, details, is_elevated_tier)
        report.metadata.prompt_source = prompt_source
        report.metadata.generation_failure = generation_failure
        if generation_failure:
            report.warnings.append(f"Prompt generation failed ({generation_failure}); default prompts were used")

        logger.info(
            "[LLM] Analysis complete: %d/%d (%d%%)",
            report.total_score, report.max_score, report.percentage
        )
        return report

    @staticmethod
    def aggregate(
        url: str,
        domain: str,
        brand: str,
        details: List[AnalysisResult],
        is_elevated_tier: bool = False,
    ) -> VisibilityReport:
        """Sum half-up rounded scores and token usage into a report."""
        total_score = sum(round_half_up(d.score) for d in details)
        max_score = len(details) * 3
        percentage = round_half_up(total_score / max_score * 100) if max_score else 0
        total_tokens = sum(d.tokens_used for d in details)

        warnings = [
            f"Prompt '{d.prompt_id}' failed: {d.error}"
            for d in details if d.error
        ]

        return VisibilityReport(
            success=True,
            url=url,
            domain=domain,
            brand=brand,
            total_score=total_score,
            max_score=max_score,
            percentage=percentage,
            details=details,
            is_elevated_tier=is_elevated_tier,
            warnings=warnings,
            metadata=ReportMetadata(
                total_tokens=total_tokens,
                estimated_cost=total_tokens / 1000 * COST_PER_1K_TOKENS,
                prompts_used=len(details),
                multi_llm_enabled=is_elevated_tier,
            ),
        )
