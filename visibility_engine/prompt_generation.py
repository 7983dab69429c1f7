"""
Prompt Selection Module.
Static prompt set for the free tier, and business-specific prompt
generation (with a deterministic default set) for the elevated tier.
"""

import json
import logging
import re
from enum import Enum
from typing import List, Optional

from visibility_engine.config import GEMINI_MODEL, LLM_REQUEST_TIMEOUT_MS
from visibility_engine.errors import ProviderError, ProviderErrorKind
from visibility_engine.provider_base import ProviderAdapter, strip_code_fences
from visibility_engine.visibility_models import PromptSpec

logger = logging.getLogger(__name__)

GENERATED_PROMPT_COUNT = 10
MIN_LINE_LENGTH = 20

_JSON_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)
_NUMBERED_RE = re.compile(r"^\d+\.\s*")
_BULLET_RE = re.compile(r"^[-*]\s*")
_QUOTE_RE = re.compile(r"^[\"']|[\"']$")


PROMPT_TEMPLATES: List[PromptSpec] = [
    PromptSpec(
        id="brand-knowledge",
        template=(
            "Describe what the brand {brand} is, based only on what you already know. "
            "What type of entity is it, what does it do, and how would an AI categorize it?"
        ),
        category="brand-awareness",
    ),
    PromptSpec(
        id="website-understanding",
        template=(
            "Explain what someone would understand about {brand} from visiting {domain}. "
            "Summarize the mission, audience, and main offering."
        ),
        category="website-analysis",
    ),
    PromptSpec(
        id="authoritative-sources",
        template=(
            "If someone asked where to find reliable, official information about {brand}, "
            "what sources would you recommend? Explain why these sources appear authoritative."
        ),
        category="citation-capture",
    ),
]


class GenerationFailure(str, Enum):
    AUTH_MISSING = "AUTH_MISSING"
    TIMEOUT = "TIMEOUT"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    MALFORMED_OUTPUT = "MALFORMED_OUTPUT"


class GenerationOutcome:
    """Either generated prompts or the reason generation failed."""

    def __init__(
        self,
        prompts: Optional[List[PromptSpec]] = None,
        failure: Optional[GenerationFailure] = None,
        detail: Optional[str] = None,
    ):
        self.prompts = prompts
        self.failure = failure
        self.detail = detail

    @property
    def succeeded(self) -> bool:
        return self.failure is None and bool(self.prompts)

    def or_default(self, fallback: List[PromptSpec]) -> List[PromptSpec]:
        return list(self.prompts) if self.succeeded else list(fallback)

    def __repr__(self) -> str:
        if self.succeeded:
            return f"GenerationOutcome(prompts={len(self.prompts)})"
        return f"GenerationOutcome(failure={self.failure}, detail={self.detail!r})"


def default_business_prompts(brand_name: str, industry: Optional[str] = None) -> List[PromptSpec]:
    """Ten deterministic prompts used when generation fails."""
    ctx = f" in the {industry} industry" if industry else ""
    texts = [
        f"Describe what the brand {brand_name} is{ctx}. What type of entity is it, what does it do, and how would an AI categorize it?",
        f"Explain what someone would understand about {brand_name} from visiting their website. Summarize the mission, audience, and main offering.",
        f"If someone asked where to find reliable, official information about {brand_name}, what sources would you recommend? Explain why these sources appear authoritative.",
        f"What are the top 5 websites{ctx}? List them with brief descriptions and explain why they are considered authoritative.",
        f"How would you describe {brand_name}'s position{ctx}? What makes them stand out or unique?",
        f"If someone searched for \"{industry or 'services'} like {brand_name}\", what would you recommend?",
        f"What are the key features or benefits that {brand_name} offers{ctx}?",
        f"Who is the target audience for {brand_name}{ctx}?",
        f"What problems does {brand_name} solve{ctx}?",
        f"How would you compare {brand_name} to other similar businesses{ctx}?",
    ]
    return [
        PromptSpec(id=f"default-{idx + 1}", template=text, category="business-default")
        for idx, text in enumerate(texts)
    ]


def build_generation_prompt(
    brand_name: Optional[str],
    industry: Optional[str],
    brand_summary: Optional[str],
    url: Optional[str],
) -> str:
    return f"""Generate 10 specific, actionable prompts that would help analyze the AI search visibility of a business.

Business Information:
- Brand Name: {brand_name or 'Unknown'}
- Industry: {industry or 'General'}
- Description: {brand_summary or 'Not provided'}
- Website: {url or 'Not provided'}

Generate prompts that:
1. Test brand awareness in AI models
2. Check citation likelihood
3. Assess authority and trustworthiness
4. Evaluate competitor positioning
5. Test topic-specific queries

Return ONLY a JSON array of 10 prompt strings, no other text:
["prompt 1", "prompt 2", ...]"""


def parse_generated_prompts(text: str) -> Optional[List[str]]:
    """
    Extract exactly 10 prompt strings from a model answer.

    Tries a JSON array first, then numbered, bulleted or quoted lines longer
    than 20 characters. Returns None when neither yields at least 10.
    """
    cleaned = strip_code_fences(text)

    match = _JSON_ARRAY_RE.search(cleaned)
    if match:
        try:
            items = json.loads(match.group(0))
        except json.JSONDecodeError:
            items = None
        if isinstance(items, list):
            strings = [item.strip() for item in items if isinstance(item, str) and item.strip()]
            if len(strings) >= GENERATED_PROMPT_COUNT:
                return strings[:GENERATED_PROMPT_COUNT]

    lines = []
    for line in cleaned.splitlines():
        stripped = line.strip()
        if len(stripped) <= MIN_LINE_LENGTH:
            continue
        if _NUMBERED_RE.match(stripped) or _BULLET_RE.match(stripped) or stripped.startswith('"'):
            lines.append(stripped)

    if len(lines) < GENERATED_PROMPT_COUNT:
        return None

    prompts = []
    for line in lines[:GENERATED_PROMPT_COUNT]:
        line = _NUMBERED_RE.sub("", line)
        line = _BULLET_RE.sub("", line)
        prompts.append(_QUOTE_RE.sub("", line).strip())
    return prompts


class PromptGenerator:
    """Generates business-specific prompts with one model call."""

    def __init__(self, adapter: ProviderAdapter, model_id: str = GEMINI_MODEL,
                 timeout_ms: int = LLM_REQUEST_TIMEOUT_MS):
        self.adapter = adapter
        self.model_id = model_id
        self.timeout_ms = timeout_ms

    async def try_generate(
        self,
        brand_name: Optional[str] = None,
        industry: Optional[str] = None,
        brand_summary: Optional[str] = None,
        url: Optional[str] = None,
    ) -> GenerationOutcome:
        """
        Ask the model for 10 prompts tailored to the business.

        Never raises on provider errors; the failure reason is returned in
        the outcome so the caller can fall back and warn.
        """
        if not self.adapter.enabled:
            return GenerationOutcome(failure=GenerationFailure.AUTH_MISSING, detail="API key not configured")

        try:
            response = await self.adapter.invoke(
                self.model_id,
                build_generation_prompt(brand_name, industry, brand_summary, url),
                self.timeout_ms,
            )
        except ProviderError as e:
            if e.kind == ProviderErrorKind.AUTH_MISSING:
                failure = GenerationFailure.AUTH_MISSING
            elif e.timed_out:
                failure = GenerationFailure.TIMEOUT
            else:
                failure = GenerationFailure.PROVIDER_ERROR
            logger.warning("[PROMPTS] Prompt generation failed (%s): %s", failure.value, e)
            return GenerationOutcome(failure=failure, detail=str(e))

        texts = parse_generated_prompts(response.raw_text)
        if texts is None:
            logger.warning("[PROMPTS] Could not extract %d prompts from model output", GENERATED_PROMPT_COUNT)
            return GenerationOutcome(
                failure=GenerationFailure.MALFORMED_OUTPUT,
                detail="Model output did not contain 10 prompts",
            )

        logger.info("[PROMPTS] Generated %d context-based prompts", len(texts))
        return GenerationOutcome(prompts=[
            PromptSpec(id=f"custom-{idx + 1}", template=text, category="custom")
            for idx, text in enumerate(texts)
        ])
