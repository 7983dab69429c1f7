"""
Improvement recommendations for prompts where the domain was invisible.
"""

import json
import logging
import re
from typing import List

from pydantic import ValidationError

from visibility_engine.config import GEMINI_MODEL, LLM_REQUEST_TIMEOUT_MS
from visibility_engine.errors import ProviderError
from visibility_engine.provider_base import ProviderAdapter
from visibility_engine.visibility_models import Recommendation

logger = logging.getLogger(__name__)

_LIST_ITEM_RE = re.compile(r"^(\d+\.|[-*])\s*")


def build_recommendation_prompt(domain: str, brand: str) -> str:
    return f"""Based on your analysis of {brand} ({domain}), provide 3-5 specific, actionable recommendations to improve their visibility in AI search results. Focus on:
1. Content improvements
2. Technical SEO enhancements
3. Authority building strategies
4. Citation opportunities

Respond in JSON format:
{{
  "recommendations": [
    {{"title": "Recommendation title", "description": "Detailed explanation", "priority": "high|medium|low"}}
  ]
}}"""


def parse_recommendations(text: str) -> List[Recommendation]:
    """
    Parse the JSON recommendation list; fall back to numbered or bulleted
    lines when the model ignored the JSON instruction.
    """
    try:
        data = json.loads(text)
        items = data.get("recommendations") if isinstance(data, dict) else None
        if not isinstance(items, list):
            items = []
        return [Recommendation.model_validate(item) for item in items if isinstance(item, dict)]
    except (json.JSONDecodeError, TypeError, ValidationError):
        pass

    lines = [
        line.strip() for line in (text or "").splitlines()
        if line.strip() and _LIST_ITEM_RE.match(line.strip())
    ]
    return [
        Recommendation(
            title=f"Recommendation {idx + 1}",
            description=_LIST_ITEM_RE.sub("", line).strip(),
            priority="medium",
        )
        for idx, line in enumerate(lines[:5])
    ]


class RecommendationService:
    """Asks one model for visibility recommendations. Never raises."""

    def __init__(self, adapter: ProviderAdapter, model_id: str = GEMINI_MODEL,
                 timeout_ms: int = LLM_REQUEST_TIMEOUT_MS):
        self.adapter = adapter
        self.model_id = model_id
        self.timeout_ms = timeout_ms

    async def get_recommendations(self, domain: str, brand: str) -> List[Recommendation]:
        if not self.adapter.enabled:
            return []
        try:
            response = await self.adapter.invoke(
                self.model_id,
                build_recommendation_prompt(domain, brand),
                self.timeout_ms,
                json_mode=True,
            )
        except ProviderError as e:
            logger.warning("[LLM] Recommendation generation failed: %s", e)
            return []
        try:
            return parse_recommendations(response.raw_text)
        except Exception:
            logger.exception("[LLM] Could not read recommendations from model output")
            return []
