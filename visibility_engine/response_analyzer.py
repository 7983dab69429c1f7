"""
Response Analyzer.
Decides whether a model answer mentions or cites the target domain and
scores it. Pure functions only: no I/O, no hidden state.

Scores:
    3   - at least one citation on the target domain (confidence "high")
    2.5 - mentioned in the first sentence of the answer ("medium")
    2   - mentioned elsewhere ("medium")
    0   - neither ("low")

The 2.5 half-step is kept per prompt and only rounded when totals are summed.
"""

import re
from typing import List, Optional

from visibility_engine.visibility_models import AnalyzerVerdict, ParsedAnswer

URL_RE = re.compile(r"https?://[^\s<>\"]+")
SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://")
SENTENCE_SPLIT_RE = re.compile(r"[.!?]")


def normalize_domain(value: str) -> str:
    """Lowercase host with scheme, www., trailing slash and path removed."""
    if not value:
        return ""
    domain = value.strip().lower()
    domain = SCHEME_RE.sub("", domain)
    if domain.startswith("www."):
        domain = domain[4:]
    domain = domain.rstrip("/")
    return domain.split("/")[0]


def domain_variants(normalized_domain: str) -> List[str]:
    """Spellings of a domain that count as a mention."""
    return [
        normalized_domain,
        f"www.{normalized_domain}",
        normalized_domain.replace(".", " "),
        normalized_domain.replace(".", " dot "),
    ]


def _mentions_variant(text: str, variants: List[str]) -> bool:
    lowered = text.lower()
    return any(variant and variant in lowered for variant in variants)


def _citation_matches(url: str, target: str) -> bool:
    host = normalize_domain(url)
    if not host or not target:
        return False
    return target in host or host in target


def first_sentence(text: str) -> str:
    return SENTENCE_SPLIT_RE.split(text or "", maxsplit=1)[0]


def analyze_response(
    response_text: str,
    parsed: Optional[ParsedAnswer],
    target_domain: str,
) -> AnalyzerVerdict:
    """
    Score one model answer for the target domain.

    Args:
        response_text: Raw (fence-stripped) answer text
        parsed: Structured answer, or None when the JSON parse failed
        target_domain: Domain or URL of the site being analyzed

    Returns:
        AnalyzerVerdict with mentioned flag, score, matching citations and confidence
    """
    target = normalize_domain(target_domain)
    variants = domain_variants(target) if target else []
    response_text = response_text or ""

    citations: List[str] = []
    mentioned = False

    if parsed is not None:
        citations = [url for url in parsed.citations if _citation_matches(url, target)]
        if parsed.mentions_domain is True:
            mentioned = True
        if parsed.description and _mentions_variant(parsed.description, variants):
            mentioned = True
        answer_text = parsed.description or response_text
    else:
        citations = [
            url for url in URL_RE.findall(response_text)
            if target and target in normalize_domain(url)
        ]
        mentioned = _mentions_variant(response_text, variants)
        answer_text = response_text

    if citations:
        score, confidence = 3.0, "high"
    elif mentioned:
        score, confidence = 2.0, "medium"
        if _mentions_variant(first_sentence(answer_text), variants):
            score = 2.5
    else:
        score, confidence = 0.0, "low"

    return AnalyzerVerdict(
        mentioned=mentioned,
        score=score,
        citations=citations,
        confidence=confidence,
    )
