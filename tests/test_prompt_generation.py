"""Tests for static, generated and default prompt selection."""

import json

import pytest

from visibility_engine.errors import ProviderError, ProviderErrorKind
from visibility_engine.model_registry import PROVIDER_GOOGLE
from visibility_engine.prompt_generation import (
    PROMPT_TEMPLATES,
    GenerationFailure,
    PromptGenerator,
    default_business_prompts,
    parse_generated_prompts,
)

from conftest import FakeAdapter

TEN = [f"What do AI assistants know about Acme product line number {i}?" for i in range(1, 11)]


def test_static_templates():
    assert [p.id for p in PROMPT_TEMPLATES] == ["brand-knowledge", "website-understanding", "authoritative-sources"]
    rendered = PROMPT_TEMPLATES[1].render("acme.com", "Acme", "Acme and similar services")
    assert "Acme" in rendered and "acme.com" in rendered
    assert "{" not in rendered


def test_default_business_prompts_are_deterministic():
    prompts = default_business_prompts("Acme", "logistics")
    assert len(prompts) == 10
    assert prompts == default_business_prompts("Acme", "logistics")
    assert prompts[0].template.startswith("Describe what the brand Acme is in the logistics industry.")
    assert prompts[5].template == 'If someone searched for "logistics like Acme", what would you recommend?'
    assert {p.category for p in prompts} == {"business-default"}


def test_default_business_prompts_without_industry():
    prompts = default_business_prompts("Acme")
    assert "industry" not in prompts[0].template
    assert '"services like Acme"' in prompts[5].template


def test_parse_json_array():
    text = "Here you go:\n" + json.dumps(TEN + ["an eleventh prompt that is dropped"])
    assert parse_generated_prompts(text) == TEN


def test_parse_numbered_lines():
    text = "\n".join(f"{i}. {p}" for i, p in enumerate(TEN, start=1))
    assert parse_generated_prompts(text) == TEN


def test_parse_bulleted_and_quoted_lines():
    lines = [f"- {p}" for p in TEN[:5]] + [f'"{p}"' for p in TEN[5:]]
    assert parse_generated_prompts("\n".join(lines)) == TEN


def test_parse_too_few_prompts():
    assert parse_generated_prompts(json.dumps(TEN[:4])) is None
    assert parse_generated_prompts("1. too short\n2. also short") is None


@pytest.mark.asyncio
async def test_try_generate_success():
    adapter = FakeAdapter(PROVIDER_GOOGLE, default="```json\n" + json.dumps(TEN) + "\n```")
    outcome = await PromptGenerator(adapter, model_id="gemini-2.5-flash").try_generate(
        brand_name="Acme", industry="logistics", brand_summary="Freight", url="https://acme.com",
    )

    assert outcome.succeeded
    assert [p.id for p in outcome.prompts][:2] == ["custom-1", "custom-2"]
    assert {p.category for p in outcome.prompts} == {"custom"}
    assert "Brand Name: Acme" in adapter.calls[0]["prompt_text"]


@pytest.mark.asyncio
@pytest.mark.parametrize("error,expected", [
    (ProviderError(ProviderErrorKind.TRANSIENT, "Request timed out", timed_out=True), GenerationFailure.TIMEOUT),
    (ProviderError(ProviderErrorKind.PERMANENT, "bad"), GenerationFailure.PROVIDER_ERROR),
    (ProviderError(ProviderErrorKind.RATE_LIMITED, "slow down"), GenerationFailure.PROVIDER_ERROR),
])
async def test_try_generate_classifies_provider_errors(error, expected):
    outcome = await PromptGenerator(FakeAdapter(PROVIDER_GOOGLE, default=error)).try_generate(brand_name="Acme")

    assert outcome.failure == expected
    fallback = default_business_prompts("Acme")
    assert outcome.or_default(fallback) == fallback


@pytest.mark.asyncio
async def test_try_generate_without_key():
    adapter = FakeAdapter(PROVIDER_GOOGLE, default=json.dumps(TEN), api_key=None)
    outcome = await PromptGenerator(adapter).try_generate(brand_name="Acme")

    assert outcome.failure == GenerationFailure.AUTH_MISSING
    assert adapter.calls == []


@pytest.mark.asyncio
async def test_try_generate_malformed_output():
    adapter = FakeAdapter(PROVIDER_GOOGLE, default="Sorry, I cannot help with that.")
    outcome = await PromptGenerator(adapter).try_generate(brand_name="Acme")

    assert outcome.failure == GenerationFailure.MALFORMED_OUTPUT
    assert not outcome.succeeded
