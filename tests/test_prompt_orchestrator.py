"""Tests for single-prompt orchestration: retry, fan-out and model selection."""

import json

import pytest

from visibility_engine.errors import ProviderError, ProviderErrorKind
from visibility_engine.health_monitor import HealthMonitor, UnknownModelPolicy
from visibility_engine.model_registry import MODEL_REGISTRY, PROVIDER_GOOGLE, PROVIDER_OPENROUTER
from visibility_engine.prompt_orchestrator import PromptOrchestrator
from visibility_engine.recommendations import RecommendationService, parse_recommendations
from visibility_engine.visibility_models import PromptSpec, RunMode

from conftest import FakeAdapter, answer_json, rate_limited, transient

GEMINI = MODEL_REGISTRY["gemini"].name
SHERLOCK_DASH = MODEL_REGISTRY["openrouter_sherlock_dash"].name
MISTRAL = MODEL_REGISTRY["openrouter_mistral"].name
SHERLOCK_THINK = MODEL_REGISTRY["openrouter_sherlock_think"].name

PROMPT = PromptSpec(id="describe", template="Describe {brand}", category="brand-awareness")


async def run(orchestrator, mode=RunMode.SINGLE_PROVIDER):
    return await orchestrator.run(PROMPT, "example.com", "Example", "Example and similar services", mode)


@pytest.mark.asyncio
async def test_single_provider_scores_answer(orchestrator, gemini):
    gemini.default = answer_json("Example.com is a reference domain.", mentions=True)

    result = await run(orchestrator)

    assert result.prompt == "Describe Example"
    assert result.domain_mentioned is True
    assert result.score == 2
    assert result.confidence == "medium"
    assert result.error is None
    assert result.tokens_used > 0
    assert len(gemini.calls) == 1
    assert gemini.calls[0]["model_id"] == GEMINI
    assert "example.com" in gemini.calls[0]["system_prompt"]
    assert gemini.calls[0]["json_mode"] is True


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_backoff(orchestrator, gemini, sleep):
    gemini.outcomes[GEMINI] = [transient(), transient(), answer_json("x", ["https://example.com"])]

    result = await run(orchestrator)

    assert len(gemini.calls) == 3
    assert sleep.delays == [1.0, 2.0]
    assert result.score == 3
    assert result.error is None


@pytest.mark.asyncio
async def test_retries_exhausted_become_error_result(orchestrator, gemini, sleep):
    gemini.default = transient()

    result = await run(orchestrator)

    assert len(gemini.calls) == 3
    assert result.score == 0
    assert result.confidence == "low"
    assert "TRANSIENT" in result.error


@pytest.mark.asyncio
async def test_rate_limit_is_not_retried(orchestrator, gemini, sleep):
    gemini.default = rate_limited()

    result = await run(orchestrator)

    assert len(gemini.calls) == 1
    assert sleep.delays == []
    assert result.score == 0
    assert "RATE_LIMITED" in result.error


@pytest.mark.asyncio
async def test_missing_credentials_produce_error_result(openrouter, sleep):
    gemini = FakeAdapter(PROVIDER_GOOGLE, default=answer_json("x"), api_key=None)
    adapters = {PROVIDER_GOOGLE: gemini, PROVIDER_OPENROUTER: openrouter}
    orchestrator = PromptOrchestrator(adapters, HealthMonitor(adapters), sleep=sleep)

    result = await run(orchestrator)

    assert gemini.calls == []
    assert "AUTH_MISSING" in result.error
    assert result.score == 0


@pytest.mark.asyncio
async def test_multi_provider_merges_citations(orchestrator, gemini, openrouter):
    gemini.default = answer_json("Gemini answer", ["https://example.com/a", "https://other.org"])
    openrouter.outcomes[SHERLOCK_DASH] = [answer_json("OR answer", ["https://example.com/a", "https://example.com/b"])]
    openrouter.outcomes[MISTRAL] = [ProviderError(ProviderErrorKind.PERMANENT, "gone", provider=PROVIDER_OPENROUTER)]

    result = await run(orchestrator, RunMode.MULTI_PROVIDER)

    assert result.error is None
    assert result.score == 3
    assert result.citations == ["https://example.com/a", "https://example.com/b"]
    assert result.parsed_response.citations == [
        "https://example.com/a", "https://other.org", "https://example.com/b",
    ]
    assert result.parsed_response.description == "Gemini answer"
    assert [(b.branch, b.success) for b in result.provider_results] == [
        ("gemini", True), ("openrouter1", True), ("openrouter2", False),
    ]
    assert result.provider_results[2].model_id == MISTRAL
    assert result.tokens_used > 0


@pytest.mark.asyncio
async def test_multi_provider_primary_falls_back_to_openrouter(orchestrator, gemini, openrouter):
    gemini.default = rate_limited()
    openrouter.outcomes[SHERLOCK_DASH] = [answer_json("Try example dot com first. It is good.", mentions=True)]
    openrouter.outcomes[MISTRAL] = [answer_json("Unrelated")]

    result = await run(orchestrator, RunMode.MULTI_PROVIDER)

    assert result.parsed_response.description == "Try example dot com first. It is good."
    assert result.domain_mentioned is True
    assert result.score == 2.5
    assert result.provider_results[0].success is False


@pytest.mark.asyncio
async def test_multi_provider_all_failed(orchestrator, gemini, openrouter):
    gemini.default = rate_limited()
    openrouter.default = rate_limited(PROVIDER_OPENROUTER)

    result = await run(orchestrator, RunMode.MULTI_PROVIDER)

    assert result.score == 0
    assert result.error.startswith("All providers failed")
    assert all(not b.success for b in result.provider_results)


@pytest.mark.asyncio
async def test_unparsed_primary_falls_back_to_text_urls(orchestrator, gemini, openrouter):
    gemini.default = "Plain text mentioning https://example.com/page"
    openrouter.default = answer_json("nothing")

    result = await run(orchestrator, RunMode.MULTI_PROVIDER)

    assert result.parsed_response is None
    assert result.citations == ["https://example.com/page"]
    assert result.score == 3


@pytest.mark.asyncio
async def test_selection_skips_unhealthy_models(gemini, openrouter, sleep):
    probe_openrouter = FakeAdapter(PROVIDER_OPENROUTER, outcomes={SHERLOCK_DASH: [transient(PROVIDER_OPENROUTER)]},
                                   default='{"status": "ok"}')
    probe_gemini = FakeAdapter(PROVIDER_GOOGLE, default='{"status": "ok"}')
    registry = {k: MODEL_REGISTRY[k] for k in (
        "gemini", "openrouter_sherlock_dash", "openrouter_mistral", "openrouter_sherlock_think",
    )}
    health = HealthMonitor({PROVIDER_GOOGLE: probe_gemini, PROVIDER_OPENROUTER: probe_openrouter}, registry=registry)
    await health.check_all()

    gemini.default = answer_json("g")
    openrouter.default = answer_json("o")
    orchestrator = PromptOrchestrator({PROVIDER_GOOGLE: gemini, PROVIDER_OPENROUTER: openrouter}, health, sleep=sleep)

    await run(orchestrator, RunMode.MULTI_PROVIDER)

    assert [c["model_id"] for c in openrouter.calls] == [MISTRAL, SHERLOCK_THINK]


def test_selection_uses_first_candidate_when_none_available(health):
    orchestrator = PromptOrchestrator({}, health)
    health.unknown_model_policy = UnknownModelPolicy.ASSUME_UNHEALTHY

    assert orchestrator.select_model(["openrouter_mistral", "openrouter_kat_coder"]) == "openrouter_mistral"
    assert orchestrator.select_models(["a", "b", "c"], 2) == ["a", "b"]


@pytest.mark.asyncio
async def test_zero_score_requests_recommendations(gemini, openrouter, health, sleep):
    gemini.outcomes[GEMINI] = [
        answer_json("I have never heard of this brand."),
        json.dumps({"recommendations": [
            {"title": "Publish an about page", "description": "Explain who you are", "priority": "high"},
        ]}),
    ]
    adapters = {PROVIDER_GOOGLE: gemini, PROVIDER_OPENROUTER: openrouter}
    orchestrator = PromptOrchestrator(
        adapters, health,
        recommendation_service=RecommendationService(gemini, model_id=GEMINI),
        sleep=sleep,
    )

    result = await run(orchestrator)

    assert result.score == 0
    assert [r.title for r in result.recommendations] == ["Publish an about page"]


@pytest.mark.asyncio
async def test_visible_answer_skips_recommendations(gemini, openrouter, health, sleep):
    gemini.default = answer_json("x", ["https://example.com"])
    recommender = FakeAdapter(PROVIDER_GOOGLE, default="{}")
    orchestrator = PromptOrchestrator(
        {PROVIDER_GOOGLE: gemini, PROVIDER_OPENROUTER: openrouter}, health,
        recommendation_service=RecommendationService(recommender),
        sleep=sleep,
    )

    result = await run(orchestrator)

    assert result.score == 3
    assert recommender.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", ['{"recommendations": null}', '{"recommendations": "none"}', "[1, 2]"])
async def test_odd_recommendation_payload_keeps_scored_result(gemini, openrouter, health, sleep, payload):
    gemini.outcomes[GEMINI] = [answer_json("Never heard of it."), payload]
    orchestrator = PromptOrchestrator(
        {PROVIDER_GOOGLE: gemini, PROVIDER_OPENROUTER: openrouter}, health,
        recommendation_service=RecommendationService(gemini, model_id=GEMINI),
        sleep=sleep,
    )

    result = await run(orchestrator)

    assert result.error is None
    assert result.score == 0
    assert result.response is not None
    assert result.recommendations == []


def test_parse_recommendations_ignores_non_list_values():
    assert parse_recommendations('{"recommendations": null}') == []
    assert parse_recommendations('{"recommendations": {"title": "x"}}') == []
    assert parse_recommendations("null") == []


@pytest.mark.asyncio
async def test_call_with_retry_reraises_last_error(gemini, health, sleep):
    gemini.default = transient()
    orchestrator = PromptOrchestrator({PROVIDER_GOOGLE: gemini}, health, max_attempts=2, sleep=sleep)

    with pytest.raises(ProviderError) as exc_info:
        await orchestrator.call_with_retry(gemini, GEMINI, "q")

    assert exc_info.value.kind == ProviderErrorKind.TRANSIENT
    assert len(gemini.calls) == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_single_attempt_does_not_sleep(gemini, health, sleep):
    gemini.default = transient()
    orchestrator = PromptOrchestrator({PROVIDER_GOOGLE: gemini}, health, max_attempts=1, sleep=sleep)

    result = await run(orchestrator)

    assert len(gemini.calls) == 1
    assert sleep.delays == []
    assert "TRANSIENT" in result.error
