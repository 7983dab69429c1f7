"""
Configuration module for the visibility engine.
Centralizes environment variable access and feature flags.
"""

import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_ENABLED = bool(GEMINI_API_KEY)

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
OPENROUTER_ENABLED = bool(OPENROUTER_API_KEY)

HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")
HUGGINGFACE_ROUTER_BASE = os.getenv("HUGGINGFACE_ROUTER_BASE", "https://router.huggingface.co")
HUGGINGFACE_ENABLED = bool(HUGGINGFACE_API_KEY)

APP_URL = os.getenv("APP_URL", "http://localhost:5000")
APP_TITLE = os.getenv("APP_TITLE", "AI Visibility Engine")

SKIP_MODEL_HEALTH_CHECK = _env_flag("SKIP_MODEL_HEALTH_CHECK")
DEBUG_MODELS = _env_flag("DEBUG_MODELS")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LLM_REQUEST_TIMEOUT_MS = int(os.getenv("LLM_REQUEST_TIMEOUT_MS", "30000"))
HEALTH_PROBE_TIMEOUT_MS = int(os.getenv("HEALTH_PROBE_TIMEOUT_MS", "15000"))

INTER_PROMPT_DELAY_SECONDS = float(os.getenv("INTER_PROMPT_DELAY_SECONDS", "0.5"))
MAX_PROVIDER_ATTEMPTS = int(os.getenv("MAX_PROVIDER_ATTEMPTS", "3"))
RETRY_BASE_DELAY_SECONDS = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "1.0"))
RATE_LIMIT_RETRY_AFTER_SECONDS = 60

# Rough Gemini Flash list price, used for the report estimate only.
COST_PER_1K_TOKENS = float(os.getenv("COST_PER_1K_TOKENS", "0.0005"))


def is_gemini_enabled() -> bool:
    """Check if the Gemini API key is configured."""
    return GEMINI_ENABLED


def is_openrouter_enabled() -> bool:
    """Check if the OpenRouter API key is configured."""
    return OPENROUTER_ENABLED


def is_huggingface_enabled() -> bool:
    """Check if the HuggingFace API key is configured."""
    return HUGGINGFACE_ENABLED


def get_enabled_providers() -> list:
    """Get list of providers with credentials configured."""
    providers = []
    if is_gemini_enabled():
        providers.append("google")
    if is_openrouter_enabled():
        providers.append("openrouter")
    if is_huggingface_enabled():
        providers.append("huggingface")
    return providers
