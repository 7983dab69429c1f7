"""
Model registry for the visibility engine.
Every upstream model the engine knows about, plus the alias table that
reconciles short registry keys with provider-qualified model names.
"""

from typing import Dict, List, Optional

from visibility_engine.config import GEMINI_MODEL
from visibility_engine.visibility_models import ModelDescriptor


PROVIDER_GOOGLE = "google"
PROVIDER_OPENROUTER = "openrouter"
PROVIDER_HUGGINGFACE = "huggingface"

HEALTH_PROBE_INPUT = 'Say "OK" in JSON format: {"status": "ok"}'


def _model(key: str, name: str, provider: str, deprecated: bool = False) -> ModelDescriptor:
    return ModelDescriptor(
        key=key,
        name=name,
        provider=provider,
        deprecated=deprecated,
        probe_input=HEALTH_PROBE_INPUT,
    )


# Deprecated entries stay registered so health reports show them as unavailable.
MODEL_REGISTRY: Dict[str, ModelDescriptor] = {
    m.key: m for m in [
        _model("gemini", GEMINI_MODEL, PROVIDER_GOOGLE),
        _model("gemini_exp", "google/gemini-2.0-flash-exp:free", PROVIDER_OPENROUTER, deprecated=True),
        _model("huggingface_qwen", "Qwen/Qwen2.5-7B-Instruct", PROVIDER_HUGGINGFACE, deprecated=True),
        _model("huggingface_gemma", "google/gemma-2-9b-it", PROVIDER_HUGGINGFACE, deprecated=True),
        _model("huggingface_llama", "meta-llama/Llama-3.1-8B-Instruct", PROVIDER_HUGGINGFACE, deprecated=True),
        _model("huggingface_mistral_7b", "mistralai/Mistral-7B-Instruct-v0.3", PROVIDER_HUGGINGFACE, deprecated=True),
        _model("huggingface_mixtral", "mistralai/Mixtral-8x7B-Instruct-v0.1", PROVIDER_HUGGINGFACE, deprecated=True),
        _model("huggingface_bge", "BAAI/bge-large-en-v1.5", PROVIDER_HUGGINGFACE),
        _model("huggingface_flan_t5", "google/flan-t5-base", PROVIDER_HUGGINGFACE, deprecated=True),
        _model("openrouter_deepseek", "deepseek/deepseek-r1:free", PROVIDER_OPENROUTER, deprecated=True),
        _model("openrouter_mistral", "mistralai/mistral-7b-instruct:free", PROVIDER_OPENROUTER),
        _model("openrouter_qwen_coder", "qwen/qwen3-coder:free", PROVIDER_OPENROUTER, deprecated=True),
        _model("openrouter_deepseek_chimera", "tngtech/deepseek-r1t2-chimera:free", PROVIDER_OPENROUTER),
        _model("openrouter_sherlock_dash", "openrouter/sherlock-dash-alpha", PROVIDER_OPENROUTER),
        _model("openrouter_sherlock_think", "openrouter/sherlock-think-alpha", PROVIDER_OPENROUTER),
        _model("openrouter_kat_coder", "kwaipilot/kat-coder-pro:free", PROVIDER_OPENROUTER),
    ]
}

# Candidate order used when picking models for an analysis call.
GEMINI_PRIORITY: List[str] = ["gemini"]

OPENROUTER_PRIORITY: List[str] = [
    "openrouter_sherlock_dash",
    "openrouter_mistral",
    "openrouter_sherlock_think",
    "openrouter_kat_coder",
]


class ModelAliasTable:
    """
    Bidirectional lookup between registry keys and provider-qualified names.

    Built once from a registry. Name lookups are case-insensitive; keys are
    matched exactly first and then case-insensitively.
    """

    def __init__(self, registry: Dict[str, ModelDescriptor]):
        self._registry = dict(registry)
        self._key_by_name: Dict[str, str] = {}
        self._key_by_folded_key: Dict[str, str] = {}
        for key, descriptor in self._registry.items():
            self._key_by_name.setdefault(descriptor.name.lower(), key)
            self._key_by_folded_key.setdefault(key.lower(), key)

    def resolve_key(self, model_ref: str) -> Optional[str]:
        """Registry key for a key or a full model name, or None if unknown."""
        if not model_ref:
            return None
        if model_ref in self._registry:
            return model_ref
        folded = model_ref.lower()
        return self._key_by_folded_key.get(folded) or self._key_by_name.get(folded)

    def name_for(self, model_ref: str) -> Optional[str]:
        key = self.resolve_key(model_ref)
        return self._registry[key].name if key else None
