"""
Model Health Monitor.
Probes every registered model and tracks which ones are currently usable.

The cache lives on a HealthMonitor instance (no module-level state), so each
application or test owns its own. There is no TTL: a record is as fresh as
the last check_all() call, which runs at startup (unless
SKIP_MODEL_HEALTH_CHECK is set), from the admin endpoint and from
scripts/check_model_health.py. Stale records between checks are expected.

check_all() builds a fresh dict and swaps it in whole, so readers during an
in-flight check see either the previous map or the new one.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from visibility_engine.config import HEALTH_PROBE_TIMEOUT_MS
from visibility_engine.errors import ProviderError, ProviderErrorKind
from visibility_engine.model_registry import MODEL_REGISTRY, ModelAliasTable
from visibility_engine.provider_base import ProviderAdapter
from visibility_engine.visibility_models import (
    HealthRecord,
    HealthSnapshot,
    HealthyModel,
    ModelDescriptor,
)

logger = logging.getLogger(__name__)


class UnknownModelPolicy(str, Enum):
    """What is_healthy() answers for a model that has never been probed."""

    # Optimistic: avoids a cold-start deadlock before the first check_all().
    # A provider that is down stays hidden until its first probe.
    ASSUME_HEALTHY = "assume_healthy"
    ASSUME_UNHEALTHY = "assume_unhealthy"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthMonitor:
    """Process-wide model health cache with on-demand probing."""

    def __init__(
        self,
        adapters: Dict[str, ProviderAdapter],
        registry: Optional[Dict[str, ModelDescriptor]] = None,
        unknown_model_policy: UnknownModelPolicy = UnknownModelPolicy.ASSUME_HEALTHY,
        probe_timeout_ms: int = HEALTH_PROBE_TIMEOUT_MS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.adapters = adapters
        self.registry = dict(registry if registry is not None else MODEL_REGISTRY)
        self.aliases = ModelAliasTable(self.registry)
        self.unknown_model_policy = unknown_model_policy
        self.probe_timeout_ms = probe_timeout_ms
        self._clock = clock
        self._records: Dict[str, HealthRecord] = {}
        self._last_checked_at: Optional[datetime] = None

    @property
    def last_checked_at(self) -> Optional[datetime]:
        return self._last_checked_at

    async def probe(self, descriptor: ModelDescriptor) -> HealthRecord:
        """Send the model's canned probe input and classify the outcome."""
        now = self._clock()
        if descriptor.deprecated:
            return HealthRecord(healthy=False, last_checked_at=now, error="Model deprecated", deprecated=True)

        adapter = self.adapters.get(descriptor.provider)
        if adapter is None:
            return HealthRecord(
                healthy=False,
                last_checked_at=now,
                error=f"No adapter registered for provider {descriptor.provider}",
            )
        if not adapter.enabled:
            return HealthRecord(healthy=False, last_checked_at=now, error="API key not configured")

        started = time.perf_counter()
        try:
            await adapter.invoke(
                descriptor.name,
                descriptor.probe_input,
                self.probe_timeout_ms,
                max_output_tokens=50,
            )
        except ProviderError as e:
            if e.status_code != 200:
                is_rate_limited = e.kind == ProviderErrorKind.RATE_LIMITED
                return HealthRecord(
                    healthy=False,
                    last_checked_at=self._clock(),
                    error=e.message,
                    is_rate_limited=is_rate_limited,
                    retry_after_seconds=e.retry_after if is_rate_limited else None,
                    status_code=e.status_code,
                    deprecated=e.deprecated,
                )
            # Answered 200 with no text (probe token cap spent on reasoning).
            logger.info("[HEALTH]   %s answered with no text; counting as healthy", descriptor.name)
        except Exception as e:
            logger.exception("[HEALTH] Unexpected error probing %s", descriptor.name)
            return HealthRecord(healthy=False, last_checked_at=self._clock(), error=str(e) or type(e).__name__)

        return HealthRecord(
            healthy=True,
            last_checked_at=self._clock(),
            response_time_ms=int((time.perf_counter() - started) * 1000),
        )

    async def check_all(self) -> Dict[str, HealthRecord]:
        """
        Probe every registered model and replace the cache with the results.

        Deprecated models and providers without credentials are recorded as
        unhealthy without a network call. Never raises.
        """
        logger.info("[HEALTH] Starting model health check...")
        results: Dict[str, HealthRecord] = {}
        for key, descriptor in self.registry.items():
            if not descriptor.deprecated:
                logger.info("[HEALTH]   Testing %s (%s)...", key, descriptor.name)
            results[key] = await self.probe(descriptor)

        self._records = results
        self._last_checked_at = self._clock()

        healthy_count = sum(1 for r in results.values() if r.healthy)
        logger.info("[HEALTH] Health check complete: %d/%d models healthy", healthy_count, len(results))
        for key, record in results.items():
            if record.healthy:
                logger.info("[HEALTH]   OK %s (%sms)", key, record.response_time_ms)
            else:
                logger.info(
                    "[HEALTH]   FAIL %s: %s%s",
                    key, record.error, " (Rate Limited)" if record.is_rate_limited else ""
                )
        return dict(results)

    def get_record(self, model_ref: str) -> Optional[HealthRecord]:
        records = self._records
        if model_ref in records:
            return records[model_ref]
        key = self.aliases.resolve_key(model_ref)
        if key is not None:
            return records.get(key)
        return None

    def is_healthy(self, model_ref: str) -> bool:
        """
        Resolution order: exact registry key, alias (full model name), then
        the unknown-model policy for models that were never probed.
        """
        record = self.get_record(model_ref)
        if record is not None:
            return record.healthy
        return self.unknown_model_policy == UnknownModelPolicy.ASSUME_HEALTHY

    def is_available(self, model_ref: str, now: Optional[datetime] = None) -> bool:
        """Healthy, or rate limited with its retry-after window already elapsed."""
        record = self.get_record(model_ref)
        if record is None:
            return self.unknown_model_policy == UnknownModelPolicy.ASSUME_HEALTHY
        if record.healthy:
            return True
        if record.is_rate_limited and record.retry_after_seconds is not None:
            now = now or self._clock()
            return now >= record.last_checked_at + timedelta(seconds=record.retry_after_seconds)
        return False

    def get_healthy(self, provider: Optional[str] = None) -> List[HealthyModel]:
        """Healthy models in probe-map insertion order; callers apply their own priority."""
        healthy = []
        for key, record in list(self._records.items()):
            if not record.healthy:
                continue
            descriptor = self.registry.get(key)
            if provider and (descriptor is None or descriptor.provider != provider):
                continue
            healthy.append(HealthyModel(key=key, descriptor=descriptor, record=record))
        return healthy

    def snapshot(self) -> HealthSnapshot:
        return HealthSnapshot(last_checked_at=self._last_checked_at, models=dict(self._records))
