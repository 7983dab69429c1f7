"""
Probe every registered model and print a health summary.
Run it with provider keys in the environment:
  python scripts/check_model_health.py
"""

import asyncio
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from visibility_engine.config import LOG_LEVEL, get_enabled_providers
from visibility_engine.visibility_run import VisibilityRunOrchestrator


async def check_models():
    """Run one health check and print the results grouped by status."""
    engine = VisibilityRunOrchestrator.from_config()
    try:
        print(f"Enabled providers: {', '.join(get_enabled_providers()) or 'none'}")
        results = await engine.health.check_all()
    finally:
        await engine.aclose()

    healthy = [key for key, record in results.items() if record.healthy]
    print(f"\nHealthy models: {len(healthy)}/{len(results)}")
    for key, record in results.items():
        descriptor = engine.health.registry[key]
        if record.healthy:
            print(f"  OK    {key:<30} {descriptor.name} ({record.response_time_ms}ms)")
        elif record.deprecated:
            print(f"  DEPR  {key:<30} {descriptor.name}")
        else:
            suffix = f" (retry after {record.retry_after_seconds}s)" if record.is_rate_limited else ""
            print(f"  FAIL  {key:<30} {record.error}{suffix}")
    return len(healthy)


if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper(), logging.WARNING))
    healthy_count = asyncio.run(check_models())
    sys.exit(0 if healthy_count else 1)
