"""
AI Visibility Engine
FastAPI application exposing visibility analysis and model health diagnostics.
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from visibility_engine.config import LOG_LEVEL, SKIP_MODEL_HEALTH_CHECK, get_enabled_providers
from visibility_engine.errors import InvalidURLError
from visibility_engine.visibility_models import BusinessContext, HealthSnapshot
from visibility_engine.visibility_run import VisibilityRunOrchestrator

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="AI Visibility Engine")

ENGINE: Optional[VisibilityRunOrchestrator] = None


class AnalyzeRequest(BaseModel):
    url: str
    is_elevated_tier: bool = False
    business_context: Optional[BusinessContext] = None


def get_engine() -> VisibilityRunOrchestrator:
    global ENGINE
    if ENGINE is None:
        ENGINE = VisibilityRunOrchestrator.from_config()
    return ENGINE


async def check_all_model_health():
    """Re-probe every registered model on the app's health monitor."""
    return await get_engine().health.check_all()


def get_health_snapshot() -> HealthSnapshot:
    return get_engine().health.snapshot()


@app.on_event("startup")
async def startup():
    logger.info("[STARTUP] Enabled providers: %s", get_enabled_providers())
    get_engine()
    if SKIP_MODEL_HEALTH_CHECK:
        logger.info("[STARTUP] Skipping model health check (SKIP_MODEL_HEALTH_CHECK)")
        return
    await check_all_model_health()


@app.on_event("shutdown")
async def shutdown():
    if ENGINE is not None:
        await ENGINE.aclose()


@app.get("/health")
async def health():
    return {"status": "ok", "providers": get_enabled_providers()}


@app.get("/api/health/models")
async def model_health(refresh: bool = False):
    """Cached model health; `?refresh=true` re-probes every model first."""
    engine = get_engine()
    if refresh:
        await check_all_model_health()

    snapshot = get_health_snapshot()
    healthy = engine.health.get_healthy()
    return {
        "last_checked_at": snapshot.last_checked_at.isoformat() if snapshot.last_checked_at else None,
        "healthy_count": len(healthy),
        "total_count": len(snapshot.models),
        "healthy_models": [m.key for m in healthy],
        "models": {key: record.model_dump(mode="json") for key, record in snapshot.models.items()},
    }


@app.post("/api/analyze")
async def analyze(payload: AnalyzeRequest):
    """
    Run a visibility analysis for a URL.
    Authentication and quota checks live in front of this service.
    """
    try:
        report = await get_engine().run_visibility_analysis(
            payload.url,
            is_elevated_tier=payload.is_elevated_tier,
            business_context=payload.business_context,
        )
    except InvalidURLError as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=400)

    return {"success": True, "report": report.model_dump(mode="json")}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=5000)
