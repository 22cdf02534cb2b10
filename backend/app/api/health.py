"""Health check endpoint — database, schema version, LLM key status."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from app.config import settings

router = APIRouter()

VERSION = "0.3.0"


class HealthStatus(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    version: str
    checks: dict[str, dict]
    dependencies: dict[str, str]  # Simplified view for frontend
    timestamp: datetime


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """Check the database, the detected schema and the LLM configuration."""
    checks: dict[str, dict] = {}
    overall_healthy = True
    has_warning = False

    # 1. LLM API key
    api_key = settings.anthropic_api_key
    if api_key == "test":
        checks["llm_api"] = {"status": "ok", "detail": "test mode"}
    elif api_key:
        checks["llm_api"] = {"status": "ok", "detail": "API key configured"}
    else:
        checks["llm_api"] = {"status": "warning", "detail": "ANTHROPIC_API_KEY not set (report and graph rebuild unavailable)"}
        has_warning = True

    # 2. Database + schema version
    try:
        from app.db.database import detect_schema, engine
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        checks["database"] = {"status": "ok", "detail": engine.dialect.name}
        caps = detect_schema(engine)
        if caps.version >= 2:
            checks["schema"] = {"status": "ok", "detail": f"v{caps.version}"}
        else:
            checks["schema"] = {"status": "warning", "detail": f"v{caps.version} (curation and events disabled)"}
            has_warning = True
    except Exception as e:
        checks["database"] = {"status": "error", "detail": str(e)[:200]}
        overall_healthy = False

    dependencies = {name: check["status"] for name, check in checks.items()}
    if not overall_healthy:
        status = "unhealthy"
    elif has_warning:
        status = "degraded"
    else:
        status = "healthy"

    return HealthStatus(
        status=status,
        version=VERSION,
        checks=checks,
        dependencies=dependencies,
        timestamp=datetime.now(timezone.utc),
    )
