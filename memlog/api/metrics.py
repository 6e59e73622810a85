from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from memlog.config import get_settings
from memlog.db.models import User
from memlog.observability.metrics import get_metrics
from memlog.services.auth_dependencies import require_admin


router = APIRouter(prefix="/api", tags=["metrics"])


@router.get("/metrics")
async def metrics(user: User = Depends(require_admin)) -> dict:
    _ = user  # admin gate
    settings = get_settings()
    if not settings.enable_metrics_endpoint:
        raise HTTPException(status_code=404, detail="Not found")
    return get_metrics().snapshot()
