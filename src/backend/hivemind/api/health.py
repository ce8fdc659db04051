"""Health check and model catalog endpoints."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from hivemind.config import settings
from hivemind.services.model_client import ModelInvoker

logger = logging.getLogger(__name__)
router = APIRouter()


def get_invoker(request: Request) -> ModelInvoker:
    return request.app.state.invoker


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
    }


@router.get("/models")
async def list_models(request: Request):
    """Describe the worker pool and master evaluator, probing the endpoint first."""
    invoker = get_invoker(request)
    available = await invoker.check_availability()

    models = [
        {
            "name": "Workers",
            "provider": settings.model_provider,
            "available": available,
            "description": f"{settings.num_workers} workers with randomized parameters",
            "endpoint": invoker.chat_url,
            "model": invoker.model_id,
        },
        {
            "name": "Master Evaluator",
            "provider": settings.model_provider,
            "available": available,
            "description": "Master model for response evaluation and ranking",
            "endpoint": invoker.chat_url,
            "model": invoker.model_id,
        },
    ]
    return {
        "models": models,
        "system": f"{settings.app_name} with {invoker.model_id}",
        "workers": settings.num_workers,
        "model_available": available,
    }


@router.get("/model/health")
async def model_health(request: Request):
    """200 when the model endpoint answers its model list, 503 otherwise."""
    invoker = get_invoker(request)
    available = await invoker.check_availability()
    status = {
        "model_available": available,
        "endpoint": invoker.chat_url,
        "model": invoker.model_id,
        "workers": settings.num_workers,
    }
    if not available:
        logger.warning(f"Model endpoint unavailable: {invoker.models_url}")
    return JSONResponse(status_code=200 if available else 503, content=status)
