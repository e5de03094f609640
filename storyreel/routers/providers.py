"""
Providers Router
Read-only catalogue of registered video generation models.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..container import Services
from .jobs import get_services

router = APIRouter(prefix="/api/providers", tags=["providers"])


@router.get("")
async def list_providers(provider: Optional[str] = None, services: Services = Depends(get_services)):
    """List models, optionally only those of one provider ("fal" or "amazon")"""
    registry = services.registry
    models = registry.models_for_provider(provider) if provider else registry.list_models()
    return {"models": [m.summary() for m in models]}


@router.get("/{model_id}")
async def get_provider(model_id: str, services: Services = Depends(get_services)):
    return services.registry.get_model(model_id).summary()
