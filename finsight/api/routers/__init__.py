"""API sub-routers assembled into a single api_router."""

from fastapi import APIRouter

from finsight.api.routers.health import router as health_router
from finsight.api.routers.prompts import router as prompts_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(prompts_router, prefix="/prompts", tags=["prompts"])
