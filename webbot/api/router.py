"""Central API router that aggregates all route modules."""

from fastapi import APIRouter

from webbot.api.chat import router as chat_router
from webbot.api.health import router as health_router

api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(chat_router, prefix="/chat", tags=["chat"])
