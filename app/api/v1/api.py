"""
API v1 router.
"""
from fastapi import APIRouter

from app.api.v1.endpoints import health
from app.integrations.router import router as integrations_router

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(integrations_router)
