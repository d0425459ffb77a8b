"""
API router aggregating all route modules.
"""

from fastapi import APIRouter

from rewards_ai.api.routes import chat, health

router = APIRouter()

# Include all route modules
router.include_router(health.router, prefix="/health", tags=["Health"])
router.include_router(chat.router, prefix="/chat", tags=["Chat"])
