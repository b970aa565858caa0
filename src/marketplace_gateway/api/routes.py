"""
Marketplace Gateway API Routes
Gateway-owned endpoints; marketplace routes are served downstream
"""
import logging

from fastapi import APIRouter

from marketplace_gateway.core.config import get_settings

logger = logging.getLogger(__name__)

# Create API router
router = APIRouter()


@router.get("/health",
           summary="Health Check",
           description="Check if the gateway is running and healthy")
async def health_check():
    """Health check endpoint with basic system information"""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "marketplace-gateway",
        "version": "0.1.0",
        "environment": settings.DEPLOY_ENV,
        "rate_limiting": {
            "enabled": settings.ENABLE_RATE_LIMITING,
            "storage": settings.rate_limit_storage,
        },
    }
