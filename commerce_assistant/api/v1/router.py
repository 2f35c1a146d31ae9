"""API v1 router combining all route modules."""

from fastapi import APIRouter

from commerce_assistant.api.v1 import actions, chat, health

api_router = APIRouter()

# Include health check routes (no prefix)
api_router.include_router(health.router)

# Assistant turns (storefront widget, auth optional)
api_router.include_router(
    chat.router,
    prefix="/chat",
    tags=["chat"],
)

# Action catalog and direct invocation
api_router.include_router(
    actions.router,
    prefix="/actions",
    tags=["actions"],
)
