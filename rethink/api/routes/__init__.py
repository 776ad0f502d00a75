"""API route registration.

Aggregates all API routers into a single router
for inclusion in the main application.
"""

from fastapi import APIRouter

from rethink.api.routes.chat import router as chat_router
from rethink.api.routes.keys import router as keys_router
from rethink.api.routes.system import router as system_router

api_router = APIRouter()

api_router.include_router(system_router, tags=["System"])
api_router.include_router(chat_router)
api_router.include_router(keys_router)
