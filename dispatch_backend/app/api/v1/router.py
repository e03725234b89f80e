"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from dispatch_backend.app.api.v1.endpoints import dispatch

router = APIRouter()

# Dispatch & batching endpoints
router.include_router(dispatch.router)
