"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from helpmatch.app.api.v1.endpoints import matching, notifications

router = APIRouter()

# Matching engine
router.include_router(matching.router)

# In-app match notifications
router.include_router(notifications.router)
