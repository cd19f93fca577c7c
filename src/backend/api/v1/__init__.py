"""
API v1 router aggregating all endpoints.
"""

from fastapi import APIRouter

from api.v1.admin_polls import router as admin_polls_router
from api.v1.polls import router as polls_router
from api.v1.votes import router as votes_router

router = APIRouter()

router.include_router(polls_router, prefix="/polls", tags=["Polls"])
router.include_router(votes_router, prefix="/votes", tags=["Votes"])
router.include_router(admin_polls_router, prefix="/admin/polls", tags=["Admin - Polls"])
