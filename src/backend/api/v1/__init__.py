"""
API v1 router aggregating all endpoints.
"""

from fastapi import APIRouter

from api.v1.admin_elections import router as admin_router
from api.v1.elections import router as elections_router
from api.v1.results import router as results_router
from api.v1.verification import router as verification_router
from api.v1.votes import router as votes_router

router = APIRouter()

router.include_router(elections_router, prefix="/elections", tags=["Elections"])
router.include_router(votes_router, prefix="/votes", tags=["Votes"])
router.include_router(results_router, prefix="/results", tags=["Results"])
router.include_router(verification_router, prefix="/verification", tags=["Verification"])
router.include_router(admin_router, prefix="/admin", tags=["Administration"])
