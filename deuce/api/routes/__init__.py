"""
API routes - combined router from all domain modules.
"""

from fastapi import APIRouter

from deuce.api.routes.matches import router as matches_router
from deuce.api.routes.disputes import router as disputes_router
from deuce.api.routes.admin import router as admin_router
from deuce.api.routes.penalties import router as penalties_router
from deuce.api.routes.players import router as players_router

router = APIRouter()
router.include_router(matches_router)
router.include_router(disputes_router)
router.include_router(admin_router)
router.include_router(penalties_router)
router.include_router(players_router)
