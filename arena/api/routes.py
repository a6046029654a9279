"""API router aggregating all route modules."""

from fastapi import APIRouter

from arena.api.events import router as events_router
from arena.api.jobs import router as jobs_router
from arena.api.rooms import router as rooms_router

router = APIRouter()

# Include all sub-routers
router.include_router(rooms_router, tags=["Rooms"])
router.include_router(jobs_router, tags=["Jobs"])
router.include_router(events_router, tags=["Events"])
