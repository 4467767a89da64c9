"""Inventory routes package — assembles all sub-routers."""

from fastapi import APIRouter
from .spoolman import router as spoolman_router
from .locations import router as locations_router

router = APIRouter()
router.include_router(spoolman_router)
router.include_router(locations_router)
