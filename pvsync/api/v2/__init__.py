"""API v2 router initialization."""

from fastapi import APIRouter

from pvsync.api.v2.images import router as images_router
from pvsync.api.v2.sync import router as sync_router

router = APIRouter()

router.include_router(images_router, prefix="/images", tags=["Images"])
router.include_router(sync_router, prefix="/sync", tags=["Sync"])
