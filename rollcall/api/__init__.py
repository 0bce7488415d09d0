"""API v1 router initialization."""
from fastapi import APIRouter

from .attendance import router as attendance_router

# Create v1 router
router = APIRouter()

router.include_router(attendance_router)
