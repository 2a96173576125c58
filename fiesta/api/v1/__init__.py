"""Versioned API router."""

from fastapi import APIRouter

from . import admin, auth, disputes, health, internal, matches, users, wallet

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(wallet.router, prefix="/wallet", tags=["wallet"])
router.include_router(internal.router, prefix="/internal", tags=["internal"])
router.include_router(matches.router, prefix="/matches", tags=["matches"])
router.include_router(disputes.router, prefix="/disputes", tags=["disputes"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])

__all__ = ["router"]
