from fastapi import APIRouter

from .routes import (
    batches,
    cards,
    clinics,
    dashboard,
    drafts,
    health,
    perks,
    public,
    versions,
)

api_router = APIRouter()

# Health check
api_router.include_router(health.router, tags=["health"])

# Admin: card program setup
api_router.include_router(clinics.router, prefix="/clinics", tags=["clinics"])
api_router.include_router(batches.router, prefix="/batches", tags=["batches"])
api_router.include_router(perks.router, prefix="/perks", tags=["perks"])

# Admin and clinic portals
api_router.include_router(cards.router, prefix="/cards", tags=["cards"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])

# Cross-session sync
api_router.include_router(versions.router, prefix="/versions", tags=["versions"])
api_router.include_router(drafts.router, prefix="/drafts", tags=["drafts"])

# Patient portal (no auth required)
api_router.include_router(public.router, prefix="/public", tags=["public"])
