from fastapi import APIRouter, Depends, Query, Request

from app.core.permissions import require_portal_access
from app.domain.actor import Actor
from app.domain.schemas import SystemVersionResponse, UpdateNotification
from app.repositories.system_version import SystemVersionRepository

router = APIRouter()


@router.get("", response_model=list[SystemVersionResponse])
def list_versions(actor: Actor = Depends(require_portal_access)):
    """Current version of every component. Clients poll this and diff."""
    return SystemVersionRepository.get_all()


@router.get("/notifications", response_model=list[UpdateNotification])
def recent_notifications(
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
    actor: Actor = Depends(require_portal_access),
):
    """Changes this server's reconciler has observed, newest first."""
    reconciler = getattr(request.app.state, "reconciler", None)
    return reconciler.recent(limit) if reconciler else []
