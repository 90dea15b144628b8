from fastapi import APIRouter, Depends

from app.core.permissions import require_portal_access
from app.domain.actor import Actor
from app.domain.schemas import DashboardResponse
from app.services.dashboard import get_dashboard_summary

router = APIRouter()


@router.get("", response_model=DashboardResponse)
def dashboard(actor: Actor = Depends(require_portal_access)):
    """Program-wide counts for admins, card counts of their own clinic for clinics."""
    return get_dashboard_summary(clinic_id=None if actor.is_admin else actor.clinic_id)
