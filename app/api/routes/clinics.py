from fastapi import APIRouter, Depends

from app.core.errors import ForbiddenError, NotFoundError
from app.core.permissions import require_admin, require_portal_access
from app.domain.actor import Actor
from app.domain.schemas import ClinicCreate, ClinicCreated, ClinicResponse
from app.repositories.clinic import ClinicRepository
from app.services.clinics import create_clinic

router = APIRouter()


@router.post("", response_model=ClinicCreated, status_code=201)
def create(data: ClinicCreate, actor: Actor = Depends(require_admin)):
    clinic, mirror = create_clinic(data.clinic_name, data.clinic_code, actor, region_code=data.region_code)
    return ClinicCreated(clinic=clinic, perks_mirrored=mirror.created)


@router.get("", response_model=list[ClinicResponse])
def list_clinics(actor: Actor = Depends(require_admin)):
    return ClinicRepository.get_all()


@router.get("/{clinic_id}", response_model=ClinicResponse)
def get_clinic(clinic_id: str, actor: Actor = Depends(require_portal_access)):
    if not actor.owns(clinic_id):
        raise ForbiddenError("You can only view your own clinic")
    clinic = ClinicRepository.get_by_id(clinic_id)
    if not clinic:
        raise NotFoundError("clinic", clinic_id)
    return clinic
