from fastapi import APIRouter, Depends

from app.core.errors import ForbiddenError
from app.core.permissions import require_admin, require_portal_access
from app.domain.actor import Actor
from app.domain.schemas import (
    CustomizationResponse,
    CustomizationUpdate,
    MirrorResponse,
    PerkTemplateCreate,
    PerkTemplateCreated,
    PerkTemplateResponse,
    PerkTemplateUpdate,
)
from app.repositories.clinic_perk import ClinicPerkRepository
from app.repositories.perk_template import PerkTemplateRepository
from app.services import perk_mirroring

router = APIRouter()


@router.post("/templates", response_model=PerkTemplateCreated, status_code=201)
def create_template(data: PerkTemplateCreate, actor: Actor = Depends(require_admin)):
    """Create a perk template. Active templates are mirrored to every clinic."""
    template, mirror = perk_mirroring.create_perk_template(
        name=data.name,
        perk_type=data.perk_type,
        actor=actor,
        default_value=data.default_value,
        description=data.description,
        category=data.category,
        is_active=data.is_active,
        is_default=data.is_default,
    )
    return PerkTemplateCreated(
        template=template,
        mirror=MirrorResponse(**vars(mirror)) if mirror else None,
    )


@router.get("/templates", response_model=list[PerkTemplateResponse])
def list_templates(active_only: bool = False, actor: Actor = Depends(require_portal_access)):
    return PerkTemplateRepository.get_all(active_only=active_only)


@router.patch("/templates/{template_id}", response_model=PerkTemplateResponse)
def update_template(template_id: str, data: PerkTemplateUpdate, actor: Actor = Depends(require_admin)):
    return perk_mirroring.update_perk_template(template_id, actor, **data.model_dump(exclude_unset=True))


@router.delete("/templates/{template_id}")
def delete_template(template_id: str, actor: Actor = Depends(require_admin)):
    return {"deleted": perk_mirroring.delete_perk_template(template_id, actor)}


@router.post("/templates/{template_id}/mirror", response_model=MirrorResponse)
def mirror_template(template_id: str, actor: Actor = Depends(require_admin)):
    """Fill in customizations missing for any clinic. Safe to repeat."""
    return vars(perk_mirroring.mirror_template_to_all_clinics(template_id))


@router.get("/customizations/{clinic_id}", response_model=list[CustomizationResponse])
def list_customizations(clinic_id: str, actor: Actor = Depends(require_portal_access)):
    if not actor.owns(clinic_id):
        raise ForbiddenError("You can only view your own clinic's perks")
    return ClinicPerkRepository.get_for_clinic(clinic_id)


@router.patch("/customizations/{clinic_id}/{template_id}", response_model=CustomizationResponse)
def update_customization(
    clinic_id: str,
    template_id: str,
    data: CustomizationUpdate,
    actor: Actor = Depends(require_portal_access),
):
    return perk_mirroring.update_customization(
        clinic_id, template_id, actor, **data.model_dump(exclude_unset=True)
    )


@router.post("/clinics/{clinic_id}/mirror", response_model=MirrorResponse)
def mirror_to_clinic(clinic_id: str, actor: Actor = Depends(require_admin)):
    return vars(perk_mirroring.mirror_templates_to_clinic(clinic_id))
