import logging

from postgrest.exceptions import APIError

from app.core.errors import ConflictError, ForbiddenError, is_unique_violation
from app.domain.actor import Actor
from app.domain.statuses import SyncComponent
from app.repositories.clinic import ClinicRepository
from app.services.perk_mirroring import MirrorResult, mirror_templates_to_clinic
from app.services.version_sync import bump_version

logger = logging.getLogger(__name__)


def create_clinic(
    clinic_name: str,
    clinic_code: str,
    actor: Actor,
    region_code: str | None = None,
) -> tuple[dict, MirrorResult]:
    """Create a clinic and give it a customization row for every active perk template."""
    if not actor.is_admin:
        raise ForbiddenError("Only admins can create clinics")

    clinic_code = clinic_code.strip().upper()
    try:
        clinic = ClinicRepository.create(
            clinic_name=clinic_name.strip(),
            clinic_code=clinic_code,
            region_code=region_code.strip().upper() if region_code else None,
        )
    except APIError as e:
        if is_unique_violation(e):
            raise ConflictError("clinic_code", clinic_code) from e
        raise
    if not clinic:
        raise RuntimeError("Failed to create clinic")

    mirror = mirror_templates_to_clinic(clinic["id"])
    bump_version(SyncComponent.CLINICS, f"Clinic {clinic_code} created")
    logger.info(f"Created clinic {clinic_code} with {mirror.created} perk customizations")
    return clinic, mirror
