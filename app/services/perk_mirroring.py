"""
Perk templates, their per-clinic customizations and the perks granted to cards.

Mirroring and granting are both set-difference based: only the missing
(clinic, template) or (card, perk_type) pairs are inserted, and the insert
itself ignores duplicates, so running either twice never creates a second row.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from postgrest.exceptions import APIError

from app.core.errors import (
    ConflictError,
    ForbiddenError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
    is_unique_violation,
)
from app.domain.actor import Actor
from app.domain.statuses import CardStatus, SyncComponent, effective_status, parse_timestamp
from app.repositories.card import CardRepository
from app.repositories.card_perk import CardPerkRepository
from app.repositories.clinic import ClinicRepository
from app.repositories.clinic_perk import ClinicPerkRepository
from app.repositories.perk_template import PerkTemplateRepository
from app.services.version_sync import bump_version

logger = logging.getLogger(__name__)

MIRROR_CHUNK = 1000


@dataclass
class MirrorResult:
    created: int
    already_present: int
    template_id: str | None = None
    clinic_id: str | None = None


def _customization_row(clinic_id: str, template: dict) -> dict:
    return {
        "clinic_id": clinic_id,
        "perk_template_id": template["id"],
        "custom_name": template["name"],
        "custom_description": template.get("description"),
        "custom_value": template.get("default_value", 0),
        "is_enabled": True,
        "requires_appointment": False,
        "max_redemptions_per_card": 1,
    }


def _insert_customizations(rows: list[dict]) -> int:
    created = 0
    for offset in range(0, len(rows), MIRROR_CHUNK):
        created += ClinicPerkRepository.insert_missing(rows[offset:offset + MIRROR_CHUNK])
    return created


# ============================================
# Mirroring
# ============================================

def mirror_template_to_all_clinics(template: dict | str) -> MirrorResult:
    """Create the missing customization row of `template` for every clinic."""
    if isinstance(template, str):
        template_id = template
        template = PerkTemplateRepository.get_by_id(template_id)
        if not template:
            raise NotFoundError("perk_template", template_id)

    clinic_ids = ClinicRepository.get_all_ids()
    existing = ClinicPerkRepository.get_clinic_ids_for_template(template["id"])
    rows = [_customization_row(clinic_id, template) for clinic_id in clinic_ids if clinic_id not in existing]

    created = _insert_customizations(rows)
    if created:
        logger.info(f"Mirrored perk template {template['perk_type']} to {created} clinics")
    return MirrorResult(
        created=created,
        already_present=len(clinic_ids) - len(rows),
        template_id=template["id"],
    )


def mirror_templates_to_clinic(clinic_id: str) -> MirrorResult:
    """Create the missing customization rows of every active template for one clinic."""
    if not ClinicRepository.get_by_id(clinic_id):
        raise NotFoundError("clinic", clinic_id)

    templates = PerkTemplateRepository.get_all(active_only=True)
    existing = {row["perk_template_id"] for row in ClinicPerkRepository.get_for_clinic(clinic_id)}
    rows = [_customization_row(clinic_id, t) for t in templates if t["id"] not in existing]

    created = _insert_customizations(rows)
    return MirrorResult(created=created, already_present=len(templates) - len(rows), clinic_id=clinic_id)


def grant_default_perks(card_id: str, expires_at: str | None = None) -> list[dict]:
    """Give a card one unclaimed perk per active default template it does not have yet."""
    templates = PerkTemplateRepository.get_active_defaults()
    granted = CardPerkRepository.get_granted_types(card_id)

    rows = [
        {
            "card_id": card_id,
            "perk_template_id": template["id"],
            "perk_type": template["perk_type"],
            "perk_value": template.get("default_value", 0),
            "claimed": False,
            "expires_at": expires_at,
        }
        for template in templates
        if template["perk_type"] not in granted
    ]
    return CardPerkRepository.grant(rows)


# ============================================
# Templates
# ============================================

def create_perk_template(
    name: str,
    perk_type: str,
    actor: Actor,
    default_value: float = 0,
    description: str | None = None,
    category: str | None = None,
    is_active: bool = True,
    is_default: bool = False,
) -> tuple[dict, MirrorResult | None]:
    """Create a template and, if it is active, mirror it to every clinic."""
    if not actor.is_admin:
        raise ForbiddenError("Only admins can create perk templates")
    if default_value < 0:
        raise ValidationError("default_value", "must not be negative", default_value)

    try:
        template = PerkTemplateRepository.create(
            name=name,
            perk_type=perk_type,
            default_value=default_value,
            description=description,
            category=category,
            is_active=is_active,
            is_default=is_default,
            created_by=actor.user_id,
        )
    except APIError as e:
        if is_unique_violation(e):
            raise ConflictError("perk_type", perk_type) from e
        raise
    if not template:
        raise RuntimeError("Failed to create perk template")

    mirror = mirror_template_to_all_clinics(template) if template.get("is_active") else None
    bump_version(SyncComponent.PERKS, f"Perk template {perk_type} created")
    return template, mirror


def _editable_template(template_id: str) -> dict:
    template = PerkTemplateRepository.get_by_id(template_id)
    if not template:
        raise NotFoundError("perk_template", template_id)
    if template.get("is_system_default"):
        raise ForbiddenError("System default perk templates cannot be changed or deleted")
    return template


def update_perk_template(template_id: str, actor: Actor, **changes) -> dict:
    if not actor.is_admin:
        raise ForbiddenError("Only admins can edit perk templates")
    template = _editable_template(template_id)

    changes = {key: value for key, value in changes.items() if value is not None}
    if not changes:
        return template
    changes["updated_at"] = datetime.now(timezone.utc).isoformat()

    updated = PerkTemplateRepository.update(template_id, **changes)
    if updated and updated.get("is_active") and not template.get("is_active"):
        mirror_template_to_all_clinics(updated)
    bump_version(SyncComponent.PERKS, f"Perk template {template['perk_type']} updated")
    return updated or template


def delete_perk_template(template_id: str, actor: Actor) -> bool:
    """Delete a template and its clinic customizations. Granted card perks are kept."""
    if not actor.is_admin:
        raise ForbiddenError("Only admins can delete perk templates")
    template = _editable_template(template_id)

    removed = ClinicPerkRepository.delete_for_template(template_id)
    deleted = PerkTemplateRepository.delete(template_id)
    logger.info(f"Deleted perk template {template['perk_type']} and {removed} customizations")
    bump_version(SyncComponent.PERKS, f"Perk template {template['perk_type']} deleted")
    return deleted


def update_customization(clinic_id: str, template_id: str, actor: Actor, **changes) -> dict:
    if not actor.owns(clinic_id):
        raise ForbiddenError("You can only customize your own clinic's perks")
    current = ClinicPerkRepository.get(clinic_id, template_id)
    if not current:
        raise NotFoundError("perk_customization", f"{clinic_id}/{template_id}")

    changes = {key: value for key, value in changes.items() if value is not None}
    if not changes:
        return current
    for key in ("valid_from", "valid_until"):
        if isinstance(changes.get(key), datetime):
            changes[key] = changes[key].isoformat()
    changes["updated_at"] = datetime.now(timezone.utc).isoformat()

    updated = ClinicPerkRepository.update(clinic_id, template_id, **changes)
    bump_version(SyncComponent.SETTINGS, f"Perk customization updated for clinic {clinic_id}")
    return updated or current


# ============================================
# Claiming
# ============================================

def claim_perk(card_id: str, perk_type: str, actor: Actor, now: datetime | None = None) -> dict:
    """Redeem one perk of an activated card at its clinic. A perk is claimed at most once."""
    now = now or datetime.now(timezone.utc)
    card = CardRepository.get_by_id(card_id)
    if not card:
        raise NotFoundError("card", card_id)

    status = effective_status(card, now)
    if status is CardStatus.EXPIRED:
        raise InvariantViolation(card_id, "card has expired")
    if status is not CardStatus.ACTIVATED:
        raise InvariantViolation(card_id, f"perks can only be claimed on activated cards, card is {status.value}")

    clinic_id = card["assigned_clinic_id"]
    if not actor.owns(clinic_id):
        raise ForbiddenError("Perks can only be claimed at the card's clinic")

    perk = CardPerkRepository.get(card_id, perk_type)
    if not perk:
        raise NotFoundError("perk", perk_type)
    if perk.get("claimed"):
        raise ConflictError("perk_type", perk_type, f"Perk {perk_type} was already claimed")

    if perk.get("perk_template_id"):
        customization = ClinicPerkRepository.get(clinic_id, perk["perk_template_id"])
        if customization:
            if not customization.get("is_enabled", True):
                raise ValidationError("perk_type", "is disabled at this clinic", perk_type)
            valid_from = parse_timestamp(customization.get("valid_from"))
            valid_until = parse_timestamp(customization.get("valid_until"))
            if (valid_from and now < valid_from) or (valid_until and now > valid_until):
                raise ValidationError("perk_type", "is outside its validity window at this clinic", perk_type)

    claimed = CardPerkRepository.claim(card_id, perk_type, clinic_id, now.isoformat())
    if not claimed:
        raise ConflictError("perk_type", perk_type, f"Perk {perk_type} was already claimed")

    bump_version(SyncComponent.CARDS, f"Perk {perk_type} claimed on card {card['card_number']}")
    return claimed
