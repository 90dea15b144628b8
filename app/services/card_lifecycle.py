"""
Card lifecycle state machine.

    unassigned --assign--> assigned --activate--> activated --deactivate--> suspended
                                                     ^                          |
                                                     +--------activate----------+
    any state --reset--> unassigned
    activated --(now > expires_at)--> expired   (derived on read, never written)

Assignment lives in app.services.assignment. Every transition here is checked
before any write, applied with a status-guarded update so a concurrent change
surfaces as ConflictError, and recorded in the card's history.
"""
import logging
from datetime import datetime, timedelta, timezone

from app.core.config import settings
from app.core.errors import ConflictError, ForbiddenError, InvariantViolation, NotFoundError, ValidationError
from app.domain.actor import Actor
from app.domain.card_codes import CLINIC_CODE_PATTERN, LOCATION_CODE_PATTERN, CardIdentifier
from app.domain.statuses import CardStatus, ClinicStatus, SyncComponent, parse_card_status, parse_clinic_status
from app.repositories.card import CardRepository
from app.repositories.card_perk import CardPerkRepository
from app.repositories.clinic import ClinicRepository
from app.repositories.history import AssignmentHistoryRepository, CardCodeHistoryRepository
from app.services.perk_mirroring import grant_default_perks
from app.services.version_sync import bump_version

logger = logging.getLogger(__name__)


def _get_card(card_id: str) -> dict:
    card = CardRepository.get_by_id(card_id)
    if not card:
        raise NotFoundError("card", card_id)
    return card


def _identifier_updates(identifier: CardIdentifier) -> dict:
    # card_number is immutable once stored
    columns = identifier.columns()
    columns.pop("card_number")
    return columns


def _code_fragment(value: str | None, pattern, field: str) -> str:
    if not value:
        raise ValidationError(field, "is required to activate a card")
    code = value.strip().upper()
    if not pattern.match(code):
        raise ValidationError(field, "has an invalid format", value)
    return code


def activate_card(
    card_id: str,
    actor: Actor,
    location_code: str | None = None,
    clinic_code: str | None = None,
    now: datetime | None = None,
) -> dict:
    """assigned|suspended -> activated.

    Attaches the location and clinic code fragments (falling back to the
    card's own and then the clinic's), sets the activation and expiry
    timestamps and grants the default perks the card does not have yet.
    """
    card = _get_card(card_id)
    status = parse_card_status(card.get("status"))

    if status is CardStatus.UNASSIGNED or not card.get("assigned_clinic_id"):
        raise InvariantViolation(card_id, "clinic required: assign the card before activating it", "assigned_clinic_id")
    if status is CardStatus.ACTIVATED:
        raise InvariantViolation(card_id, "card is already activated")

    clinic_id = card["assigned_clinic_id"]
    if not actor.owns(clinic_id):
        raise ForbiddenError("You can only activate cards assigned to your clinic")

    clinic = ClinicRepository.get_by_id(clinic_id)
    if not clinic:
        raise NotFoundError("clinic", clinic_id)
    if parse_clinic_status(clinic.get("status")) is not ClinicStatus.ACTIVE:
        raise ValidationError("assigned_clinic_id", "clinic is not active", clinic_id)

    location = _code_fragment(
        location_code or card.get("location_code") or clinic.get("region_code"),
        LOCATION_CODE_PATTERN, "location_code",
    )
    clinic_fragment = _code_fragment(
        clinic_code or card.get("clinic_code") or clinic.get("clinic_code"),
        CLINIC_CODE_PATTERN, "clinic_code",
    )

    now = now or datetime.now(timezone.utc)
    expires_at = (now + timedelta(days=settings.card_validity_days)).isoformat()
    before = CardIdentifier.from_row(card)
    after = before.qualified(location, clinic_fragment)

    updated = CardRepository.update_if_status(
        card_id,
        [CardStatus.ASSIGNED, CardStatus.SUSPENDED],
        status=CardStatus.ACTIVATED.value,
        activated_at=now.isoformat(),
        expires_at=expires_at,
        updated_at=now.isoformat(),
        **_identifier_updates(after),
    )
    if not updated:
        raise ConflictError("status", card_id, f"Card {card_id} changed state during activation")

    perks = grant_default_perks(card_id, expires_at)

    AssignmentHistoryRepository.append(
        card_id=card_id,
        card_number=card["card_number"],
        action="activated",
        clinic_id=clinic_id,
        previous_clinic_id=clinic_id,
        performed_by=actor.user_id,
        performed_by_type=actor.actor_type.value,
        details={
            "old_status": status.value,
            "new_status": CardStatus.ACTIVATED.value,
            "expires_at": expires_at,
            "perks_granted": [perk["perk_type"] for perk in perks],
        },
    )
    if before.v2() != after.v2():
        CardCodeHistoryRepository.append(
            card_id=card_id,
            change_type="qualified",
            field_name="control_number_v2",
            old_value={"control_number_v2": before.v2(), "unified_control_number": before.unified()},
            new_value={"control_number_v2": after.v2(), "unified_control_number": after.unified()},
            changed_by=actor.user_id,
            changed_by_type=actor.actor_type.value,
        )

    bump_version(SyncComponent.CARDS, f"Card {after.reference} activated")
    logger.info(f"Card {after.reference} activated for clinic {clinic_id}, {len(perks)} perks granted")
    return updated


def deactivate_card(card_id: str, actor: Actor, reason: str | None = None) -> dict:
    """activated -> suspended. Keeps the clinic, clears activated_at, resets perk claims."""
    card = _get_card(card_id)
    status = parse_card_status(card.get("status"))
    if status is not CardStatus.ACTIVATED:
        raise InvariantViolation(card_id, f"only activated cards can be deactivated, card is {status.value}")
    if not actor.owns(card.get("assigned_clinic_id")):
        raise ForbiddenError("You can only deactivate cards assigned to your clinic")

    now = datetime.now(timezone.utc).isoformat()
    updated = CardRepository.update_if_status(
        card_id,
        [CardStatus.ACTIVATED],
        status=CardStatus.SUSPENDED.value,
        activated_at=None,
        updated_at=now,
    )
    if not updated:
        raise ConflictError("status", card_id, f"Card {card_id} changed state during deactivation")

    perks_reset = CardPerkRepository.reset_claims(card_id)

    AssignmentHistoryRepository.append(
        card_id=card_id,
        card_number=card["card_number"],
        action="deactivated",
        clinic_id=card["assigned_clinic_id"],
        previous_clinic_id=card["assigned_clinic_id"],
        performed_by=actor.user_id,
        performed_by_type=actor.actor_type.value,
        details={
            "old_status": status.value,
            "new_status": CardStatus.SUSPENDED.value,
            "activated_at": card.get("activated_at"),
            "perks_reset": perks_reset,
            "reason": reason,
        },
    )
    bump_version(SyncComponent.CARDS, f"Card {card['card_number']:05d} deactivated")
    return updated


def reset_card(card_id: str, actor: Actor, reason: str | None = None) -> dict:
    """any -> unassigned. Clears assignment and activation and deletes every granted perk."""
    if not actor.is_admin:
        raise ForbiddenError("Only admins can reset cards")
    card = _get_card(card_id)

    identifier = CardIdentifier.from_row(card).unqualified()
    now = datetime.now(timezone.utc).isoformat()
    updated = CardRepository.update(
        card_id,
        status=CardStatus.UNASSIGNED.value,
        assigned_clinic_id=None,
        assigned_at=None,
        activated_at=None,
        expires_at=None,
        updated_at=now,
        **_identifier_updates(identifier),
    )
    if not updated:
        raise NotFoundError("card", card_id)

    perks_deleted = CardPerkRepository.delete_for_card(card_id)

    CardCodeHistoryRepository.append(
        card_id=card_id,
        change_type="reset",
        old_value={
            "status": parse_card_status(card.get("status")).value,
            "assigned_clinic_id": card.get("assigned_clinic_id"),
            "location_code": card.get("location_code"),
            "clinic_code": card.get("clinic_code"),
            "activated_at": card.get("activated_at"),
            "expires_at": card.get("expires_at"),
        },
        new_value={
            "status": CardStatus.UNASSIGNED.value,
            "assigned_clinic_id": None,
            "perks_deleted": perks_deleted,
            "reason": reason,
        },
        changed_by=actor.user_id,
        changed_by_type=actor.actor_type.value,
    )
    bump_version(SyncComponent.CARDS, f"Card {identifier.reference} reset")
    logger.info(f"Card {identifier.reference} reset by {actor.user_id}, {perks_deleted} perks deleted")
    return updated
