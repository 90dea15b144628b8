"""Card resolution by any identifier form, patient lookup, code edits and history."""
import logging
import secrets
from dataclasses import replace
from datetime import datetime, timezone

from postgrest.exceptions import APIError

from app.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    is_unique_violation,
    unique_violation_key,
)
from app.domain.actor import Actor
from app.domain.card_codes import CardIdentifier, parse_sequence
from app.domain.statuses import CodeType, SyncComponent, effective_status
from app.repositories.card import CardRepository
from app.repositories.card_perk import CardPerkRepository
from app.repositories.clinic import ClinicRepository
from app.repositories.history import AssignmentHistoryRepository, CardCodeHistoryRepository
from app.services.code_generator import PASSCODE_PATTERN, normalize_code
from app.services.version_sync import bump_version

logger = logging.getLogger(__name__)


def resolve_card(code: str) -> dict:
    """Find a card from any of its identifiers.

    Every sequence-bearing form (00042, MOC-00042, MOC-01-CVT1-00042,
    MOC-00042-01-CVT1, ...) resolves through the sequence number; anything
    else is looked up as a batch-printed control number.
    """
    key = normalize_code(code, CodeType.CONTROL, field="code")
    sequence = parse_sequence(key)
    if sequence is not None:
        card = CardRepository.get_by_card_number(sequence)
    else:
        card = (
            CardRepository.get_by_identifier("printed_control_number", key)
            or CardRepository.get_by_identifier("control_number", key)
        )
    if not card:
        raise NotFoundError("card", code)
    return card


def _passcode_matches(stored: str | None, given: str) -> bool:
    if not stored:
        return False
    stored = stored.upper()
    # ___1234 is printed before a location is attached: compare digits only
    if stored.startswith("___") or given.startswith("___"):
        return secrets.compare_digest(stored[-4:], given[-4:])
    return secrets.compare_digest(stored, given)


def display_control_number(card: dict) -> str:
    identifier = CardIdentifier.from_row(card)
    return identifier.unified() or identifier.legacy()


def lookup_card(control_number: str, passcode: str) -> dict:
    """Patient-portal lookup. A wrong passcode is reported exactly like an unknown card."""
    try:
        card = resolve_card(control_number)
        given = normalize_code(passcode, CodeType.PASSCODE)
    except ValidationError:
        raise NotFoundError("card", control_number)
    if not _passcode_matches(card.get("passcode"), given):
        logger.info("Card lookup with wrong passcode")
        raise NotFoundError("card", control_number)

    clinic = ClinicRepository.get_by_id(card["assigned_clinic_id"]) if card.get("assigned_clinic_id") else None
    return {
        "control_number": display_control_number(card),
        "status": effective_status(card),
        "clinic_name": clinic["clinic_name"] if clinic else None,
        "expires_at": card.get("expires_at"),
        "perks": CardPerkRepository.get_for_card(card["id"]),
    }


def _mask(passcode: str | None) -> str | None:
    return f"{passcode[:3]}****" if passcode else None


def update_card_codes(
    card_id: str,
    actor: Actor,
    control_number: str | None = None,
    passcode: str | None = None,
) -> dict:
    """Change a card's printed control number and/or passcode.

    A sequence-style control number must name the card's own sequence. Each
    changed field gets its own history row.
    """
    if not actor.is_admin:
        raise ForbiddenError("Only admins can change card codes")
    card = CardRepository.get_by_id(card_id)
    if not card:
        raise NotFoundError("card", card_id)

    current = CardIdentifier.from_row(card)
    previous = {
        "printed_control_number": current.printed,
        "control_number": card.get("control_number"),
        "passcode": card.get("passcode"),
    }
    changes = {}
    if control_number is not None:
        key = normalize_code(control_number, CodeType.CONTROL)
        sequence = parse_sequence(key)
        if sequence is not None and sequence != card["card_number"]:
            raise ValidationError("control_number", f"reads as card {sequence}", control_number)
        identifier = replace(current, printed=None if sequence else key)
        if identifier.printed != card.get("printed_control_number"):
            changes["printed_control_number"] = identifier.printed
        if identifier.legacy() != card.get("control_number"):
            changes["control_number"] = identifier.legacy()

    if passcode is not None:
        value = normalize_code(passcode, CodeType.PASSCODE)
        if not PASSCODE_PATTERN.match(value):
            raise ValidationError("passcode", "must be 3 letters followed by 4 digits", passcode)
        if value != card.get("passcode"):
            changes["passcode"] = value

    if not changes:
        return card

    try:
        updated = CardRepository.update(
            card_id, updated_at=datetime.now(timezone.utc).isoformat(), **changes
        )
    except APIError as e:
        if is_unique_violation(e):
            field, value = unique_violation_key(e) or (
                "printed_control_number", changes.get("printed_control_number")
            )
            raise ConflictError(field, value) from e
        logger.error(f"Failed to update codes of card {card_id}: {changes}")
        raise

    for field_name, new_value in changes.items():
        old_value = previous.get(field_name)
        if field_name == "passcode":
            old_value, new_value = _mask(old_value), _mask(new_value)
        CardCodeHistoryRepository.append(
            card_id=card_id,
            change_type="updated",
            field_name=field_name,
            old_value={field_name: old_value},
            new_value={field_name: new_value},
            changed_by=actor.user_id,
            changed_by_type=actor.actor_type.value,
        )

    bump_version(SyncComponent.CODES, f"Codes of card {card['card_number']:05d} updated: {', '.join(changes)}")
    return updated or {**card, **changes}


def get_card_history(card_id: str) -> list[dict]:
    """Assignment and code history of a card, newest first."""
    if not CardRepository.get_by_id(card_id):
        raise NotFoundError("card", card_id)

    entries = [
        {
            "id": row["id"],
            "card_id": row["card_id"],
            "kind": "assignment",
            "action": row["action"],
            "old_value": {"clinic_id": row.get("previous_clinic_id")},
            "new_value": {"clinic_id": row.get("clinic_id"), **(row.get("details") or {})},
            "performed_by": row["performed_by"],
            "performed_by_type": row["performed_by_type"],
            "created_at": row.get("created_at"),
        }
        for row in AssignmentHistoryRepository.get_for_card(card_id)
    ]
    entries.extend(
        {
            "id": row["id"],
            "card_id": row["card_id"],
            "kind": "code",
            "action": row["change_type"],
            "old_value": row.get("old_value"),
            "new_value": row.get("new_value"),
            "performed_by": row["changed_by"],
            "performed_by_type": row["changed_by_type"],
            "created_at": row.get("created_at"),
        }
        for row in CardCodeHistoryRepository.get_for_card(card_id)
    )
    entries.sort(key=lambda entry: entry["created_at"] or "", reverse=True)
    return entries
