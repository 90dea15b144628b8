"""
Assignment of cards to clinics, one card or a closed sequence range at a time.

Re-running an assignment to the same clinic is a no-op that still writes an
"unchanged" history row. Cards held by a different clinic are handled by a
ReassignmentPolicy:

    reject     raise ConflictError listing them, before anything is written
    overwrite  move assigned cards to the new clinic, keeping their status
    skip       leave them where they are and report them

Activated or suspended cards of another clinic are never moved: they must be
reset first, and are reported as not assignable under overwrite and skip.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.core.config import settings
from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.domain.actor import Actor
from app.domain.statuses import (
    CardStatus,
    ClinicStatus,
    ReassignmentPolicy,
    SyncComponent,
    parse_card_status,
    parse_clinic_status,
)
from app.repositories.card import CardRepository
from app.repositories.clinic import ClinicRepository
from app.repositories.history import AssignmentHistoryRepository
from app.services.code_generator import validate_range
from app.services.version_sync import bump_version

logger = logging.getLogger(__name__)

UPDATE_CHUNK = 1000


@dataclass
class RangeAssignmentResult:
    clinic_id: str
    start: int
    end: int
    expected: int
    found: int
    assigned: int = 0
    unchanged: int = 0
    reassigned: int = 0
    skipped: list[int] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)
    not_assignable: list[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.assigned + self.unchanged + self.reassigned == self.expected

    def as_dict(self) -> dict:
        return {
            "clinic_id": self.clinic_id,
            "start": self.start,
            "end": self.end,
            "expected": self.expected,
            "found": self.found,
            "assigned": self.assigned,
            "unchanged": self.unchanged,
            "reassigned": self.reassigned,
            "skipped": self.skipped,
            "missing": self.missing,
            "not_assignable": self.not_assignable,
            "complete": self.complete,
        }


def _resolve_policy(policy) -> ReassignmentPolicy:
    try:
        return ReassignmentPolicy(policy or settings.reassignment_policy)
    except ValueError:
        raise ValidationError("policy", f"unknown reassignment policy '{policy}'", policy)


def _active_clinic(clinic_id: str) -> dict:
    clinic = ClinicRepository.get_by_id(clinic_id)
    if not clinic:
        raise NotFoundError("clinic", clinic_id)
    if parse_clinic_status(clinic.get("status")) is not ClinicStatus.ACTIVE:
        raise ValidationError("clinic_id", "clinic is not active", clinic_id)
    return clinic


def _history_row(card: dict, action: str, clinic_id: str, actor: Actor, previous: str | None, **details) -> dict:
    return {
        "card_id": card["id"],
        "card_number": card["card_number"],
        "action": action,
        "clinic_id": clinic_id,
        "previous_clinic_id": previous,
        "performed_by": actor.user_id,
        "performed_by_type": actor.actor_type.value,
        "details": {"old_status": parse_card_status(card.get("status")).value, **details},
    }


def _chunks(items: list, size: int = UPDATE_CHUNK):
    for offset in range(0, len(items), size):
        yield items[offset:offset + size]


def assign_card(card_id: str, clinic_id: str, actor: Actor, policy=None) -> dict:
    """unassigned -> assigned for a single card."""
    if not actor.is_admin:
        raise ForbiddenError("Only admins can assign cards")
    policy = _resolve_policy(policy)
    _active_clinic(clinic_id)

    card = CardRepository.get_by_id(card_id)
    if not card:
        raise NotFoundError("card", card_id)
    status = parse_card_status(card.get("status"))
    previous = card.get("assigned_clinic_id")
    now = datetime.now(timezone.utc).isoformat()

    if previous == clinic_id:
        AssignmentHistoryRepository.append_many([_history_row(card, "unchanged", clinic_id, actor, previous)])
        return card

    if status is CardStatus.UNASSIGNED:
        rows = CardRepository.assign_unassigned([card["card_number"]], clinic_id, now)
        if not rows:
            raise ConflictError("status", card_id, f"Card {card_id} was assigned concurrently")
        AssignmentHistoryRepository.append_many([
            _history_row(card, "assigned", clinic_id, actor, None, new_status=CardStatus.ASSIGNED.value)
        ])
        bump_version(SyncComponent.CARDS, f"Card {card['card_number']:05d} assigned")
        return rows[0]

    movable = status is CardStatus.ASSIGNED and previous
    if policy is ReassignmentPolicy.REJECT or not movable:
        raise ConflictError(
            "assigned_clinic_id", card_id,
            f"Card {card['card_number']:05d} is already {status.value} at another clinic; reset it first",
        )
    if policy is ReassignmentPolicy.SKIP:
        logger.info(f"Skipped card {card['card_number']:05d}: held by clinic {previous}")
        return card

    rows = CardRepository.move_to_clinic([card["card_number"]], previous, clinic_id, now)
    if not rows:
        raise ConflictError("assigned_clinic_id", card_id, f"Card {card_id} changed clinic concurrently")
    AssignmentHistoryRepository.append_many([_history_row(card, "reassigned", clinic_id, actor, previous)])
    bump_version(SyncComponent.CARDS, f"Card {card['card_number']:05d} reassigned")
    return rows[0]


def assign_range(
    start: int,
    end: int,
    clinic_id: str,
    actor: Actor,
    policy=None,
    strict: bool = False,
) -> RangeAssignmentResult:
    """Assign every card with start <= card_number <= end to a clinic.

    The range must contain end - start + 1 cards. Sequence numbers with no
    card are reported in `missing` (or raise ValidationError when strict).
    """
    if not actor.is_admin:
        raise ForbiddenError("Only admins can assign cards")
    start, end = validate_range((start, end))
    policy = _resolve_policy(policy)
    _active_clinic(clinic_id)

    cards = CardRepository.list_in_range(start, end)
    expected = end - start + 1
    found_numbers = {card["card_number"] for card in cards}
    missing = [n for n in range(start, end + 1) if n not in found_numbers]
    result = RangeAssignmentResult(
        clinic_id=clinic_id, start=start, end=end, expected=expected, found=len(cards), missing=missing,
    )

    if missing:
        logger.warning(
            f"Range {start}-{end}: expected {expected} cards, found {len(cards)} ({len(missing)} missing)"
        )
        if strict:
            raise ValidationError(
                "card_range",
                f"expected {expected} cards but found {len(cards)}; missing {missing[:20]}",
                (start, end),
            )

    unchanged, unassigned, movable, blocked = [], [], [], []
    for card in cards:
        holder = card.get("assigned_clinic_id")
        status = parse_card_status(card.get("status"))
        if holder == clinic_id:
            unchanged.append(card)
        elif status is CardStatus.UNASSIGNED:
            unassigned.append(card)
        elif status is CardStatus.ASSIGNED and holder:
            movable.append(card)
        else:
            blocked.append(card)

    if policy is ReassignmentPolicy.REJECT and (movable or blocked):
        held = sorted(card["card_number"] for card in movable + blocked)
        raise ConflictError(
            "assigned_clinic_id", held,
            f"{len(held)} cards in range {start}-{end} belong to other clinics: {held[:20]}",
        )

    now = datetime.now(timezone.utc).isoformat()
    history = [_history_row(card, "unchanged", clinic_id, actor, clinic_id) for card in unchanged]
    result.unchanged = len(unchanged)

    by_number = {card["card_number"]: card for card in unassigned}
    for chunk in _chunks(sorted(by_number)):
        rows = CardRepository.assign_unassigned(chunk, clinic_id, now)
        updated = {row["card_number"] for row in rows}
        result.assigned += len(updated)
        history.extend(
            _history_row(by_number[n], "assigned", clinic_id, actor, None, new_status=CardStatus.ASSIGNED.value)
            for n in chunk if n in updated
        )
        # Cards another writer took between the read and this update
        result.not_assignable.extend(n for n in chunk if n not in updated)

    result.not_assignable.extend(card["card_number"] for card in blocked)

    if policy is ReassignmentPolicy.SKIP:
        result.skipped = sorted(card["card_number"] for card in movable)
    else:
        by_holder: dict[str, list[dict]] = defaultdict(list)
        for card in movable:
            by_holder[card["assigned_clinic_id"]].append(card)
        for holder, held_cards in by_holder.items():
            numbers = {card["card_number"]: card for card in held_cards}
            for chunk in _chunks(sorted(numbers)):
                rows = CardRepository.move_to_clinic(chunk, holder, clinic_id, now)
                moved = {row["card_number"] for row in rows}
                result.reassigned += len(moved)
                history.extend(
                    _history_row(numbers[n], "reassigned", clinic_id, actor, holder)
                    for n in chunk if n in moved
                )
                result.not_assignable.extend(n for n in chunk if n not in moved)

    result.not_assignable.sort()
    for chunk in _chunks(history):
        AssignmentHistoryRepository.append_many(chunk)

    if result.assigned or result.reassigned:
        bump_version(
            SyncComponent.CARDS,
            f"Cards {start}-{end} assigned to clinic {clinic_id}",
        )
    logger.info(
        f"Range {start}-{end} -> clinic {clinic_id}: {result.assigned} assigned, "
        f"{result.reassigned} reassigned, {result.unchanged} unchanged"
    )
    return result
