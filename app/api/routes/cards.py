from typing import Optional

from fastapi import APIRouter, Depends

from app.core.errors import ForbiddenError, NotFoundError
from app.core.permissions import require_admin, require_portal_access
from app.domain.actor import Actor
from app.domain.schemas import (
    CardActivate,
    CardAssign,
    CardCodesUpdate,
    CardPerkResponse,
    CardReset,
    CardResponse,
    CodeNormalizeRequest,
    CodeNormalizeResponse,
    HistoryEntry,
    RangeAssign,
    RangeAssignmentResponse,
)
from app.domain.statuses import effective_status
from app.repositories.card import CardRepository
from app.services import assignment, card_lifecycle, card_lookup
from app.services.code_generator import normalize_code
from app.services.perk_mirroring import claim_perk

router = APIRouter()


def to_card_response(card: dict) -> CardResponse:
    return CardResponse(**{**card, "status": effective_status(card)})


def _visible_card(card: dict, actor: Actor) -> dict:
    if not actor.owns(card.get("assigned_clinic_id")):
        raise ForbiddenError("This card is not assigned to your clinic")
    return card


@router.post("/normalize", response_model=CodeNormalizeResponse)
def normalize(data: CodeNormalizeRequest, actor: Actor = Depends(require_portal_access)):
    """Canonical form of a control number, batch number or passcode."""
    return CodeNormalizeResponse(
        value=data.value,
        code_type=data.code_type,
        normalized=normalize_code(data.value, data.code_type),
    )


@router.get("/resolve/{code}", response_model=CardResponse)
def resolve(code: str, actor: Actor = Depends(require_portal_access)):
    """Find a card by any of its control number forms."""
    return to_card_response(_visible_card(card_lookup.resolve_card(code), actor))


@router.post("/assign-range", response_model=RangeAssignmentResponse)
def assign_range(data: RangeAssign, actor: Actor = Depends(require_admin)):
    result = assignment.assign_range(
        data.start, data.end, data.clinic_id, actor, policy=data.policy, strict=data.strict
    )
    return result.as_dict()


@router.get("/{card_id}", response_model=CardResponse)
def get_card(card_id: str, actor: Actor = Depends(require_portal_access)):
    card = CardRepository.get_by_id(card_id)
    if not card:
        raise NotFoundError("card", card_id)
    return to_card_response(_visible_card(card, actor))


@router.post("/{card_id}/assign", response_model=CardResponse)
def assign_card(card_id: str, data: CardAssign, actor: Actor = Depends(require_admin)):
    return to_card_response(assignment.assign_card(card_id, data.clinic_id, actor, policy=data.policy))


@router.post("/{card_id}/activate", response_model=CardResponse)
def activate_card(
    card_id: str,
    data: Optional[CardActivate] = None,
    actor: Actor = Depends(require_portal_access),
):
    data = data or CardActivate()
    card = card_lifecycle.activate_card(
        card_id, actor, location_code=data.location_code, clinic_code=data.clinic_code
    )
    return to_card_response(card)


@router.post("/{card_id}/deactivate", response_model=CardResponse)
def deactivate_card(
    card_id: str,
    data: Optional[CardReset] = None,
    actor: Actor = Depends(require_portal_access),
):
    reason = data.reason if data else None
    return to_card_response(card_lifecycle.deactivate_card(card_id, actor, reason=reason))


@router.post("/{card_id}/reset", response_model=CardResponse)
def reset_card(
    card_id: str,
    data: Optional[CardReset] = None,
    actor: Actor = Depends(require_admin),
):
    reason = data.reason if data else None
    return to_card_response(card_lifecycle.reset_card(card_id, actor, reason=reason))


@router.patch("/{card_id}/codes", response_model=CardResponse)
def update_codes(card_id: str, data: CardCodesUpdate, actor: Actor = Depends(require_admin)):
    card = card_lookup.update_card_codes(
        card_id, actor, control_number=data.control_number, passcode=data.passcode
    )
    return to_card_response(card)


@router.get("/{card_id}/history", response_model=list[HistoryEntry])
def card_history(card_id: str, actor: Actor = Depends(require_portal_access)):
    card = CardRepository.get_by_id(card_id)
    if not card:
        raise NotFoundError("card", card_id)
    _visible_card(card, actor)
    return card_lookup.get_card_history(card_id)


@router.post("/{card_id}/perks/{perk_type}/claim", response_model=CardPerkResponse)
def claim(card_id: str, perk_type: str, actor: Actor = Depends(require_portal_access)):
    return claim_perk(card_id, perk_type, actor)
