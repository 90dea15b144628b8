"""Public routes for the patient portal (no authentication required)."""

from fastapi import APIRouter

from app.domain.schemas import CardLookupRequest, CardLookupResponse
from app.services.card_lookup import lookup_card

router = APIRouter()


@router.post("/lookup", response_model=CardLookupResponse)
def lookup(data: CardLookupRequest):
    """Look up a card by control number and passcode.

    Unknown cards and wrong passcodes both answer 404.
    """
    return lookup_card(data.control_number, data.passcode)
