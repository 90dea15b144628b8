from datetime import datetime, timezone

from app.domain.statuses import CardStatus, ClinicStatus
from app.repositories.batch import BatchRepository
from app.repositories.card import CardRepository
from app.repositories.card_perk import CardPerkRepository
from app.repositories.clinic import ClinicRepository


def get_dashboard_summary(clinic_id: str | None = None) -> dict:
    """Program-wide counts, or one clinic's card and perk counts. Count-only queries.

    Clinic, active-clinic and batch totals are program-wide and left as None
    for a single clinic.
    """
    now = datetime.now(timezone.utc).isoformat()

    by_status = {
        status.value: CardRepository.count(status=status, clinic_id=clinic_id)
        for status in (CardStatus.UNASSIGNED, CardStatus.ASSIGNED, CardStatus.ACTIVATED, CardStatus.SUSPENDED)
    }
    expired = CardRepository.count(status=CardStatus.ACTIVATED, clinic_id=clinic_id, expires_before=now)
    by_status[CardStatus.ACTIVATED.value] -= expired
    by_status[CardStatus.EXPIRED.value] = expired

    summary = {
        "clinics": None,
        "active_clinics": None,
        "batches": None,
        "cards_total": CardRepository.count(clinic_id=clinic_id),
        "cards_by_status": by_status,
    }

    if clinic_id is None:
        summary.update(
            clinics=ClinicRepository.count(),
            active_clinics=ClinicRepository.count(status=ClinicStatus.ACTIVE.value),
            batches=BatchRepository.count(),
            perks_claimed=CardPerkRepository.count(claimed=True),
            perks_unclaimed=CardPerkRepository.count(claimed=False),
        )
    else:
        # Perks live on activated cards, which never change clinic
        card_ids = CardRepository.list_ids_for_clinic(clinic_id)
        summary.update(
            perks_claimed=CardPerkRepository.count(claimed=True, card_ids=card_ids),
            perks_unclaimed=CardPerkRepository.count(claimed=False, card_ids=card_ids),
        )
    return summary
