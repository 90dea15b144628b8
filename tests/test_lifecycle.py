"""
Tests for the card lifecycle: activation, deactivation, reset and perk claims.

These tests verify:
  - Activation requires an assigned clinic and attaches location/clinic codes
  - Default perks are granted once, even across re-activation
  - Deactivation keeps the clinic and resets perk claims
  - Reset returns a card to unassigned, deletes its perks and logs one entry
  - Clinics can only act on their own cards
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import ConflictError, ForbiddenError, InvariantViolation, NotFoundError, ValidationError
from app.domain.actor import Actor
from app.domain.statuses import ActorType, CardStatus, effective_status
from app.repositories.card import CardRepository
from app.repositories.card_perk import CardPerkRepository
from app.repositories.history import AssignmentHistoryRepository, CardCodeHistoryRepository
from app.services.assignment import assign_card
from app.services.card_lifecycle import activate_card, deactivate_card, reset_card
from app.services.perk_mirroring import claim_perk, update_customization


@pytest.fixture
async def assigned_card(make_cards, clinic, admin):
    cards = await make_cards(1)
    return assign_card(cards[0]["id"], clinic["id"], admin)


@pytest.fixture
def other_clinic_actor(make_clinic):
    other = make_clinic("DEN002", region_code="02")
    return Actor(user_id="staff-2", actor_type=ActorType.CLINIC, clinic_id=other["id"])


class TestActivation:

    async def test_activate_unassigned_card_requires_clinic(self, make_cards, admin):
        card = (await make_cards(1))[0]

        with pytest.raises(InvariantViolation) as exc:
            activate_card(card["id"], admin)

        assert "clinic required" in exc.value.detail
        assert exc.value.field == "assigned_clinic_id"
        assert CardRepository.get_by_id(card["id"])["status"] == "unassigned"

    async def test_activate_assigned_card(self, assigned_card, clinic, clinic_actor, default_perks):
        card = activate_card(assigned_card["id"], clinic_actor)

        assert card["status"] == CardStatus.ACTIVATED.value
        assert card["assigned_clinic_id"] == clinic["id"]
        assert card["control_number_v2"] == "MOC-01-CVT001-00001"
        assert card["unified_control_number"] == "MOC-00001-01-CVT001"
        assert card["activated_at"] is not None

        expires_at = datetime.fromisoformat(card["expires_at"])
        assert timedelta(days=364) < expires_at - datetime.now(timezone.utc) <= timedelta(days=365)

        perks = CardPerkRepository.get_for_card(card["id"])
        assert {p["perk_type"] for p in perks} == {"cleaning", "consultation"}
        assert all(not p["claimed"] for p in perks)

    async def test_explicit_codes_override_clinic_defaults(self, assigned_card, admin):
        card = activate_card(assigned_card["id"], admin, location_code="07", clinic_code="cvt9")
        assert card["control_number_v2"] == "MOC-07-CVT9-00001"

    async def test_invalid_location_code(self, assigned_card, admin):
        with pytest.raises(ValidationError) as exc:
            activate_card(assigned_card["id"], admin, location_code="0-1")
        assert exc.value.field == "location_code"

    async def test_activation_history(self, assigned_card, clinic_actor):
        activate_card(assigned_card["id"], clinic_actor)

        actions = [row["action"] for row in AssignmentHistoryRepository.get_for_card(assigned_card["id"])]
        assert sorted(actions) == ["activated", "assigned"]
        code_changes = CardCodeHistoryRepository.get_for_card(assigned_card["id"])
        assert [row["change_type"] for row in code_changes] == ["qualified"]

    async def test_activate_twice_rejected(self, assigned_card, clinic_actor):
        activate_card(assigned_card["id"], clinic_actor)
        with pytest.raises(InvariantViolation):
            activate_card(assigned_card["id"], clinic_actor)

    async def test_other_clinic_cannot_activate(self, assigned_card, other_clinic_actor):
        with pytest.raises(ForbiddenError):
            activate_card(assigned_card["id"], other_clinic_actor)

    async def test_inactive_clinic_cannot_activate(self, assigned_card, clinic, admin, fake_db):
        fake_db.rows("clinics")[0]["status"] = "inactive"
        with pytest.raises(ValidationError):
            activate_card(assigned_card["id"], admin)

    async def test_legacy_status_labels_are_understood(self, assigned_card, admin, fake_db):
        row = next(r for r in fake_db.rows("cards") if r["id"] == assigned_card["id"])
        row["status"] = "location_pending"

        card = activate_card(assigned_card["id"], admin)
        assert card["status"] == "activated"

    async def test_unknown_card(self, admin):
        with pytest.raises(NotFoundError):
            activate_card("missing", admin)


class TestDeactivation:

    async def test_deactivate_keeps_clinic_and_resets_claims(self, assigned_card, clinic_actor, default_perks):
        activated = activate_card(assigned_card["id"], clinic_actor)
        claim_perk(activated["id"], "cleaning", clinic_actor)

        card = deactivate_card(activated["id"], clinic_actor, reason="lost card")

        assert card["status"] == CardStatus.SUSPENDED.value
        assert card["assigned_clinic_id"] == activated["assigned_clinic_id"]
        assert card["activated_at"] is None
        assert card["expires_at"] == activated["expires_at"]
        assert not CardPerkRepository.get(card["id"], "cleaning")["claimed"]

    async def test_only_activated_cards_can_be_deactivated(self, assigned_card, admin):
        with pytest.raises(InvariantViolation):
            deactivate_card(assigned_card["id"], admin)

    async def test_reactivation_does_not_duplicate_perks(self, assigned_card, clinic_actor, default_perks):
        activate_card(assigned_card["id"], clinic_actor)
        deactivate_card(assigned_card["id"], clinic_actor)
        card = activate_card(assigned_card["id"], clinic_actor)

        assert card["status"] == CardStatus.ACTIVATED.value
        assert len(CardPerkRepository.get_for_card(card["id"])) == 2


class TestReset:

    async def test_reset_activated_card(self, assigned_card, clinic_actor, admin, default_perks):
        activate_card(assigned_card["id"], clinic_actor)

        card = reset_card(assigned_card["id"], admin, reason="returned")

        assert card["status"] == CardStatus.UNASSIGNED.value
        assert card["assigned_clinic_id"] is None
        assert card["activated_at"] is None
        assert card["expires_at"] is None
        assert card["control_number_v2"] == "MOC-__-____-00001"
        assert card["unified_control_number"] is None
        assert CardPerkRepository.get_for_card(card["id"]) == []

        resets = [r for r in CardCodeHistoryRepository.get_for_card(card["id"]) if r["change_type"] == "reset"]
        assert len(resets) == 1
        assert resets[0]["old_value"]["status"] == "activated"
        assert resets[0]["new_value"]["perks_deleted"] == 2

    async def test_reset_card_can_be_reassigned(self, assigned_card, clinic, admin):
        reset_card(assigned_card["id"], admin)
        card = assign_card(assigned_card["id"], clinic["id"], admin)
        assert card["status"] == CardStatus.ASSIGNED.value

    async def test_clinic_cannot_reset(self, assigned_card, clinic_actor):
        with pytest.raises(ForbiddenError):
            reset_card(assigned_card["id"], clinic_actor)


class TestPerkClaims:

    async def test_claim_once(self, assigned_card, clinic_actor, clinic, default_perks):
        activate_card(assigned_card["id"], clinic_actor)

        perk = claim_perk(assigned_card["id"], "cleaning", clinic_actor)
        assert perk["claimed"] is True
        assert perk["claimed_by_clinic_id"] == clinic["id"]

        with pytest.raises(ConflictError):
            claim_perk(assigned_card["id"], "cleaning", clinic_actor)

    async def test_claim_requires_activation(self, assigned_card, clinic_actor, default_perks):
        with pytest.raises(InvariantViolation):
            claim_perk(assigned_card["id"], "cleaning", clinic_actor)

    async def test_expired_card_cannot_claim(self, assigned_card, clinic_actor, default_perks):
        long_ago = datetime.now(timezone.utc) - timedelta(days=400)
        card = activate_card(assigned_card["id"], clinic_actor, now=long_ago)

        assert effective_status(card) is CardStatus.EXPIRED
        with pytest.raises(InvariantViolation) as exc:
            claim_perk(card["id"], "cleaning", clinic_actor)
        assert "expired" in exc.value.detail

    async def test_unknown_perk(self, assigned_card, clinic_actor, default_perks):
        activate_card(assigned_card["id"], clinic_actor)
        with pytest.raises(NotFoundError):
            claim_perk(assigned_card["id"], "whitening", clinic_actor)

    async def test_disabled_perk_cannot_be_claimed(self, assigned_card, clinic, clinic_actor, default_perks):
        activate_card(assigned_card["id"], clinic_actor)
        update_customization(clinic["id"], default_perks[0]["id"], clinic_actor, is_enabled=False)

        with pytest.raises(ValidationError):
            claim_perk(assigned_card["id"], "cleaning", clinic_actor)

    async def test_other_clinic_cannot_claim(self, assigned_card, clinic_actor, other_clinic_actor, default_perks):
        activate_card(assigned_card["id"], clinic_actor)
        with pytest.raises(ForbiddenError):
            claim_perk(assigned_card["id"], "cleaning", other_clinic_actor)
