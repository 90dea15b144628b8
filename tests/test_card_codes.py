"""Tests for the card identifier value object and status translation."""

from datetime import datetime, timedelta, timezone

import pytest

from app.domain.card_codes import CardIdentifier, parse_sequence
from app.domain.statuses import CardStatus, effective_status, parse_card_status, stored_labels


class TestCardIdentifier:

    def test_unqualified_renderings(self):
        identifier = CardIdentifier(sequence=42)
        assert identifier.legacy() == "MOC-00042"
        assert identifier.v2() == "MOC-__-____-00042"
        assert identifier.unified() is None

    def test_qualified_renderings(self):
        identifier = CardIdentifier(sequence=42).qualified("01", "CVT1")
        assert identifier.v2() == "MOC-01-CVT1-00042"
        assert identifier.unified() == "MOC-00042-01-CVT1"
        assert identifier.unqualified().v2() == "MOC-__-____-00042"

    def test_every_rendering_parses_back_to_the_sequence(self):
        identifier = CardIdentifier(sequence=7, printed="MO-C000123AB-007").qualified("01", "CVT1")
        for form in identifier.sequence_forms():
            assert parse_sequence(form) == 7

    def test_printed_control_number_has_its_own_column(self):
        columns = CardIdentifier(sequence=3, printed="MO-C000123AB-003").columns()
        assert columns["control_number"] == "MOC-00003"
        assert columns["printed_control_number"] == "MO-C000123AB-003"

    def test_from_row_drops_sequence_style_printed_number(self):
        row = {"card_number": 42, "control_number": "MOC-00042", "location_code": "01", "clinic_code": "CVT1"}
        identifier = CardIdentifier.from_row(row)
        assert identifier.printed is None
        assert identifier.is_qualified

    def test_from_row_reads_batch_code_left_in_control_number(self):
        identifier = CardIdentifier.from_row({"card_number": 9, "control_number": "DEN-0009"})
        assert identifier.printed == "DEN-0009"
        assert identifier.columns()["control_number"] == "MOC-00009"

    @pytest.mark.parametrize("text", ["MO-C000123AB-001", "DEN-0001", "MOC-005000", ""])
    def test_non_sequence_forms(self, text):
        assert parse_sequence(text) is None

    def test_sequence_zero_is_not_a_card(self):
        assert parse_sequence("00000") is None


class TestStatuses:

    @pytest.mark.parametrize("label,expected", [
        ("unactivated", CardStatus.UNASSIGNED),
        ("location_pending", CardStatus.ASSIGNED),
        ("active", CardStatus.ACTIVATED),
        ("Inactive", CardStatus.SUSPENDED),
        ("deactivated", CardStatus.SUSPENDED),
        ("assigned", CardStatus.ASSIGNED),
        (None, CardStatus.UNASSIGNED),
    ])
    def test_legacy_labels_translate(self, label, expected):
        assert parse_card_status(label) is expected

    def test_stored_labels_include_synonyms(self):
        assert stored_labels(CardStatus.SUSPENDED) == ["suspended", "deactivated", "inactive"]

    def test_unknown_label_rejected(self):
        with pytest.raises(ValueError):
            parse_card_status("lost")

    def test_expired_is_derived_from_expiry(self):
        now = datetime.now(timezone.utc)
        card = {"status": "activated", "expires_at": (now - timedelta(days=1)).isoformat()}
        assert effective_status(card, now) is CardStatus.EXPIRED
        card["expires_at"] = (now + timedelta(days=1)).isoformat()
        assert effective_status(card, now) is CardStatus.ACTIVATED

    def test_only_activated_cards_expire(self):
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        assert effective_status({"status": "suspended", "expires_at": past}) is CardStatus.SUSPENDED
