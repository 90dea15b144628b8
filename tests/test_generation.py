"""
Tests for bulk card generation and batch resume.

These tests verify:
  - Generated cards get consecutive sequence numbers after existing ones
  - Range batches use exactly the requested sequences
  - A duplicate manual control number fails with ConflictError and leaves
    no half-written batch behind
  - A failure partway through reports {requested, inserted} and the batch
    can be resumed to completion
  - Auto batch numbers are regenerated on collision
"""

import pytest

from app.core.config import settings
from app.core.errors import ConflictError, PartialBatchFailure, RangeExhaustedError, ValidationError
from app.domain.statuses import BatchStatus
from app.repositories.batch import BatchRepository
from app.repositories.card import CardRepository
from app.repositories.system_version import SystemVersionRepository
from app.services import card_generation
from app.services.card_generation import generate_card_batch, get_batch_stats, resume_card_batch


class TestAutoGeneration:

    async def test_generates_consecutive_cards(self, fake_db, admin):
        batch = await generate_card_batch(3, "auto", actor=admin)

        assert batch["batch_status"] == BatchStatus.COMPLETED.value
        assert batch["cards_generated"] == 3
        assert batch["created_by"] == "admin-1"

        cards = CardRepository.list_in_range(1, 3)
        assert [c["card_number"] for c in cards] == [1, 2, 3]
        stem = batch["batch_number"].replace("-B", "-C")
        assert [c["printed_control_number"] for c in cards] == [f"{stem}-001", f"{stem}-002", f"{stem}-003"]
        assert [c["control_number"] for c in cards] == ["MOC-00001", "MOC-00002", "MOC-00003"]
        assert cards[0]["control_number_v2"] == "MOC-__-____-00001"
        assert cards[0]["unified_control_number"] is None
        assert all(c["status"] == "unassigned" for c in cards)
        assert all(c["batch_position"] == i for i, c in enumerate(cards, start=1))

    async def test_next_batch_continues_the_sequence(self, make_cards):
        await make_cards(3)
        second = await make_cards(2)
        assert [c["card_number"] for c in second] == [4, 5]

    async def test_bumps_card_and_batch_versions(self, make_cards):
        await make_cards(2)
        assert SystemVersionRepository.get("cards")["version_number"] == 1
        assert SystemVersionRepository.get("batches")["version_number"] == 1

    async def test_sequence_exhausted(self, fake_db, monkeypatch, make_cards):
        monkeypatch.setattr(settings, "card_sequence_max", 10)
        await make_cards(8)

        with pytest.raises(RangeExhaustedError) as exc:
            await generate_card_batch(3, "auto")
        assert exc.value.available == 2
        assert len(fake_db.rows("card_batches")) == 1

    async def test_invalid_total(self):
        with pytest.raises(ValidationError):
            await generate_card_batch(0, "auto")

    async def test_batch_number_collision_is_regenerated(self, monkeypatch, make_cards):
        numbers = iter(["MO-B000001AA", "MO-B000001AA", "MO-B000002BB"])
        monkeypatch.setattr(card_generation, "generate_batch_number", lambda *a, **k: next(numbers))

        first = await generate_card_batch(1, "auto")
        second = await generate_card_batch(1, "auto")

        assert first["batch_number"] == "MO-B000001AA"
        assert second["batch_number"] == "MO-B000002BB"
        assert CardRepository.get_by_card_number(2)["printed_control_number"] == "MO-C000002BB-001"

    async def test_gives_up_after_repeated_collisions(self, monkeypatch):
        monkeypatch.setattr(card_generation, "generate_batch_number", lambda *a, **k: "MO-B000001AA")
        await generate_card_batch(1, "auto")

        with pytest.raises(ConflictError) as exc:
            await generate_card_batch(1, "auto")
        assert exc.value.field == "batch_number"


class TestRangeAndManualGeneration:

    async def test_range_batch(self):
        batch = await generate_card_batch(50, "range", card_range=(101, 150))

        assert batch["batch_number"] == "MO-R00101-00150"
        cards = CardRepository.list_in_range(1, 200)
        assert [c["card_number"] for c in cards] == list(range(101, 151))
        assert cards[0]["printed_control_number"] == "MO-C00101"

    async def test_range_size_must_match_total(self, fake_db):
        with pytest.raises(ValidationError) as exc:
            await generate_card_batch(10, "range", card_range=(101, 150))
        assert exc.value.field == "total_cards"
        assert fake_db.rows("card_batches") == []

    async def test_range_past_maximum(self, fake_db):
        with pytest.raises(RangeExhaustedError):
            await generate_card_batch(10, "range", card_range=(9995, 10004))
        assert fake_db.rows("cards") == []

    async def test_overlapping_range_conflicts(self, fake_db):
        await generate_card_batch(10, "range", card_range=(1, 10))

        with pytest.raises(ConflictError) as exc:
            await generate_card_batch(5, "range", card_range=(8, 12))
        assert exc.value.field == "card_number"
        assert len(fake_db.rows("card_batches")) == 1

    async def test_manual_requires_batch_number(self):
        with pytest.raises(ValidationError) as exc:
            await generate_card_batch(1, "manual", custom_format="MOC-005000")
        assert exc.value.field == "batch_number"

    async def test_manual_template(self):
        await generate_card_batch(3, "manual", batch_number="den-2024-a", custom_format="DEN-####")
        cards = CardRepository.list_in_range(1, 3)
        assert [c["printed_control_number"] for c in cards] == ["DEN-0001", "DEN-0002", "DEN-0003"]
        assert BatchRepository.get_by_batch_number("DEN-2024-A") is not None

    async def test_duplicate_manual_control_number(self, fake_db):
        """Two batches printing MOC-005000: the second fails, the first stands."""
        first = await generate_card_batch(
            1, "manual", batch_number="MO-MANUAL-1", custom_format="MOC-005000"
        )

        with pytest.raises(ConflictError) as exc:
            await generate_card_batch(1, "manual", batch_number="MO-MANUAL-2", custom_format="MOC-005000")

        assert exc.value.field == "printed_control_number"
        assert exc.value.value == "MOC-005000"
        assert [b["id"] for b in fake_db.rows("card_batches")] == [first["id"]]
        assert len(fake_db.rows("cards")) == 1

    async def test_template_reading_as_another_card_rejected(self, make_cards):
        """MOC-00001 printed on card 6 would resolve to card 1."""
        await make_cards(5)
        with pytest.raises(ValidationError) as exc:
            await generate_card_batch(2, "manual", batch_number="MO-X-1", custom_format="MOC-#####")
        assert exc.value.field == "custom_format"

    async def test_duplicate_manual_batch_number(self):
        await generate_card_batch(1, "manual", batch_number="MO-MANUAL-1", custom_format="A-####")
        with pytest.raises(ConflictError) as exc:
            await generate_card_batch(1, "manual", batch_number="mo-manual-1", custom_format="B-####")
        assert exc.value.field == "batch_number"


class TestPartialBatches:

    async def test_partial_failure_reports_counts(self, fake_db):
        """10,000 cards with storage failing after 4,000 -> {requested: 10000, inserted: 4000}."""
        fake_db.fail_inserts_after("cards", 4000)

        with pytest.raises(PartialBatchFailure) as exc:
            await generate_card_batch(10000, "auto")

        assert exc.value.result == {"requested": 10000, "inserted": 4000}
        batch = BatchRepository.get_by_id(exc.value.batch_id)
        assert batch["batch_status"] == BatchStatus.PARTIAL.value
        assert batch["cards_generated"] == 4000
        assert CardRepository.count() == 4000

    async def test_resume_inserts_only_missing_cards(self, fake_db, monkeypatch):
        monkeypatch.setattr(settings, "insert_chunk_size", 10)
        fake_db.fail_inserts_after("cards", 20)
        with pytest.raises(PartialBatchFailure) as exc:
            await generate_card_batch(50, "auto")

        fake_db.fail_inserts_after("cards", 10_000)
        batch = await resume_card_batch(exc.value.batch_id)

        assert batch["batch_status"] == BatchStatus.COMPLETED.value
        cards = CardRepository.list_in_range(1, 50)
        assert [c["card_number"] for c in cards] == list(range(1, 51))
        assert len({c["printed_control_number"] for c in cards}) == 50

    async def test_partial_batch_reserves_its_sequences(self, fake_db, monkeypatch, make_cards):
        monkeypatch.setattr(settings, "insert_chunk_size", 10)
        fake_db.fail_inserts_after("cards", 20)
        with pytest.raises(PartialBatchFailure):
            await generate_card_batch(50, "auto")

        fake_db.fail_inserts_after("cards", 10_000)
        later = await make_cards(5)
        assert [c["card_number"] for c in later] == [51, 52, 53, 54, 55]

    async def test_resume_completed_batch_is_noop(self, make_cards, fake_db):
        await make_cards(2)
        batch = fake_db.rows("card_batches")[0]
        inserts = fake_db.count_calls("cards", "insert")

        resumed = await resume_card_batch(batch["id"])
        assert resumed["batch_status"] == BatchStatus.COMPLETED.value
        assert fake_db.count_calls("cards", "insert") == inserts

    async def test_batch_stats(self, make_cards, fake_db):
        await make_cards(4)
        batch = fake_db.rows("card_batches")[0]

        stats = get_batch_stats(batch["id"])
        assert stats["cards_generated"] == 4
        assert stats["missing"] == 0
        assert stats["by_status"]["unassigned"] == 4
        assert stats["by_status"]["expired"] == 0
