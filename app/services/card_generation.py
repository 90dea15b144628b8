"""
Bulk card generation.

A batch is planned in memory first (sequence numbers, control numbers,
passcodes) so every validation error surfaces before anything is written.
The batch row is inserted next, then the cards in chunks with a short pause
between chunks. A failure after some chunks were written leaves the batch
`partial` and raises PartialBatchFailure; resume_card_batch() later inserts
only the positions that are still missing.
"""
import asyncio
import logging
from datetime import datetime, timezone

import httpx
from postgrest.exceptions import APIError

from app.core.config import settings
from app.core.errors import (
    ConflictError,
    NotFoundError,
    PartialBatchFailure,
    RangeExhaustedError,
    ValidationError,
    is_unique_violation,
    unique_violation_key,
)
from app.domain.actor import Actor, SYSTEM_ACTOR
from app.domain.card_codes import CardIdentifier, parse_sequence
from app.domain.statuses import BatchStatus, CardStatus, CodeType, GenerationMode, SyncComponent
from app.repositories.batch import BatchRepository
from app.repositories.card import CardRepository
from app.services.code_generator import (
    generate_batch_number,
    generate_control_number,
    generate_passcode,
    normalize_code,
    parse_mode,
    validate_range,
)
from app.services.version_sync import bump_version

logger = logging.getLogger(__name__)

AUTO_BATCH_ATTEMPTS = 3
MIGRATION_VERSION = 3


def _first_free_sequence(total_cards: int, mode: GenerationMode, card_range) -> int:
    """Pick the first sequence number of a new batch.

    Range mode uses the requested range as is. Other modes continue after
    both the highest stored card and the sequences reserved by batches that
    are still generating or were left partial.
    """
    if mode is GenerationMode.RANGE:
        if card_range is None:
            raise ValidationError("card_range", "is required in range mode")
        start, end = validate_range(card_range)
        if end - start + 1 != total_cards:
            raise ValidationError(
                "total_cards", f"must equal the range size {end - start + 1}", total_cards
            )
        return start

    highest = CardRepository.get_max_card_number()
    for batch in BatchRepository.get_incomplete():
        first = (batch.get("batch_metadata") or {}).get("first_sequence")
        if first:
            highest = max(highest, first + batch["total_cards"] - 1)

    available = settings.card_sequence_max - highest
    if total_cards > available:
        raise RangeExhaustedError("total_cards", requested=total_cards, available=max(0, available))
    return highest + 1


def plan_cards(
    batch_number: str,
    mode: GenerationMode,
    positions,
    first_sequence: int,
    custom_format: str | None = None,
    passcode_location: str | None = None,
) -> list[dict]:
    """Build card rows for the given 1-based batch positions.

    Raises ValidationError if two positions would share a normalized control
    number, or if a control number reads as a different card's sequence.
    """
    rows = []
    seen: dict[str, int] = {}

    for position in positions:
        sequence = first_sequence + position - 1
        index = sequence if mode is GenerationMode.RANGE else position
        control = normalize_code(
            generate_control_number(batch_number, index, mode, custom_format), CodeType.CONTROL
        )

        if control in seen:
            raise ValidationError(
                "custom_format",
                f"positions {seen[control]} and {position} both produce {control}",
                custom_format,
            )
        seen[control] = position

        embedded = parse_sequence(control)
        if embedded is not None and embedded != sequence:
            raise ValidationError(
                "custom_format",
                f"{control} reads as card {embedded} but would be printed on card {sequence}",
                custom_format,
            )

        identifier = CardIdentifier(sequence=sequence, printed=None if embedded else control)
        rows.append({
            **identifier.columns(),
            "batch_position": position,
            "passcode": generate_passcode(passcode_location),
            "status": CardStatus.UNASSIGNED.value,
            "generation_method": mode.value,
            "migration_version": MIGRATION_VERSION,
        })

    return rows


async def _insert_cards(batch: dict, rows: list[dict], inserted_before: int, fresh: bool) -> int:
    """Insert rows in chunks. Returns the batch's total inserted count."""
    chunk_size = settings.insert_chunk_size
    inserted = inserted_before

    for offset in range(0, len(rows), chunk_size):
        if offset:
            await asyncio.sleep(settings.insert_chunk_delay)
        chunk = [{**row, "batch_id": batch["id"]} for row in rows[offset:offset + chunk_size]]

        try:
            await asyncio.to_thread(CardRepository.insert_many, chunk)
        except (APIError, httpx.HTTPError) as e:
            if fresh and inserted == 0 and isinstance(e, APIError) and is_unique_violation(e):
                # Nothing of this batch exists yet: drop it so the caller can regenerate
                await asyncio.to_thread(BatchRepository.delete, batch["id"])
                field, value = unique_violation_key(e) or ("card_number", chunk[0]["card_number"])
                logger.warning(f"Batch {batch['batch_number']} conflicts on {field}={value}")
                raise ConflictError(field, value) from e

            await asyncio.to_thread(
                BatchRepository.update,
                batch["id"],
                batch_status=BatchStatus.PARTIAL.value,
                cards_generated=inserted,
                updated_at=datetime.now(timezone.utc).isoformat(),
            )
            if inserted > inserted_before:
                await asyncio.to_thread(
                    bump_version, SyncComponent.CARDS,
                    f"Batch {batch['batch_number']} partially generated",
                )
            logger.warning(
                f"Batch {batch['batch_number']} stopped at {inserted} of {batch['total_cards']} cards: {e}"
            )
            raise PartialBatchFailure(
                batch["id"], requested=batch["total_cards"], inserted=inserted, cause=e
            ) from e

        inserted += len(chunk)

    return inserted


async def _complete(batch: dict) -> dict:
    completed = await asyncio.to_thread(
        BatchRepository.update,
        batch["id"],
        batch_status=BatchStatus.COMPLETED.value,
        cards_generated=batch["total_cards"],
        updated_at=datetime.now(timezone.utc).isoformat(),
    )
    await asyncio.to_thread(
        bump_version, SyncComponent.CARDS,
        f"Generated {batch['total_cards']} cards in batch {batch['batch_number']}",
    )
    await asyncio.to_thread(
        bump_version, SyncComponent.BATCHES, f"Batch {batch['batch_number']} completed"
    )
    logger.info(f"Batch {batch['batch_number']} completed with {batch['total_cards']} cards")
    return completed or {**batch, "batch_status": BatchStatus.COMPLETED.value}


async def generate_card_batch(
    total_cards: int,
    mode=GenerationMode.AUTO,
    *,
    batch_number: str | None = None,
    location_prefix: str | None = None,
    custom_format: str | None = None,
    passcode_location: str | None = None,
    card_range: tuple[int, int] | None = None,
    actor: Actor = SYSTEM_ACTOR,
    notes: str | None = None,
) -> dict:
    """Generate and store a batch of cards. Returns the completed batch row.

    Raises:
        ValidationError / RangeExhaustedError: bad input, nothing written.
        ConflictError: batch number or a card identifier already exists and
            nothing of this batch was written. Regenerate and try again.
        PartialBatchFailure: some chunks were written; see resume_card_batch().
    """
    mode = parse_mode(mode)
    if not isinstance(total_cards, int) or total_cards < 1:
        raise ValidationError("total_cards", "must be a positive integer", total_cards)
    if mode is GenerationMode.MANUAL and not batch_number:
        raise ValidationError("batch_number", "is required in manual mode")

    first_sequence = await asyncio.to_thread(_first_free_sequence, total_cards, mode, card_range)
    positions = range(1, total_cards + 1)

    batch = None
    for attempt in range(1, AUTO_BATCH_ATTEMPTS + 1):
        number = generate_batch_number(mode, batch_number, location_prefix, card_range=card_range)
        rows = plan_cards(number, mode, positions, first_sequence, custom_format, passcode_location)
        metadata = {
            "mode": mode.value,
            "location_prefix": location_prefix,
            "custom_format": custom_format,
            "passcode_location": passcode_location,
            "first_sequence": first_sequence,
            "card_range": list(card_range) if card_range else None,
        }
        try:
            batch = await asyncio.to_thread(
                BatchRepository.create, number, total_cards, mode.value, metadata, actor.user_id, notes
            )
            break
        except APIError as e:
            if not is_unique_violation(e):
                raise
            if mode is not GenerationMode.AUTO or attempt == AUTO_BATCH_ATTEMPTS:
                raise ConflictError("batch_number", number) from e
            logger.warning(
                f"Batch number {number} already taken, regenerating ({attempt}/{AUTO_BATCH_ATTEMPTS})"
            )

    if batch is None:
        raise RuntimeError("Failed to create batch")

    logger.info(f"Generating {total_cards} cards in batch {batch['batch_number']} ({mode.value})")
    await _insert_cards(batch, rows, inserted_before=0, fresh=True)
    return await _complete(batch)


async def resume_card_batch(batch_id: str) -> dict:
    """Insert the missing cards of a partial batch and mark it completed."""
    batch = await asyncio.to_thread(BatchRepository.get_by_id, batch_id)
    if not batch:
        raise NotFoundError("batch", batch_id)
    if batch.get("batch_status") == BatchStatus.COMPLETED.value:
        return batch

    metadata = batch.get("batch_metadata") or {}
    if not metadata.get("first_sequence"):
        raise ValidationError("batch_id", "batch has no generation metadata and cannot be resumed", batch_id)

    mode = parse_mode(batch.get("generation_method") or metadata.get("mode"))
    present = await asyncio.to_thread(CardRepository.get_batch_positions, batch_id)
    missing = [p for p in range(1, batch["total_cards"] + 1) if p not in present]
    logger.info(f"Resuming batch {batch['batch_number']}: {len(missing)} cards missing")

    if missing:
        rows = plan_cards(
            batch["batch_number"],
            mode,
            missing,
            metadata["first_sequence"],
            metadata.get("custom_format"),
            metadata.get("passcode_location"),
        )
        await asyncio.to_thread(
            BatchRepository.update,
            batch_id,
            batch_status=BatchStatus.GENERATING.value,
            cards_generated=len(present),
        )
        await _insert_cards(batch, rows, inserted_before=len(present), fresh=False)

    return await _complete(batch)


def get_batch_stats(batch_id: str) -> dict:
    """Card counts for one batch, by effective status."""
    batch = BatchRepository.get_by_id(batch_id)
    if not batch:
        raise NotFoundError("batch", batch_id)

    now = datetime.now(timezone.utc).isoformat()
    by_status = {
        status.value: CardRepository.count(status=status, batch_id=batch_id)
        for status in (CardStatus.UNASSIGNED, CardStatus.ASSIGNED, CardStatus.ACTIVATED, CardStatus.SUSPENDED)
    }
    expired = CardRepository.count(status=CardStatus.ACTIVATED, batch_id=batch_id, expires_before=now)
    by_status[CardStatus.ACTIVATED.value] -= expired
    by_status[CardStatus.EXPIRED.value] = expired

    generated = CardRepository.count(batch_id=batch_id)
    return {
        "batch_id": batch["id"],
        "batch_number": batch["batch_number"],
        "total_cards": batch["total_cards"],
        "cards_generated": generated,
        "missing": max(0, batch["total_cards"] - generated),
        "by_status": by_status,
    }
