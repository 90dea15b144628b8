from fastapi import APIRouter, Depends, Query

from app.core.errors import NotFoundError
from app.core.permissions import require_admin
from app.domain.actor import Actor
from app.domain.schemas import BatchCreate, BatchResponse, BatchStatsResponse
from app.domain.statuses import GenerationMode
from app.repositories.batch import BatchRepository
from app.services.card_generation import generate_card_batch, get_batch_stats, resume_card_batch

router = APIRouter()


@router.post("", response_model=BatchResponse, status_code=201)
async def create_batch(data: BatchCreate, actor: Actor = Depends(require_admin)):
    """Generate a batch of cards.

    Responds 409 with {"requested", "inserted"} if generation stopped partway;
    the batch can then be completed with POST /batches/{id}/resume.
    """
    card_range = (data.range_start, data.range_end) if data.mode is GenerationMode.RANGE else None
    return await generate_card_batch(
        data.total_cards,
        data.mode,
        batch_number=data.batch_number,
        location_prefix=data.location_prefix,
        custom_format=data.custom_format,
        passcode_location=data.passcode_location,
        card_range=card_range,
        actor=actor,
        notes=data.notes,
    )


@router.get("", response_model=list[BatchResponse])
def list_batches(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_admin),
):
    return BatchRepository.get_all(limit=limit, offset=offset)


@router.get("/{batch_id}", response_model=BatchResponse)
def get_batch(batch_id: str, actor: Actor = Depends(require_admin)):
    batch = BatchRepository.get_by_id(batch_id)
    if not batch:
        raise NotFoundError("batch", batch_id)
    return batch


@router.post("/{batch_id}/resume", response_model=BatchResponse)
async def resume_batch(batch_id: str, actor: Actor = Depends(require_admin)):
    """Insert the cards a partial batch is still missing."""
    return await resume_card_batch(batch_id)


@router.get("/{batch_id}/stats", response_model=BatchStatsResponse)
def batch_stats(batch_id: str, actor: Actor = Depends(require_admin)):
    return get_batch_stats(batch_id)
