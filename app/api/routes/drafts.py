from fastapi import APIRouter, Depends

from app.core.errors import NotFoundError
from app.core.permissions import require_portal_access
from app.domain.actor import Actor
from app.domain.schemas import DraftResponse, DraftSave
from app.services import drafts

router = APIRouter()


@router.get("/{component}", response_model=DraftResponse)
def get_draft(component: str, actor: Actor = Depends(require_portal_access)):
    draft = drafts.load_draft(actor.user_id, component)
    if not draft:
        raise NotFoundError("draft", component)
    return draft


@router.put("/{component}", response_model=DraftResponse)
def save_draft(component: str, data: DraftSave, actor: Actor = Depends(require_portal_access)):
    return drafts.save_draft(
        actor.user_id,
        component,
        data.form_data,
        user_type=actor.actor_type.value,
        metadata=data.metadata,
    )


@router.delete("/{component}")
def delete_draft(component: str, actor: Actor = Depends(require_portal_access)):
    return {"deleted": drafts.delete_draft(actor.user_id, component)}
