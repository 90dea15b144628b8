from fastapi import Depends, HTTPException, status

from app.core.security import require_auth
from app.domain.actor import Actor
from app.domain.statuses import ActorType


def get_actor(auth_payload: dict = Depends(require_auth)) -> Actor:
    """Build the acting identity from a verified JWT.

    The portal role lives in Supabase app_metadata (server-controlled):
        {"role": "admin"}                        program administrators
        {"role": "clinic", "clinic_id": "..."}   clinic staff

    Raises:
        HTTPException 401 if the token has no subject
        HTTPException 403 if the token carries no portal role
    """
    user_id = auth_payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload: missing sub claim",
        )

    app_metadata = auth_payload.get("app_metadata") or {}
    role = app_metadata.get("role")

    if role == ActorType.ADMIN.value:
        return Actor(user_id=user_id, actor_type=ActorType.ADMIN)

    if role == ActorType.CLINIC.value:
        clinic_id = app_metadata.get("clinic_id")
        if not clinic_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Clinic account is not linked to a clinic",
            )
        return Actor(user_id=user_id, actor_type=ActorType.CLINIC, clinic_id=clinic_id)

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="No portal access for this account",
    )


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    """Require an admin - raises 403 for clinic accounts."""
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return actor


# Any portal account; services check clinic ownership per card
require_portal_access = get_actor
