from dataclasses import dataclass

from app.domain.statuses import ActorType


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation. Recorded on every history row."""

    user_id: str
    actor_type: ActorType
    clinic_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.actor_type in (ActorType.ADMIN, ActorType.SYSTEM)

    def owns(self, clinic_id: str | None) -> bool:
        """Admins act on any clinic's cards; clinics only on their own."""
        return self.is_admin or (clinic_id is not None and self.clinic_id == clinic_id)


SYSTEM_ACTOR = Actor(user_id="system", actor_type=ActorType.SYSTEM)
