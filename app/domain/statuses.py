"""
Status enums for cards and clinics.

Stored rows written by older portal versions use other labels for the same
states ("unactivated", "active", ...). They are translated here, at the
boundary, so the rest of the engine only ever sees the canonical names.
"""
from datetime import datetime, timezone
from enum import Enum


class CardStatus(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    ACTIVATED = "activated"
    SUSPENDED = "suspended"
    EXPIRED = "expired"  # derived from expires_at, never written


class ClinicStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ActorType(str, Enum):
    ADMIN = "admin"
    CLINIC = "clinic"
    SYSTEM = "system"


class GenerationMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    RANGE = "range"


class CodeType(str, Enum):
    CONTROL = "control"
    BATCH = "batch"
    PASSCODE = "passcode"


class ReassignmentPolicy(str, Enum):
    """What range/single assignment does with cards held by another clinic."""
    REJECT = "reject"
    OVERWRITE = "overwrite"
    SKIP = "skip"


class BatchStatus(str, Enum):
    GENERATING = "generating"
    COMPLETED = "completed"
    PARTIAL = "partial"


class SyncComponent(str, Enum):
    """Logical components carrying a version counter."""
    CARDS = "cards"
    BATCHES = "batches"
    SETTINGS = "settings"
    CODES = "codes"
    PERKS = "perks"
    CLINICS = "clinics"


LEGACY_CARD_STATUSES: dict[str, CardStatus] = {
    "unactivated": CardStatus.UNASSIGNED,
    "location_pending": CardStatus.ASSIGNED,
    "active": CardStatus.ACTIVATED,
    "inactive": CardStatus.SUSPENDED,
    "deactivated": CardStatus.SUSPENDED,
}


def parse_card_status(value: str | None) -> CardStatus:
    """Translate a stored status label (current or legacy) to CardStatus."""
    if not value:
        return CardStatus.UNASSIGNED
    label = value.strip().lower()
    if label in LEGACY_CARD_STATUSES:
        return LEGACY_CARD_STATUSES[label]
    return CardStatus(label)


def parse_clinic_status(value: str | None) -> ClinicStatus:
    if not value:
        return ClinicStatus.INACTIVE
    return ClinicStatus(value.strip().lower())


def stored_labels(status: CardStatus) -> list[str]:
    """Every stored label that means `status`, for filtering rows in storage."""
    status = CardStatus(status)
    return [status.value] + sorted(
        label for label, canonical in LEGACY_CARD_STATUSES.items() if canonical is status
    )


def parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def effective_status(card: dict, now: datetime | None = None) -> CardStatus:
    """Stored status, with activated cards past their expiry reported as expired."""
    status = parse_card_status(card.get("status"))
    if status is CardStatus.ACTIVATED:
        expires_at = parse_timestamp(card.get("expires_at"))
        if expires_at and (now or datetime.now(timezone.utc)) > expires_at:
            return CardStatus.EXPIRED
    return status
