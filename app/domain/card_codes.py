"""
Card identifier value object.

A card has one canonical identity, its sequence number (1..N). Stored rows
carry three textual renderings of it for the portals that still search by
them, all of which normalize to the same key:

    control_number          legacy      MOC-00042
    control_number_v2       v2          MOC-__-____-00042 / MOC-01-CVT1-00042
    unified_control_number  unified     MOC-00042-01-CVT1

A code printed by a batch that carries no sequence (MO-C000123AB-003,
DEN-0042) is kept apart in printed_control_number.

CardIdentifier is the only thing that writes those columns, so they cannot
drift apart. parse_sequence() is the inverse for every sequence-bearing form.
"""
import re
from dataclasses import dataclass, replace

SEQUENCE_PREFIX = "MOC"
BLANK_LOCATION = "__"
BLANK_CLINIC = "____"

LOCATION_CODE_PATTERN = re.compile(r"^[A-Z0-9]{2,3}$")
CLINIC_CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,10}$")

_SEQUENCE_FORMS = (
    # 00042 / 42
    re.compile(r"^(\d{1,5})$"),
    # MOC-00042 / MOC00042 / MOC-42
    re.compile(r"^MOC-?(\d{1,5})$"),
    # MOC-01-CVT1-00042 / MOC-__-____-00042
    re.compile(r"^MOC-(?:[A-Z0-9]{2,3}|_{2})-(?:[A-Z0-9]{3,10}|_{4})-(\d{5})$"),
    # v2 typed without dashes: MOC01123400042
    re.compile(r"^MOC(?:\d{2}|_{2})(?:\d{4}|_{4})(\d{5})$"),
    # MOC-00042-01-CVT1
    re.compile(r"^MOC-(\d{5})-[A-Z0-9]{1,6}-[A-Z0-9]{3,10}$"),
)


def parse_sequence(text: str) -> int | None:
    """Extract the card sequence number from a cleaned, upper-cased code.

    Returns None when the text is not one of the sequence-bearing forms.
    """
    for pattern in _SEQUENCE_FORMS:
        match = pattern.match(text)
        if match:
            sequence = int(match.group(1))
            return sequence if sequence > 0 else None
    return None


def canonical_sequence_key(sequence: int) -> str:
    return f"{SEQUENCE_PREFIX}-{sequence:05d}"


@dataclass(frozen=True)
class CardIdentifier:
    sequence: int
    location_code: str | None = None
    clinic_code: str | None = None
    printed: str | None = None  # batch-printed control number, if any

    @property
    def canonical_key(self) -> str:
        return canonical_sequence_key(self.sequence)

    @property
    def reference(self) -> str:
        return f"{self.sequence:05d}"

    @property
    def is_qualified(self) -> bool:
        return bool(self.location_code and self.clinic_code)

    def legacy(self) -> str:
        return self.canonical_key

    def v2(self) -> str:
        location = self.location_code if self.is_qualified else BLANK_LOCATION
        clinic = self.clinic_code if self.is_qualified else BLANK_CLINIC
        return f"{SEQUENCE_PREFIX}-{location}-{clinic}-{self.reference}"

    def unified(self) -> str | None:
        if not self.is_qualified:
            return None
        return f"{SEQUENCE_PREFIX}-{self.reference}-{self.location_code}-{self.clinic_code}"

    def sequence_forms(self) -> list[str]:
        """Every sequence-bearing rendering of this card."""
        forms = [self.reference, self.canonical_key, self.v2()]
        unified = self.unified()
        if unified:
            forms.append(unified)
        return forms

    def columns(self) -> dict:
        """Identifier columns of the cards table."""
        return {
            "card_number": self.sequence,
            "control_number": self.legacy(),
            "control_number_v2": self.v2(),
            "unified_control_number": self.unified(),
            "printed_control_number": self.printed,
            "location_code": self.location_code,
            "clinic_code": self.clinic_code,
        }

    def qualified(self, location_code: str, clinic_code: str) -> "CardIdentifier":
        return replace(self, location_code=location_code, clinic_code=clinic_code)

    def unqualified(self) -> "CardIdentifier":
        return replace(self, location_code=None, clinic_code=None)

    @classmethod
    def from_row(cls, card: dict) -> "CardIdentifier":
        printed = card.get("printed_control_number")
        if printed is None:
            # Rows from before the printed column kept the batch code in control_number
            legacy = card.get("control_number")
            if legacy and parse_sequence(legacy) is None:
                printed = legacy
        return cls(
            sequence=card["card_number"],
            location_code=card.get("location_code"),
            clinic_code=card.get("clinic_code"),
            printed=printed,
        )
