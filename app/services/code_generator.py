"""
Batch number, control number and passcode generation, plus normalization.

Three generation modes:
    auto    time-based batch ids, index-based control numbers, random passcodes
    manual  caller-supplied values, validated against the same shape rules
    range   ids derived from an explicit card sequence range

normalize_code() maps every accepted surface form of a code to one canonical
string and is idempotent. Uniqueness across all cards is enforced by storage
constraints, not here.
"""
import re
import secrets
import string
import time

from app.core.config import settings
from app.core.errors import RangeExhaustedError, ValidationError
from app.domain.card_codes import canonical_sequence_key, parse_sequence
from app.domain.statuses import CodeType, GenerationMode

PASSCODE_DIGITS = 4

_WHITESPACE = re.compile(r"\s+")
_DASH_RUNS = re.compile(r"-{2,}")
_TEMPLATE_RUN = re.compile(r"#+")
_BASE36 = string.digits + string.ascii_uppercase

LOCATION_PREFIX_PATTERN = re.compile(r"^[A-Z]{2,3}$")
PASSCODE_LOCATION_PATTERN = re.compile(r"^[A-Z]{3}$")
CODE_PATTERN = re.compile(r"^[A-Z0-9][A-Z0-9-]{1,30}[A-Z0-9]$")
PASSCODE_PATTERN = re.compile(r"^[A-Z]{3}\d{4}$")
# Accepted on lookup only: ___1234 (location not yet attached) and
# all-digit passcodes printed on first-generation cards.
LOOKUP_PASSCODE_PATTERN = re.compile(r"^(?:[A-Z]{3}|_{3})\d{4}$|^\d{6,7}$")

_AUTO_BATCH_DASHLESS = re.compile(r"^([A-Z]{2,3})(B\d{6}[A-Z0-9]{2})$")
_RANGE_BATCH_DASHLESS = re.compile(r"^([A-Z]{2,3})(R\d{5})-?(\d{5})$")


def _clean(value, field: str) -> str:
    if value is None:
        raise ValidationError(field, "is required")
    cleaned = _WHITESPACE.sub("", str(value)).upper()
    if not cleaned:
        raise ValidationError(field, "is required", value)
    return cleaned


def _collapse_dashes(text: str) -> str:
    return _DASH_RUNS.sub("-", text).strip("-")


def parse_mode(mode) -> GenerationMode:
    try:
        return GenerationMode(mode)
    except ValueError:
        raise ValidationError("mode", f"unknown generation mode '{mode}'", mode)


def _location_prefix(location_prefix: str | None) -> str:
    prefix = _clean(location_prefix or settings.default_location_prefix, "location_prefix")
    if not LOCATION_PREFIX_PATTERN.match(prefix):
        raise ValidationError("location_prefix", "must be 2 or 3 letters", location_prefix)
    return prefix


def validate_range(card_range, maximum: int | None = None) -> tuple[int, int]:
    """Validate a closed [start, end] interval on the card sequence."""
    maximum = maximum or settings.card_sequence_max
    try:
        start, end = (int(bound) for bound in card_range)
    except (TypeError, ValueError):
        raise ValidationError("card_range", "must be a (start, end) pair of integers", card_range)

    if start < 1 or end < start:
        raise ValidationError("card_range", "must satisfy 1 <= start <= end", card_range)
    if end > maximum:
        raise RangeExhaustedError(
            "card_range",
            requested=end - start + 1,
            available=max(0, maximum - start + 1),
        )
    return start, end


# ============================================
# Normalization
# ============================================

def _normalize_control(value, field: str) -> str:
    cleaned = _collapse_dashes(_clean(value, field))
    sequence = parse_sequence(cleaned)
    if sequence is not None:
        return canonical_sequence_key(sequence)

    if not CODE_PATTERN.match(cleaned):
        raise ValidationError(field, "may only contain letters, digits and dashes", value)

    # Index suffix is at least 3 digits: MO-C000123AB-7 == MO-C000123AB-007
    head, sep, tail = cleaned.rpartition("-")
    if sep and tail.isdigit() and len(tail) < 3:
        cleaned = f"{head}-{tail.zfill(3)}"
    return cleaned


def _normalize_batch(value, field: str) -> str:
    cleaned = _collapse_dashes(_clean(value, field))
    if "-" not in cleaned:
        auto = _AUTO_BATCH_DASHLESS.match(cleaned)
        ranged = _RANGE_BATCH_DASHLESS.match(cleaned)
        if auto:
            cleaned = f"{auto.group(1)}-{auto.group(2)}"
        elif ranged:
            cleaned = f"{ranged.group(1)}-{ranged.group(2)}-{ranged.group(3)}"

    if not CODE_PATTERN.match(cleaned):
        raise ValidationError(field, "may only contain letters, digits and dashes", value)
    return cleaned


def _normalize_passcode(value, field: str) -> str:
    cleaned = _clean(value, field).replace("-", "")
    if not LOOKUP_PASSCODE_PATTERN.match(cleaned):
        raise ValidationError(field, "is not a valid passcode", value)
    return cleaned


_NORMALIZERS = {
    CodeType.CONTROL: (_normalize_control, "control_number"),
    CodeType.BATCH: (_normalize_batch, "batch_number"),
    CodeType.PASSCODE: (_normalize_passcode, "passcode"),
}


def normalize_code(value, code_type, field: str | None = None) -> str:
    """Map any accepted surface form of a code to its canonical string.

    Idempotent: normalize_code(normalize_code(x, t), t) == normalize_code(x, t).

    Raises:
        ValidationError: if the value is empty or not an accepted form.
    """
    try:
        code_type = CodeType(code_type)
    except ValueError:
        raise ValidationError("code_type", f"unknown code type '{code_type}'", code_type)

    normalizer, default_field = _NORMALIZERS[code_type]
    return normalizer(value, field or default_field)


# ============================================
# Generation
# ============================================

def generate_batch_number(
    mode=GenerationMode.AUTO,
    custom_input: str | None = None,
    location_prefix: str | None = None,
    *,
    card_range: tuple[int, int] | None = None,
    now_ms: int | None = None,
) -> str:
    """Produce a batch number.

    auto:   <prefix>-B<last 6 digits of epoch ms><2 random base36>, e.g. MO-B000123AB
    manual: custom_input, validated and normalized
    range:  <prefix>-R<start:05>-<end:05>, e.g. MO-R00101-00150
    """
    mode = parse_mode(mode)

    if mode is GenerationMode.MANUAL:
        if custom_input is None or not str(custom_input).strip():
            raise ValidationError("custom_input", "is required in manual mode")
        return normalize_code(custom_input, CodeType.BATCH, field="custom_input")

    prefix = _location_prefix(location_prefix)

    if mode is GenerationMode.RANGE:
        if card_range is None:
            raise ValidationError("card_range", "is required in range mode")
        start, end = validate_range(card_range)
        return f"{prefix}-R{start:05d}-{end:05d}"

    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    timestamp = str(millis)[-6:].zfill(6)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(2))
    return f"{prefix}-B{timestamp}{suffix}"


def _render_template(custom_format: str | None, card_index: int) -> str:
    if not custom_format or not custom_format.strip():
        raise ValidationError("custom_format", "is required in manual mode")

    template = _WHITESPACE.sub("", custom_format).upper()
    runs = _TEMPLATE_RUN.findall(template)
    if len(runs) > 1:
        raise ValidationError("custom_format", "may contain only one '#' placeholder run", custom_format)

    if not runs:
        if card_index > 1:
            raise ValidationError(
                "custom_format",
                "needs a '#' placeholder run to number more than one card",
                custom_format,
            )
        return normalize_code(template, CodeType.CONTROL, field="custom_format")

    width = len(runs[0])
    if card_index >= 10 ** width:
        raise RangeExhaustedError("custom_format", requested=card_index, available=10 ** width - 1)

    rendered = _TEMPLATE_RUN.sub(str(card_index).zfill(width), template)
    return normalize_code(rendered, CodeType.CONTROL, field="custom_format")


def generate_control_number(
    batch_prefix: str,
    card_index: int,
    mode=GenerationMode.AUTO,
    custom_format: str | None = None,
) -> str:
    """Build a control number for the card at card_index (1-based) of a batch.

    auto:   batch number with its B marker swapped for C, plus a 3-digit index,
            e.g. MO-B000123AB -> MO-C000123AB-001
    range:  card_index is the absolute sequence number, e.g. MO-C00101
    manual: custom_format with its '#' run replaced by the zero-padded index,
            e.g. MOC-###### -> MOC-000042; a template without '#' is a literal
            code and only valid for a single card

    Distinct indexes always give distinct results within one batch.
    """
    mode = parse_mode(mode)
    if not isinstance(card_index, int) or card_index < 1:
        raise ValidationError("card_index", "must be a positive integer", card_index)

    if mode is GenerationMode.MANUAL:
        return _render_template(custom_format, card_index)

    batch = normalize_code(batch_prefix, CodeType.BATCH, field="batch_prefix")

    if mode is GenerationMode.RANGE:
        if card_index > settings.card_sequence_max:
            raise RangeExhaustedError(
                "card_index", requested=card_index, available=settings.card_sequence_max
            )
        location = batch.split("-", 1)[0]
        return f"{location}-C{card_index:05d}"

    head, sep, body = batch.partition("-")
    stem = f"{head}-C{body[1:]}" if sep and body.startswith("B") else batch
    return f"{stem}-{card_index:03d}"


def generate_passcode(
    location_code: str | None = None,
    mode=GenerationMode.AUTO,
    custom_passcode: str | None = None,
) -> str:
    """Produce a 7-character passcode: 3-letter location + 4 digits, e.g. CAV0427."""
    mode = parse_mode(mode)

    location = _clean(location_code or settings.default_passcode_location, "location_code")
    if not PASSCODE_LOCATION_PATTERN.match(location):
        raise ValidationError("location_code", "must be exactly 3 letters", location_code)

    if mode is GenerationMode.MANUAL:
        if custom_passcode is None or not str(custom_passcode).strip():
            raise ValidationError("custom_passcode", "is required in manual mode")
        passcode = _clean(custom_passcode, "custom_passcode").replace("-", "")
        if not PASSCODE_PATTERN.match(passcode):
            raise ValidationError(
                "custom_passcode", "must be 3 letters followed by 4 digits", custom_passcode
            )
        return passcode

    digits = "".join(secrets.choice(string.digits) for _ in range(PASSCODE_DIGITS))
    return f"{location}{digits}"
