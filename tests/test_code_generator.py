"""
Tests for batch/control number and passcode generation and code normalization.

These tests verify:
  - Auto-mode control numbers derive from the batch number and are distinct
  - Manual templates render, validate and run out of width cleanly
  - Range mode ids come from the sequence range and respect the maximum
  - normalize_code maps every surface form to one canonical string, idempotently
  - Passcodes are 3 letters + 4 digits
"""

import re

import pytest

from app.core.errors import RangeExhaustedError, ValidationError
from app.domain.statuses import CodeType, GenerationMode
from app.services.code_generator import (
    PASSCODE_PATTERN,
    generate_batch_number,
    generate_control_number,
    generate_passcode,
    normalize_code,
    validate_range,
)


class TestBatchNumbers:

    def test_auto_batch_number_uses_epoch_suffix(self):
        number = generate_batch_number(GenerationMode.AUTO, now_ms=1700000123456)
        assert re.fullmatch(r"MO-B123456[0-9A-Z]{2}", number)

    def test_auto_batch_number_custom_prefix(self):
        number = generate_batch_number("auto", location_prefix="cav", now_ms=42)
        assert number.startswith("CAV-B000042")

    def test_invalid_prefix_rejected(self):
        with pytest.raises(ValidationError) as exc:
            generate_batch_number("auto", location_prefix="M1")
        assert exc.value.field == "location_prefix"

    def test_manual_batch_number_is_normalized(self):
        assert generate_batch_number("manual", " mo-b000123ab ") == "MO-B000123AB"

    def test_manual_batch_number_required(self):
        with pytest.raises(ValidationError) as exc:
            generate_batch_number("manual", "   ")
        assert exc.value.field == "custom_input"

    def test_range_batch_number(self):
        assert generate_batch_number("range", card_range=(101, 150)) == "MO-R00101-00150"

    def test_range_mode_requires_range(self):
        with pytest.raises(ValidationError):
            generate_batch_number("range")

    def test_unknown_mode(self):
        with pytest.raises(ValidationError) as exc:
            generate_batch_number("sequential")
        assert exc.value.field == "mode"


class TestControlNumbers:

    def test_auto_control_numbers_from_batch(self):
        """Batch MO-B000123AB, 3 cards -> MO-C000123AB-001..003, all distinct."""
        numbers = [generate_control_number("MO-B000123AB", i, "auto") for i in (1, 2, 3)]
        assert numbers == ["MO-C000123AB-001", "MO-C000123AB-002", "MO-C000123AB-003"]

    def test_auto_control_numbers_distinct_for_large_batch(self):
        numbers = {generate_control_number("MO-B000123AB", i, "auto") for i in range(1, 2001)}
        assert len(numbers) == 2000

    def test_index_must_be_positive(self):
        with pytest.raises(ValidationError) as exc:
            generate_control_number("MO-B000123AB", 0, "auto")
        assert exc.value.field == "card_index"

    def test_range_control_number_uses_sequence(self):
        assert generate_control_number("MO-R00101-00150", 101, "range") == "MO-C00101"

    def test_range_control_number_beyond_maximum(self):
        with pytest.raises(RangeExhaustedError):
            generate_control_number("MO-R09999-10000", 10001, "range")

    def test_manual_template_renders_padded_index(self):
        assert generate_control_number("", 42, "manual", "moc-######") == "MOC-000042"

    def test_manual_template_without_placeholder_only_for_one_card(self):
        assert generate_control_number("", 1, "manual", "MOC-005000") == "MOC-005000"
        with pytest.raises(ValidationError) as exc:
            generate_control_number("", 2, "manual", "MOC-005000")
        assert exc.value.field == "custom_format"

    def test_manual_template_with_two_runs_rejected(self):
        with pytest.raises(ValidationError):
            generate_control_number("", 1, "manual", "A##-B##")

    def test_manual_template_width_exhausted(self):
        with pytest.raises(RangeExhaustedError) as exc:
            generate_control_number("", 100, "manual", "DEN-##")
        assert exc.value.available == 99

    def test_manual_template_required(self):
        with pytest.raises(ValidationError):
            generate_control_number("", 1, "manual", None)


class TestNormalization:

    @pytest.mark.parametrize("raw", [
        "42",
        "00042",
        "moc 42",
        "MOC00042",
        "MOC-00042",
        "MOC-01-CVT1-00042",
        "MOC-__-____-00042",
        "MOC-00042-01-CVT1",
    ])
    def test_sequence_forms_collapse_to_one_key(self, raw):
        assert normalize_code(raw, CodeType.CONTROL) == "MOC-00042"

    def test_short_index_suffix_is_padded(self):
        assert normalize_code("mo-c000123ab-7", "control") == "MO-C000123AB-007"

    def test_repeated_dashes_collapse(self):
        assert normalize_code("MO--C000123AB--001", "control") == "MO-C000123AB-001"

    def test_dashless_auto_batch(self):
        assert normalize_code("mob000123ab", CodeType.BATCH) == "MO-B000123AB"

    def test_dashless_range_batch(self):
        assert normalize_code("MOR0010100150", CodeType.BATCH) == "MO-R00101-00150"

    def test_passcode_forms(self):
        assert normalize_code("cav-0427", CodeType.PASSCODE) == "CAV0427"
        assert normalize_code("___0427", CodeType.PASSCODE) == "___0427"

    @pytest.mark.parametrize("raw,code_type", [
        ("MOC 42", "control"),
        ("mo-c000123ab-7", "control"),
        ("mob000123ab", "batch"),
        ("cav 0427", "passcode"),
    ])
    def test_idempotent(self, raw, code_type):
        once = normalize_code(raw, code_type)
        assert normalize_code(once, code_type) == once

    def test_empty_value_rejected(self):
        with pytest.raises(ValidationError) as exc:
            normalize_code("   ", "control")
        assert exc.value.field == "control_number"

    def test_invalid_characters_rejected(self):
        with pytest.raises(ValidationError):
            normalize_code("MO_C!23", "control")

    def test_bad_passcode_rejected(self):
        with pytest.raises(ValidationError):
            normalize_code("12", "passcode")

    def test_unknown_code_type(self):
        with pytest.raises(ValidationError) as exc:
            normalize_code("MOC-00042", "serial")
        assert exc.value.field == "code_type"


class TestPasscodes:

    def test_auto_passcode_default_location(self):
        passcode = generate_passcode()
        assert PASSCODE_PATTERN.match(passcode)
        assert passcode.startswith("PHL")

    def test_auto_passcode_custom_location(self):
        assert generate_passcode("cav").startswith("CAV")

    def test_location_must_be_three_letters(self):
        with pytest.raises(ValidationError) as exc:
            generate_passcode("CA")
        assert exc.value.field == "location_code"

    def test_manual_passcode(self):
        assert generate_passcode(mode="manual", custom_passcode="cav-0427") == "CAV0427"

    def test_manual_passcode_shape_enforced(self):
        with pytest.raises(ValidationError):
            generate_passcode(mode="manual", custom_passcode="CAV042")


class TestRanges:

    def test_valid_range(self):
        assert validate_range(("101", 150)) == (101, 150)

    def test_range_past_maximum(self):
        with pytest.raises(RangeExhaustedError) as exc:
            validate_range((9990, 10005))
        assert exc.value.available == 11

    @pytest.mark.parametrize("bad", [(0, 5), (10, 5), ("a", 3), None])
    def test_malformed_ranges(self, bad):
        with pytest.raises(ValidationError):
            validate_range(bad)
