"""
Tests for perk templates and their mirroring to clinics.

These tests verify:
  - Creating an active template mirrors it to every clinic exactly once
  - New clinics receive every active template
  - System default templates cannot be edited or deleted
  - Clinics can only customize their own perks
"""

import pytest

from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.repositories.clinic_perk import ClinicPerkRepository
from app.repositories.system_version import SystemVersionRepository
from app.services.clinics import create_clinic
from app.services.perk_mirroring import (
    create_perk_template,
    delete_perk_template,
    mirror_template_to_all_clinics,
    mirror_templates_to_clinic,
    update_customization,
    update_perk_template,
)


@pytest.fixture
def system_template(fake_db):
    template = {
        "id": "tmpl-system",
        "name": "Annual check-up",
        "perk_type": "checkup",
        "default_value": 0,
        "is_active": True,
        "is_default": True,
        "is_system_default": True,
    }
    fake_db.rows("perk_templates").append(template)
    return template


class TestMirroring:

    def test_active_template_mirrored_to_all_clinics(self, make_clinic, admin):
        first, second = make_clinic("CVT001"), make_clinic("DEN002")

        template, mirror = create_perk_template("Free x-ray", "xray", admin, default_value=250)

        assert mirror.created == 2
        assert mirror.already_present == 0
        for clinic in (first, second):
            row = ClinicPerkRepository.get(clinic["id"], template["id"])
            assert row["custom_name"] == "Free x-ray"
            assert row["custom_value"] == 250
            assert row["is_enabled"] is True

    def test_mirroring_twice_creates_nothing(self, make_clinic, admin, fake_db):
        make_clinic("CVT001")
        make_clinic("DEN002")
        template, _ = create_perk_template("Free x-ray", "xray", admin)

        again = mirror_template_to_all_clinics(template["id"])

        assert again.created == 0
        assert again.already_present == 2
        assert len(fake_db.rows("clinic_perk_customizations")) == 2

    def test_new_clinic_gets_active_templates(self, admin, default_perks):
        create_perk_template("Retired perk", "retired", admin, is_active=False)

        clinic, mirror = create_clinic("Smile Clinic", "smile1", admin, region_code="03")

        assert clinic["clinic_code"] == "SMILE1"
        assert mirror.created == 2
        assert len(ClinicPerkRepository.get_for_clinic(clinic["id"])) == 2
        assert mirror_templates_to_clinic(clinic["id"]).created == 0

    def test_inactive_template_not_mirrored_until_activated(self, clinic, admin):
        template, mirror = create_perk_template("Whitening", "whitening", admin, is_active=False)
        assert mirror is None
        assert ClinicPerkRepository.get(clinic["id"], template["id"]) is None

        update_perk_template(template["id"], admin, is_active=True)
        assert ClinicPerkRepository.get(clinic["id"], template["id"]) is not None

    def test_mirror_unknown_template(self):
        with pytest.raises(NotFoundError):
            mirror_template_to_all_clinics("missing")


class TestTemplateGovernance:

    def test_duplicate_perk_type(self, admin):
        create_perk_template("Free x-ray", "xray", admin)
        with pytest.raises(ConflictError) as exc:
            create_perk_template("X-ray again", "xray", admin)
        assert exc.value.field == "perk_type"

    def test_negative_value_rejected(self, admin):
        with pytest.raises(ValidationError):
            create_perk_template("Broken", "broken", admin, default_value=-5)

    def test_clinic_cannot_create_templates(self, clinic_actor):
        with pytest.raises(ForbiddenError):
            create_perk_template("Free x-ray", "xray", clinic_actor)

    def test_system_default_is_protected(self, system_template, admin):
        with pytest.raises(ForbiddenError):
            update_perk_template(system_template["id"], admin, name="Renamed")
        with pytest.raises(ForbiddenError):
            delete_perk_template(system_template["id"], admin)

    def test_delete_removes_customizations(self, clinic, admin, fake_db):
        template, _ = create_perk_template("Free x-ray", "xray", admin)

        assert delete_perk_template(template["id"], admin) is True
        assert fake_db.rows("clinic_perk_customizations") == []
        assert fake_db.rows("perk_templates") == []

    def test_template_changes_bump_perks_version(self, admin):
        template, _ = create_perk_template("Free x-ray", "xray", admin)
        update_perk_template(template["id"], admin, default_value=100)
        assert SystemVersionRepository.get("perks")["version_number"] == 2


class TestCustomizations:

    def test_clinic_customizes_own_perk(self, clinic, clinic_actor, default_perks):
        row = update_customization(
            clinic["id"], default_perks[0]["id"], clinic_actor, custom_name="Cleaning on us", custom_value=450
        )
        assert row["custom_name"] == "Cleaning on us"
        assert row["custom_value"] == 450
        assert SystemVersionRepository.get("settings")["version_number"] == 1

    def test_clinic_cannot_customize_other_clinic(self, make_clinic, clinic_actor, default_perks):
        other = make_clinic("DEN002")
        with pytest.raises(ForbiddenError):
            update_customization(other["id"], default_perks[0]["id"], clinic_actor, is_enabled=False)

    def test_unknown_customization(self, clinic, admin):
        with pytest.raises(NotFoundError):
            update_customization(clinic["id"], "missing", admin, is_enabled=False)
