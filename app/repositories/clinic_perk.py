from database.connection import get_db, with_retry


class ClinicPerkRepository:
    """Per-clinic customizations of perk templates, one row per (clinic, template)."""

    @staticmethod
    @with_retry()
    def get(clinic_id: str, template_id: str) -> dict | None:
        db = get_db()
        result = db.table("clinic_perk_customizations").select("*").eq(
            "clinic_id", clinic_id
        ).eq("perk_template_id", template_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_for_clinic(clinic_id: str) -> list[dict]:
        db = get_db()
        result = db.table("clinic_perk_customizations").select("*").eq(
            "clinic_id", clinic_id
        ).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def get_clinic_ids_for_template(template_id: str) -> set[str]:
        db = get_db()
        result = db.table("clinic_perk_customizations").select("clinic_id").eq(
            "perk_template_id", template_id
        ).execute()
        return {row["clinic_id"] for row in result.data} if result and result.data else set()

    @staticmethod
    @with_retry()
    def insert_missing(rows: list[dict]) -> int:
        """Insert customizations, ignoring pairs that already exist.

        Returns the number of rows actually created.
        """
        if not rows:
            return 0
        db = get_db()
        result = db.table("clinic_perk_customizations").upsert(
            rows,
            on_conflict="clinic_id,perk_template_id",
            ignore_duplicates=True,
        ).execute()
        return len(result.data) if result and result.data else 0

    @staticmethod
    @with_retry()
    def update(clinic_id: str, template_id: str, **kwargs) -> dict | None:
        db = get_db()
        result = db.table("clinic_perk_customizations").update(kwargs).eq(
            "clinic_id", clinic_id
        ).eq("perk_template_id", template_id).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def delete_for_template(template_id: str) -> int:
        db = get_db()
        result = db.table("clinic_perk_customizations").delete().eq(
            "perk_template_id", template_id
        ).execute()
        return len(result.data) if result.data else 0
