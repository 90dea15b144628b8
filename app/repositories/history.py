"""Append-only audit logs for card assignment and card code changes."""

from database.connection import get_db, with_retry


class AssignmentHistoryRepository:

    @staticmethod
    @with_retry()
    def append(
        card_id: str,
        action: str,
        performed_by: str,
        performed_by_type: str,
        clinic_id: str | None = None,
        previous_clinic_id: str | None = None,
        card_number: int | None = None,
        details: dict | None = None,
    ) -> dict | None:
        db = get_db()
        result = db.table("assignment_history").insert({
            "card_id": card_id,
            "card_number": card_number,
            "action": action,
            "clinic_id": clinic_id,
            "previous_clinic_id": previous_clinic_id,
            "performed_by": performed_by,
            "performed_by_type": performed_by_type,
            "details": details or {},
        }).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def append_many(rows: list[dict]) -> int:
        if not rows:
            return 0
        db = get_db()
        result = db.table("assignment_history").insert(rows).execute()
        return len(result.data) if result and result.data else 0

    @staticmethod
    @with_retry()
    def get_for_card(card_id: str) -> list[dict]:
        db = get_db()
        result = db.table("assignment_history").select("*").eq(
            "card_id", card_id
        ).order("created_at", desc=True).execute()
        return result.data if result and result.data else []


class CardCodeHistoryRepository:

    @staticmethod
    @with_retry()
    def append(
        card_id: str,
        change_type: str,
        changed_by: str,
        changed_by_type: str,
        field_name: str | None = None,
        old_value=None,
        new_value=None,
    ) -> dict | None:
        db = get_db()
        result = db.table("card_code_history").insert({
            "card_id": card_id,
            "change_type": change_type,
            "field_name": field_name,
            "old_value": old_value,
            "new_value": new_value,
            "changed_by": changed_by,
            "changed_by_type": changed_by_type,
        }).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_for_card(card_id: str) -> list[dict]:
        db = get_db()
        result = db.table("card_code_history").select("*").eq(
            "card_id", card_id
        ).order("created_at", desc=True).execute()
        return result.data if result and result.data else []
