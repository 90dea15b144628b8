from database.connection import get_db, with_retry


class PerkTemplateRepository:

    @staticmethod
    @with_retry()
    def create(
        name: str,
        perk_type: str,
        default_value: float = 0,
        description: str | None = None,
        category: str | None = None,
        is_active: bool = True,
        is_default: bool = False,
        created_by: str | None = None,
    ) -> dict | None:
        """Create a perk template. Raises APIError (23505) if perk_type exists."""
        db = get_db()
        data = {
            "name": name,
            "perk_type": perk_type,
            "default_value": default_value,
            "is_active": is_active,
            "is_default": is_default,
            "is_system_default": False,
        }
        if description:
            data["description"] = description
        if category:
            data["category"] = category
        if created_by:
            data["created_by"] = created_by
        result = db.table("perk_templates").insert(data).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_by_id(template_id: str) -> dict | None:
        db = get_db()
        result = db.table("perk_templates").select("*").eq("id", template_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_all(active_only: bool = False) -> list[dict]:
        db = get_db()
        query = db.table("perk_templates").select("*")
        if active_only:
            query = query.eq("is_active", True)
        result = query.order("name").execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def get_active_defaults() -> list[dict]:
        """Templates granted to every card on activation."""
        db = get_db()
        result = db.table("perk_templates").select("*").eq(
            "is_active", True
        ).eq("is_default", True).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def update(template_id: str, **kwargs) -> dict | None:
        db = get_db()
        result = db.table("perk_templates").update(kwargs).eq("id", template_id).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def delete(template_id: str) -> bool:
        db = get_db()
        result = db.table("perk_templates").delete().eq("id", template_id).execute()
        return bool(result and result.data and len(result.data) > 0)
