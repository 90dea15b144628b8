from database.connection import get_db, with_retry


class SessionStateRepository:
    """Autosaved form drafts keyed by (user_id, component_name)."""

    @staticmethod
    @with_retry()
    def upsert(
        user_id: str,
        component_name: str,
        form_data: dict,
        last_saved: str,
        expires_at: str,
        user_type: str = "admin",
        metadata: dict | None = None,
    ) -> dict | None:
        db = get_db()
        result = db.table("user_session_state").upsert(
            {
                "user_id": user_id,
                "user_type": user_type,
                "component_name": component_name,
                "form_data": form_data,
                "metadata": metadata or {},
                "last_saved": last_saved,
                "expires_at": expires_at,
            },
            on_conflict="user_id,component_name",
        ).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_active(user_id: str, component_name: str, now: str) -> dict | None:
        """Get a draft unless it has expired."""
        db = get_db()
        result = db.table("user_session_state").select("*").eq(
            "user_id", user_id
        ).eq(
            "component_name", component_name
        ).gt("expires_at", now).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def delete(user_id: str, component_name: str) -> bool:
        db = get_db()
        result = db.table("user_session_state").delete().eq(
            "user_id", user_id
        ).eq("component_name", component_name).execute()
        return bool(result and result.data and len(result.data) > 0)

    @staticmethod
    @with_retry()
    def delete_expired(now: str) -> int:
        db = get_db()
        result = db.table("user_session_state").delete().lte("expires_at", now).execute()
        return len(result.data) if result.data else 0
