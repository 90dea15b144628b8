from datetime import datetime, timezone

from database.connection import get_db, with_retry


class SystemVersionRepository:

    @staticmethod
    @with_retry()
    def get(component: str) -> dict | None:
        db = get_db()
        result = db.table("system_versions").select("*").eq("component", component).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_all() -> list[dict]:
        db = get_db()
        result = db.table("system_versions").select("*").order("component").execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def create(component: str, version_number: int, change_description: str | None = None) -> dict | None:
        """Insert the first version row for a component. Raises APIError (23505) on a race."""
        db = get_db()
        result = db.table("system_versions").insert({
            "component": component,
            "version_number": version_number,
            "change_description": change_description,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def compare_and_set(
        component: str,
        expected: int,
        version_number: int,
        change_description: str | None = None,
    ) -> dict | None:
        """Set a new version only if the stored one still equals `expected`.

        Returns None when another writer bumped the component in between.
        """
        db = get_db()
        result = db.table("system_versions").update({
            "version_number": version_number,
            "change_description": change_description,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }).eq("component", component).eq("version_number", expected).execute()
        return result.data[0] if result and result.data else None
