from database.connection import get_db, with_retry

PAGE_SIZE = 1000


class ClinicRepository:

    @staticmethod
    @with_retry()
    def create(
        clinic_name: str,
        clinic_code: str,
        region_code: str | None = None,
        status: str = "active",
    ) -> dict | None:
        """Create a clinic. Raises APIError (23505) if the clinic code is taken."""
        db = get_db()
        data = {
            "clinic_name": clinic_name,
            "clinic_code": clinic_code,
            "status": status,
        }
        if region_code:
            data["region_code"] = region_code
        result = db.table("clinics").insert(data).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_by_id(clinic_id: str) -> dict | None:
        db = get_db()
        result = db.table("clinics").select("*").eq("id", clinic_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_all() -> list[dict]:
        db = get_db()
        result = db.table("clinics").select("*").order("clinic_name").execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def _ids_page(offset: int) -> list[dict]:
        db = get_db()
        result = db.table("clinics").select("id").order("id").range(
            offset, offset + PAGE_SIZE - 1
        ).execute()
        return result.data if result and result.data else []

    @staticmethod
    def get_all_ids() -> list[str]:
        """IDs of every clinic, regardless of status."""
        ids: list[str] = []
        offset = 0
        while True:
            page = ClinicRepository._ids_page(offset)
            ids.extend(row["id"] for row in page)
            if len(page) < PAGE_SIZE:
                return ids
            offset += PAGE_SIZE

    @staticmethod
    @with_retry()
    def count(status: str | None = None) -> int:
        db = get_db()
        query = db.table("clinics").select("id", count="exact")
        if status:
            query = query.eq("status", status)
        result = query.execute()
        return result.count if result.count is not None else 0
