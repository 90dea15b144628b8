from database.connection import get_db, with_retry


class BatchRepository:

    @staticmethod
    @with_retry()
    def create(
        batch_number: str,
        total_cards: int,
        generation_method: str,
        batch_metadata: dict | None = None,
        created_by: str | None = None,
        notes: str | None = None,
    ) -> dict | None:
        """Create a batch row. Raises APIError (23505) if the batch number is taken."""
        db = get_db()
        data = {
            "batch_number": batch_number,
            "total_cards": total_cards,
            "cards_generated": 0,
            "batch_status": "generating",
            "generation_method": generation_method,
            "batch_metadata": batch_metadata or {},
        }
        if created_by:
            data["created_by"] = created_by
        if notes:
            data["notes"] = notes
        result = db.table("card_batches").insert(data).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_by_id(batch_id: str) -> dict | None:
        db = get_db()
        result = db.table("card_batches").select("*").eq("id", batch_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_by_batch_number(batch_number: str) -> dict | None:
        db = get_db()
        result = db.table("card_batches").select("*").eq("batch_number", batch_number).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_all(limit: int = 100, offset: int = 0) -> list[dict]:
        """List batches, newest first."""
        db = get_db()
        result = db.table("card_batches").select("*").order(
            "created_at", desc=True
        ).range(offset, offset + limit - 1).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def update(batch_id: str, **kwargs) -> dict | None:
        db = get_db()
        result = db.table("card_batches").update(kwargs).eq("id", batch_id).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def count() -> int:
        db = get_db()
        result = db.table("card_batches").select("id", count="exact").execute()
        return result.count if result.count is not None else 0

    @staticmethod
    @with_retry()
    def get_incomplete() -> list[dict]:
        """Batches still generating or left partial. Their sequences stay reserved."""
        db = get_db()
        result = db.table("card_batches").select("*").in_(
            "batch_status", ["generating", "partial"]
        ).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def delete(batch_id: str) -> bool:
        db = get_db()
        result = db.table("card_batches").delete().eq("id", batch_id).execute()
        return bool(result and result.data and len(result.data) > 0)
