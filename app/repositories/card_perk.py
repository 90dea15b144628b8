from database.connection import get_db, with_retry

# Card ids per in.(...) filter
CARD_ID_CHUNK = 200


class CardPerkRepository:

    @staticmethod
    @with_retry()
    def get_for_card(card_id: str) -> list[dict]:
        db = get_db()
        result = db.table("card_perks").select("*").eq("card_id", card_id).order("perk_type").execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def get_granted_types(card_id: str) -> set[str]:
        db = get_db()
        result = db.table("card_perks").select("perk_type").eq("card_id", card_id).execute()
        return {row["perk_type"] for row in result.data} if result and result.data else set()

    @staticmethod
    @with_retry()
    def grant(rows: list[dict]) -> list[dict]:
        """Insert card perks, ignoring (card_id, perk_type) pairs already granted."""
        if not rows:
            return []
        db = get_db()
        result = db.table("card_perks").upsert(
            rows,
            on_conflict="card_id,perk_type",
            ignore_duplicates=True,
        ).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def claim(card_id: str, perk_type: str, clinic_id: str, claimed_at: str) -> dict | None:
        """Mark a perk claimed. Returns None if it was already claimed."""
        db = get_db()
        result = db.table("card_perks").update({
            "claimed": True,
            "claimed_at": claimed_at,
            "claimed_by_clinic_id": clinic_id,
        }).eq("card_id", card_id).eq("perk_type", perk_type).eq("claimed", False).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def reset_claims(card_id: str) -> int:
        db = get_db()
        result = db.table("card_perks").update({
            "claimed": False,
            "claimed_at": None,
            "claimed_by_clinic_id": None,
        }).eq("card_id", card_id).eq("claimed", True).execute()
        return len(result.data) if result.data else 0

    @staticmethod
    @with_retry()
    def delete_for_card(card_id: str) -> int:
        db = get_db()
        result = db.table("card_perks").delete().eq("card_id", card_id).execute()
        return len(result.data) if result.data else 0

    @staticmethod
    def count(claimed: bool | None = None, card_ids: list[str] | None = None) -> int:
        """Count perks, optionally only those of the given cards."""
        if card_ids is None:
            return CardPerkRepository._count(claimed)
        return sum(
            CardPerkRepository._count(claimed, card_ids[offset:offset + CARD_ID_CHUNK])
            for offset in range(0, len(card_ids), CARD_ID_CHUNK)
        )

    @staticmethod
    @with_retry()
    def _count(claimed: bool | None, card_ids: list[str] | None = None) -> int:
        db = get_db()
        query = db.table("card_perks").select("id", count="exact")
        if claimed is not None:
            query = query.eq("claimed", claimed)
        if card_ids is not None:
            query = query.in_("card_id", card_ids)
        result = query.execute()
        return result.count if result.count is not None else 0

    @staticmethod
    @with_retry()
    def get(card_id: str, perk_type: str) -> dict | None:
        db = get_db()
        result = db.table("card_perks").select("*").eq(
            "card_id", card_id
        ).eq("perk_type", perk_type).limit(1).execute()
        return result.data[0] if result and result.data else None
