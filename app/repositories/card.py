from database.connection import get_db, with_retry

from app.domain.statuses import CardStatus, stored_labels

# PostgREST caps a single response at 1000 rows
PAGE_SIZE = 1000

IDENTIFIER_COLUMNS = ("control_number", "control_number_v2", "unified_control_number", "printed_control_number")


class CardRepository:

    @staticmethod
    @with_retry()
    def insert_many(rows: list[dict]) -> list[dict]:
        """Insert a chunk of generated cards. Raises APIError on any conflict."""
        if not rows:
            return []
        db = get_db()
        result = db.table("cards").insert(rows).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def get_by_id(card_id: str) -> dict | None:
        db = get_db()
        result = db.table("cards").select("*").eq("id", card_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_by_card_number(card_number: int) -> dict | None:
        db = get_db()
        result = db.table("cards").select("*").eq("card_number", card_number).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_by_identifier(column: str, value: str) -> dict | None:
        """Get a card by one of its textual identifier columns."""
        if column not in IDENTIFIER_COLUMNS:
            raise ValueError(f"Unknown identifier column: {column}")
        db = get_db()
        result = db.table("cards").select("*").eq(column, value).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_max_card_number() -> int:
        """Highest sequence number in use, 0 when there are no cards."""
        db = get_db()
        result = db.table("cards").select("card_number").order(
            "card_number", desc=True
        ).limit(1).execute()
        return result.data[0]["card_number"] if result and result.data else 0

    @staticmethod
    @with_retry()
    def _page_in_range(start: int, end: int, offset: int) -> list[dict]:
        db = get_db()
        result = db.table("cards").select("*").gte(
            "card_number", start
        ).lte(
            "card_number", end
        ).order("card_number").range(offset, offset + PAGE_SIZE - 1).execute()
        return result.data if result and result.data else []

    @staticmethod
    def list_in_range(start: int, end: int) -> list[dict]:
        """All cards with start <= card_number <= end, in sequence order.

        Pages through the result so ranges larger than one response are complete.
        """
        cards: list[dict] = []
        offset = 0
        while True:
            page = CardRepository._page_in_range(start, end, offset)
            cards.extend(page)
            if len(page) < PAGE_SIZE:
                return cards
            offset += PAGE_SIZE

    @staticmethod
    @with_retry()
    def _positions_page(batch_id: str, offset: int) -> list[dict]:
        db = get_db()
        result = db.table("cards").select("batch_position").eq(
            "batch_id", batch_id
        ).order("batch_position").range(offset, offset + PAGE_SIZE - 1).execute()
        return result.data if result and result.data else []

    @staticmethod
    def get_batch_positions(batch_id: str) -> set[int]:
        """Positions (1-based) already inserted for a batch."""
        positions: set[int] = set()
        offset = 0
        while True:
            page = CardRepository._positions_page(batch_id, offset)
            positions.update(row["batch_position"] for row in page if row.get("batch_position"))
            if len(page) < PAGE_SIZE:
                return positions
            offset += PAGE_SIZE

    @staticmethod
    @with_retry()
    def _clinic_ids_page(clinic_id: str, offset: int) -> list[dict]:
        db = get_db()
        result = db.table("cards").select("id").eq(
            "assigned_clinic_id", clinic_id
        ).order("card_number").range(offset, offset + PAGE_SIZE - 1).execute()
        return result.data if result and result.data else []

    @staticmethod
    def list_ids_for_clinic(clinic_id: str) -> list[str]:
        """Ids of every card assigned to a clinic."""
        ids: list[str] = []
        offset = 0
        while True:
            page = CardRepository._clinic_ids_page(clinic_id, offset)
            ids.extend(row["id"] for row in page)
            if len(page) < PAGE_SIZE:
                return ids
            offset += PAGE_SIZE

    @staticmethod
    @with_retry()
    def update(card_id: str, **kwargs) -> dict | None:
        db = get_db()
        result = db.table("cards").update(kwargs).eq("id", card_id).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def update_if_status(card_id: str, expected: list[CardStatus], **kwargs) -> dict | None:
        """Update a card only while it is still in one of the expected states.

        Returns None when another writer changed the status first.
        """
        labels = [label for status in expected for label in stored_labels(status)]
        db = get_db()
        result = db.table("cards").update(kwargs).eq("id", card_id).in_("status", labels).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def assign_unassigned(card_numbers: list[int], clinic_id: str, assigned_at: str) -> list[dict]:
        """Assign the given cards, skipping any that stopped being unassigned."""
        if not card_numbers:
            return []
        db = get_db()
        result = db.table("cards").update({
            "status": CardStatus.ASSIGNED.value,
            "assigned_clinic_id": clinic_id,
            "assigned_at": assigned_at,
        }).in_(
            "card_number", card_numbers
        ).in_(
            "status", stored_labels(CardStatus.UNASSIGNED)
        ).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def move_to_clinic(card_numbers: list[int], from_clinic_id: str, clinic_id: str, assigned_at: str) -> list[dict]:
        """Move assigned cards held by one clinic to another, skipping any activated since."""
        if not card_numbers:
            return []
        db = get_db()
        result = db.table("cards").update({
            "assigned_clinic_id": clinic_id,
            "assigned_at": assigned_at,
        }).in_(
            "card_number", card_numbers
        ).eq(
            "assigned_clinic_id", from_clinic_id
        ).in_(
            "status", stored_labels(CardStatus.ASSIGNED)
        ).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def count(
        status: CardStatus | None = None,
        batch_id: str | None = None,
        clinic_id: str | None = None,
        expires_before: str | None = None,
    ) -> int:
        """Count cards, optionally filtered. No row payload is fetched."""
        db = get_db()
        query = db.table("cards").select("id", count="exact")
        if status is not None:
            query = query.in_("status", stored_labels(status))
        if batch_id is not None:
            query = query.eq("batch_id", batch_id)
        if clinic_id is not None:
            query = query.eq("assigned_clinic_id", clinic_id)
        if expires_before is not None:
            query = query.lt("expires_at", expires_before)
        result = query.execute()
        return result.count if result.count is not None else 0
