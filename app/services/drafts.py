"""
Debounced autosave of in-progress form state.

A DraftSession belongs to one (user, component) pair. Every update()
restarts the save timer, so a burst of edits inside the delay window results
in a single write carrying the last state. Failed saves only set
`save_error`; the in-memory state is never rolled back.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from app.core.config import settings
from app.repositories.session_state import SessionStateRepository
from app.services.periodic import PeriodicTask

logger = logging.getLogger(__name__)

SAVE_FAILED = "Failed to save"


class DraftSession:

    def __init__(
        self,
        user_id: str,
        component_name: str,
        initial_state: dict | None = None,
        *,
        user_type: str = "admin",
        save_delay: float | None = None,
        expiry_hours: int | None = None,
    ):
        self.user_id = user_id
        self.component_name = component_name
        self.user_type = user_type
        self.save_delay = settings.draft_save_delay if save_delay is None else save_delay
        self.expiry_hours = expiry_hours or settings.draft_expiry_hours

        self._initial = dict(initial_state or {})
        self.state: dict = dict(self._initial)
        self.save_error: str | None = None
        self.last_saved: datetime | None = None

        self._timer: asyncio.TimerHandle | None = None
        self._save_task: asyncio.Task | None = None
        self._closed = False

    @property
    def has_pending_save(self) -> bool:
        return self._timer is not None

    async def load(self) -> dict:
        """Merge any unexpired saved draft over the initial state. Saved keys win."""
        now = datetime.now(timezone.utc).isoformat()
        row = await asyncio.to_thread(
            SessionStateRepository.get_active, self.user_id, self.component_name, now
        )
        if row:
            self.state = {**self.state, **(row.get("form_data") or {})}
            self.last_saved = _parse_time(row.get("last_saved"))
        return self.state

    def update(self, changes: dict | None = None, **fields) -> None:
        """Apply changes to the form state and restart the save timer."""
        if self._closed:
            raise RuntimeError(f"Draft session for {self.component_name} is closed")
        self.state.update(changes or {})
        self.state.update(fields)
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.save_delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self._closed:
            return
        previous = self._save_task
        self._save_task = asyncio.get_running_loop().create_task(self._save_after(previous))

    async def _save_after(self, previous: asyncio.Task | None) -> bool:
        # Saves are serialized so an older snapshot never lands last
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        return await self._save()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _save(self) -> bool:
        now = datetime.now(timezone.utc)
        try:
            await asyncio.to_thread(
                SessionStateRepository.upsert,
                self.user_id,
                self.component_name,
                dict(self.state),
                now.isoformat(),
                (now + timedelta(hours=self.expiry_hours)).isoformat(),
                self.user_type,
            )
        except Exception as e:
            logger.warning(f"Draft save failed for {self.user_id}/{self.component_name}: {e}")
            self.save_error = SAVE_FAILED
            return False

        self.save_error = None
        self.last_saved = now
        return True

    async def flush(self) -> bool:
        """Save immediately, replacing any pending timed save."""
        self._cancel_timer()
        await self._wait_for_save()
        return await self._save()

    async def clear(self) -> None:
        """Discard the saved draft and return to the initial state."""
        self._cancel_timer()
        await self._wait_for_save()
        await asyncio.to_thread(SessionStateRepository.delete, self.user_id, self.component_name)
        self.state = dict(self._initial)
        self.last_saved = None

    async def close(self) -> None:
        """Tear down without saving pending edits. An in-flight save completes."""
        self._closed = True
        self._cancel_timer()
        await self._wait_for_save()

    async def _wait_for_save(self) -> None:
        task, self._save_task = self._save_task, None
        if task is not None and not task.done():
            await task

    async def __aenter__(self):
        await self.load()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


def _parse_time(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# ============================================
# Stateless helpers for the HTTP layer
# ============================================

def load_draft(user_id: str, component_name: str) -> dict | None:
    now = datetime.now(timezone.utc).isoformat()
    return SessionStateRepository.get_active(user_id, component_name, now)


def save_draft(
    user_id: str,
    component_name: str,
    form_data: dict,
    user_type: str = "admin",
    metadata: dict | None = None,
) -> dict | None:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=settings.draft_expiry_hours)
    return SessionStateRepository.upsert(
        user_id,
        component_name,
        form_data,
        now.isoformat(),
        expires_at.isoformat(),
        user_type,
        metadata,
    )


def delete_draft(user_id: str, component_name: str) -> bool:
    return SessionStateRepository.delete(user_id, component_name)


def sweep_expired_drafts() -> int:
    """Delete every draft past its expiry. Returns the number removed."""
    now = datetime.now(timezone.utc).isoformat()
    removed = SessionStateRepository.delete_expired(now)
    if removed:
        logger.info(f"Removed {removed} expired drafts")
    return removed


class DraftSweeper(PeriodicTask):
    """Deletes expired drafts every `interval` seconds."""

    name = "draft-sweeper"

    def __init__(self, interval: float | None = None):
        super().__init__(interval or settings.draft_sweep_interval)

    async def tick(self) -> None:
        try:
            await asyncio.to_thread(sweep_expired_drafts)
        except Exception as e:
            logger.warning(f"Draft sweep failed: {e}")
