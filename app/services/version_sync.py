"""
Version counters per logical component and the polling reconciler.

Writers call bump_version() after each successful mutation. Readers hold a
VersionReconciler with a snapshot of last-seen versions; each poll diffs the
stored versions against it, records an UpdateNotification for every
component that moved forward and runs that component's refresh callbacks.

Consistency is eventual: a reader learns about a change at most one poll
interval after it happened.
"""
import asyncio
import inspect
import logging
import warnings
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from postgrest.exceptions import APIError

from app.core.config import settings
from app.core.errors import StaleReadWarning, is_unique_violation
from app.domain.schemas import UpdateNotification
from app.domain.statuses import SyncComponent
from app.repositories.system_version import SystemVersionRepository
from app.services.periodic import PeriodicTask

logger = logging.getLogger(__name__)

BUMP_ATTEMPTS = 5


def _try_bump(component: str, description: str | None) -> int | None:
    for _ in range(BUMP_ATTEMPTS):
        row = SystemVersionRepository.get(component)
        if row is None:
            try:
                SystemVersionRepository.create(component, 1, description)
                return 1
            except APIError as e:
                if not is_unique_violation(e):
                    raise
                continue

        current = int(row["version_number"])
        if SystemVersionRepository.compare_and_set(component, current, current + 1, description):
            logger.debug(f"{component} version {current} -> {current + 1}")
            return current + 1
        logger.info(f"Concurrent bump of {component} at v{current}, retrying")
    return None


def bump_version(component: SyncComponent | str, description: str | None = None) -> int | None:
    """Increment a component's version and return the new number.

    Uses compare-and-set on the stored value so two concurrent writers always
    produce two distinct, increasing versions. Callers have already committed
    their write, so a bump that cannot be stored is logged and None is
    returned; readers catch up on the next successful bump.
    """
    component = SyncComponent(component).value

    try:
        version = _try_bump(component, description)
    except (APIError, httpx.HTTPError) as e:
        logger.warning(f"Failed to bump {component} version: {e}")
        return None
    if version is None:
        logger.warning(f"Could not bump {component} version after {BUMP_ATTEMPTS} attempts")
    return version


def get_versions() -> dict[str, int]:
    return {row["component"]: int(row["version_number"]) for row in SystemVersionRepository.get_all()}


RefreshCallback = Callable[[UpdateNotification], Any]


class VersionReconciler(PeriodicTask):
    """Polls component versions and reconciles a local snapshot against them.

    Fetch and refresh failures are logged and swallowed: polling continues on
    the next interval. Each detected change is also emitted as a
    StaleReadWarning.
    """

    name = "version-reconciler"

    def __init__(
        self,
        fetch_versions: Callable[[], list[dict]] | None = None,
        *,
        interval: float | None = None,
        buffer_size: int | None = None,
        snapshot: dict[str, int] | None = None,
        prime_on_start: bool = True,
    ):
        super().__init__(interval or settings.version_poll_interval)
        self._fetch = fetch_versions or SystemVersionRepository.get_all
        self.snapshot: dict[str, int] = dict(snapshot or {})
        self.notifications: deque[UpdateNotification] = deque(
            maxlen=buffer_size or settings.notification_buffer_size
        )
        self._refreshers: dict[str, list[RefreshCallback]] = defaultdict(list)
        self._listeners: list[RefreshCallback] = []
        self._prime_on_start = prime_on_start

    def on_refresh(self, component: SyncComponent | str, callback: RefreshCallback) -> None:
        """Re-fetch hook for one component. May be sync or async."""
        self._refreshers[SyncComponent(component).value].append(callback)

    def subscribe(self, listener: RefreshCallback) -> None:
        """Called with every notification, for any component."""
        self._listeners.append(listener)

    def recent(self, limit: int | None = None) -> list[UpdateNotification]:
        """Notifications, newest first."""
        items = list(self.notifications)
        return items[:limit] if limit else items

    async def _fetch_versions(self) -> list[dict] | None:
        try:
            return await asyncio.to_thread(self._fetch)
        except Exception as e:
            logger.warning(f"Version poll failed: {e}")
            return None

    async def prime(self) -> None:
        """Take the current versions as the baseline without notifying."""
        rows = await self._fetch_versions()
        for row in rows or []:
            self.snapshot[row["component"]] = int(row["version_number"])

    async def on_start(self) -> None:
        if self._prime_on_start and not self.snapshot:
            await self.prime()

    async def tick(self) -> None:
        await self.poll_once()

    async def poll_once(self) -> list[UpdateNotification]:
        """Fetch versions once and reconcile. Returns the new notifications."""
        rows = await self._fetch_versions()
        if rows is None:
            return []

        detected = []
        for row in rows:
            component = row["component"]
            remote = int(row["version_number"])
            local = self.snapshot.get(component, 0)
            if remote <= local:
                continue

            notification = UpdateNotification(
                component=component,
                old_version=local,
                new_version=remote,
                description=row.get("change_description"),
                detected_at=datetime.now(timezone.utc),
            )
            self.snapshot[component] = remote
            self.notifications.appendleft(notification)
            detected.append(notification)
            warnings.warn(StaleReadWarning(component, local, remote), stacklevel=2)

            for callback in self._listeners + self._refreshers.get(component, []):
                await self._invoke(callback, notification)

        return detected

    async def _invoke(self, callback: RefreshCallback, notification: UpdateNotification) -> None:
        try:
            result = callback(notification)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Refresh of {notification.component} failed: {e}")
