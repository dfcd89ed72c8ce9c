# Overview: Live location dashboard: periodic poll plus change-feed push, fanned out to one listener.

"""
LocationDashboard

Keeps one viewer's location list current. Two triggers cause a refetch:
- a poll tick every `poll_interval` seconds (default 30)
- a matching UserChange from the ChangeFeed

Scope 'sharing' only wakes up for changes where location_sharing is true;
users who stop sharing drop out on the next poll. Scope 'all' reacts to
every change.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from .change_feed import ChangeFeed, Subscription, UserChange, sharing_only
from .errors import TransientIOError
from .scheduling import Scheduler, TaskHandle


logger = logging.getLogger(__name__)

SCOPE_SHARING = "sharing"
SCOPE_ALL = "all"


class LocationDashboard:
    def __init__(
        self,
        *,
        scheduler: Scheduler,
        feed: ChangeFeed,
        fetch: Callable[[str], dict],
        listener: Callable[[dict], None],
        scope: str = SCOPE_SHARING,
        poll_interval: float = 30.0,
    ):
        self._scheduler = scheduler
        self._feed = feed
        self._fetch = fetch
        self._listener = listener
        self.scope = scope
        self._poll_interval = poll_interval

        self._lock = threading.Lock()
        self._poll: TaskHandle | None = None
        self._subscription: Subscription | None = None
        self.refresh_count = 0
        self.last_payload: dict | None = None

    @property
    def running(self) -> bool:
        return self._poll is not None

    def start(self) -> None:
        with self._lock:
            if self._poll is not None:
                return
            predicate = sharing_only if self.scope == SCOPE_SHARING else None
            self._subscription = self._feed.subscribe(self._on_change, predicate)
            self._poll = self._scheduler.call_every(
                self._poll_interval, self.refresh, name=f"dashboard-poll-{self.scope}"
            )
        self.refresh()

    def stop(self) -> None:
        with self._lock:
            if self._poll is not None:
                self._poll.cancel()
                self._poll = None
            if self._subscription is not None:
                self._subscription.cancel()
                self._subscription = None

    def _on_change(self, change: UserChange) -> None:
        logger.debug("Dashboard (%s) refetching after change for user %s", self.scope, change.user_id)
        self.refresh()

    def refresh(self) -> dict | None:
        """Refetch and push to the listener. A store outage skips this refresh."""
        try:
            payload = self._fetch(self.scope)
        except TransientIOError as exc:
            logger.warning("Dashboard refresh skipped: %s", exc)
            return None
        self.refresh_count += 1
        self.last_payload = payload
        self._listener(payload)
        return payload
