# Overview: In-process notification bus for user/location row changes.

"""
Change Feed

location_service publishes one UserChange after every committed location
write (new fix, sharing stopped, operator clear/seed). Dashboards subscribe
with a predicate so they only wake up for the changes they display.

Callbacks run synchronously on the publishing thread, outside the feed's
lock. A failing subscriber is logged and does not affect the others.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from .records import LocationFix


logger = logging.getLogger(__name__)

CHANGE_LOCATION = "location"
CHANGE_SHARING_STOPPED = "sharing_stopped"
CHANGE_CLEARED = "cleared"


@dataclass(frozen=True)
class UserChange:
    user_id: int
    role: str
    location_sharing: bool
    location: LocationFix | None = None
    kind: str = CHANGE_LOCATION


def sharing_only(change: UserChange) -> bool:
    return change.location_sharing


class Subscription:
    def __init__(self, feed: "ChangeFeed", callback: Callable[[UserChange], None], predicate):
        self._feed = feed
        self.callback = callback
        self.predicate = predicate
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._feed._remove(self)


class ChangeFeed:
    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(
        self,
        callback: Callable[[UserChange], None],
        predicate: Callable[[UserChange], bool] | None = None,
    ) -> Subscription:
        subscription = Subscription(self, callback, predicate)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, change: UserChange) -> int:
        """Deliver `change` to matching subscribers. Returns how many were notified."""
        with self._lock:
            targets = list(self._subscriptions)
        delivered = 0
        for subscription in targets:
            if not subscription.active:
                continue
            if subscription.predicate is not None and not subscription.predicate(change):
                continue
            try:
                subscription.callback(change)
            except Exception:
                logger.exception("Change feed subscriber failed for user %s", change.user_id)
                continue
            delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
