# Overview: Per-session location tracker, device-fed position provider, and tracker registry.

"""
Location Tracking

LIFECYCLE (one LocationTracker per field-staff user):
    STOPPED --start()--> ACTIVE --stop()--> STOPPED

- start(): one capture cycle right away, then one every `interval` seconds
- update_now(): one cycle now; when ACTIVE the periodic timer restarts from
  here so exactly one timer stays pending
- stop(): cancels timers and writes location_sharing=False
- schedule_autostart(delay): start() after a short settling delay (login)

LIVENESS: every start/stop/update_now bumps a generation counter. A cycle
remembers the generation it was scheduled under and re-checks it under the
tracker lock right before publishing, so a cycle that was overtaken (the
user logged out while the device was still resolving a fix) never writes.

FAILURES: PositionUnavailable and TransientIOError skip the tick with a
warning; the next tick tries again.

Positions come from the device: the client posts raw fixes to
/api/location/fix and ReportedPositionProvider hands the latest one to the
tracker, waiting up to the timeout when none is recent enough.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass

from flask import Flask, current_app, has_app_context

from .errors import PositionUnavailable, TransientIOError
from .records import LocationFix
from .scheduling import Scheduler, TaskHandle
from .services import location_service
from .time_utils import utcnow


logger = logging.getLogger(__name__)

STATE_STOPPED = "STOPPED"
STATE_ACTIVE = "ACTIVE"


@dataclass(frozen=True)
class PositionOptions:
    timeout_ms: int = 15_000
    max_cache_age_ms: int = 300_000
    high_accuracy: bool = True

    @classmethod
    def from_config(cls, config) -> "PositionOptions":
        return cls(
            timeout_ms=int(config.get("POSITION_TIMEOUT_MS", 15_000)),
            max_cache_age_ms=int(config.get("POSITION_MAX_AGE_MS", 300_000)),
            high_accuracy=bool(config.get("POSITION_HIGH_ACCURACY", True)),
        )


class PositionProvider:
    def get_current_position(
        self,
        user_id: int,
        *,
        timeout_ms: int,
        max_cache_age_ms: int,
        high_accuracy: bool,
    ) -> LocationFix:
        raise NotImplementedError


class ReportedPositionProvider(PositionProvider):
    """
    Serves the latest device-reported fix per user.

    A cached fix is returned if it was received within `max_cache_age_ms` and
    its own timestamp is no older than that either.
    Otherwise the caller waits up to `timeout_ms` for a new report and gets
    PositionUnavailable when none arrives.
    """

    def __init__(self, clock=None, wall_clock=None):
        self._clock = clock or time.monotonic
        self._wall_clock = wall_clock or utcnow
        self._latest: dict[int, tuple[LocationFix, float]] = {}
        self._cond = threading.Condition()

    def report(self, user_id: int, fix: LocationFix) -> None:
        with self._cond:
            self._latest[user_id] = (fix, self._clock())
            self._cond.notify_all()

    def forget(self, user_id: int) -> None:
        with self._cond:
            self._latest.pop(user_id, None)

    def latest(self, user_id: int) -> LocationFix | None:
        with self._cond:
            entry = self._latest.get(user_id)
        return entry[0] if entry else None

    def _usable(self, user_id: int, max_age_s: float, newer_than: float | None) -> LocationFix | None:
        entry = self._latest.get(user_id)
        if entry is None:
            return None
        fix, received = entry
        if newer_than is not None and received <= newer_than:
            return None
        if self._clock() - received > max_age_s:
            return None
        if (self._wall_clock() - fix.timestamp).total_seconds() > max_age_s:
            return None
        return fix

    def get_current_position(self, user_id, *, timeout_ms, max_cache_age_ms, high_accuracy):
        max_age_s = max(0, max_cache_age_ms) / 1000.0
        with self._cond:
            fix = self._usable(user_id, max_age_s, None)
            if fix is not None:
                return fix
            entry = self._latest.get(user_id)
            baseline = entry[1] if entry else None
            if timeout_ms > 0:
                self._cond.wait_for(
                    lambda: self._usable(user_id, max_age_s, baseline) is not None,
                    timeout=timeout_ms / 1000.0,
                )
            fix = self._usable(user_id, max_age_s, baseline)
        if fix is None:
            raise PositionUnavailable(
                "No position reported by the device in time",
                details={"user_id": user_id, "timeout_ms": timeout_ms},
            )
        return fix


class LocationSink:
    """Where a tracker writes. Implemented over location_service by AppLocationSink."""

    def publish_location(self, user_id: int, fix: LocationFix) -> None:
        raise NotImplementedError

    def stop_sharing(self, user_id: int) -> None:
        raise NotImplementedError


@contextmanager
def app_context(app: Flask):
    """Run inside `app`'s context, reusing the current one when it already belongs to `app`."""
    if has_app_context() and current_app._get_current_object() is app:
        yield
    else:
        with app.app_context():
            yield


class AppLocationSink(LocationSink):
    def __init__(self, app: Flask):
        self._app = app

    def publish_location(self, user_id, fix):
        with app_context(self._app):
            location_service.publish_fix(user_id, fix)

    def stop_sharing(self, user_id):
        with app_context(self._app):
            location_service.stop_sharing(user_id)


class LocationTracker:
    def __init__(
        self,
        user_id: int,
        *,
        scheduler: Scheduler,
        provider: PositionProvider,
        sink: LocationSink,
        interval: float = 300.0,
        options: PositionOptions | None = None,
    ):
        self.user_id = user_id
        self._scheduler = scheduler
        self._provider = provider
        self._sink = sink
        self._interval = interval
        self._options = options or PositionOptions()

        self._lock = threading.RLock()
        self._state = STATE_STOPPED
        self._generation = 0
        self._timer: TaskHandle | None = None
        self._autostart: TaskHandle | None = None
        self.last_fix: LocationFix | None = None
        self.skipped_ticks = 0

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == STATE_ACTIVE

    def _cancel_timers(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._autostart is not None:
            self._autostart.cancel()
            self._autostart = None

    def _arm(self) -> None:
        """Bump the generation and (re)arm the periodic capture, first run immediately."""
        self._generation += 1
        generation = self._generation
        self._cancel_timers()
        self._timer = self._scheduler.call_every(
            self._interval,
            lambda: self._cycle(generation, require_active=True),
            first_delay=0.0,
            name=f"location-capture-{self.user_id}",
        )

    def start(self) -> None:
        with self._lock:
            if self._state == STATE_ACTIVE:
                return
            self._state = STATE_ACTIVE
            self._arm()
        logger.info("Location tracking started for user %s", self.user_id)

    def update_now(self) -> None:
        with self._lock:
            if self._state == STATE_ACTIVE:
                self._arm()
                return
            generation = self._generation
        self._scheduler.call_later(
            0.0,
            lambda: self._cycle(generation, require_active=False),
            name=f"location-update-{self.user_id}",
        )

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
            self._cancel_timers()
            was_active = self._state == STATE_ACTIVE
            self._state = STATE_STOPPED
            self._sink.stop_sharing(self.user_id)
        if was_active:
            logger.info("Location tracking stopped for user %s", self.user_id)

    def schedule_autostart(self, delay: float = 2.0) -> TaskHandle:
        with self._lock:
            if self._autostart is not None:
                self._autostart.cancel()
            self._autostart = self._scheduler.call_later(
                delay, self._run_autostart, name=f"location-autostart-{self.user_id}"
            )
            return self._autostart

    def _run_autostart(self) -> None:
        with self._lock:
            self._autostart = None
        self.start()

    def _cycle(self, generation: int, *, require_active: bool) -> bool:
        """One capture-and-publish pass. Returns True if a fix was published."""
        with self._lock:
            if generation != self._generation:
                return False
            if require_active and self._state != STATE_ACTIVE:
                return False

        try:
            fix = self._provider.get_current_position(
                self.user_id,
                timeout_ms=self._options.timeout_ms,
                max_cache_age_ms=self._options.max_cache_age_ms,
                high_accuracy=self._options.high_accuracy,
            )
        except (PositionUnavailable, TransientIOError) as exc:
            self.skipped_ticks += 1
            logger.warning("Skipping location capture for user %s: %s", self.user_id, exc)
            return False

        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding stale capture for user %s", self.user_id)
                return False
            if require_active and self._state != STATE_ACTIVE:
                return False
            try:
                self._sink.publish_location(self.user_id, fix)
            except TransientIOError as exc:
                self.skipped_ticks += 1
                logger.warning("Could not publish location for user %s: %s", self.user_id, exc)
                return False
            self.last_fix = fix
        return True

    def status(self) -> dict:
        fix = self.last_fix
        return {
            "user_id": self.user_id,
            "state": self._state,
            "interval_seconds": self._interval,
            "autostart_pending": self._autostart is not None and not self._autostart.cancelled,
            "skipped_ticks": self.skipped_ticks,
            "last_fix": fix.to_dict() if fix else None,
        }


class TrackingRegistry:
    """One LocationTracker per user, shared by the request handlers of an app."""

    def __init__(
        self,
        *,
        scheduler: Scheduler,
        provider: ReportedPositionProvider,
        sink: LocationSink,
        interval: float = 300.0,
        options: PositionOptions | None = None,
        autostart_delay: float = 2.0,
        enabled: bool = True,
    ):
        self.scheduler = scheduler
        self.provider = provider
        self.sink = sink
        self.interval = interval
        self.options = options or PositionOptions()
        self.autostart_delay = autostart_delay
        self.enabled = enabled
        self._trackers: dict[int, LocationTracker] = {}
        self._lock = threading.Lock()

    def get(self, user_id: int) -> LocationTracker:
        with self._lock:
            tracker = self._trackers.get(user_id)
            if tracker is None:
                tracker = LocationTracker(
                    user_id,
                    scheduler=self.scheduler,
                    provider=self.provider,
                    sink=self.sink,
                    interval=self.interval,
                    options=self.options,
                )
                self._trackers[user_id] = tracker
            return tracker

    def peek(self, user_id: int) -> LocationTracker | None:
        with self._lock:
            return self._trackers.get(user_id)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for t in self._trackers.values() if t.is_active)

    def on_login(self, user_id: int) -> TaskHandle | None:
        if not self.enabled:
            return None
        return self.get(user_id).schedule_autostart(self.autostart_delay)

    def on_logout(self, user_id: int) -> None:
        tracker = self.peek(user_id)
        try:
            if tracker is not None:
                tracker.stop()
        finally:
            self.provider.forget(user_id)

    def shutdown(self) -> None:
        with self._lock:
            trackers = list(self._trackers.values())
        for tracker in trackers:
            if tracker.is_active:
                tracker.stop()
        self.scheduler.shutdown()
