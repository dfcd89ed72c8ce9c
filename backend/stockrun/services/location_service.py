# Overview: Field-staff location writes, live dashboard rows, distance math and map links.

"""
Location Service

WRITES (all followed by a ChangeFeed publish once committed):
- publish_fix(): new fix -> current location, location_sharing=True,
  last_login_at=now
- stop_sharing(): location_sharing=False, last fix kept
- seed_demo() / clear_demo(): operator utilities for field roles

READS:
- live_locations(): dashboard rows with distance from the depot, a
  freshness flag and Google Maps links. Stale rows are flagged, not hidden.
"""

from __future__ import annotations

import logging
import math
import random
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..change_feed import CHANGE_CLEARED, CHANGE_LOCATION, CHANGE_SHARING_STOPPED, UserChange
from ..errors import NotFoundError, TransientIOError, ValidationError
from ..extensions import db, get_change_feed
from ..models import User
from ..models.auth import FIELD_ROLES
from ..records import LocationFix, UserLocationState, location_state_from_model
from ..time_utils import to_utc_z, utcnow
from .concurrency import run_with_retry


logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
DEFAULT_FRESHNESS_SECONDS = 300.0

SCOPE_SHARING = "sharing"
SCOPE_ALL = "all"
SCOPES = (SCOPE_SHARING, SCOPE_ALL)

DEFAULT_MAPS_BASE_URL = "https://www.google.com/maps"

# Points around the depot used by the operator demo seed
DEMO_LOCATIONS = (
    (9.3900, 80.4100),
    (9.3800, 80.4050),
    (9.3880, 80.4150),
    (9.3820, 80.4000),
)


# =============================================================================
# GEO MATH
# =============================================================================

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres (R = 6371 km)."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def is_fresh(timestamp: datetime | None, now: datetime, window_seconds: float = DEFAULT_FRESHNESS_SECONDS) -> bool:
    """True while now - timestamp is strictly under the window."""
    if timestamp is None:
        return False
    return (now - timestamp) < timedelta(seconds=window_seconds)


def _coord(value: float) -> str:
    return repr(float(value))


def maps_point_url(lat: float, lng: float, base_url: str = DEFAULT_MAPS_BASE_URL) -> str:
    return f"{base_url}?q={_coord(lat)},{_coord(lng)}"


def maps_directions_url(
    origin: tuple[float, float],
    destination: tuple[float, float],
    base_url: str = DEFAULT_MAPS_BASE_URL,
) -> str:
    return (
        f"{base_url}/dir/{_coord(origin[0])},{_coord(origin[1])}"
        f"/{_coord(destination[0])},{_coord(destination[1])}"
    )


def maps_route_url(
    origin: tuple[float, float],
    waypoints: Sequence[tuple[float, float]],
    base_url: str = DEFAULT_MAPS_BASE_URL,
) -> str:
    stops = [origin, *waypoints]
    return f"{base_url}/dir/" + "/".join(f"{_coord(lat)},{_coord(lng)}" for lat, lng in stops)


def _depot() -> tuple[float, float]:
    return (
        float(current_app.config["DEPOT_LATITUDE"]),
        float(current_app.config["DEPOT_LONGITUDE"]),
    )


def _maps_base() -> str:
    return current_app.config.get("MAPS_BASE_URL", DEFAULT_MAPS_BASE_URL)


# =============================================================================
# WRITES
# =============================================================================

def _get_field_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", details={"user_id": user_id})
    if user.role not in FIELD_ROLES:
        raise ValidationError("Only sales reps and drivers share their location", details={"user_id": user_id})
    return user


def _commit_location_write(op) -> User:
    try:
        return run_with_retry(op)
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise TransientIOError("Location store unavailable") from exc


def _notify(user: User, kind: str) -> None:
    state = location_state_from_model(user)
    get_change_feed().publish(
        UserChange(
            user_id=state.user_id,
            role=state.role,
            location_sharing=state.location_sharing,
            location=state.location,
            kind=kind,
        )
    )


def publish_fix(user_id: int, fix: LocationFix) -> User:
    """Write a captured fix as the user's current location and mark them sharing."""
    def _op():
        user = _get_field_user(user_id)
        user.location_latitude = fix.latitude
        user.location_longitude = fix.longitude
        user.location_recorded_at = fix.timestamp
        user.location_accuracy_m = fix.accuracy_m
        user.location_sharing = True
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    user = _commit_location_write(_op)
    logger.debug("Published location for user %s", user_id)
    _notify(user, CHANGE_LOCATION)
    return user


def stop_sharing(user_id: int) -> User:
    """location_sharing=False; the last fix stays on record."""
    def _op():
        user = _get_field_user(user_id)
        user.location_sharing = False
        db.session.commit()
        return user

    user = _commit_location_write(_op)
    logger.info("Location sharing stopped for user %s", user_id)
    _notify(user, CHANGE_SHARING_STOPPED)
    return user


def _field_users() -> list[User]:
    return (
        db.session.query(User)
        .filter(User.role.in_(FIELD_ROLES))
        .order_by(User.id.asc())
        .all()
    )


def seed_demo(rng: random.Random | None = None) -> int:
    """Give every field user a demo fix near the depot and mark them sharing."""
    rng = rng or random.Random()
    now = utcnow()

    def _op():
        users = _field_users()
        for index, user in enumerate(users):
            lat, lng = DEMO_LOCATIONS[index % len(DEMO_LOCATIONS)]
            user.location_latitude = lat
            user.location_longitude = lng
            user.location_recorded_at = now
            user.location_accuracy_m = round(rng.uniform(5.0, 25.0), 1)
            user.location_sharing = True
        db.session.commit()
        return users

    users = _commit_location_write(_op)
    for user in users:
        _notify(user, CHANGE_LOCATION)
    logger.info("Seeded demo locations for %d field user(s)", len(users))
    return len(users)


def clear_demo() -> int:
    """Null every field user's fix and turn sharing off."""
    def _op():
        users = _field_users()
        for user in users:
            user.location_latitude = None
            user.location_longitude = None
            user.location_recorded_at = None
            user.location_accuracy_m = None
            user.location_sharing = False
        db.session.commit()
        return users

    users = _commit_location_write(_op)
    for user in users:
        _notify(user, CHANGE_CLEARED)
    logger.info("Cleared locations for %d field user(s)", len(users))
    return len(users)


# =============================================================================
# READS
# =============================================================================

def normalize_scope(scope: str | None) -> str:
    value = (scope or SCOPE_SHARING).strip().lower()
    if value in ("sharing_only", "sharing"):
        return SCOPE_SHARING
    if value == SCOPE_ALL:
        return SCOPE_ALL
    raise ValidationError("scope must be 'sharing' or 'all'", details={"scope": scope})


def build_location_rows(
    users: Iterable[User | UserLocationState],
    *,
    now: datetime,
    depot: tuple[float, float],
    freshness_seconds: float = DEFAULT_FRESHNESS_SECONDS,
    maps_base_url: str = DEFAULT_MAPS_BASE_URL,
) -> list[dict]:
    rows = []
    for user in users:
        state = user if isinstance(user, UserLocationState) else location_state_from_model(user)
        row = {
            "user_id": state.user_id,
            "name": state.name,
            "email": state.email,
            "role": state.role,
            "location_sharing": state.location_sharing,
            "last_login_at": to_utc_z(state.last_login_at),
            "location": None,
            "distance_km": None,
            "is_fresh": False,
            "age_seconds": None,
            "maps_url": None,
            "directions_url": None,
        }
        fix = state.location
        if fix is not None:
            row.update(
                location=fix.to_dict(),
                distance_km=round(haversine_km(depot[0], depot[1], fix.latitude, fix.longitude), 3),
                is_fresh=is_fresh(fix.timestamp, now, freshness_seconds),
                age_seconds=max(0, int((now - fix.timestamp).total_seconds())),
                maps_url=maps_point_url(fix.latitude, fix.longitude, maps_base_url),
                directions_url=maps_directions_url(depot, (fix.latitude, fix.longitude), maps_base_url),
            )
        rows.append(row)

    rows.sort(key=lambda r: (not r["is_fresh"], r["location"] is None, (r["name"] or "").lower(), r["user_id"]))
    return rows


def live_locations(scope: str | None = SCOPE_SHARING, now: datetime | None = None) -> dict:
    """
    Dashboard payload.

    scope='sharing' lists users currently sharing with a fix on record.
    scope='all' lists every field user, including those without a fix.
    """
    scope = normalize_scope(scope)
    now = now or utcnow()
    depot = _depot()
    base_url = _maps_base()

    query = db.session.query(User).filter(User.role.in_(FIELD_ROLES), User.is_active.is_(True))
    if scope == SCOPE_SHARING:
        query = query.filter(
            User.location_sharing.is_(True),
            User.location_latitude.isnot(None),
        )
    try:
        users = query.order_by(User.id.asc()).all()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise TransientIOError("Location store unavailable") from exc

    rows = build_location_rows(
        users,
        now=now,
        depot=depot,
        freshness_seconds=float(current_app.config.get("LOCATION_FRESHNESS_SECONDS", DEFAULT_FRESHNESS_SECONDS)),
        maps_base_url=base_url,
    )
    located = [(r["location"]["latitude"], r["location"]["longitude"]) for r in rows if r["location"]]
    return {
        "scope": scope,
        "generated_at": to_utc_z(now),
        "depot": {"latitude": depot[0], "longitude": depot[1], "maps_url": maps_point_url(*depot, base_url)},
        "count": len(rows),
        "fresh_count": sum(1 for r in rows if r["is_fresh"]),
        "route_url": maps_route_url(depot, located, base_url) if located else None,
        "locations": rows,
    }
