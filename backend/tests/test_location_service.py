"""
Location service tests: distance math, freshness, map links, store writes
and the live dashboard payload.
"""

import random
from datetime import datetime, timedelta

import pytest

from stockrun.change_feed import CHANGE_CLEARED, CHANGE_LOCATION, CHANGE_SHARING_STOPPED
from stockrun.errors import NotFoundError, ValidationError
from stockrun.extensions import db, get_change_feed
from stockrun.models import User
from stockrun.records import LocationFix
from stockrun.services import location_service
from stockrun.services.location_service import (
    haversine_km,
    is_fresh,
    maps_directions_url,
    maps_point_url,
    maps_route_url,
)
from stockrun.time_utils import utcnow


NOW = datetime(2024, 5, 1, 12, 0, 0)


class TestGeo:
    def test_haversine_zero(self):
        assert haversine_km(9.38, 80.40, 9.38, 80.40) == 0

    def test_haversine_one_degree_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.195, abs=0.01)

    def test_haversine_symmetric(self):
        a = haversine_km(9.384489, 80.408737, 9.39, 80.41)
        b = haversine_km(9.39, 80.41, 9.384489, 80.408737)
        assert a == pytest.approx(b)
        assert a == pytest.approx(0.628, abs=0.01)

    @pytest.mark.parametrize(
        "age,fresh",
        [(0, True), (299, True), (300, False), (301, False)],
    )
    def test_freshness_window_is_strict(self, age, fresh):
        assert is_fresh(NOW - timedelta(seconds=age), NOW) is fresh

    def test_missing_timestamp_is_stale(self):
        assert is_fresh(None, NOW) is False

    def test_map_links(self):
        assert maps_point_url(9.39, 80.41) == "https://www.google.com/maps?q=9.39,80.41"
        assert maps_directions_url((9.384489, 80.408737), (9.39, 80.41)) == (
            "https://www.google.com/maps/dir/9.384489,80.408737/9.39,80.41"
        )
        assert maps_route_url((1.0, 2.0), [(3.0, 4.0), (5.5, 6.5)], "https://maps.test") == (
            "https://maps.test/dir/1.0,2.0/3.0,4.0/5.5,6.5"
        )


@pytest.fixture
def changes(app):
    received = []
    get_change_feed().subscribe(received.append)
    return received


class TestWrites:
    def test_publish_fix_marks_sharing(self, sales_rep, changes):
        fix = LocationFix(latitude=9.39, longitude=80.41, timestamp=utcnow(), accuracy_m=12.0)
        location_service.publish_fix(sales_rep.id, fix)

        user = db.session.get(User, sales_rep.id)
        assert user.location_sharing is True
        assert (user.location_latitude, user.location_longitude, user.location_accuracy_m) == (9.39, 80.41, 12.0)
        assert user.last_login_at is not None
        assert [(c.user_id, c.kind, c.location_sharing) for c in changes] == [
            (sales_rep.id, CHANGE_LOCATION, True)
        ]
        assert changes[0].location == fix

    def test_stop_sharing_keeps_last_fix(self, driver, changes):
        location_service.publish_fix(driver.id, LocationFix(9.39, 80.41, utcnow()))
        location_service.stop_sharing(driver.id)

        user = db.session.get(User, driver.id)
        assert user.location_sharing is False
        assert user.location_latitude == 9.39
        assert changes[-1].kind == CHANGE_SHARING_STOPPED
        assert changes[-1].location_sharing is False

    def test_office_roles_do_not_share(self, secretary):
        with pytest.raises(ValidationError):
            location_service.publish_fix(secretary.id, LocationFix(9.39, 80.41, utcnow()))

    def test_unknown_user(self, app):
        with pytest.raises(NotFoundError):
            location_service.stop_sharing(999)

    def test_seed_and_clear_demo(self, sales_rep, driver, admin, changes):
        assert location_service.seed_demo(random.Random(1)) == 2
        seeded = db.session.query(User).filter(User.location_sharing.is_(True)).all()
        assert {u.id for u in seeded} == {sales_rep.id, driver.id}
        for user in seeded:
            assert 5.0 <= user.location_accuracy_m <= 25.0

        assert location_service.clear_demo() == 2
        for user in db.session.query(User).all():
            assert user.location_sharing is False
            assert user.location_latitude is None
        assert [c.kind for c in changes[-2:]] == [CHANGE_CLEARED, CHANGE_CLEARED]


class TestLiveLocations:
    def test_sharing_scope_lists_sharing_users_with_a_fix(self, sales_rep, driver, driver2):
        now = utcnow()
        location_service.publish_fix(sales_rep.id, LocationFix(9.39, 80.41, now - timedelta(minutes=1)))
        location_service.publish_fix(driver.id, LocationFix(9.38, 80.40, now - timedelta(minutes=10)))
        location_service.publish_fix(driver2.id, LocationFix(9.38, 80.40, now))
        location_service.stop_sharing(driver2.id)

        payload = location_service.live_locations("sharing", now=now)
        assert payload["scope"] == "sharing"
        assert payload["count"] == 2
        assert payload["fresh_count"] == 1
        rows = payload["locations"]
        assert [r["user_id"] for r in rows] == [sales_rep.id, driver.id]
        assert rows[0]["is_fresh"] is True
        assert rows[0]["age_seconds"] == 60
        assert rows[1]["is_fresh"] is False
        assert rows[0]["distance_km"] == pytest.approx(0.628, abs=0.01)
        assert rows[0]["directions_url"].endswith("/dir/9.384489,80.408737/9.39,80.41")
        assert payload["route_url"].startswith("https://www.google.com/maps/dir/9.384489,80.408737/")

    def test_all_scope_includes_users_without_fix(self, sales_rep, driver, admin):
        location_service.publish_fix(sales_rep.id, LocationFix(9.39, 80.41, utcnow()))
        payload = location_service.live_locations("all")
        assert payload["count"] == 2
        missing = [r for r in payload["locations"] if r["location"] is None]
        assert [r["user_id"] for r in missing] == [driver.id]
        assert missing[0]["distance_km"] is None

    def test_sharing_only_alias(self, app):
        assert location_service.normalize_scope("sharing_only") == "sharing"
        assert location_service.normalize_scope(None) == "sharing"

    def test_unknown_scope(self, app):
        with pytest.raises(ValidationError):
            location_service.live_locations("everyone")
