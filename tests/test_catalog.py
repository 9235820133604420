from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import OperationFailure

from catalog import VehicleCatalog, VehicleFeed
from errors import VehicleUnavailableError

from conftest import add_vehicle

T0 = datetime(2024, 11, 1, tzinfo=timezone.utc)


def test_list_only_available_newest_first(db):
    old = add_vehicle(db, name="Honda Civic", created_at=T0)
    new = add_vehicle(db, name="Kia Sorento", category="suv", created_at=T0 + timedelta(days=1))
    add_vehicle(db, name="Sold Car", status="sold", created_at=T0 + timedelta(days=2))

    listed = VehicleCatalog(db).list()

    assert [v.id for v in listed] == [new, old]
    assert all(v.status == "available" for v in listed)


def test_list_by_category(db):
    add_vehicle(db, name="Honda Civic", category="economy")
    suv = add_vehicle(db, name="Kia Sorento", category="suv")

    assert [v.id for v in VehicleCatalog(db).list("suv")] == [suv]
    assert len(VehicleCatalog(db).list("all")) == 2
    assert len(VehicleCatalog(db).list("best-fit")) == 2


def test_get_returns_any_status(db):
    vid = add_vehicle(db, status="maintenance")

    vehicle = VehicleCatalog(db).get(vid)

    assert vehicle.status == "maintenance"
    assert vehicle.specifications.seats == 5
    assert vehicle.price_unit == "month"
    assert vehicle.created_at.tzinfo is not None


def test_get_missing_is_none(db):
    assert VehicleCatalog(db).get("64b000000000000000000000") is None
    assert VehicleCatalog(db).get("garbage") is None


def test_get_bookable_rejects_non_available(db):
    vid = add_vehicle(db, status="reserved")

    with pytest.raises(VehicleUnavailableError, match="not currently available"):
        VehicleCatalog(db).get_bookable(vid)


class FakeStream:
    def __init__(self, events):
        self.events = list(events)

    @property
    def alive(self):
        return bool(self.events)

    def try_next(self):
        return self.events.pop(0)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class WatchableCollection:
    """Wraps a mongomock collection and replays scripted change events."""

    def __init__(self, inner, events=None, error=None):
        self.inner = inner
        self.events = events or []
        self.error = error

    def watch(self, **kwargs):
        if self.error:
            raise self.error
        return FakeStream(self.events)

    def __getattr__(self, name):
        return getattr(self.inner, name)


class WatchableDb:
    def __init__(self, db, vehicles):
        self.db = db
        self.vehicles = vehicles

    def __getitem__(self, name):
        if name == "vehicles":
            return self.vehicles
        return self.db[name]


def test_feed_pushes_fresh_listing_on_change(db):
    first = add_vehicle(db, name="Honda Civic")
    add_vehicle(db, name="Kia Sorento", category="suv")
    watch_db = WatchableDb(db, WatchableCollection(db["vehicles"], events=[None, {"operationType": "update"}]))
    feed = VehicleFeed(VehicleCatalog(watch_db))
    everything, suvs = [], []
    feed.subscribe(everything.append)
    feed.subscribe(suvs.append, category="suv")

    # Someone books the Civic before the update event arrives
    db["vehicles"].update_one({"name": "Honda Civic"}, {"$set": {"status": "reserved"}})
    feed.run()

    assert len(everything) == 1
    assert first not in [v.id for v in everything[0]]
    assert [v.name for v in suvs[0]] == ["Kia Sorento"]


def test_unsubscribed_listener_not_called(db):
    add_vehicle(db)
    feed = VehicleFeed(VehicleCatalog(db))
    calls = []
    sub = feed.subscribe(calls.append)
    assert feed.subscriber_count == 1

    sub.unsubscribe()
    feed.publish()

    assert calls == []
    assert feed.subscriber_count == 0


def test_failing_listener_does_not_block_others(db):
    add_vehicle(db)
    feed = VehicleFeed(VehicleCatalog(db))
    received = []

    def broken(listing):
        raise RuntimeError("socket closed")

    feed.subscribe(broken)
    feed.subscribe(received.append)
    feed.publish()

    assert len(received) == 1


def test_feed_without_change_streams_stops_quietly(db):
    error = OperationFailure("The $changeStream stage is only supported on replica sets", code=40573)
    watch_db = WatchableDb(db, WatchableCollection(db["vehicles"], error=error))
    feed = VehicleFeed(VehicleCatalog(watch_db))

    feed.run()


def test_stop_ends_run(db):
    watch_db = WatchableDb(db, WatchableCollection(db["vehicles"], events=[{"operationType": "insert"}]))
    feed = VehicleFeed(VehicleCatalog(watch_db))
    calls = []
    feed.subscribe(calls.append)
    feed.stop()

    feed.run()

    assert calls == []
