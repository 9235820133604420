"""
Vehicle catalog

VehicleCatalog reads the fleet; VehicleFeed watches the vehicles collection and
hands every subscriber a fresh listing whenever any vehicle changes.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.database import Database
from pymongo.errors import OperationFailure, PyMongoError

from database import get_documents
from errors import DataError, VehicleUnavailableError
from schemas import Vehicle, VehicleStatus
from subscriptions import Listeners, Subscription

logger = logging.getLogger(__name__)

VEHICLES = "vehicles"

# Category values the storefront uses to mean "no filter"
ALL_CATEGORIES = {"all", "best-fit"}


def to_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class VehicleCatalog:
    def __init__(self, db: Database):
        self.db = db

    def list(self, category: Optional[str] = None) -> List[Vehicle]:
        filt: Dict[str, Any] = {"status": VehicleStatus.AVAILABLE}
        if category and category not in ALL_CATEGORIES:
            filt["category"] = category
        try:
            docs = get_documents(self.db, VEHICLES, filt)
        except PyMongoError as e:
            raise DataError("fetch vehicles", e)
        return [Vehicle.from_document(d) for d in docs]

    def get(self, vehicle_id: str) -> Optional[Vehicle]:
        """Any status; None when the vehicle does not exist."""
        oid = to_object_id(vehicle_id)
        if oid is None:
            return None
        try:
            doc = self.db[VEHICLES].find_one({"_id": oid})
        except PyMongoError as e:
            raise DataError("fetch vehicle", e)
        return Vehicle.from_document(doc)

    def get_bookable(self, vehicle_id: str) -> Optional[Vehicle]:
        vehicle = self.get(vehicle_id)
        if vehicle is not None and not vehicle.is_bookable:
            raise VehicleUnavailableError("This vehicle is not currently available for booking")
        return vehicle


Listener = Callable[[List[Vehicle]], None]


class VehicleFeed:
    """Re-reads the catalog on every change event instead of applying deltas."""

    def __init__(self, catalog: VehicleCatalog, max_await_ms: int = 1000):
        self.catalog = catalog
        self.max_await_ms = max_await_ms
        self._by_category: Dict[Optional[str], Listeners[Listener]] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def subscribe(self, listener: Listener, category: Optional[str] = None) -> Subscription:
        if category in ALL_CATEGORIES:
            category = None
        with self._lock:
            registry = self._by_category.setdefault(category, Listeners())
        return registry.add(listener)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return sum(len(r) for r in self._by_category.values())

    def publish(self) -> None:
        with self._lock:
            registries = [(c, r) for c, r in self._by_category.items() if len(r)]
        for category, registry in registries:
            try:
                listing = self.catalog.list(category)
            except DataError as e:
                logger.error("Skipping vehicle feed update: %s", e)
                continue
            registry.notify(listing)

    def run(self) -> None:
        """Consume change events until stop() is called or the stream dies."""
        collection = self.catalog.db[VEHICLES]
        try:
            with collection.watch(max_await_time_ms=self.max_await_ms) as stream:
                logger.info("Watching %s for changes", VEHICLES)
                while stream.alive and not self._stopped.is_set():
                    change = stream.try_next()
                    if change is None:
                        continue
                    logger.debug("Vehicle %s event", change.get("operationType"))
                    self.publish()
        except OperationFailure as e:
            # Standalone servers have no change streams
            logger.warning("Realtime vehicle updates unavailable: %s", e)
        except PyMongoError:
            logger.exception("Vehicle change stream failed")
        finally:
            logger.info("Vehicle feed stopped")

    def stop(self) -> None:
        self._stopped.set()
