"""
Bookings

BookingManager creates bookings; BookingQueries reads them back for the
"My Bookings" page.

A booking is created in two writes: the vehicle is first flipped from
available to reserved with one conditional update, then the booking is
inserted. Losing the conditional update means somebody else booked the car
first. If the insert fails the reservation is released again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from catalog import VEHICLES, VehicleCatalog, to_object_id
from database import create_document, get_documents, to_storage_datetime, utcnow
from errors import AuthError, DataError, InputError, NotFoundError, VehicleUnavailableError
from pricing import Quote, display_months, quote, rental_days
from schemas import Booking, BookingStatus, CustomerInfo, Vehicle, VehicleStatus

logger = logging.getLogger(__name__)

BOOKINGS = "bookings"

UNAVAILABLE_VEHICLE_NAME = "Vehicle Details Unavailable"

Clock = Callable[[], datetime]


def _require_customer_info(info: CustomerInfo) -> None:
    missing = [
        label
        for label, value in (
            ("first name", info.first_name),
            ("last name", info.last_name),
            ("email", info.email),
            ("phone", info.phone),
        )
        if not value or not str(value).strip()
    ]
    if missing:
        raise InputError("Please provide your " + ", ".join(missing))


class BookingManager:
    def __init__(self, db: Database, pickup_location: str, clock: Clock = utcnow):
        self.db = db
        self.catalog = VehicleCatalog(db)
        self.pickup_location = pickup_location
        self.clock = clock

    def validate(self, vehicle_id: str, user_id: Optional[str], pickup_date: Optional[datetime],
                 months: int, customer_info: CustomerInfo) -> Tuple[Vehicle, Quote]:
        """Check every precondition without writing anything."""
        if not user_id:
            raise AuthError("Please sign in to book a vehicle")
        if pickup_date is None:
            raise InputError("Please select a pickup date")
        if pickup_date.tzinfo is None:
            pickup_date = pickup_date.replace(tzinfo=timezone.utc)
        if pickup_date < self.clock():
            raise InputError("Pickup date cannot be in the past")
        _require_customer_info(customer_info)

        vehicle = self.catalog.get_bookable(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found")
        return vehicle, quote(vehicle.price, pickup_date, months)

    def create_booking(self, vehicle_id: str, user_id: Optional[str], pickup_date: Optional[datetime],
                       months: int, customer_info: CustomerInfo) -> Booking:
        vehicle, priced = self.validate(vehicle_id, user_id, pickup_date, months, customer_info)

        self._reserve(vehicle)
        booking = Booking(
            user_id=user_id,
            vehicle_id=vehicle.id,
            pickup_location=self.pickup_location,
            pickup_date=priced.pickup_date,
            return_date=priced.return_date,
            rental_months=priced.months,
            rental_amount=priced.rental_amount,
            security_deposit=priced.security_deposit,
            total_price=priced.total_due_now,
            status=BookingStatus.PENDING,
            customer_info=customer_info,
        )
        try:
            booking_id = create_document(self.db, BOOKINGS, booking)
        except PyMongoError as e:
            self._release(vehicle)
            raise DataError("create booking", e)

        logger.info("Booking %s created for vehicle %s by user %s", booking_id, vehicle.id, user_id)
        return booking.model_copy(update={"id": booking_id})

    def _reserve(self, vehicle: Vehicle) -> None:
        try:
            updated = self.db[VEHICLES].find_one_and_update(
                {"_id": to_object_id(vehicle.id), "status": VehicleStatus.AVAILABLE},
                {"$set": {"status": VehicleStatus.RESERVED,
                          "updated_at": to_storage_datetime(utcnow())}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise DataError("reserve vehicle", e)
        if updated is None:
            logger.info("Lost reservation race for vehicle %s", vehicle.id)
            raise VehicleUnavailableError()

    def _release(self, vehicle: Vehicle) -> None:
        try:
            self.db[VEHICLES].update_one(
                {"_id": to_object_id(vehicle.id), "status": VehicleStatus.RESERVED},
                {"$set": {"status": VehicleStatus.AVAILABLE,
                          "updated_at": to_storage_datetime(utcnow())}},
            )
        except PyMongoError:
            # The booking failed anyway; a stuck reservation needs an admin
            logger.exception("Could not release reservation on vehicle %s", vehicle.id)
        else:
            logger.warning("Released reservation on vehicle %s after failed booking", vehicle.id)


@dataclass
class BookingView:
    booking: Booking
    vehicle: Optional[Vehicle]
    duration_days: int
    duration_months: int

    @property
    def vehicle_name(self) -> str:
        return self.vehicle.name if self.vehicle else UNAVAILABLE_VEHICLE_NAME

    @property
    def duration_consistent(self) -> bool:
        return self.duration_months == self.booking.rental_months

    @property
    def is_terminal(self) -> bool:
        return BookingStatus.is_terminal(self.booking.status)


class BookingQueries:
    def __init__(self, db: Database):
        self.db = db
        self.catalog = VehicleCatalog(db)

    def list_for_user(self, user_id: str) -> List[Booking]:
        try:
            docs = get_documents(self.db, BOOKINGS, {"user_id": user_id})
        except PyMongoError as e:
            raise DataError("fetch bookings", e)
        return [Booking.from_document(d) for d in docs]

    def get(self, booking_id: str) -> Optional[Booking]:
        oid = to_object_id(booking_id)
        if oid is None:
            return None
        try:
            doc = self.db[BOOKINGS].find_one({"_id": oid})
        except PyMongoError as e:
            raise DataError("fetch booking", e)
        return Booking.from_document(doc)

    def view(self, booking: Booking, vehicle: Optional[Vehicle]) -> BookingView:
        days = rental_days(booking.pickup_date, booking.return_date)
        view = BookingView(
            booking=booking,
            vehicle=vehicle,
            duration_days=days,
            duration_months=display_months(days),
        )
        if not view.duration_consistent:
            logger.warning(
                "Booking %s stores %s months but its dates span %s days",
                booking.id, booking.rental_months, days,
            )
        return view

    def list_for_user_with_vehicles(self, user_id: str) -> List[BookingView]:
        bookings = self.list_for_user(user_id)
        vehicles = {}
        for vehicle_id in {b.vehicle_id for b in bookings}:
            try:
                vehicles[vehicle_id] = self.catalog.get(vehicle_id)
            except DataError as e:
                logger.error("Failed to fetch vehicle %s: %s", vehicle_id, e)
                vehicles[vehicle_id] = None
        return [self.view(b, vehicles.get(b.vehicle_id)) for b in bookings]
