"""
Database Schemas for the Vehicle Rental Storefront

Each Pydantic model below represents a MongoDB collection:
- Vehicle -> "vehicles"
- Booking -> "bookings"
- UserProfile -> "user_profiles"
- Offer -> "offers"
- ContactMessage -> "contact_messages"
- User -> "users" (identity)

Document.from_document is the read half of the storage mapping: it renames
"_id" to "id", renders ObjectIds as strings and marks stored datetimes as UTC.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, EmailStr, Field, PlainSerializer


VehicleCategory = Literal["economy", "suv", "luxury"]
VehicleStatusName = Literal[
    "available", "reserved", "rented", "inspection", "maintenance", "sold", "in-stock"
]
BookingStatusName = Literal["pending", "confirmed", "active", "inspection", "completed", "cancelled"]
MessageStatus = Literal["new", "read", "responded"]

# Exact decimals in code, plain JSON numbers on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class VehicleStatus:
    AVAILABLE = "available"
    RESERVED = "reserved"
    RENTED = "rented"
    INSPECTION = "inspection"
    MAINTENANCE = "maintenance"
    SOLD = "sold"
    IN_STOCK = "in-stock"


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    INSPECTION = "inspection"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    # Administrative workflow; this service only ever creates PENDING.
    TRANSITIONS = {
        PENDING: {CONFIRMED, CANCELLED},
        CONFIRMED: {ACTIVE, CANCELLED},
        ACTIVE: {INSPECTION, CANCELLED},
        INSPECTION: {COMPLETED, CANCELLED},
        COMPLETED: set(),
        CANCELLED: set(),
    }

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.TRANSITIONS.get(status)

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.TRANSITIONS.get(current, set())


def from_storage(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, dict):
        return {k: from_storage(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_storage(v) for v in value]
    return value


class Document(BaseModel):
    id: Optional[str] = Field(None, description="Document id")

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]):
        if not doc:
            return None
        data = {k: from_storage(v) for k, v in doc.items() if k != "_id"}
        if "_id" in doc:
            data["id"] = from_storage(doc["_id"])
        # Stored nulls fall back to the model defaults
        data = {k: v for k, v in data.items() if v is not None}
        return cls.model_validate(data)


class VehicleSpecifications(BaseModel):
    seats: Optional[int] = Field(None, ge=1)
    transmission: Optional[Literal["automatic", "manual"]] = None
    fuel_type: Optional[Literal["gasoline", "diesel", "electric", "hybrid"]] = None
    year: Optional[int] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    interior: Optional[str] = None
    interior_color: Optional[str] = None
    drive_train: Optional[str] = None
    cylinders: Optional[int] = None
    vin: Optional[str] = None
    engine: Optional[str] = None
    mileage: Optional[str] = None
    stock_number: Optional[str] = None
    fuel_economy: Optional[str] = None


class Vehicle(Document):
    """Collection: vehicles"""
    name: str = Field(..., description="Display name, e.g., Toyota Camry 2022")
    category: VehicleCategory = Field(..., description="economy, suv or luxury")
    price: Money = Field(..., gt=0, description="Rental price per month")
    price_unit: Literal["month"] = "month"
    image: Optional[str] = Field(None, description="Primary image URL")
    features: List[str] = Field(default_factory=list)
    specifications: VehicleSpecifications = Field(default_factory=VehicleSpecifications)
    status: VehicleStatusName = Field(VehicleStatus.AVAILABLE, description="Fleet status")
    stock_number: Optional[str] = None
    license_plate: Optional[str] = None
    vin: Optional[str] = None
    current_mileage: Optional[int] = None
    last_service_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_bookable(self) -> bool:
        return self.status == VehicleStatus.AVAILABLE


class CustomerInfo(BaseModel):
    """Contact details captured when the booking is made."""
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    email: EmailStr = Field(..., description="Email address")
    phone: str = Field(..., description="Phone number")


class Booking(Document):
    """Collection: bookings"""
    user_id: str = Field(..., description="Owning user id")
    vehicle_id: str = Field(..., description="Vehicle id")
    pickup_location: str = Field(..., description="Pickup location")
    pickup_date: datetime = Field(..., description="Pickup time (UTC)")
    return_date: datetime = Field(..., description="Return time, pickup + months * 30 days")
    rental_months: int = Field(..., ge=1, le=12)
    rental_amount: Money = Field(..., ge=0)
    security_deposit: Money = Field(..., ge=0)
    total_price: Money = Field(..., ge=0)
    status: BookingStatusName = Field(BookingStatus.PENDING)
    customer_info: CustomerInfo

    actual_pickup_date: Optional[datetime] = None
    actual_return_date: Optional[datetime] = None
    extension_count: int = 0
    pickup_mileage: Optional[int] = None
    return_mileage: Optional[int] = None
    admin_notes: str = ""

    security_deposit_deduction: Money = Decimal("0")
    security_deposit_amount_returned: Money = Decimal("0")
    security_deposit_returned: bool = False
    security_deposit_return_date: Optional[datetime] = None
    deduction_reason: str = ""

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserProfile(Document):
    """Collection: user_profiles (id is the identity user id)"""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class User(Document):
    """Collection: users"""
    email: EmailStr
    password_hash: Optional[str] = None
    provider: str = Field("email", description="email or the OAuth provider name")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Offer(Document):
    """Collection: offers"""
    title: str
    description: str = ""
    discount: str = ""
    icon: Optional[str] = None
    icon_color: Optional[str] = None
    button_text: Optional[str] = None
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ContactMessage(Document):
    """Collection: contact_messages"""
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    status: MessageStatus = "new"
    created_at: Optional[datetime] = None
