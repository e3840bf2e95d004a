"""SQLAlchemy models for Autotracks.

Data Architecture Overview:
- Account is the tenant boundary; Dealership belongs to one Account
- Property is a dealership-defined vehicle attribute (schema, not data)
- PropertyConfig is one user's ordered, visibility-toggled view of a
  dealership's Properties
- Vehicle carries a `properties` map keyed by Property.key whose entries are
  snapshots of the Property plus a client-owned value

Fan-out consistency (see sync.py):
- PropertyConfig.property_order and Vehicle.properties track the active
  Property set of the dealership after every registry mutation
- Soft delete everywhere: deletion_time is an epoch-ms marker, NULL = active

Document-shaped fields are JSON columns. They are always reassigned as new
objects, never mutated in place, so the ORM sees the change.
"""

import uuid
from datetime import date

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base, now_ms
from .schemas import InputType, VehicleStatus


class TimestampMixin:
    creation_time: Mapped[int] = mapped_column(BigInteger, default=now_ms, nullable=False)
    last_update_time: Mapped[int] = mapped_column(
        BigInteger, default=now_ms, onupdate=now_ms, nullable=False
    )


# =============================================================================
# TENANCY (directory collaborators)
# =============================================================================


class Account(TimestampMixin, Base):
    """A dealer group / company."""

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    domain: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    dealerships: Mapped[list["Dealership"]] = relationship("Dealership", back_populates="account")

    def __repr__(self) -> str:
        return f"<Account {self.domain}>"


class Dealership(TimestampMixin, Base):
    """A physical location under an Account. Owns its Property registry."""

    __tablename__ = "dealerships"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    formatted_address: Mapped[str | None] = mapped_column(Text)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    deletion_time: Mapped[int | None] = mapped_column(BigInteger)

    account: Mapped["Account"] = relationship("Account", back_populates="dealerships")

    def __repr__(self) -> str:
        return f"<Dealership {self.name}>"


class User(TimestampMixin, Base):
    """A user of an Account. Only the fields the core reads are modelled."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_account_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    allowed_dealership_ids: Mapped[list] = mapped_column(
        JSON, default=list,
        doc="Dealership ids (as strings) the user was granted access to"
    )
    deletion_time: Mapped[int | None] = mapped_column(BigInteger)

    def __repr__(self) -> str:
        return f"<User {self.email}>"


# =============================================================================
# DYNAMIC SCHEMA
# =============================================================================


class Property(TimestampMixin, Base):
    """A custom vehicle attribute defined by a dealership.

    `key` is derived from `label` (camelCase) and is the name of the entry
    this property owns in every Vehicle.properties map of the dealership.
    """

    __tablename__ = "properties"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dealership_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("dealerships.id"), nullable=False
    )
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    key: Mapped[str] = mapped_column(String(200), nullable=False)
    input_type: Mapped[InputType] = mapped_column(
        SQLEnum(InputType, name="property_input_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    dropdown_options: Mapped[list | None] = mapped_column(
        JSON,
        doc="Ordered choices, only set when input_type is Dropdown"
    )
    is_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    previous_keys: Mapped[list] = mapped_column(
        JSON, default=list, nullable=False,
        doc="Keys this property had before \"drift\" updates; vehicles may still hold them"
    )
    deletion_time: Mapped[int | None] = mapped_column(BigInteger)

    __table_args__ = (
        Index("ix_properties_dealership_key", "dealership_id", "key"),
    )

    @property
    def is_active(self) -> bool:
        return self.deletion_time is None

    def __repr__(self) -> str:
        return f"<Property {self.key} ({self.input_type.value})>"


class PropertyConfig(TimestampMixin, Base):
    """One user's view over a dealership's properties.

    property_order is a list of {"property_id": str, "visible": bool};
    list order is the display order.
    """

    __tablename__ = "property_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False
    )
    dealership_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("dealerships.id"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    property_order: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    property_group_by_ids: Mapped[dict | None] = mapped_column(JSON)
    deletion_time: Mapped[int | None] = mapped_column(BigInteger)

    __table_args__ = (
        Index("ix_property_configs_dealership_user", "dealership_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<PropertyConfig user={self.user_id} dealership={self.dealership_id}>"


class Vehicle(TimestampMixin, Base):
    """A vehicle held by a dealership."""

    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dealership_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("dealerships.id"), nullable=False, index=True
    )
    vin: Mapped[str] = mapped_column(String(17), unique=True, nullable=False)
    on_road_since: Mapped[date | None] = mapped_column(Date)
    status: Mapped[VehicleStatus] = mapped_column(
        SQLEnum(VehicleStatus, name="vehicle_status"),
        default=VehicleStatus.IN_STOCK,
        nullable=False,
    )
    location: Mapped[dict | None] = mapped_column(
        JSON,
        doc="{location_id, latitude, longitude} or NULL"
    )
    properties: Mapped[dict] = mapped_column(
        JSON, default=dict, nullable=False,
        doc="Property.key -> {label, value, input_type}"
    )
    deletion_time: Mapped[int | None] = mapped_column(BigInteger)

    def __repr__(self) -> str:
        return f"<Vehicle {self.vin}>"
