"""Pydantic schemas for Autotracks.

Three groups live here:
- ENUMS: the canonical value sets (input types, vehicle statuses)
- VALUE TYPES: PropertyKey and PropertySnapshot, the denormalized echo of a
  Property that sits inside every Vehicle document
- PAYLOADS / RESPONSES: request and response contracts for the API

The snapshot contract matters: a PropertySnapshot is copied from the live
Property when the entry is created. It is NOT refreshed when the Property is
later relabelled unless the "relabel" update policy is active.
"""

from datetime import date
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# ENUMS
# =============================================================================


class InputType(str, Enum):
    """How a property's value is captured in the client."""

    TEXT = "Text"
    NUMBER = "Number"
    CURRENCY = "Currency"
    DATE = "Date"
    DROPDOWN = "Dropdown"
    """Single choice from Property.dropdown_options (required, non-empty)."""
    LIST = "List"


class VehicleStatus(str, Enum):
    """Lifecycle state of a vehicle on the lot."""

    IN_STOCK = "IN_STOCK"
    SOLD = "SOLD"
    PREPPING = "PREPPING"
    IN_REPAIR = "IN_REPAIR"
    IN_DELIVERY = "IN_DELIVERY"
    DELIVERED = "DELIVERED"


# =============================================================================
# VALUE TYPES
# =============================================================================


class PropertyKey(str):
    """Machine identifier of a Property, derived from its label.

    Only `transformations.derive_key` should build one. Being a `str`
    subclass, it can be used directly as a key of Vehicle.properties.
    """

    __slots__ = ()


class PropertySnapshot(BaseModel):
    """One entry of Vehicle.properties.

    `label` and `input_type` are copied from the Property at assignment time;
    `value` is owned by the client and opaque to the service.
    """

    label: str
    value: Any = None
    input_type: InputType


class PropertyOrderEntry(BaseModel):
    """Position and visibility of one property in a user's view."""

    property_id: UUID
    visible: bool = True


class PropertyGroupBy(BaseModel):
    """Optional grouping selected by the user in the inventory grid."""

    value: str | None = None
    text: str | None = None


# =============================================================================
# IDENTITY
# =============================================================================


class Principal(BaseModel):
    """Authenticated caller, as asserted by the external identity service."""

    user_id: UUID
    account_id: UUID
    is_account_admin: bool = False
    allowed_dealership_ids: list[UUID] = Field(default_factory=list)

    def can_access(self, dealership_id: UUID) -> bool:
        return self.is_account_admin or dealership_id in self.allowed_dealership_ids


# =============================================================================
# PROPERTY REGISTRY
# =============================================================================


class PropertyPayload(BaseModel):
    """Body of CreateProperty / UpdateProperty.

    Fields are loose strings; properties.validate_property_payload applies
    the rules in order and reports the first one that fails.
    """

    label: str = ""
    input_type: str = ""
    dropdown_options: list[str] | None = None
    is_required: bool = True


class PropertyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    dealership_id: UUID
    label: str
    key: str
    input_type: InputType
    dropdown_options: list[str] | None = None
    is_required: bool
    creation_time: int
    last_update_time: int
    deletion_time: int | None = None


# =============================================================================
# PROPERTY CONFIGS
# =============================================================================


class PropertyConfigUpdate(BaseModel):
    """Full replacement of a user's ordering and grouping."""

    property_order: list[PropertyOrderEntry] = Field(default_factory=list)
    property_group_by_ids: PropertyGroupBy | None = None


class PropertyConfigRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    dealership_id: UUID
    user_id: UUID
    property_order: list[PropertyOrderEntry]
    property_group_by_ids: PropertyGroupBy | None = None
    creation_time: int
    last_update_time: int


class ResolvedOrderEntry(BaseModel):
    """An order entry joined to the current Property.

    `property` is None when the entry points at a property that is no longer
    active (the config lags the registry until reconciled).
    """

    property_id: UUID
    visible: bool
    property: PropertyRead | None = None


class ResolvedPropertyConfig(BaseModel):
    id: UUID
    account_id: UUID
    dealership_id: UUID
    user_id: UUID
    property_order: list[ResolvedOrderEntry]
    property_group_by_ids: PropertyGroupBy | None = None


# =============================================================================
# VEHICLES
# =============================================================================


class VehicleLocation(BaseModel):
    location_id: UUID | None = None
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class VehiclePayload(BaseModel):
    """Body of vehicle create/update. Update is a full replacement."""

    model_config = ConfigDict(str_strip_whitespace=True)

    vin: str = Field(
        min_length=11,
        max_length=17,
        description="17 characters, or at least 11 for vehicles built before 1981."
    )
    on_road_since: date | None = None
    status: VehicleStatus = VehicleStatus.IN_STOCK
    location: VehicleLocation | None = None
    properties: dict[str, PropertySnapshot] | None = None

    @field_validator("vin")
    @classmethod
    def normalize_vin(cls, v: str) -> str:
        return v.upper()


class VehicleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    dealership_id: UUID
    vin: str
    on_road_since: date | None = None
    status: VehicleStatus
    location: VehicleLocation | None = None
    properties: dict[str, PropertySnapshot] = Field(default_factory=dict)
    creation_time: int
    last_update_time: int
    deletion_time: int | None = None

    @field_validator("properties", mode="before")
    @classmethod
    def default_properties(cls, v):
        return v or {}


# =============================================================================
# RECONCILIATION
# =============================================================================


class ReconcileResponse(BaseModel):
    dealership_id: UUID
    configs_scanned: int
    configs_updated: int
    vehicles_scanned: int
    vehicles_updated: int
    failures: int


class AccessGrantResponse(BaseModel):
    user_id: UUID
    dealership_id: UUID
    config_id: UUID
    config_created: bool
