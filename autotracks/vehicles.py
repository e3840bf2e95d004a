"""Vehicle inventory of a dealership.

Vehicle.properties is owned by the client on create and update; the registry
fan-out (sync.py) is what keeps it in line with the dealership's properties
afterwards.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import config
from .database import now_ms
from .directory import require_dealership
from .errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from .models import Vehicle
from .properties import active_properties
from .schemas import VehiclePayload
from .transformations import RegistryEntry, seed_vehicle_properties

logger = logging.getLogger(__name__)


def _properties_from(
    db: Session,
    dealership_id: UUID,
    payload: VehiclePayload,
    seed_policy: str,
) -> dict:
    properties = {
        key: snapshot.model_dump(mode="json")
        for key, snapshot in (payload.properties or {}).items()
    }
    if seed_policy == "seed":
        active = [RegistryEntry.of(p) for p in active_properties(db, dealership_id)]
        properties = seed_vehicle_properties(properties, active)
    return properties


def _ensure_unique_vin(db: Session, vin: str, exclude_id: UUID | None = None) -> None:
    query = select(Vehicle.id).where(Vehicle.vin == vin)
    if exclude_id is not None:
        query = query.where(Vehicle.id != exclude_id)
    if db.scalars(query).first() is not None:
        raise ConflictError(f"A vehicle with VIN '{vin}' already exists.")


def _commit(db: Session, vin: str, action: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"A vehicle with VIN '{vin}' already exists.") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"A problem occurred during the {action} of the vehicle.") from e


def list_vehicles(db: Session, dealership_id: UUID) -> list[Vehicle]:
    require_dealership(db, dealership_id)
    return list(
        db.scalars(
            select(Vehicle)
            .where(
                Vehicle.dealership_id == dealership_id,
                Vehicle.deletion_time.is_(None),
            )
            .order_by(Vehicle.creation_time, Vehicle.id)
        ).all()
    )


def get_vehicle(db: Session, dealership_id: UUID, vehicle_id: UUID) -> Vehicle:
    vehicle = db.scalars(
        select(Vehicle).where(
            Vehicle.id == vehicle_id,
            Vehicle.dealership_id == dealership_id,
            Vehicle.deletion_time.is_(None),
        )
    ).first()
    if vehicle is None:
        raise NotFoundError(f"Vehicle with ID '{vehicle_id}' not found.")
    return vehicle


def create_vehicle(
    db: Session,
    dealership_id: UUID,
    payload: VehiclePayload,
    *,
    seed_policy: str | None = None,
) -> Vehicle:
    """Add a vehicle to the dealership.

    With the "seed" policy every active registry key the client left out is
    added with a null value; with "as_given" the map is stored as sent.
    """
    seed_policy = (seed_policy or config.VEHICLE_SEED_POLICY).lower()
    if seed_policy not in config.VEHICLE_SEED_POLICIES:
        raise ValidationError(f"Unknown vehicle seed policy '{seed_policy}'.")

    require_dealership(db, dealership_id)
    _ensure_unique_vin(db, payload.vin)

    vehicle = Vehicle(
        dealership_id=dealership_id,
        vin=payload.vin,
        on_road_since=payload.on_road_since,
        status=payload.status,
        location=payload.location.model_dump(mode="json") if payload.location else None,
        properties=_properties_from(db, dealership_id, payload, seed_policy),
    )
    db.add(vehicle)
    _commit(db, payload.vin, "creation")
    db.refresh(vehicle)

    logger.info(f"Created vehicle {vehicle.id} ({vehicle.vin}) for dealership {dealership_id}")
    return vehicle


def update_vehicle(db: Session, dealership_id: UUID, vehicle_id: UUID, payload: VehiclePayload) -> Vehicle:
    """Full replacement of a vehicle's fields, properties map included."""
    vehicle = get_vehicle(db, dealership_id, vehicle_id)
    _ensure_unique_vin(db, payload.vin, exclude_id=vehicle.id)

    vehicle.vin = payload.vin
    vehicle.on_road_since = payload.on_road_since
    vehicle.status = payload.status
    vehicle.location = payload.location.model_dump(mode="json") if payload.location else None
    vehicle.properties = _properties_from(db, dealership_id, payload, "as_given")
    _commit(db, payload.vin, "update")
    db.refresh(vehicle)
    return vehicle


def delete_vehicle(db: Session, dealership_id: UUID, vehicle_id: UUID) -> None:
    vehicle = get_vehicle(db, dealership_id, vehicle_id)
    vehicle.deletion_time = now_ms()
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("A problem occurred during the deletion of the vehicle.") from e
    logger.info(f"Deleted vehicle {vehicle_id} from dealership {dealership_id}")
