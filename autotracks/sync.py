"""Fan-out synchronizer.

Keeps PropertyConfig.property_order and Vehicle.properties consistent with a
dealership's Property registry. There is one entry point, reconcile(), that
converges every active config and vehicle of a dealership on the registry:

- property added:   reconcile(db, dealership_id, include_property_ids={id})
- property removed: reconcile(db, dealership_id, exclude_property_ids={id},
                              include_property_ids=()),
                    run before the property is soft-deleted
- property relabel: reconcile(db, dealership_id, include_property_ids={id},
                              key_renames={old: new}, refresh_snapshots=True)

Each changed record is committed on its own. A failing record is rolled back
and counted; records written before it stay written. Because the transforms
are idempotent, running reconcile again repairs whatever a partial run left.

A reconcile with no scope is the repair pass: vehicles gain an entry for
every active property, including the current key of a property updated
under the "drift" policy.
"""

import logging
from collections.abc import Collection, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Dealership, Property, PropertyConfig, Vehicle
from .transformations import (
    ReconcileStats,
    RegistryEntry,
    reconcile_order,
    reconcile_vehicle_properties,
)

logger = logging.getLogger(__name__)


def _commit_record(db: Session, record_id: UUID, kind: str, stats: ReconcileStats) -> bool:
    try:
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Fan-out write failed for {kind} {record_id}")
        stats.failures += 1
        stats.failed_record_ids.append(str(record_id))
        return False


def reconcile(
    db: Session,
    dealership_id: UUID,
    *,
    exclude_property_ids: Collection[UUID] = (),
    include_property_ids: Collection[UUID] | None = None,
    key_renames: Mapping[str, str] | None = None,
    refresh_snapshots: bool = False,
) -> ReconcileStats:
    """Converge configs and vehicles of a dealership on its property registry.

    exclude_property_ids are treated as already deleted: their keys, and the
    keys they left behind under the "drift" policy, are removed from vehicles.
    Keys of properties deleted earlier are not touched again. With
    include_property_ids only those properties are added to vehicles.
    Returns the run's statistics; callers decide whether failures are fatal.
    """
    excluded = set(exclude_property_ids)
    registry = db.scalars(
        select(Property)
        .where(Property.dealership_id == dealership_id)
        .order_by(Property.creation_time, Property.id)
    ).all()

    active = [
        RegistryEntry.of(p) for p in registry
        if p.deletion_time is None and p.id not in excluded
    ]
    retired_keys = set()
    for p in registry:
        if p.id in excluded:
            retired_keys.add(p.key)
            retired_keys.update(p.previous_keys or [])
    retired_keys -= {p.key for p in active}
    active_ids = [p.id for p in active]
    if include_property_ids is None:
        adding = active
    else:
        included = set(include_property_ids)
        adding = [p for p in active if p.id in included]

    stats = ReconcileStats(dealership_id=dealership_id)

    configs = db.scalars(
        select(PropertyConfig).where(
            PropertyConfig.dealership_id == dealership_id,
            PropertyConfig.deletion_time.is_(None),
        )
    ).all()
    for config in configs:
        stats.configs_scanned += 1
        config_id = config.id
        new_order = reconcile_order(config.property_order, active_ids)
        if new_order == config.property_order:
            continue
        config.property_order = new_order
        if _commit_record(db, config_id, "property config", stats):
            stats.configs_updated += 1

    vehicles = db.scalars(
        select(Vehicle).where(
            Vehicle.dealership_id == dealership_id,
            Vehicle.deletion_time.is_(None),
        )
    ).all()
    for vehicle in vehicles:
        stats.vehicles_scanned += 1
        vehicle_id = vehicle.id
        new_properties = reconcile_vehicle_properties(
            vehicle.properties,
            adding,
            retired_keys=retired_keys,
            key_renames=key_renames,
            refresh_snapshots=refresh_snapshots,
        )
        if new_properties == (vehicle.properties or {}):
            continue
        vehicle.properties = new_properties
        if _commit_record(db, vehicle_id, "vehicle", stats):
            stats.vehicles_updated += 1

    logger.info(
        f"Reconciled dealership {dealership_id}: "
        f"{stats.configs_updated}/{stats.configs_scanned} configs, "
        f"{stats.vehicles_updated}/{stats.vehicles_scanned} vehicles updated, "
        f"{stats.failures} failures"
    )
    return stats


def reconcile_all(db: Session) -> list[ReconcileStats]:
    """Run reconcile over every active dealership (background repair)."""
    dealership_ids = db.scalars(
        select(Dealership.id).where(Dealership.deletion_time.is_(None))
    ).all()
    return [reconcile(db, dealership_id) for dealership_id in dealership_ids]
