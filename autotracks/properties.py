"""Property registry: the custom vehicle attributes of a dealership.

Every mutation is persisted first and fanned out second (see sync.py). If the
property write itself fails nothing is fanned out; if the fan-out fails the
property write stays and PersistenceError tells the caller to retry.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config
from .database import now_ms
from .directory import require_dealership
from .errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from .models import Property
from .schemas import InputType, PropertyKey, PropertyPayload
from .sync import reconcile
from .transformations import ReconcileStats, derive_key

logger = logging.getLogger(__name__)

INPUT_TYPES = [t.value for t in InputType]


def active_properties(db: Session, dealership_id: UUID) -> list[Property]:
    """Active properties of a dealership in creation order."""
    return list(
        db.scalars(
            select(Property)
            .where(
                Property.dealership_id == dealership_id,
                Property.deletion_time.is_(None),
            )
            .order_by(Property.creation_time, Property.id)
        ).all()
    )


def validate_property_payload(payload: PropertyPayload) -> tuple[str, InputType, list[str] | None, PropertyKey]:
    """Check a create/update body. The first failing rule is raised.

    Returns the cleaned (label, input_type, dropdown_options, key).
    """
    label = (payload.label or "").strip()
    if not label:
        raise ValidationError("Label not provided.")

    key = derive_key(label)
    if not key:
        raise ValidationError("Label must contain at least one letter or digit.")

    if payload.input_type not in INPUT_TYPES:
        raise ValidationError(
            f"Input type '{payload.input_type}' is not one of: {', '.join(INPUT_TYPES)}."
        )
    input_type = InputType(payload.input_type)

    dropdown_options = None
    if input_type is InputType.DROPDOWN:
        dropdown_options = [o.strip() for o in (payload.dropdown_options or []) if o and o.strip()]
        if not dropdown_options:
            raise ValidationError("Dropdown options not provided.")

    return label, input_type, dropdown_options, key


def _ensure_unique_key(db: Session, dealership_id: UUID, key: str, exclude_id: UUID | None = None) -> None:
    query = select(Property.id).where(
        Property.dealership_id == dealership_id,
        Property.key == key,
        Property.deletion_time.is_(None),
    )
    if exclude_id is not None:
        query = query.where(Property.id != exclude_id)
    if db.scalars(query).first() is not None:
        raise ConflictError(f"A property with key '{key}' already exists for this dealership.")


def _raise_on_fanout_failure(stats: ReconcileStats, action: str) -> None:
    if stats.failures:
        raise PersistenceError(
            f"Property {action}, but {stats.failures} dependent record(s) could not be "
            f"updated. The operation is safe to retry.",
            failures=stats.failures,
        )


def list_properties(db: Session, dealership_id: UUID) -> list[Property]:
    require_dealership(db, dealership_id)
    return active_properties(db, dealership_id)


def get_property(db: Session, dealership_id: UUID, property_id: UUID) -> Property:
    prop = db.scalars(
        select(Property).where(
            Property.id == property_id,
            Property.dealership_id == dealership_id,
            Property.deletion_time.is_(None),
        )
    ).first()
    if prop is None:
        raise NotFoundError(f"Property with ID '{property_id}' not found.")
    return prop


def create_property(
    db: Session,
    dealership_id: UUID,
    payload: PropertyPayload,
    *,
    enforce_unique_keys: bool | None = None,
) -> Property:
    """Create a property and add it to every config and vehicle of the dealership."""
    if enforce_unique_keys is None:
        enforce_unique_keys = config.ENFORCE_UNIQUE_PROPERTY_KEYS

    label, input_type, dropdown_options, key = validate_property_payload(payload)
    require_dealership(db, dealership_id)
    if enforce_unique_keys:
        _ensure_unique_key(db, dealership_id, key)

    prop = Property(
        dealership_id=dealership_id,
        label=label,
        key=str(key),
        input_type=input_type,
        dropdown_options=dropdown_options,
        is_required=payload.is_required,
    )
    db.add(prop)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("A problem occurred during the creation of the property.") from e
    db.refresh(prop)

    logger.info(f"Created property {prop.id} ({prop.key}) for dealership {dealership_id}")

    stats = reconcile(db, dealership_id, include_property_ids={prop.id})
    _raise_on_fanout_failure(stats, "created")
    db.refresh(prop)
    return prop


def update_property(
    db: Session,
    dealership_id: UUID,
    property_id: UUID,
    payload: PropertyPayload,
    *,
    policy: str | None = None,
    enforce_unique_keys: bool | None = None,
) -> Property:
    """Replace a property's definition; the key follows the new label.

    With the "drift" policy existing vehicle snapshots keep the old key and
    label; the old key is remembered in previous_keys so that deleting the
    property later also removes those entries. With "relabel" they are moved
    to the new key (values kept) and their label/input_type refreshed. Configs reference properties by id and
    never need re-keying.
    """
    policy = (policy or config.PROPERTY_UPDATE_POLICY).lower()
    if policy not in config.PROPERTY_UPDATE_POLICIES:
        raise ValidationError(f"Unknown property update policy '{policy}'.")
    if enforce_unique_keys is None:
        enforce_unique_keys = config.ENFORCE_UNIQUE_PROPERTY_KEYS

    label, input_type, dropdown_options, key = validate_property_payload(payload)
    prop = get_property(db, dealership_id, property_id)
    if enforce_unique_keys:
        _ensure_unique_key(db, dealership_id, key, exclude_id=prop.id)

    old_key = prop.key
    if policy == "drift" and old_key != key:
        prop.previous_keys = [k for k in (prop.previous_keys or []) if k not in (key, old_key)] + [old_key]
    prop.label = label
    prop.key = str(key)
    prop.input_type = input_type
    prop.dropdown_options = dropdown_options
    prop.is_required = payload.is_required
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("A problem occurred during the update of the property.") from e

    logger.info(f"Updated property {property_id} ({old_key} -> {key}), policy={policy}")

    if policy == "relabel":
        renames = {old_key: str(key)} if old_key != key else None
        stats = reconcile(
            db, dealership_id,
            include_property_ids={prop.id}, key_renames=renames, refresh_snapshots=True,
        )
        _raise_on_fanout_failure(stats, "updated")

    db.refresh(prop)
    return prop


def delete_property(db: Session, dealership_id: UUID, property_id: UUID) -> None:
    """Remove a property from every config and vehicle, then soft-delete it.

    If the fan-out fails the property stays active so the delete can simply
    be retried.
    """
    prop = get_property(db, dealership_id, property_id)
    prop_id = prop.id

    stats = reconcile(db, dealership_id, exclude_property_ids={prop_id}, include_property_ids=())
    _raise_on_fanout_failure(stats, "removal started")

    prop = get_property(db, dealership_id, prop_id)
    prop.deletion_time = now_ms()
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("A problem occurred during the deletion of the property.") from e

    logger.info(f"Deleted property {prop_id} from dealership {dealership_id}")
