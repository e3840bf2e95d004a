"""Property config store: each user's ordered view of a dealership's properties."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config as settings
from .directory import require_dealership
from .errors import AuthorizationError, NotFoundError, PersistenceError, ValidationError
from .models import PropertyConfig, User
from .properties import active_properties
from .schemas import (
    PropertyConfigUpdate,
    PropertyRead,
    ResolvedOrderEntry,
    ResolvedPropertyConfig,
)
from .transformations import initial_order

logger = logging.getLogger(__name__)


def find_config(db: Session, dealership_id: UUID, user_id: UUID) -> PropertyConfig | None:
    return db.scalars(
        select(PropertyConfig).where(
            PropertyConfig.dealership_id == dealership_id,
            PropertyConfig.user_id == user_id,
            PropertyConfig.deletion_time.is_(None),
        )
    ).first()


def create_initial_config(db: Session, account_id: UUID, dealership_id: UUID, user_id: UUID) -> PropertyConfig:
    """New config listing every active property of the dealership, visible."""
    properties = active_properties(db, dealership_id)
    config = PropertyConfig(
        account_id=account_id,
        dealership_id=dealership_id,
        user_id=user_id,
        property_order=initial_order([p.id for p in properties]),
        property_group_by_ids=None,
    )
    db.add(config)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("An error occurred when creating the property config.") from e
    db.refresh(config)
    return config


def get_config(db: Session, dealership_id: UUID, user_id: UUID) -> ResolvedPropertyConfig:
    """The user's config with each order entry joined to its live Property."""
    config = find_config(db, dealership_id, user_id)
    if config is None:
        raise NotFoundError(f"Vehicle property order not found for user with ID {user_id}.")

    by_id = {str(p.id): p for p in active_properties(db, dealership_id)}
    entries = []
    for entry in config.property_order or []:
        prop = by_id.get(str(entry["property_id"]))
        entries.append(ResolvedOrderEntry(
            property_id=entry["property_id"],
            visible=entry.get("visible", True),
            property=PropertyRead.model_validate(prop) if prop else None,
        ))

    return ResolvedPropertyConfig(
        id=config.id,
        account_id=config.account_id,
        dealership_id=config.dealership_id,
        user_id=config.user_id,
        property_order=entries,
        property_group_by_ids=config.property_group_by_ids,
    )


def update_order(
    db: Session,
    config_id: UUID,
    update: PropertyConfigUpdate,
    *,
    dealership_id: UUID | None = None,
    owner_id: UUID | None = None,
    validate_references: bool | None = None,
) -> PropertyConfig:
    """Replace property_order and property_group_by_ids wholesale.

    No merge with the previous order happens. With validate_references every
    entry must name an active property of the config's dealership. With
    owner_id only that user's config can be changed.
    """
    if validate_references is None:
        validate_references = settings.VALIDATE_PROPERTY_ORDER

    query = select(PropertyConfig).where(
        PropertyConfig.id == config_id,
        PropertyConfig.deletion_time.is_(None),
    )
    if dealership_id is not None:
        query = query.where(PropertyConfig.dealership_id == dealership_id)
    config = db.scalars(query).first()
    if config is None:
        raise NotFoundError(f"Property config with ID '{config_id}' not found.")
    if owner_id is not None and config.user_id != owner_id:
        raise AuthorizationError("Unauthorized to update another user's property config.")

    if validate_references:
        known = {p.id for p in active_properties(db, config.dealership_id)}
        for entry in update.property_order:
            if entry.property_id not in known:
                raise ValidationError(
                    f"Property '{entry.property_id}' is not an active property of this dealership."
                )

    config.property_order = [e.model_dump(mode="json") for e in update.property_order]
    config.property_group_by_ids = (
        update.property_group_by_ids.model_dump() if update.property_group_by_ids else None
    )
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("An error occurred when updating the property order.") from e
    db.refresh(config)
    return config


def grant_dealership_access(db: Session, user_id: UUID, dealership_id: UUID) -> tuple[PropertyConfig, bool]:
    """Give a user access to a dealership and seed their property config.

    This is the contract the user directory relies on when it grants access:
    the dealership is added to the user's allowed ids when missing, and the
    initial config (all active properties, visible) is created when the user
    has none for this dealership. Safe to call repeatedly.

    Returns (config, created).
    """
    dealership = require_dealership(db, dealership_id)
    user = db.scalars(
        select(User).where(
            User.id == user_id,
            User.account_id == dealership.account_id,
            User.deletion_time.is_(None),
        )
    ).first()
    if user is None:
        raise NotFoundError(f"User with ID '{user_id}' not found.")

    allowed = [str(d) for d in (user.allowed_dealership_ids or [])]
    if str(dealership.id) not in allowed:
        user.allowed_dealership_ids = allowed + [str(dealership.id)]
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("An error occurred when updating the user model.") from e

    existing = find_config(db, dealership.id, user.id)
    if existing is not None:
        return existing, False

    config = create_initial_config(db, user.account_id, dealership.id, user.id)
    logger.info(f"Granted user {user.id} access to dealership {dealership.id}")
    return config, True
