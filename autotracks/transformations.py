"""Pure transformations behind the property registry and its fan-out.

Nothing in this module touches the database. Given the active property set
of a dealership, the reconcile_* functions compute what one PropertyConfig
or one Vehicle document should look like; sync.py decides whether to write.

Both directions of the fan-out are idempotent here:
- adding is append-if-absent (existing vehicle values are never overwritten)
- removing is remove-if-present
so running a transform on its own output returns an equal value.
"""

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from pydantic import BaseModel, Field

from .schemas import InputType, PropertyKey, PropertySnapshot


class PropertyLike(Protocol):
    id: UUID
    key: str
    label: str
    input_type: InputType


@dataclass(frozen=True)
class RegistryEntry:
    """Detached copy of the Property fields the fan-out needs."""

    id: UUID
    key: str
    label: str
    input_type: InputType

    @classmethod
    def of(cls, prop: PropertyLike) -> "RegistryEntry":
        return cls(id=prop.id, key=prop.key, label=prop.label, input_type=prop.input_type)


# =============================================================================
# Key derivation
# =============================================================================

WORD_PATTERN = re.compile(r"[^\W_]+")


def derive_key(label: str) -> PropertyKey:
    """camelCase key from a free-text label.

    "Trim Level" -> "trimLevel", "  VIN number " -> "vinNumber",
    "Price (USD)" -> "priceUSD". Punctuation separates words and is dropped.
    Returns an empty key when the label holds no letters or digits.
    """
    words = WORD_PATTERN.findall(label or "")
    if not words:
        return PropertyKey("")
    head, *tail = words
    return PropertyKey(head.lower() + "".join(w[0].upper() + w[1:] for w in tail))


def snapshot_for(prop: PropertyLike, value: Any = None) -> dict:
    """JSON-ready vehicle entry for `prop`."""
    return PropertySnapshot(
        label=prop.label,
        value=value,
        input_type=prop.input_type,
    ).model_dump(mode="json")


# =============================================================================
# PropertyConfig.property_order
# =============================================================================


def reconcile_order(order: Iterable[Mapping], active_ids: Sequence[UUID | str]) -> list[dict]:
    """Converge a property_order list on the active property ids.

    Entries for inactive or unknown properties are dropped, duplicates keep
    their first position, and missing active properties are appended as
    visible in registry order. User ordering and visibility are preserved.
    """
    wanted = [str(pid) for pid in active_ids]
    wanted_set = set(wanted)

    result: list[dict] = []
    seen: set[str] = set()
    for entry in order or []:
        pid = str(entry.get("property_id"))
        if pid not in wanted_set or pid in seen:
            continue
        seen.add(pid)
        result.append({"property_id": pid, "visible": bool(entry.get("visible", True))})

    for pid in wanted:
        if pid not in seen:
            seen.add(pid)
            result.append({"property_id": pid, "visible": True})

    return result


def initial_order(active_ids: Sequence[UUID | str]) -> list[dict]:
    """property_order for a brand new config: everything, visible."""
    return reconcile_order([], active_ids)


# =============================================================================
# Vehicle.properties
# =============================================================================


def reconcile_vehicle_properties(
    properties: Mapping[str, Any] | None,
    active: Sequence[PropertyLike],
    retired_keys: Iterable[str] = (),
    key_renames: Mapping[str, str] | None = None,
    refresh_snapshots: bool = False,
) -> dict:
    """Converge a vehicle's properties map on the active registry.

    Only the keys in retired_keys are removed, normally those of the
    properties being deleted in this run; every other key is left alone.
    An active key always wins over a retired one.

    key_renames moves an entry (and its value) from an old key to a new one
    before anything else, unless the new key is already populated.
    refresh_snapshots rewrites label/input_type of existing entries from the
    live Property; otherwise existing snapshots are left as they are.
    """
    result: dict[str, Any] = dict(properties or {})

    for old_key, new_key in (key_renames or {}).items():
        if old_key == new_key or old_key not in result:
            continue
        moved = result.pop(old_key)
        result.setdefault(new_key, moved)

    active_keys = {prop.key for prop in active}
    for key in set(retired_keys) - active_keys:
        result.pop(key, None)

    for prop in active:
        current = result.get(prop.key)
        if current is None:
            result[prop.key] = snapshot_for(prop)
        elif refresh_snapshots:
            value = current.get("value") if isinstance(current, Mapping) else None
            result[prop.key] = snapshot_for(prop, value)

    return result


def seed_vehicle_properties(
    properties: Mapping[str, Any] | None,
    active: Sequence[PropertyLike],
) -> dict:
    """Add a null entry for every registry key the client did not send.

    Unlike reconcile_vehicle_properties, keys unknown to the registry are
    kept: this is used on vehicle creation, where the client owns the map.
    """
    result: dict[str, Any] = dict(properties or {})
    for prop in active:
        result.setdefault(prop.key, snapshot_for(prop))
    return result


# =============================================================================
# Statistics
# =============================================================================


class ReconcileStats(BaseModel):
    """Outcome of one reconcile run over a dealership."""

    dealership_id: UUID
    configs_scanned: int = 0
    configs_updated: int = 0
    vehicles_scanned: int = 0
    vehicles_updated: int = 0
    failures: int = 0
    failed_record_ids: list[str] = Field(default_factory=list)

    @property
    def records_updated(self) -> int:
        return self.configs_updated + self.vehicles_updated

    @property
    def ok(self) -> bool:
        return self.failures == 0
