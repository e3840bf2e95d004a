"""Tests for reconciliation: convergence, idempotence and partial failures."""

import pytest

from autotracks import properties
from autotracks.errors import PersistenceError
from autotracks.models import Property
from autotracks.schemas import InputType
from autotracks.sync import reconcile, reconcile_all


@pytest.fixture
def registry(db, dealership):
    """Two active properties with distinct creation times and a deleted one."""
    mileage = Property(dealership_id=dealership.id, label="Mileage", key="mileage",
                       input_type=InputType.NUMBER, creation_time=1_000)
    trim = Property(dealership_id=dealership.id, label="Trim Level", key="trimLevel",
                    input_type=InputType.TEXT, creation_time=2_000)
    retired = Property(dealership_id=dealership.id, label="Color", key="color",
                       input_type=InputType.TEXT, creation_time=500, deletion_time=3_000)
    db.add_all([mileage, trim, retired])
    db.commit()
    return mileage, trim, retired


class TestReconcile:

    def test_converges_configs_in_registry_order(self, db, dealership, registry, admin_config):
        mileage, trim, retired = registry
        admin_config.property_order = [{"property_id": str(retired.id), "visible": True}]
        db.commit()

        stats = reconcile(db, dealership.id)

        db.refresh(admin_config)
        assert admin_config.property_order == [
            {"property_id": str(mileage.id), "visible": True},
            {"property_id": str(trim.id), "visible": True},
        ]
        assert stats.configs_scanned == 1
        assert stats.configs_updated == 1
        assert stats.ok

    def test_keys_of_earlier_deletes_are_left_alone(self, db, dealership, registry, make_vehicle):
        vehicle = make_vehicle(
            "1HGCM82633A004352",
            {"color": {"label": "Color", "value": "red", "input_type": "Text"}},
        )

        reconcile(db, dealership.id)

        db.refresh(vehicle)
        assert vehicle.properties["color"]["value"] == "red"

    def test_include_scope_adds_only_those_properties(self, db, dealership, registry, make_vehicle):
        mileage, trim, _ = registry
        vehicle = make_vehicle("1HGCM82633A004352")

        reconcile(db, dealership.id, include_property_ids={trim.id})

        db.refresh(vehicle)
        assert set(vehicle.properties) == {"trimLevel"}

    def test_converges_vehicles(self, db, dealership, registry, make_vehicle):
        vehicle = make_vehicle(
            "1HGCM82633A004352",
            {
                "color": {"label": "Color", "value": "red", "input_type": "Text"},
                "mileage": {"label": "Mileage", "value": 1200, "input_type": "Number"},
                "notes": {"label": "Notes", "value": "dent", "input_type": "Text"},
            },
        )

        stats = reconcile(db, dealership.id)

        db.refresh(vehicle)
        assert vehicle.properties == {
            "color": {"label": "Color", "value": "red", "input_type": "Text"},
            "mileage": {"label": "Mileage", "value": 1200, "input_type": "Number"},
            "trimLevel": {"label": "Trim Level", "value": None, "input_type": "Text"},
            "notes": {"label": "Notes", "value": "dent", "input_type": "Text"},
        }
        assert stats.vehicles_updated == 1

    def test_idempotent(self, db, dealership, registry, admin_config, staff_config, make_vehicle):
        make_vehicle("1HGCM82633A004352")
        make_vehicle("2HGCM82633A004353")

        first = reconcile(db, dealership.id)
        second = reconcile(db, dealership.id)

        assert first.vehicles_updated == 2
        assert second.records_updated == 0
        assert second.configs_scanned == 2
        assert second.vehicles_scanned == 2

    def test_skips_deleted_records(self, db, dealership, registry, make_vehicle):
        vehicle = make_vehicle("1HGCM82633A004352")
        vehicle.deletion_time = 1
        db.commit()

        stats = reconcile(db, dealership.id)

        db.refresh(vehicle)
        assert vehicle.properties == {}
        assert stats.vehicles_scanned == 0

    def test_excluded_property_is_treated_as_deleted(self, db, dealership, registry, admin_config, vehicle):
        mileage, trim, _ = registry
        reconcile(db, dealership.id)

        reconcile(db, dealership.id, exclude_property_ids={trim.id})

        db.refresh(admin_config)
        db.refresh(vehicle)
        assert admin_config.property_order == [{"property_id": str(mileage.id), "visible": True}]
        assert set(vehicle.properties) == {"mileage"}

    def test_reconcile_all(self, db, dealership, other_dealership, registry, vehicle):
        results = reconcile_all(db)
        assert {s.dealership_id for s in results} == {dealership.id, other_dealership.id}


class TestPartialFailure:

    def test_failure_is_counted_and_others_written(self, db, dealership, registry, make_vehicle, fail_writes_for):
        good = make_vehicle("1HGCM82633A004352")
        bad = make_vehicle("2HGCM82633A004353")
        fail_writes_for.add(bad.id)

        stats = reconcile(db, dealership.id)

        assert stats.failures == 1
        assert stats.failed_record_ids == [str(bad.id)]
        assert not stats.ok
        db.refresh(good)
        db.refresh(bad)
        assert set(good.properties) == {"mileage", "trimLevel"}
        assert bad.properties == {}

    def test_retry_converges(self, db, dealership, registry, make_vehicle, fail_writes_for):
        bad = make_vehicle("2HGCM82633A004353")
        fail_writes_for.add(bad.id)
        reconcile(db, dealership.id)

        fail_writes_for.clear()
        stats = reconcile(db, dealership.id)

        assert stats.ok
        assert stats.vehicles_updated == 1
        db.refresh(bad)
        assert set(bad.properties) == {"mileage", "trimLevel"}

    def test_create_reports_persistence_error(self, db, dealership, make_vehicle, fail_writes_for, text_payload):
        bad = make_vehicle("2HGCM82633A004353")
        fail_writes_for.add(bad.id)

        with pytest.raises(PersistenceError) as excinfo:
            properties.create_property(db, dealership.id, text_payload("Trim Level"))
        assert excinfo.value.failures == 1

        # the property itself was written
        assert [p.key for p in properties.list_properties(db, dealership.id)] == ["trimLevel"]

        fail_writes_for.clear()
        assert reconcile(db, dealership.id).vehicles_updated == 1

    def test_failed_delete_keeps_property_active(self, db, dealership, make_vehicle, fail_writes_for, text_payload):
        prop = properties.create_property(db, dealership.id, text_payload("Trim Level"))
        bad = make_vehicle("2HGCM82633A004353")
        reconcile(db, dealership.id)
        fail_writes_for.add(bad.id)

        with pytest.raises(PersistenceError):
            properties.delete_property(db, dealership.id, prop.id)
        assert properties.get_property(db, dealership.id, prop.id).deletion_time is None

        fail_writes_for.clear()
        properties.delete_property(db, dealership.id, prop.id)
        db.refresh(bad)
        assert bad.properties == {}
