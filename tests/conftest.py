"""Pytest configuration and shared fixtures."""

import os

os.environ["DATABASE_URL"] = "sqlite://"

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from autotracks import models
from autotracks.config import JWT_ALGORITHM, JWT_SECRET
from autotracks.configs import create_initial_config
from autotracks.database import Base, get_db
from autotracks.directory import get_principal
from autotracks.main import app
from autotracks.schemas import InputType, PropertyPayload, Principal, VehicleStatus


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def account(db):
    account = models.Account(domain="lakeside-motors")
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def dealership(db, account):
    dealership = models.Dealership(account_id=account.id, name="Lakeside North")
    db.add(dealership)
    db.commit()
    return dealership


@pytest.fixture
def other_dealership(db):
    """A dealership of another account."""
    account = models.Account(domain="hilltop-autos")
    db.add(account)
    db.commit()
    dealership = models.Dealership(account_id=account.id, name="Hilltop")
    db.add(dealership)
    db.commit()
    return dealership


@pytest.fixture
def admin(db, account, dealership):
    user = models.User(
        account_id=account.id,
        email="admin@lakeside.example",
        is_account_admin=True,
        allowed_dealership_ids=[str(dealership.id)],
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def staff(db, account, dealership):
    user = models.User(
        account_id=account.id,
        email="sales@lakeside.example",
        allowed_dealership_ids=[str(dealership.id)],
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin_config(db, account, dealership, admin):
    return create_initial_config(db, account.id, dealership.id, admin.id)


@pytest.fixture
def staff_config(db, account, dealership, staff):
    return create_initial_config(db, account.id, dealership.id, staff.id)


@pytest.fixture
def vehicle(db, dealership):
    vehicle = models.Vehicle(
        dealership_id=dealership.id,
        vin="1HGCM82633A004352",
        status=VehicleStatus.IN_STOCK,
        properties={},
    )
    db.add(vehicle)
    db.commit()
    return vehicle


@pytest.fixture
def make_vehicle(db, dealership):
    def _make(vin: str, properties: dict | None = None):
        vehicle = models.Vehicle(
            dealership_id=dealership.id,
            vin=vin,
            status=VehicleStatus.IN_STOCK,
            properties=properties or {},
        )
        db.add(vehicle)
        db.commit()
        return vehicle

    return _make


@pytest.fixture
def text_payload():
    def _payload(label: str, input_type: str = InputType.TEXT.value, **kwargs):
        return PropertyPayload(label=label, input_type=input_type, **kwargs)

    return _payload


@pytest.fixture
def fail_writes_for(db):
    """Make commits touching the given records fail until the fixture ends.

    Simulates a store that rejects the write of individual documents.
    """
    blocked: set = set()

    def before_flush(session, flush_context, instances):
        for obj in session.dirty:
            if getattr(obj, "id", None) in blocked:
                raise OperationalError("UPDATE", {}, Exception("write rejected"))

    event.listen(db, "before_flush", before_flush)
    yield blocked
    event.remove(db, "before_flush", before_flush)


def principal_for(user) -> Principal:
    return Principal(
        user_id=user.id,
        account_id=user.account_id,
        is_account_admin=user.is_account_admin,
        allowed_dealership_ids=user.allowed_dealership_ids,
    )


def _token_for(user) -> str:
    claims = {
        "userId": str(user.id),
        "accountId": str(user.account_id),
        "isAccountAdmin": user.is_account_admin,
        "allowedDealershipIds": list(user.allowed_dealership_ids or []),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def auth_header():
    """Authorization header carrying a signed token for the given user."""
    def _header(user) -> dict:
        return {"Authorization": f"Bearer {_token_for(user)}"}

    return _header


@pytest.fixture
def client_for(db):
    """TestClient bound to the test session, acting as the given user.

    With no user the real bearer-token dependency stays in place.
    """
    def override_get_db():
        yield db

    def _client(user=None):
        app.dependency_overrides[get_db] = override_get_db
        if user is not None:
            principal = principal_for(user)
            app.dependency_overrides[get_principal] = lambda: principal
        else:
            app.dependency_overrides.pop(get_principal, None)
        return TestClient(app)

    yield _client
    app.dependency_overrides.clear()
