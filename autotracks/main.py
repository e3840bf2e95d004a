"""FastAPI application for the Autotracks inventory API."""

import logging
import os
from contextlib import asynccontextmanager
from uuid import UUID

import logfire
from fastapi import Depends, FastAPI, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.requests import Request

from . import configs, properties, vehicles
from .config import CORS_ORIGINS, LOG_LEVEL
from .database import get_db, init_db
from .directory import ensure_account_admin, ensure_dealership_access, get_principal, require_dealership
from .errors import AutotracksError
from .schemas import (
    AccessGrantResponse,
    Principal,
    PropertyConfigRead,
    PropertyConfigUpdate,
    PropertyPayload,
    PropertyRead,
    ReconcileResponse,
    ResolvedPropertyConfig,
    VehiclePayload,
    VehicleRead,
)
from .sync import reconcile

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield


app = FastAPI(
    title="Autotracks API",
    description="Dealership vehicle inventory with dealership-defined vehicle properties",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure Logfire for observability (after app creation)
if os.getenv("LOGFIRE_TOKEN"):
    logfire.configure()
    logfire.instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AutotracksError)
async def autotracks_error_handler(request: Request, exc: AutotracksError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request.")
    return JSONResponse(
        status_code=422,
        content={"error": "validation_error", "detail": f"{field}: {message}" if field else message},
    )


def _dealership_for(db: Session, principal: Principal, dealership_id: UUID):
    dealership = require_dealership(db, dealership_id)
    ensure_dealership_access(principal, dealership)
    return dealership


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Autotracks API"}


# =============================================================================
# Property registry
# =============================================================================


@app.get("/dealerships/{dealership_id}/properties", response_model=list[PropertyRead])
def list_properties(
    dealership_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    _dealership_for(db, principal, dealership_id)
    return properties.list_properties(db, dealership_id)


@app.post("/dealerships/{dealership_id}/properties", response_model=PropertyRead, status_code=201)
def create_property(
    dealership_id: UUID,
    payload: PropertyPayload,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    """Create a property and add it to every user config and vehicle."""
    ensure_account_admin(principal)
    _dealership_for(db, principal, dealership_id)
    return properties.create_property(db, dealership_id, payload)


@app.post("/dealerships/{dealership_id}/properties/reconcile", response_model=ReconcileResponse)
def reconcile_properties(
    dealership_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    """Re-run the fan-out for a dealership, e.g. after a partial failure."""
    ensure_account_admin(principal)
    _dealership_for(db, principal, dealership_id)
    stats = reconcile(db, dealership_id)
    return ReconcileResponse(**stats.model_dump(exclude={"failed_record_ids"}))


@app.get("/dealerships/{dealership_id}/properties/{property_id}", response_model=PropertyRead)
def get_property(
    dealership_id: UUID,
    property_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    _dealership_for(db, principal, dealership_id)
    return properties.get_property(db, dealership_id, property_id)


@app.put("/dealerships/{dealership_id}/properties/{property_id}", response_model=PropertyRead)
def update_property(
    dealership_id: UUID,
    property_id: UUID,
    payload: PropertyPayload,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    ensure_account_admin(principal)
    _dealership_for(db, principal, dealership_id)
    return properties.update_property(db, dealership_id, property_id, payload)


@app.delete("/dealerships/{dealership_id}/properties/{property_id}", status_code=204)
def delete_property(
    dealership_id: UUID,
    property_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    """Remove a property from every user config and vehicle, then delete it."""
    ensure_account_admin(principal)
    _dealership_for(db, principal, dealership_id)
    properties.delete_property(db, dealership_id, property_id)
    return Response(status_code=204)


# =============================================================================
# Property configs
# =============================================================================


@app.get("/dealerships/{dealership_id}/property-configs", response_model=ResolvedPropertyConfig)
def get_property_config(
    dealership_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    """The caller's ordered view of the dealership's properties."""
    _dealership_for(db, principal, dealership_id)
    return configs.get_config(db, dealership_id, principal.user_id)


@app.put("/dealerships/{dealership_id}/property-configs/{config_id}", response_model=PropertyConfigRead)
def update_property_config(
    dealership_id: UUID,
    config_id: UUID,
    payload: PropertyConfigUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    """Replace the caller's property order; admins may update any config."""
    _dealership_for(db, principal, dealership_id)
    owner_id = None if principal.is_account_admin else principal.user_id
    return configs.update_order(db, config_id, payload, dealership_id=dealership_id, owner_id=owner_id)


@app.post("/dealerships/{dealership_id}/users/{user_id}/access", response_model=AccessGrantResponse)
def grant_access(
    dealership_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    """Grant a user access to the dealership and seed their property config."""
    ensure_account_admin(principal)
    _dealership_for(db, principal, dealership_id)
    config, created = configs.grant_dealership_access(db, user_id, dealership_id)
    return AccessGrantResponse(
        user_id=user_id,
        dealership_id=dealership_id,
        config_id=config.id,
        config_created=created,
    )


# =============================================================================
# Vehicles
# =============================================================================


@app.get("/dealerships/{dealership_id}/vehicles", response_model=list[VehicleRead])
def list_vehicles(
    dealership_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    _dealership_for(db, principal, dealership_id)
    return vehicles.list_vehicles(db, dealership_id)


@app.post("/dealerships/{dealership_id}/vehicles", response_model=VehicleRead, status_code=201)
def create_vehicle(
    dealership_id: UUID,
    payload: VehiclePayload,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    _dealership_for(db, principal, dealership_id)
    return vehicles.create_vehicle(db, dealership_id, payload)


@app.get("/dealerships/{dealership_id}/vehicles/{vehicle_id}", response_model=VehicleRead)
def get_vehicle(
    dealership_id: UUID,
    vehicle_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    _dealership_for(db, principal, dealership_id)
    return vehicles.get_vehicle(db, dealership_id, vehicle_id)


@app.put("/dealerships/{dealership_id}/vehicles/{vehicle_id}", response_model=VehicleRead)
def update_vehicle(
    dealership_id: UUID,
    vehicle_id: UUID,
    payload: VehiclePayload,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    _dealership_for(db, principal, dealership_id)
    return vehicles.update_vehicle(db, dealership_id, vehicle_id, payload)


@app.delete("/dealerships/{dealership_id}/vehicles/{vehicle_id}", status_code=204)
def delete_vehicle(
    dealership_id: UUID,
    vehicle_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    _dealership_for(db, principal, dealership_id)
    vehicles.delete_vehicle(db, dealership_id, vehicle_id)
    return Response(status_code=204)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("autotracks.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
