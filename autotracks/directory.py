"""Identity and directory collaborators.

The core trusts the principal it is handed; credentials are issued and
checked by the external auth service. This module only decodes the bearer
token into a Principal and answers the dealership lookups the property
subsystem needs.
"""

import logging
from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import JWT_ALGORITHM, JWT_SECRET
from .errors import AuthorizationError, NotFoundError
from .models import Dealership
from .schemas import Principal

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def principal_from_claims(claims: dict) -> Principal:
    """Map the auth service's token claims onto a Principal."""
    try:
        return Principal(
            user_id=claims.get("userId"),
            account_id=claims.get("accountId"),
            is_account_admin=bool(claims.get("isAccountAdmin", False)),
            allowed_dealership_ids=claims.get("allowedDealershipIds") or [],
        )
    except PydanticValidationError as e:
        raise AuthorizationError("Not authorized to access this endpoint.") from e


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Principal:
    """FastAPI dependency: bearer JWT -> Principal."""
    if not credentials:
        raise AuthorizationError("Not authorized to access this endpoint.")
    try:
        claims = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.debug(f"Rejected bearer token: {e}")
        raise AuthorizationError("Not authorized to access this endpoint.") from e
    return principal_from_claims(claims)


def require_dealership(db: Session, dealership_id: UUID, account_id: UUID | None = None) -> Dealership:
    """Return the active dealership or raise NotFoundError."""
    query = select(Dealership).where(
        Dealership.id == dealership_id,
        Dealership.deletion_time.is_(None),
    )
    if account_id is not None:
        query = query.where(Dealership.account_id == account_id)
    dealership = db.scalars(query).first()
    if dealership is None:
        raise NotFoundError(f"Dealership '{dealership_id}' not found.")
    return dealership


def ensure_dealership_access(principal: Principal, dealership: Dealership) -> None:
    if dealership.account_id != principal.account_id or not principal.can_access(dealership.id):
        raise AuthorizationError(f"Unauthorized to access the dealership '{dealership.name}'.")


def ensure_account_admin(principal: Principal) -> None:
    if not principal.is_account_admin:
        raise AuthorizationError("Not authorized to access this endpoint.")

