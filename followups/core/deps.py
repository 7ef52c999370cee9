"""FastAPI dependencies for database access and tenant scoping."""

from typing import Generator
from uuid import UUID

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from followups.db.session import SessionLocal


ORG_HEADER = "X-Organization-Id"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_org_id(x_organization_id: str = Header(..., alias=ORG_HEADER)) -> UUID:
    """
    Resolve the calling organization.

    Authentication happens at the gateway, which forwards the tenant id.

    Raises:
        HTTPException 400: Header is not a UUID
    """
    try:
        return UUID(x_organization_id)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {ORG_HEADER} header")
