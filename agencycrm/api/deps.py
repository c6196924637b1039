from typing import Generator

from fastapi import Depends, HTTPException, Path, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import and_
from sqlalchemy.orm import Session

from agencycrm.db.session import SessionLocal
from agencycrm.db.models import Agency, User
from agencycrm.core.security import decode_token
from agencycrm.core.rbac.service import RBACService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_db() -> Generator:
    """Database session dependency. One request is one transaction."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_current_agency(
    subdomain: str = Path(..., min_length=1, max_length=100),
    db: Session = Depends(get_db),
) -> Agency:
    """Resolve the tenant from the ``{subdomain}`` path segment."""
    agency = db.query(Agency).filter(Agency.subdomain == subdomain).first()
    if not agency or not agency.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agency not found")
    return agency


def get_current_user(
    db: Session = Depends(get_db),
    agency: Agency = Depends(get_current_agency),
    token: str = Depends(oauth2_scheme),
) -> User:
    """Get the authenticated user; they must be active and belong to the agency."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception

    user_id = decode_token(token)
    if not user_id:
        raise credentials_exception

    user = db.query(User).filter(
        and_(User.id == user_id, User.agency_id == agency.id)
    ).first()
    if not user or not user.is_active:
        raise credentials_exception
    return user


def get_rbac_service(
    db: Session = Depends(get_db),
    agency: Agency = Depends(get_current_agency),
) -> RBACService:
    return RBACService(db, agency.id)
