"""
FastAPI dependencies for CivicSense
"""
from typing import Generator, Optional
from fastapi import Depends, Header
from sqlalchemy.orm import Session
from civicsense.db.database import SessionLocal
from civicsense.db.models import User
from civicsense.errors import Unauthorized, Forbidden
from civicsense.services.auth_service import auth_service, STAFF_ROLES
from civicsense.services.classify_service import ClassifyService, classify_service
from civicsense.services.firebase_service import FirebaseIdentityVerifier, firebase_verifier
from civicsense.services.geocode_service import GeocodeService, geocode_service
from civicsense.services.storage_service import ImageStore, image_store


def get_db() -> Generator[Session, None, None]:
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _user_from_token(db: Session, token: str) -> User:
    payload = auth_service.decode_token(token)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise Unauthorized("Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise Unauthorized("Account is deactivated")
    return user


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """Require a valid bearer token"""
    token = _bearer_token(authorization)
    if not token:
        raise Unauthorized("Not authorized, no token")
    return _user_from_token(db, token)


def require_staff(user: User = Depends(get_current_user)) -> User:
    if user.role not in STAFF_ROLES:
        raise Forbidden("Authority or admin role required")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise Forbidden("Admin role required")
    return user


# Collaborators, overridable through app.dependency_overrides

def get_image_store() -> ImageStore:
    return image_store


def get_classifier() -> ClassifyService:
    return classify_service


def get_identity_verifier() -> FirebaseIdentityVerifier:
    return firebase_verifier


def get_geocoder() -> GeocodeService:
    return geocode_service
