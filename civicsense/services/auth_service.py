"""
Auth Service - Accounts, password hashing and JWT tokens
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional, List

from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlalchemy import or_, func
from sqlalchemy.orm import Session

from civicsense.config import settings
from civicsense.db.models import User, ROLES, DEPARTMENTS
from civicsense.errors import (
    Unauthorized, Forbidden, NotFound, DuplicateEmail, ValidationFailed
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

STAFF_ROLES = ("authority", "admin")
MAX_TRUST_SCORE = 100


def public_user(user: User) -> Dict[str, Any]:
    """Profile fields safe to return to clients"""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "department": user.department,
        "avatar": user.avatar,
        "phone": user.phone,
        "issues_reported": user.issues_reported,
        "issues_verified": user.issues_verified,
        "trust_score": user.trust_score,
        "created_at": user.created_at,
    }


class AuthService:
    """Service for user accounts and authentication"""

    def hash_password(self, password: str) -> str:
        return pwd_context.hash(password)

    def verify_password(self, password: str, password_hash: Optional[str]) -> bool:
        if not password_hash:
            return False
        return pwd_context.verify(password, password_hash)

    def create_token(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user.id),
            "role": user.role,
            "iat": now,
            "exp": now + timedelta(minutes=settings.JWT_EXPIRE_MINUTES),
        }
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def decode_token(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        except JWTError:
            raise Unauthorized("Invalid or expired token")

    def get_by_email(self, db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(User.email == email.strip().lower()).first()

    def get_user(self, db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFound("User not found")
        return user

    def _touch_login(self, db: Session, user: User) -> Dict[str, Any]:
        user.last_login = datetime.utcnow()
        db.commit()
        db.refresh(user)
        return {"user": public_user(user), "token": self.create_token(user)}

    def register(
        self,
        db: Session,
        name: str,
        email: str,
        password: str,
        firebase_uid: Optional[str] = None
    ) -> Dict[str, Any]:
        """Register a citizen account and log it in"""
        if self.get_by_email(db, email):
            raise DuplicateEmail("Email already registered")

        user = User(
            name=name.strip(),
            email=email.strip().lower(),
            password_hash=self.hash_password(password),
            role="citizen",
            firebase_uid=firebase_uid or None,
        )
        db.add(user)
        db.flush()

        logger.info(f"Registered user {user.id}")
        return self._touch_login(db, user)

    def login(self, db: Session, email: str, password: str, staff_only: bool = False) -> Dict[str, Any]:
        """Password login; staff_only restricts to authority/admin accounts"""
        user = self.get_by_email(db, email)
        invalid = "Invalid admin credentials" if staff_only else "Invalid email or password"

        if not user:
            raise Unauthorized(invalid)
        if staff_only and user.role not in STAFF_ROLES:
            raise Forbidden("Access denied. Admin privileges required.")
        if not user.is_active:
            raise Unauthorized("Account is deactivated")
        if not self.verify_password(password, user.password_hash):
            raise Unauthorized(invalid)

        return self._touch_login(db, user)

    def login_external(
        self,
        db: Session,
        firebase_uid: str,
        email: str,
        name: Optional[str] = None,
        avatar: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Find or create the account behind an external identity.

        Lookup order: firebase uid, then email (linking the uid to an existing
        password account), then a new citizen account.
        """
        user = db.query(User).filter(User.firebase_uid == firebase_uid).first()

        if not user:
            user = self.get_by_email(db, email)
            if user:
                user.firebase_uid = firebase_uid
                if avatar and not user.avatar:
                    user.avatar = avatar
            else:
                user = User(
                    firebase_uid=firebase_uid,
                    email=email.strip().lower(),
                    name=(name or email.split("@")[0])[:50],
                    avatar=avatar,
                    role="citizen",
                )
                db.add(user)
                db.flush()
                logger.info(f"Created user {user.id} from external identity")

        if not user.is_active:
            raise Unauthorized("Account is deactivated")

        return self._touch_login(db, user)

    def update_profile(self, db: Session, user: User, updates: Dict[str, Any]) -> Dict[str, Any]:
        for field in ("name", "phone", "avatar"):
            if updates.get(field) is not None:
                setattr(user, field, updates[field])
        db.commit()
        db.refresh(user)
        return public_user(user)

    def change_password(
        self,
        db: Session,
        user: User,
        current_password: Optional[str],
        new_password: str
    ) -> None:
        # External-auth accounts may set a first password without a current one
        if user.password_hash:
            if not current_password:
                raise ValidationFailed("Current password is required")
            if not self.verify_password(current_password, user.password_hash):
                raise Unauthorized("Current password is incorrect")

        user.password_hash = self.hash_password(new_password)
        db.commit()

    def create_staff(
        self,
        db: Session,
        actor: User,
        name: str,
        email: str,
        password: str,
        role: str = "admin",
        department: Optional[str] = None
    ) -> Dict[str, Any]:
        """Admins create admin or authority accounts"""
        if actor.role != "admin":
            raise Forbidden("Only admins can create new admin accounts")
        if role not in STAFF_ROLES:
            raise ValidationFailed("Invalid role. Must be admin or authority.")
        if role == "authority" and department not in DEPARTMENTS:
            raise ValidationFailed("Authority accounts need a valid department")
        if self.get_by_email(db, email):
            raise DuplicateEmail("Email already registered")

        user = User(
            name=name.strip(),
            email=email.strip().lower(),
            password_hash=self.hash_password(password),
            role=role,
            department=department if role == "authority" else None,
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

        logger.info(f"Admin {actor.id} created {role} account {user.id}")
        return public_user(user)

    def list_users(
        self,
        db: Session,
        page: int = 1,
        limit: int = 20,
        role: Optional[str] = None,
        search: Optional[str] = None
    ) -> Dict[str, Any]:
        query = db.query(User)
        if role:
            query = query.filter(User.role == role)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(or_(
                func.lower(User.name).like(pattern),
                func.lower(User.email).like(pattern)
            ))

        total = query.count()
        users: List[User] = query.order_by(User.created_at.desc(), User.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()

        return {
            "users": [public_user(u) for u in users],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": -(-total // limit)
            }
        }

    def set_role(
        self,
        db: Session,
        actor: User,
        user_id: int,
        role: str,
        department: Optional[str] = None
    ) -> Dict[str, Any]:
        if actor.role != "admin":
            raise Forbidden("Only admins can change user roles")
        if role not in ROLES:
            raise ValidationFailed("Invalid role")
        if role == "authority" and department not in DEPARTMENTS:
            raise ValidationFailed("Authority accounts need a valid department")

        user = self.get_user(db, user_id)
        user.role = role
        user.department = department if role == "authority" else None
        db.commit()
        db.refresh(user)
        return public_user(user)


# Singleton instance
auth_service = AuthService()
