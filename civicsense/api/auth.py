"""
Auth Router - Registration, login and account management
"""
from fastapi import APIRouter, Depends, Query, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from sqlalchemy.orm import Session

from civicsense.db.models import User
from civicsense.dependencies import (
    get_db, get_current_user, require_admin, get_identity_verifier
)
from civicsense.services.auth_service import auth_service, public_user
from civicsense.services.firebase_service import FirebaseIdentityVerifier

router = APIRouter()


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    firebase_uid: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class FirebaseAuthRequest(BaseModel):
    firebase_uid: str = Field(..., min_length=1)
    email: EmailStr
    name: Optional[str] = None
    avatar: Optional[str] = None
    id_token: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = Field(None, max_length=30)
    avatar: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = None
    new_password: str = Field(..., min_length=6)


class CreateStaffRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: str = "admin"
    department: Optional[str] = None


class RoleUpdateRequest(BaseModel):
    role: str
    department: Optional[str] = None


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """Register a citizen account"""
    result = auth_service.register(
        db=db,
        name=request.name,
        email=request.email,
        password=request.password,
        firebase_uid=request.firebase_uid
    )
    return {"success": True, **result}


@router.post("/login")
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """Email/password login"""
    result = auth_service.login(db, request.email, request.password)
    return {"success": True, **result}


@router.post("/admin/login")
async def admin_login(request: LoginRequest, db: Session = Depends(get_db)):
    """Login restricted to authority and admin accounts"""
    result = auth_service.login(db, request.email, request.password, staff_only=True)
    return {"success": True, **result}


@router.post("/firebase")
async def firebase_login(
    request: FirebaseAuthRequest,
    db: Session = Depends(get_db),
    verifier: FirebaseIdentityVerifier = Depends(get_identity_verifier)
):
    """
    Sign in with a Firebase identity.

    Finds the account by uid, links an existing account by email, or
    creates a new citizen.
    """
    identity = await run_in_threadpool(
        verifier.verify, request.id_token, request.firebase_uid, request.email
    )
    result = auth_service.login_external(
        db=db,
        firebase_uid=identity["uid"],
        email=identity["email"],
        name=request.name,
        avatar=request.avatar
    )
    return {"success": True, **result}


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    return {"success": True, "user": public_user(user)}


@router.patch("/me")
async def update_me(
    request: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    updated = auth_service.update_profile(db, user, request.model_dump(exclude_unset=True))
    return {"success": True, "user": updated}


@router.post("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    auth_service.change_password(db, user, request.current_password, request.new_password)
    return {"success": True, "message": "Password updated"}


@router.post("/admin/create", status_code=status.HTTP_201_CREATED)
async def create_staff(
    request: CreateStaffRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create an admin or authority account"""
    user = auth_service.create_staff(
        db=db,
        actor=admin,
        name=request.name,
        email=request.email,
        password=request.password,
        role=request.role,
        department=request.department
    )
    return {"success": True, "user": user}


@router.get("/admin/users")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    result = auth_service.list_users(db, page=page, limit=limit, role=role, search=search)
    return {"success": True, **result}


@router.patch("/admin/users/{user_id}/role")
async def set_user_role(
    user_id: int,
    request: RoleUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user = auth_service.set_role(db, admin, user_id, request.role, request.department)
    return {"success": True, "user": user}
