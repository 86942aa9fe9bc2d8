"""
Issues Router - Reporting, browsing, verification and resolution of issues
"""
import base64
import logging
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
from typing import Optional
from sqlalchemy.orm import Session

from civicsense.db.models import User
from civicsense.dependencies import (
    get_db, get_current_user, require_staff,
    get_image_store, get_classifier, get_geocoder
)
from civicsense.errors import NotFound, ValidationFailed
from civicsense.services.classify_service import ClassifyService
from civicsense.services.geocode_service import GeocodeService
from civicsense.services.issue_service import issue_service, serialize_issue, serialize_comment
from civicsense.services.query_service import query_service
from civicsense.services.storage_service import ImageStore, ISSUE_FOLDER, PROOF_FOLDER, file_extension

logger = logging.getLogger(__name__)
router = APIRouter()


class IssueUpdateRequest(BaseModel):
    status: Optional[str] = None
    assigned_to: Optional[int] = None
    note: Optional[str] = Field(None, max_length=500)


class VerifyRequest(BaseModel):
    is_real: bool = True


class CommentRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_issue(
    latitude: float = Form(...),
    longitude: float = Form(...),
    description: str = Form(...),
    category: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    ai_confidence: Optional[float] = Form(None),
    image_url: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: ImageStore = Depends(get_image_store),
    classifier: ClassifyService = Depends(get_classifier),
    geocoder: GeocodeService = Depends(get_geocoder)
):
    """
    Report a new issue.

    Flow: validate -> upload image -> classify (when no category was
    chosen) -> reverse geocode (when no address was given) -> insert.
    """
    category = category or None
    issue_service.validate_report(latitude, longitude, description, category)

    content = None
    if image is not None and image.filename:
        content = await image.read()
        image_url = await store.upload(content, image.filename, ISSUE_FOLDER)
    elif not image_url:
        raise ValidationFailed("Issue image is required", detail={"field": "image"})

    if category is None:
        if content is not None:
            extension = file_extension(image.filename)
            mime = "jpeg" if extension == "jpg" else extension
            encoded = base64.b64encode(content).decode()
            result = await classifier.classify(image_base64=f"data:image/{mime};base64,{encoded}")
        else:
            result = await classifier.classify(image_url=image_url)
        category = result["category"]
        ai_confidence = result["confidence"]

    if not address:
        address = await run_in_threadpool(geocoder.address_for, latitude, longitude)

    issue = issue_service.create(
        db=db,
        reporter=user,
        latitude=latitude,
        longitude=longitude,
        description=description,
        image_url=image_url,
        category=category,
        address=address or "",
        ai_confidence=ai_confidence or 0
    )
    return {"success": True, "issue": serialize_issue(issue)}


@router.get("")
async def list_issues(
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    department: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: float = Query(5000, gt=0, description="Radius in metres"),
    db: Session = Depends(get_db)
):
    """Filtered, sorted and paginated issue listing"""
    result = query_service.list_issues(
        db=db,
        status=status,
        category=category,
        severity=severity,
        department=department,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        lat=lat,
        lng=lng,
        radius=radius
    )
    return {"success": True, **result}


@router.get("/map")
async def map_issues(
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    markers = query_service.map_markers(db, status=status, category=category, severity=severity)
    return {"success": True, "count": len(markers), "issues": markers}


@router.get("/heatmap")
async def heatmap(db: Session = Depends(get_db)):
    return {"success": True, "hotspots": query_service.heatmap(db)}


@router.get("/user/my-issues")
async def my_issues(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    result = query_service.list_issues(db, page=page, limit=limit, reported_by=user.id)
    return {"success": True, **result}


@router.get("/{issue_id}")
async def get_issue(issue_id: int, db: Session = Depends(get_db)):
    issue = query_service.get_detail(db, issue_id)
    if not issue:
        raise NotFound("Issue not found")
    return {"success": True, "issue": serialize_issue(issue, detail=True)}


@router.patch("/{issue_id}")
async def update_issue(
    issue_id: int,
    request: IssueUpdateRequest,
    user: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Status change and/or assignment from the authority dashboard"""
    issue = issue_service.update(db, issue_id, user, request.model_dump(exclude_unset=True))
    return {"success": True, "issue": serialize_issue(issue)}


@router.post("/{issue_id}/verify")
async def verify_issue(
    issue_id: int,
    request: Optional[VerifyRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Community verification.

    One vote per user per issue; reporters cannot vote on their own issue.
    The third real vote marks the issue authentic.
    """
    is_real = request.is_real if request is not None else True
    issue = issue_service.verify(db, issue_id, user, is_real=is_real)
    return {
        "success": True,
        "message": "Issue verified successfully" if is_real else "Issue reported as fake",
        "issue": serialize_issue(issue)
    }


@router.post("/{issue_id}/resolve")
async def resolve_issue(
    issue_id: int,
    notes: Optional[str] = Form(None),
    proof_image_url: Optional[str] = Form(None),
    proof_image: Optional[UploadFile] = File(None),
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    store: ImageStore = Depends(get_image_store)
):
    """Mark an in-progress issue resolved, optionally with a proof photo"""
    issue = issue_service.get_issue(db, issue_id)
    issue_service.check_transition(issue.status, "resolved")

    if proof_image is not None and proof_image.filename:
        content = await proof_image.read()
        proof_image_url = await store.upload(content, proof_image.filename, PROOF_FOLDER)

    issue = issue_service.resolve(
        db, issue_id, user, notes=notes, proof_image=proof_image_url
    )
    return {"success": True, "issue": serialize_issue(issue)}


@router.post("/{issue_id}/comment", status_code=status.HTTP_201_CREATED)
async def add_comment(
    issue_id: int,
    request: CommentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    comment = issue_service.add_comment(db, issue_id, user, request.text)
    return {"success": True, "comment": serialize_comment(comment)}


@router.delete("/{issue_id}")
async def delete_issue(
    issue_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    issue_service.delete(db, issue_id, user)
    return {"success": True, "message": "Issue deleted"}
