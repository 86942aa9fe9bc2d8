"""
Classify Router - Vision AI suggestions for issue photos
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional

from civicsense.dependencies import get_classifier
from civicsense.errors import ValidationFailed
from civicsense.services.classify_service import ClassifyService

router = APIRouter()


class ClassifyRequest(BaseModel):
    image_url: Optional[str] = None
    image_base64: Optional[str] = None


@router.post("")
async def classify_image(
    request: ClassifyRequest,
    classifier: ClassifyService = Depends(get_classifier)
):
    """
    Suggest a category for an issue photo.

    The suggestion is advisory; when the model is unavailable a
    low-confidence fallback is returned instead of an error.
    """
    if not request.image_url and not request.image_base64:
        raise ValidationFailed("No image provided", detail={"field": "image"})
    return await classifier.classify(image_url=request.image_url, image_base64=request.image_base64)


@router.get("/categories")
async def list_categories(classifier: ClassifyService = Depends(get_classifier)):
    return {"success": True, "categories": classifier.categories()}


@router.get("/health")
async def classify_health(classifier: ClassifyService = Depends(get_classifier)):
    return {
        "success": True,
        "status": "ok" if classifier.configured else "fallback",
        "configured": classifier.configured,
        "model": classifier.model,
    }
