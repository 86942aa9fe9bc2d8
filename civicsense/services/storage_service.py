"""
Storage Service - Image storage for issue photos and resolution proofs

Two stores share one interface:
- CloudinaryImageStore: signed uploads to Cloudinary when credentials are set
- LocalImageStore: files under UPLOAD_DIR, served from /uploads
"""
import hashlib
import logging
import os
import time
import uuid
from typing import Optional

import httpx

from civicsense.config import settings
from civicsense.errors import ValidationFailed, UpstreamUnavailable

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("jpg", "jpeg", "png", "webp")

ISSUE_FOLDER = "civicsense/issues"
PROOF_FOLDER = "civicsense/proofs"


def file_extension(filename: Optional[str]) -> str:
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


class ImageStore:
    """Interface for image uploads; upload returns a public URL"""

    def validate(self, content: bytes, filename: Optional[str]) -> str:
        extension = file_extension(filename)
        if extension not in ALLOWED_EXTENSIONS:
            raise ValidationFailed(
                f"Unsupported image format. Allowed: {', '.join(ALLOWED_EXTENSIONS)}",
                detail={"field": "image"}
            )
        if not content:
            raise ValidationFailed("Uploaded image is empty", detail={"field": "image"})
        if len(content) > settings.MAX_UPLOAD_BYTES:
            raise ValidationFailed(
                f"Image exceeds {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit",
                detail={"field": "image"}
            )
        return extension

    async def upload(self, content: bytes, filename: Optional[str], folder: str = ISSUE_FOLDER) -> str:
        raise NotImplementedError


class LocalImageStore(ImageStore):
    """Stores images on local disk"""

    def __init__(self, root: Optional[str] = None, base_url: str = "/uploads"):
        self.root = root or settings.UPLOAD_DIR
        self.base_url = base_url.rstrip("/")

    async def upload(self, content: bytes, filename: Optional[str], folder: str = ISSUE_FOLDER) -> str:
        extension = self.validate(content, filename)
        name = f"{uuid.uuid4().hex}.{extension}"
        directory = os.path.join(self.root, folder)

        try:
            os.makedirs(directory, exist_ok=True)
            with open(os.path.join(directory, name), "wb") as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Local image write failed: {e}")
            raise UpstreamUnavailable("Image storage unavailable")

        return f"{self.base_url}/{folder}/{name}"


class CloudinaryImageStore(ImageStore):
    """Signed uploads through the Cloudinary REST API"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cloud_name = settings.CLOUDINARY_CLOUD_NAME
        self.api_key = settings.CLOUDINARY_API_KEY
        self.api_secret = settings.CLOUDINARY_API_SECRET
        self.timeout = settings.CLOUDINARY_TIMEOUT_SEC
        self._transport = transport

    @property
    def upload_url(self) -> str:
        return f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image/upload"

    def sign(self, params: dict) -> str:
        """Cloudinary signature: sha1 of sorted params joined with & plus the secret"""
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode()).hexdigest()

    async def upload(self, content: bytes, filename: Optional[str], folder: str = ISSUE_FOLDER) -> str:
        extension = self.validate(content, filename)

        params = {"folder": folder, "timestamp": int(time.time())}
        data = {
            **{k: str(v) for k, v in params.items()},
            "api_key": self.api_key,
            "signature": self.sign(params),
        }
        files = {"file": (filename or f"upload.{extension}", content, f"image/{extension}")}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.upload_url, data=data, files=files)
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Cloudinary upload failed: {e.response.status_code}")
            raise UpstreamUnavailable("Image upload failed")
        except httpx.HTTPError as e:
            logger.error(f"Cloudinary upload error: {e}")
            raise UpstreamUnavailable("Image upload failed")

        url = result.get("secure_url") or result.get("url")
        if not url:
            raise UpstreamUnavailable("Image upload returned no URL")

        logger.info(f"Uploaded image to Cloudinary folder {folder}")
        return url


def build_image_store() -> ImageStore:
    if settings.CLOUDINARY_CLOUD_NAME and settings.CLOUDINARY_API_KEY and settings.CLOUDINARY_API_SECRET:
        return CloudinaryImageStore()
    logger.info("Cloudinary not configured, storing images on local disk")
    return LocalImageStore()


# Singleton instance
image_store = build_image_store()
