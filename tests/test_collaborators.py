import asyncio
import hashlib
import json

import httpx
import pytest

from civicsense.config import settings
from civicsense.errors import ValidationFailed, UpstreamUnavailable, Unauthorized
from civicsense.services.classify_service import ClassifyService
from civicsense.services.firebase_service import FirebaseIdentityVerifier
from civicsense.services.geocode_service import GeocodeService
from civicsense.services.storage_service import (
    LocalImageStore, CloudinaryImageStore, PROOF_FOLDER
)


def _groq_reply(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


# Classification

def test_classify_without_key_returns_fallback():
    result = asyncio.run(ClassifyService().classify(image_url="https://cdn.example.com/x.jpg"))
    assert result["category"] == "others"
    assert result["confidence"] == 50
    assert result["model_version"] == "fallback"
    assert result["confidence_level"] == "low"


def test_classify_parses_and_clamps_model_output(monkeypatch):
    monkeypatch.setattr(settings, "GROQ_API_KEY", "test-key")
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return _groq_reply(
            'Sure! {"category":"garbage","confidence":99,"description":"Overflowing bin","severity":"high"}'
        )

    service = ClassifyService(transport=httpx.MockTransport(handler))
    result = asyncio.run(service.classify(image_base64="aGVsbG8="))

    assert seen["auth"] == "Bearer test-key"
    image = seen["body"]["messages"][0]["content"][1]["image_url"]["url"]
    assert image == "data:image/jpeg;base64,aGVsbG8="
    assert result["category"] == "garbage"
    assert result["confidence"] == 95
    assert result["severity"] == "high"
    assert result["display_name"] == "Garbage/Waste"
    assert result["confidence_level"] == "high"


def test_classify_unknown_category_becomes_others(monkeypatch):
    monkeypatch.setattr(settings, "GROQ_API_KEY", "test-key")
    transport = httpx.MockTransport(lambda request: _groq_reply('{"category":"ufo","confidence":10}'))
    result = asyncio.run(ClassifyService(transport=transport).classify(image_url="https://x/y.jpg"))
    assert result["category"] == "others"
    assert result["confidence"] == 50
    assert result["severity"] == "medium"


@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"error": "boom"}),
    _groq_reply("no json here"),
    httpx.Response(200, json=["unexpected"]),
])
def test_classify_failures_fall_back(monkeypatch, response):
    monkeypatch.setattr(settings, "GROQ_API_KEY", "test-key")
    transport = httpx.MockTransport(lambda request: response)
    result = asyncio.run(ClassifyService(transport=transport).classify(image_url="https://x/y.jpg"))
    assert result["model_version"] == "fallback"


def test_classify_timeout_falls_back(monkeypatch):
    monkeypatch.setattr(settings, "GROQ_API_KEY", "test-key")

    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    result = asyncio.run(
        ClassifyService(transport=httpx.MockTransport(handler)).classify(image_url="https://x/y.jpg")
    )
    assert result["category"] == "others"
    assert result["model_version"] == "fallback"


# Image storage

def test_local_store_writes_file(tmp_path):
    store = LocalImageStore(root=str(tmp_path))
    url = asyncio.run(store.upload(b"png-bytes", "Proof.PNG", PROOF_FOLDER))

    assert url.startswith("/uploads/civicsense/proofs/")
    assert url.endswith(".png")
    saved = tmp_path / "civicsense" / "proofs" / url.rsplit("/", 1)[1]
    assert saved.read_bytes() == b"png-bytes"


@pytest.mark.parametrize("content,filename", [
    (b"data", "file.gif"),
    (b"data", "noextension"),
    (b"", "empty.jpg"),
])
def test_store_rejects_bad_uploads(tmp_path, content, filename):
    with pytest.raises(ValidationFailed):
        asyncio.run(LocalImageStore(root=str(tmp_path)).upload(content, filename))


def test_store_rejects_oversized_upload(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 10)
    with pytest.raises(ValidationFailed):
        asyncio.run(LocalImageStore(root=str(tmp_path)).upload(b"x" * 11, "big.jpg"))


def _cloudinary(monkeypatch, handler):
    monkeypatch.setattr(settings, "CLOUDINARY_CLOUD_NAME", "demo")
    monkeypatch.setattr(settings, "CLOUDINARY_API_KEY", "key")
    monkeypatch.setattr(settings, "CLOUDINARY_API_SECRET", "secret")
    return CloudinaryImageStore(transport=httpx.MockTransport(handler))


def test_cloudinary_signed_upload(monkeypatch):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"secure_url": "https://res.cloudinary.com/demo/a.jpg"})

    store = _cloudinary(monkeypatch, handler)
    url = asyncio.run(store.upload(b"jpeg", "a.jpg"))

    assert url == "https://res.cloudinary.com/demo/a.jpg"
    assert seen["url"] == "https://api.cloudinary.com/v1_1/demo/image/upload"
    assert b'name="signature"' in seen["body"]
    assert b"civicsense/issues" in seen["body"]


def test_cloudinary_signature_is_sorted_sha1(monkeypatch):
    store = _cloudinary(monkeypatch, lambda request: httpx.Response(200))
    assert store.sign({"timestamp": 1, "folder": "f"}) == hashlib.sha1(
        b"folder=f&timestamp=1secret"
    ).hexdigest()


def test_cloudinary_failure_is_upstream_error(monkeypatch):
    store = _cloudinary(monkeypatch, lambda request: httpx.Response(503))
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(store.upload(b"jpeg", "a.jpg"))


# Firebase identity

def test_firebase_passthrough_without_key():
    identity = FirebaseIdentityVerifier().verify(None, "uid-1", "a@example.com")
    assert identity == {"uid": "uid-1", "email": "a@example.com"}


def test_firebase_requires_uid_and_email():
    with pytest.raises(ValidationFailed):
        FirebaseIdentityVerifier().verify(None, "", "a@example.com")


def test_firebase_lookup_with_key(monkeypatch):
    monkeypatch.setattr(settings, "FIREBASE_API_KEY", "web-key")

    def handler(request):
        assert request.url.params["key"] == "web-key"
        assert json.loads(request.content) == {"idToken": "token-1"}
        return httpx.Response(200, json={"users": [{"localId": "uid-1", "email": "real@example.com"}]})

    verifier = FirebaseIdentityVerifier(transport=httpx.MockTransport(handler))
    assert verifier.verify("token-1", "uid-1", "claimed@example.com") == {
        "uid": "uid-1", "email": "real@example.com"
    }

    with pytest.raises(Unauthorized):
        verifier.verify("token-1", "someone-else", "claimed@example.com")
    with pytest.raises(Unauthorized):
        verifier.verify(None, "uid-1", "claimed@example.com")


def test_firebase_rejected_token(monkeypatch):
    monkeypatch.setattr(settings, "FIREBASE_API_KEY", "web-key")
    verifier = FirebaseIdentityVerifier(
        transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"error": {}}))
    )
    with pytest.raises(Unauthorized):
        verifier.verify("bad", "uid-1", "a@example.com")


# Reverse geocoding

def _geocoder(monkeypatch, handler):
    monkeypatch.setattr(settings, "GEOCODE_ENABLED", True)
    service = GeocodeService(transport=httpx.MockTransport(handler))
    monkeypatch.setattr(service, "_get_redis", lambda: None)
    return service


def test_reverse_geocode(monkeypatch):
    def handler(request):
        assert request.url.path == "/reverse"
        assert request.url.params["format"] == "json"
        assert request.url.params["lat"] == "12.9716"
        return httpx.Response(200, json={"display_name": "MG Road, Bengaluru", "place_id": 7})

    assert _geocoder(monkeypatch, handler).address_for(12.9716, 77.5946) == "MG Road, Bengaluru"


def test_reverse_geocode_failure_yields_empty_address(monkeypatch):
    assert _geocoder(monkeypatch, lambda request: httpx.Response(500)).address_for(1, 2) == ""
    assert _geocoder(monkeypatch, lambda request: httpx.Response(200, json={"error": "none"})).address_for(1, 2) == ""


def test_geocode_disabled_makes_no_request(monkeypatch):
    def handler(request):
        raise AssertionError("no request expected")

    service = GeocodeService(transport=httpx.MockTransport(handler))
    assert service.address_for(1, 2) == ""
