"""
Classification Service - Vision AI classification of issue photos

Calls the Groq OpenAI-compatible chat completion endpoint with a vision
model. The result is advisory only: the reporter picks the final category.

Configuration via environment variables:
- GROQ_API_KEY: API key; without it every call returns the fallback
- GROQ_API_URL: base URL of the OpenAI-compatible API
- GROQ_MODEL: vision model name
"""
import json
import logging
import re
import time
from typing import Dict, Any, List, Optional

import httpx

from civicsense.config import settings
from civicsense.db.models import CATEGORIES, SEVERITIES

logger = logging.getLogger(__name__)

CATEGORY_DISPLAY_NAMES = {
    "pothole": "Pothole",
    "garbage": "Garbage/Waste",
    "water_leakage": "Water Leakage",
    "streetlight": "Street Light Issue",
    "drainage": "Drainage/Sewage",
    "road_damage": "Road Damage",
    "illegal_parking": "Illegal Parking",
    "noise": "Noise Complaint",
    "air_pollution": "Air Pollution",
    "others": "Others",
}

CATEGORY_DESCRIPTIONS = {
    "pothole": "Holes or damage in road surface",
    "garbage": "Trash, litter, or waste accumulation",
    "water_leakage": "Water pipe leaks or flooding",
    "streetlight": "Broken or non-functional street lights",
    "drainage": "Drainage or sewage issues",
    "road_damage": "Cracks, erosion, or road surface damage",
    "illegal_parking": "Vehicles parked illegally",
    "noise": "Noise pollution complaints",
    "air_pollution": "Smoke, emissions, or air quality issues",
    "others": "Other civic issues",
}

RELATED_CATEGORIES = {
    "pothole": ["road_damage"],
    "garbage": ["drainage", "air_pollution"],
    "water_leakage": ["drainage"],
    "streetlight": ["others"],
    "drainage": ["water_leakage", "garbage"],
    "road_damage": ["pothole"],
    "illegal_parking": ["noise"],
    "noise": ["illegal_parking"],
    "air_pollution": ["garbage"],
    "others": ["garbage", "road_damage", "streetlight"],
}

FALLBACK_ALTERNATIVES = ["garbage", "pothole", "road_damage", "streetlight", "water_leakage", "air_pollution"]

CLASSIFY_PROMPT = """Analyze this image and classify it as a civic/municipal issue.

Categories:
{categories}

Respond ONLY with valid JSON:
{{"category":"category_name","confidence":85,"description":"Brief description of issue","severity":"medium"}}

severity must be: low, medium, high, or critical"""

MIN_CONFIDENCE = 50
MAX_CONFIDENCE = 95
DEFAULT_CONFIDENCE = 75


def display_name(category: str) -> str:
    return CATEGORY_DISPLAY_NAMES.get(category, category)


def confidence_level(confidence: float) -> str:
    if confidence >= 80:
        return "high"
    elif confidence >= 60:
        return "medium"
    return "low"


class ClassifyService:
    """Service for classifying issue photos with a vision model"""

    model_version = "groq-llama4-scout"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = settings.GROQ_API_URL
        self.model = settings.GROQ_MODEL
        self.timeout = settings.CLASSIFY_TIMEOUT_SEC
        self._transport = transport

    @property
    def api_key(self) -> str:
        return settings.GROQ_API_KEY

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def categories(self) -> List[Dict[str, str]]:
        return [
            {
                "id": category,
                "name": display_name(category),
                "description": CATEGORY_DESCRIPTIONS.get(category, "")
            }
            for category in CATEGORIES
        ]

    def _image_data_uri(self, image_url: Optional[str], image_base64: Optional[str]) -> str:
        image = image_base64 or image_url
        if not image:
            raise ValueError("No image provided")
        if image.startswith("data:") or image.startswith("http"):
            return image
        return f"data:image/jpeg;base64,{image}"

    def _build_prompt(self) -> str:
        lines = [f"- {c}: {CATEGORY_DESCRIPTIONS[c]}" for c in CATEGORIES]
        return CLASSIFY_PROMPT.format(categories="\n".join(lines))

    def _parse_response(self, text: str) -> Dict[str, Any]:
        """Parse model output, tolerating prose around the JSON object"""
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            match = re.search(r"\{[\s\S]*?\}", text)
            if not match:
                raise ValueError("Invalid AI response format")
            parsed = json.loads(match.group(0))
        if not isinstance(parsed, dict):
            raise ValueError("Invalid AI response format")
        return parsed

    def normalize(self, raw: Dict[str, Any], analysis_time_ms: int) -> Dict[str, Any]:
        """Clamp and validate raw model output into the public result shape"""
        category = raw.get("category")
        if category not in CATEGORIES:
            category = "others"

        try:
            confidence = int(float(raw.get("confidence")))
        except (TypeError, ValueError):
            confidence = DEFAULT_CONFIDENCE
        confidence = min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, confidence))

        severity = raw.get("severity")
        if severity not in SEVERITIES:
            severity = "medium"

        description = raw.get("description") or "Civic issue detected"

        return {
            "success": True,
            "category": category,
            "confidence": confidence,
            "display_name": display_name(category),
            "severity": severity,
            "description": description,
            "alternatives": RELATED_CATEGORIES.get(category, ["others"]),
            "analysis_time_ms": analysis_time_ms,
            "model_version": self.model_version,
            "confidence_level": confidence_level(confidence),
        }

    def fallback(self, analysis_time_ms: int = 0, error: Optional[str] = None) -> Dict[str, Any]:
        """Deterministic low-confidence result used whenever the model is unavailable"""
        return {
            "success": True,
            "category": "others",
            "confidence": MIN_CONFIDENCE,
            "display_name": "Select Category",
            "severity": "medium",
            "description": (
                "AI temporarily unavailable. Please select category manually."
                if error else "Please select the appropriate category."
            ),
            "alternatives": list(FALLBACK_ALTERNATIVES),
            "analysis_time_ms": analysis_time_ms,
            "model_version": "fallback",
            "confidence_level": "low",
        }

    async def classify(
        self,
        image_url: Optional[str] = None,
        image_base64: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Classify an issue photo.

        Never raises: missing credentials, HTTP errors and unparsable output
        all return the fallback result.
        """
        start = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        if not self.configured:
            logger.warning("GROQ_API_KEY not set, using classification fallback")
            return self.fallback(elapsed_ms())

        try:
            image = self._image_data_uri(image_url, image_base64)

            payload = {
                "model": self.model,
                "messages": [
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": self._build_prompt()},
                            {"type": "image_url", "image_url": {"url": image}}
                        ]
                    }
                ],
                "temperature": 0.2,
                "max_completion_tokens": 200,
                "response_format": {"type": "json_object"}
            }

            headers = {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json"
            }

            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.api_url}/chat/completions",
                    json=payload,
                    headers=headers
                )
                response.raise_for_status()
                result = response.json()

            text = ""
            if isinstance(result, dict) and result.get("choices"):
                text = result["choices"][0].get("message", {}).get("content", "") or ""

            output = self.normalize(self._parse_response(text), elapsed_ms())
            logger.info(
                f"Classified image as {output['category']} ({output['confidence']}%) in {output['analysis_time_ms']}ms"
            )
            return output

        except httpx.TimeoutException:
            logger.error("Classification request timed out")
            return self.fallback(elapsed_ms(), "timeout")
        except httpx.HTTPStatusError as e:
            logger.error(f"Classification API error: {e.response.status_code}")
            return self.fallback(elapsed_ms(), str(e))
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Classification error: {e}")
            return self.fallback(elapsed_ms(), str(e))


# Singleton instance
classify_service = ClassifyService()
