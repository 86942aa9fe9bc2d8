"""
Geocode Service - OpenStreetMap Nominatim reverse geocoding for issue addresses
"""
import hashlib
import json
import logging
import time
from typing import Dict, Any, Optional

import httpx
import redis

from civicsense.config import settings

logger = logging.getLogger(__name__)


class GeocodeService:
    """
    Service for turning issue coordinates into a readable address.

    Features:
    - Reverse geocoding: lat/lon -> display address
    - Redis caching with configurable TTL
    - Rate limiting (respects Nominatim usage policy)
    - Never fails the caller: errors yield None
    """

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        self._redis_client: Optional[redis.Redis] = None
        self._last_request_time: float = 0
        self._min_request_interval: float = 1.0  # Nominatim requires 1 request/sec max
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return settings.GEOCODE_ENABLED

    def _get_redis(self) -> Optional[redis.Redis]:
        """Get Redis client for caching"""
        if self._redis_client is None:
            try:
                client = redis.from_url(settings.REDIS_URL, decode_responses=True)
                client.ping()
                self._redis_client = client
            except redis.RedisError as e:
                logger.warning(f"Redis unavailable for geocode caching: {e}")
                self._redis_client = None
        return self._redis_client

    def _get_cache_key(self, latitude: float, longitude: float) -> str:
        # ~100m grid so nearby reports share an entry
        point = f"{round(latitude, 3)},{round(longitude, 3)}"
        return f"geocode:reverse:{hashlib.sha256(point.encode()).hexdigest()[:32]}"

    def _get_cached_result(self, latitude: float, longitude: float) -> Optional[Dict[str, Any]]:
        try:
            r = self._get_redis()
            if r:
                cached = r.get(self._get_cache_key(latitude, longitude))
                if cached:
                    return json.loads(cached)
        except redis.RedisError as e:
            logger.warning(f"Cache read error: {e}")
        return None

    def _set_cached_result(self, latitude: float, longitude: float, result: Dict[str, Any]) -> None:
        try:
            r = self._get_redis()
            if r:
                r.setex(
                    self._get_cache_key(latitude, longitude),
                    settings.NOMINATIM_CACHE_TTL_SEC,
                    json.dumps(result)
                )
        except redis.RedisError as e:
            logger.warning(f"Cache write error: {e}")

    def _rate_limit(self) -> None:
        """Enforce rate limiting for Nominatim API"""
        elapsed = time.time() - self._last_request_time
        if elapsed < self._min_request_interval:
            time.sleep(self._min_request_interval - elapsed)
        self._last_request_time = time.time()

    def _make_nominatim_request(self, latitude: float, longitude: float) -> Dict[str, Any]:
        self._rate_limit()

        headers = {
            "User-Agent": settings.NOMINATIM_USER_AGENT,
            "Accept": "application/json"
        }
        params = {
            "lat": latitude,
            "lon": longitude,
            "format": "json",
            "zoom": 18,
            "addressdetails": 1
        }

        with httpx.Client(timeout=settings.NOMINATIM_TIMEOUT_SEC, transport=self._transport) as client:
            response = client.get(
                f"{settings.NOMINATIM_URL}/reverse",
                params=params,
                headers=headers
            )
            response.raise_for_status()
            return response.json()

    def reverse(self, latitude: float, longitude: float) -> Optional[Dict[str, Any]]:
        """
        Reverse geocode coordinates.

        Returns:
            Dict with found, display_name and address details, or None when
            geocoding is disabled or the lookup fails
        """
        if not self.enabled:
            return None

        cached = self._get_cached_result(latitude, longitude)
        if cached:
            logger.debug(f"Geocode cache hit for ({latitude}, {longitude})")
            return cached

        try:
            result = self._make_nominatim_request(latitude, longitude)
        except httpx.TimeoutException:
            logger.error(f"Geocode timeout for ({latitude}, {longitude})")
            return None
        except httpx.HTTPError as e:
            logger.error(f"Geocode error for ({latitude}, {longitude}): {e}")
            return None
        except ValueError as e:
            logger.error(f"Geocode returned invalid JSON: {e}")
            return None

        if not isinstance(result, dict) or not result.get("display_name"):
            geocode_result = {"found": False, "display_name": ""}
        else:
            geocode_result = {
                "found": True,
                "display_name": result["display_name"],
                "place_id": result.get("place_id"),
                "address_details": result.get("address", {}),
            }

        self._set_cached_result(latitude, longitude, geocode_result)
        return geocode_result

    def address_for(self, latitude: float, longitude: float) -> str:
        """Convenience method returning just the display address ("" if unknown)"""
        result = self.reverse(latitude, longitude)
        if result and result.get("found"):
            return result["display_name"]
        return ""


# Singleton instance
geocode_service = GeocodeService()
