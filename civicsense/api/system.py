"""
System Router - Health checks
"""
import logging
from datetime import datetime

import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from civicsense.config import settings
from civicsense.dependencies import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Status of the database and Redis cache"""
    database_status = "unhealthy"
    try:
        db.execute(text("SELECT 1"))
        database_status = "healthy"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")

    redis_status = "unhealthy"
    try:
        r = redis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
        r.ping()
        redis_status = "healthy"
    except redis.RedisError as e:
        logger.warning(f"Redis health check failed: {e}")

    return {
        "status": "ok" if database_status == "healthy" else "degraded",
        "database": database_status,
        "redis": redis_status,
        "environment": settings.APP_ENV,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }
