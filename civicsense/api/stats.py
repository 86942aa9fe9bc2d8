"""
Stats Router - Dashboard statistics
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from civicsense.db.models import User
from civicsense.dependencies import get_db, get_current_user
from civicsense.services.stats_service import stats_service

router = APIRouter()


@router.get("/overview")
async def overview(db: Session = Depends(get_db)):
    return {"success": True, "stats": stats_service.overview(db)}


@router.get("/trends")
async def trends(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db)
):
    return {"success": True, "trends": stats_service.trends(db, days=days)}


@router.get("/leaderboard")
async def leaderboard(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    return {"success": True, "leaderboard": stats_service.leaderboard(db, limit=limit)}


@router.get("/departments")
async def departments(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Per-department workload (authority/admin only)"""
    return {"success": True, "departments": stats_service.departments(db, user)}


@router.get("/resolution-time")
async def resolution_time(db: Session = Depends(get_db)):
    return {"success": True, "resolution_time": stats_service.resolution_time(db)}
