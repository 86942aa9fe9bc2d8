"""
Stats Service - Dashboard aggregations over issues and users
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Any, List

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from civicsense.db.models import Issue, User, STATUSES, CATEGORIES, SEVERITIES, DEPARTMENTS
from civicsense.errors import Forbidden
from civicsense.services.auth_service import STAFF_ROLES
from civicsense.services.department_service import department_service

logger = logging.getLogger(__name__)


def _counts(db: Session, column, keys) -> Dict[str, int]:
    rows = db.query(column, func.count(Issue.id)).group_by(column).all()
    counts = {key: 0 for key in keys}
    for key, count in rows:
        counts[key] = count
    return counts


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


class StatsService:
    """Read-only statistics for the public map and the authority dashboard"""

    def overview(self, db: Session) -> Dict[str, Any]:
        by_status = _counts(db, Issue.status, STATUSES)
        by_category = _counts(db, Issue.category, CATEGORIES)
        by_severity = _counts(db, Issue.severity, SEVERITIES)
        by_department = _counts(db, Issue.assigned_department, DEPARTMENTS)

        total = sum(by_status.values())
        resolved = by_status.get("resolved", 0)

        active_citizens = db.query(func.count(User.id)).filter(
            User.role == "citizen",
            User.is_active.is_(True),
            or_(User.issues_reported > 0, User.issues_verified > 0)
        ).scalar() or 0
        total_users = db.query(func.count(User.id)).scalar() or 0

        return {
            "total": total,
            "resolved": resolved,
            "pending": by_status.get("pending", 0),
            "in_progress": by_status.get("in_progress", 0),
            "verified": by_status.get("verified", 0),
            "resolution_rate": round(resolved / total * 100) if total else 0,
            "by_status": by_status,
            "by_category": by_category,
            "by_severity": by_severity,
            "by_department": by_department,
            "active_citizens": active_citizens,
            "total_users": total_users,
        }

    def trends(self, db: Session, days: int = 30) -> Dict[str, Any]:
        """
        Per-day reported and resolved counts for the last `days` days.

        Grouping happens in Python so the same code runs on PostgreSQL and
        SQLite.
        """
        since = datetime.utcnow() - timedelta(days=days)

        reported_rows = db.query(Issue.created_at, Issue.category).filter(
            Issue.created_at >= since
        ).all()
        resolved_rows = db.query(Issue.resolved_at).filter(
            Issue.resolved_at.isnot(None),
            Issue.resolved_at >= since
        ).all()

        daily: Dict[str, Dict[str, int]] = defaultdict(lambda: {"reported": 0, "resolved": 0})
        by_category: Dict[str, int] = defaultdict(int)

        for created_at, category in reported_rows:
            daily[created_at.date().isoformat()]["reported"] += 1
            by_category[category] += 1
        for (resolved_at,) in resolved_rows:
            daily[resolved_at.date().isoformat()]["resolved"] += 1

        return {
            "days": days,
            "daily": [
                {"date": day, **daily[day]} for day in sorted(daily)
            ],
            "by_category": dict(by_category),
        }

    def leaderboard(self, db: Session, limit: int = 10) -> Dict[str, Any]:
        """Top citizens by reports and by verifications"""
        def ranking(column) -> List[Dict[str, Any]]:
            users = db.query(User).filter(
                User.role == "citizen",
                User.is_active.is_(True),
                column > 0
            ).order_by(column.desc(), User.trust_score.desc(), User.id.asc()).limit(limit).all()
            return [
                {
                    "id": u.id,
                    "name": u.name,
                    "avatar": u.avatar,
                    "issues_reported": u.issues_reported,
                    "issues_verified": u.issues_verified,
                    "trust_score": u.trust_score,
                }
                for u in users
            ]

        return {
            "top_reporters": ranking(User.issues_reported),
            "top_verifiers": ranking(User.issues_verified),
        }

    def departments(self, db: Session, actor: User) -> List[Dict[str, Any]]:
        """Per-department workload; authority and admin only"""
        if actor.role not in STAFF_ROLES:
            raise Forbidden("Authority or admin role required")

        rows = db.query(
            Issue.assigned_department, Issue.status, func.count(Issue.id)
        ).group_by(Issue.assigned_department, Issue.status).all()

        counts: Dict[str, Dict[str, int]] = defaultdict(dict)
        for department, status, count in rows:
            counts[department][status] = count

        result = []
        for department in DEPARTMENTS:
            by_status = counts.get(department, {})
            total = sum(by_status.values())
            resolved = by_status.get("resolved", 0)
            details = department_service.details(department)
            result.append({
                "department": department,
                "name": details["name"],
                "total": total,
                "resolved": resolved,
                "pending": by_status.get("pending", 0),
                "in_progress": by_status.get("in_progress", 0),
                "resolution_rate": round(resolved / total * 100) if total else 0,
                "response_time_hours": details["response_time_hours"],
            })
        return result

    def resolution_time(self, db: Session) -> List[Dict[str, Any]]:
        """Average, min and max hours from report to resolution per category"""
        rows = db.query(Issue.category, Issue.created_at, Issue.resolved_at).filter(
            Issue.status == "resolved",
            Issue.resolved_at.isnot(None)
        ).all()

        hours: Dict[str, List[float]] = defaultdict(list)
        for category, created_at, resolved_at in rows:
            if created_at is None:
                continue
            hours[category].append(max(0.0, _hours_between(created_at, resolved_at)))

        return [
            {
                "category": category,
                "count": len(values),
                "avg_hours": round(sum(values) / len(values), 1),
                "min_hours": round(min(values), 1),
                "max_hours": round(max(values), 1),
            }
            for category, values in sorted(hours.items())
        ]


# Singleton instance
stats_service = StatsService()
