"""
Query Service - Read-side projections over issues (listing, map, heatmap)
"""
import logging
import math
from collections import defaultdict
from typing import Dict, Any, List, Optional, Tuple

from sqlalchemy import or_, func
from sqlalchemy.orm import Session, Query, selectinload

from civicsense.db.models import Issue, TimelineEntry, IssueVerification, IssueComment
from civicsense.errors import ValidationFailed
from civicsense.services.issue_service import serialize_issue

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000
METERS_PER_DEGREE_LAT = 111320.0

INACTIVE_STATUSES = ("resolved", "rejected")

# Accept both API (camelCase) and column names
SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "severityScore": "severity_score",
    "severity_score": "severity_score",
    "verifications": "verifications",
    "priorityBoost": "priority_boost",
    "priority_boost": "priority_boost",
    "status": "status",
    "category": "category",
}

MAP_DESCRIPTION_LENGTH = 100
HEATMAP_PRECISION = 3


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate haversine distance between two points in metres"""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def bounding_box(lat: float, lng: float, radius_m: float) -> Tuple[float, float, float, float]:
    """Degree box that contains the circle; used as an index-friendly prefilter"""
    delta_lat = radius_m / METERS_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(lat))
    if cos_lat < 1e-6:
        delta_lng = 180.0
    else:
        delta_lng = min(180.0, radius_m / (METERS_PER_DEGREE_LAT * cos_lat))
    return lat - delta_lat, lat + delta_lat, lng - delta_lng, lng + delta_lng


class QueryService:
    """Read-only queries; nothing here writes"""

    def _with_relations(self, query: Query, detail: bool = False) -> Query:
        options = [
            selectinload(Issue.reporter),
            selectinload(Issue.assignee),
            selectinload(Issue.resolver),
            selectinload(Issue.timeline).selectinload(TimelineEntry.actor),
        ]
        if detail:
            options.append(selectinload(Issue.votes).selectinload(IssueVerification.user))
            options.append(selectinload(Issue.comments).selectinload(IssueComment.user))
        else:
            options.append(selectinload(Issue.votes))
        return query.options(*options)

    def _apply_filters(
        self,
        query: Query,
        status: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        department: Optional[str] = None,
        search: Optional[str] = None,
        reported_by: Optional[int] = None
    ) -> Query:
        if status:
            query = query.filter(Issue.status == status)
        if category:
            query = query.filter(Issue.category == category)
        if severity:
            query = query.filter(Issue.severity == severity)
        if department:
            query = query.filter(Issue.assigned_department == department)
        if reported_by is not None:
            query = query.filter(Issue.reported_by == reported_by)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(or_(
                func.lower(Issue.description).like(pattern),
                func.lower(Issue.address).like(pattern)
            ))
        return query

    def _sort_column(self, sort_by: str):
        column = SORT_FIELDS.get(sort_by)
        if not column:
            raise ValidationFailed(f"Invalid sort field: {sort_by}", detail={"field": "sortBy"})
        return column

    def _pagination(self, page: int, limit: int, total: int) -> Dict[str, int]:
        return {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0
        }

    def list_issues(
        self,
        db: Session,
        status: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        department: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        radius: float = 5000,
        reported_by: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Filtered, sorted and paginated issue listing.

        With lat/lng the result is limited to issues within radius metres:
        a bounding box narrows candidates in SQL, then an exact haversine
        check decides membership before sorting and paging.
        """
        column_name = self._sort_column(sort_by)
        descending = sort_order != "asc"

        query = self._apply_filters(
            db.query(Issue), status, category, severity, department, search, reported_by
        )

        if lat is not None and lng is not None:
            return self._list_nearby(
                query, lat, lng, radius, column_name, descending, page, limit
            )

        column = getattr(Issue, column_name)
        order = column.desc() if descending else column.asc()
        id_order = Issue.id.desc() if descending else Issue.id.asc()

        total = query.count()
        issues = self._with_relations(query).order_by(order, id_order) \
            .offset((page - 1) * limit).limit(limit).all()

        return {
            "issues": [serialize_issue(issue) for issue in issues],
            "pagination": self._pagination(page, limit, total)
        }

    def _list_nearby(
        self,
        query: Query,
        lat: float,
        lng: float,
        radius: float,
        column_name: str,
        descending: bool,
        page: int,
        limit: int
    ) -> Dict[str, Any]:
        min_lat, max_lat, min_lng, max_lng = bounding_box(lat, lng, radius)
        query = query.filter(Issue.latitude.between(min_lat, max_lat))
        if max_lng - min_lng < 360:
            query = query.filter(Issue.longitude.between(min_lng, max_lng))

        candidates = self._with_relations(query).all()
        nearby = [
            issue for issue in candidates
            if haversine_distance(lat, lng, issue.latitude, issue.longitude) <= radius
        ]

        # Stable two-pass sort keeps ties ordered by id in the same direction
        nearby.sort(key=lambda issue: issue.id, reverse=descending)
        nearby.sort(
            key=lambda issue: (getattr(issue, column_name) is None, getattr(issue, column_name)),
            reverse=descending
        )

        start = (page - 1) * limit
        return {
            "issues": [serialize_issue(issue) for issue in nearby[start:start + limit]],
            "pagination": self._pagination(page, limit, len(nearby))
        }

    def map_markers(
        self,
        db: Session,
        status: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Minimal marker data; resolved/rejected hidden unless a status is asked for"""
        query = self._apply_filters(db.query(Issue), status, category, severity)
        if not status:
            query = query.filter(Issue.status.notin_(INACTIVE_STATUSES))

        markers = []
        for issue in query.order_by(Issue.id).all():
            markers.append({
                "id": issue.id,
                "latitude": issue.latitude,
                "longitude": issue.longitude,
                "category": issue.category,
                "severity": issue.severity,
                "status": issue.status,
                "verifications": issue.verifications,
                "image_url": issue.image_url,
                "description": (issue.description or "")[:MAP_DESCRIPTION_LENGTH],
            })
        return markers

    def heatmap(self, db: Session) -> List[Dict[str, Any]]:
        """
        Hotspots of active issues on a ~100m grid.

        Coordinates are rounded to 3 decimals; each cell reports its count,
        average severity score and weight = count * average severity.
        """
        rows = db.query(Issue.latitude, Issue.longitude, Issue.severity_score).filter(
            Issue.status.notin_(INACTIVE_STATUSES)
        ).all()

        cells: Dict[Tuple[float, float], List[int]] = defaultdict(list)
        for latitude, longitude, score in rows:
            key = (round(latitude, HEATMAP_PRECISION), round(longitude, HEATMAP_PRECISION))
            cells[key].append(score or 0)

        hotspots = []
        for (latitude, longitude), scores in sorted(cells.items()):
            count = len(scores)
            avg_severity = sum(scores) / count
            hotspots.append({
                "latitude": latitude,
                "longitude": longitude,
                "count": count,
                "avg_severity": round(avg_severity, 2),
                "weight": round(count * avg_severity, 2),
            })
        return hotspots

    def get_detail(self, db: Session, issue_id: int) -> Optional[Issue]:
        return self._with_relations(
            db.query(Issue).filter(Issue.id == issue_id), detail=True
        ).first()


# Singleton instance
query_service = QueryService()
