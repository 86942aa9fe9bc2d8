"""
Issue Service - Issue lifecycle, status timeline and community verification

All status and verification changes go through this service so that every
accepted transition leaves exactly one timeline entry behind.
"""
import logging
from datetime import datetime
from typing import Dict, Any, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from civicsense.config import settings
from civicsense.db.models import (
    Issue, User, TimelineEntry, IssueVerification, IssueComment,
    CATEGORIES, STATUSES
)
from civicsense.errors import (
    NotFound, Forbidden, ValidationFailed, InvalidTransition,
    AlreadyVerified, SelfVerificationForbidden
)
from civicsense.services.auth_service import STAFF_ROLES, MAX_TRUST_SCORE
from civicsense.services.department_service import department_service
from civicsense.services.severity_service import severity_service

logger = logging.getLogger(__name__)

# Allowed status moves; statuses without outgoing moves are terminal
TRANSITIONS = {
    "pending": ("verified", "rejected", "duplicate"),
    "verified": ("under_review", "rejected"),
    "under_review": ("in_progress", "rejected"),
    "in_progress": ("resolved",),
    "resolved": (),
    "rejected": (),
    "duplicate": (),
}

COMMUNITY_VERIFIED_NOTE = "Community verified (3+ verifications)"
MAX_PRIORITY_BOOST = 3.0


def _user_ref(user: Optional[User], *fields: str) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    ref = {"id": user.id, "name": user.name}
    for field in fields:
        ref[field] = getattr(user, field)
    return ref


def serialize_issue(issue: Issue, detail: bool = False) -> Dict[str, Any]:
    """Render an issue for API responses"""
    resolution = None
    if issue.resolved_at is not None:
        resolution = {
            "resolved_at": issue.resolved_at,
            "resolved_by": _user_ref(issue.resolver),
            "proof_image": issue.resolution_proof_image,
            "notes": issue.resolution_notes,
        }

    data = {
        "id": issue.id,
        "image_url": issue.image_url,
        "location": {
            "type": "Point",
            "coordinates": [issue.longitude, issue.latitude],
        },
        "latitude": issue.latitude,
        "longitude": issue.longitude,
        "address": issue.address or "",
        "description": issue.description,
        "category": issue.category,
        "ai_confidence": issue.ai_confidence,
        "severity": issue.severity,
        "severity_score": issue.severity_score,
        "status": issue.status,
        "verifications": issue.verifications,
        "fake_reports": issue.fake_reports,
        "verified_by": issue.verified_by,
        "is_authentic": issue.is_authentic,
        "priority_boost": issue.priority_boost,
        "assigned_department": issue.assigned_department,
        "assigned_to": _user_ref(issue.assignee, "avatar", "department"),
        "reported_by": _user_ref(issue.reporter, "avatar", "trust_score"),
        "predicted_resolution_time": issue.predicted_resolution_time,
        "resolution": resolution,
        "timeline": [
            {
                "status": entry.status,
                "timestamp": entry.timestamp,
                "updated_by": _user_ref(entry.actor),
                "note": entry.note or "",
            }
            for entry in issue.timeline
        ],
        "created_at": issue.created_at,
        "updated_at": issue.updated_at,
    }

    if detail:
        data["verifiers"] = [
            _user_ref(vote.user, "avatar") for vote in issue.votes if vote.is_real
        ]
        data["comments"] = [serialize_comment(c) for c in issue.comments]

    return data


def serialize_comment(comment: IssueComment) -> Dict[str, Any]:
    return {
        "id": comment.id,
        "user": _user_ref(comment.user, "avatar"),
        "text": comment.text,
        "created_at": comment.created_at,
    }


class IssueService:
    """Service owning issue creation and all status/verification transitions"""

    @property
    def verification_threshold(self) -> int:
        return settings.VERIFICATION_THRESHOLD

    def get_issue(self, db: Session, issue_id: int, lock: bool = False) -> Issue:
        query = db.query(Issue).filter(Issue.id == issue_id)
        if lock:
            # Serializes concurrent writers on the same issue (no-op on SQLite)
            query = query.with_for_update().populate_existing()
        issue = query.first()
        if not issue:
            raise NotFound("Issue not found")
        return issue

    def _require_staff(self, actor: User) -> None:
        if actor.role not in STAFF_ROLES:
            raise Forbidden("Authority or admin role required")

    def _append_timeline(
        self,
        db: Session,
        issue_id: int,
        status: str,
        actor_id: Optional[int],
        note: str = ""
    ) -> TimelineEntry:
        """Append a timeline entry; timestamps never go backwards"""
        now = datetime.utcnow()
        last = db.query(func.max(TimelineEntry.timestamp)).filter(
            TimelineEntry.issue_id == issue_id
        ).scalar()
        if last is not None and last > now:
            now = last

        entry = TimelineEntry(
            issue_id=issue_id,
            status=status,
            timestamp=now,
            updated_by=actor_id,
            note=note or ""
        )
        db.add(entry)
        return entry

    def validate_report(
        self,
        latitude: float,
        longitude: float,
        description: str,
        category: Optional[str] = None
    ) -> None:
        """Field checks for a new report, run before any upload happens"""
        if category is not None and category not in CATEGORIES:
            raise ValidationFailed("Invalid category", detail={"field": "category"})
        if not -90 <= latitude <= 90:
            raise ValidationFailed("Invalid latitude", detail={"field": "latitude"})
        if not -180 <= longitude <= 180:
            raise ValidationFailed("Invalid longitude", detail={"field": "longitude"})
        if not 10 <= len((description or "").strip()) <= 500:
            raise ValidationFailed(
                "Description must be 10-500 characters", detail={"field": "description"}
            )

    def create(
        self,
        db: Session,
        reporter: User,
        latitude: float,
        longitude: float,
        description: str,
        image_url: str,
        category: Optional[str] = None,
        address: str = "",
        ai_confidence: float = 0
    ) -> Issue:
        """
        Create an issue in a single transaction.

        Severity and department are derived here and never recomputed. The
        timeline is seeded with one "pending" entry and the reporter's
        issues_reported counter is incremented.
        """
        category = category or "others"
        description = (description or "").strip()

        self.validate_report(latitude, longitude, description, category)
        if not image_url:
            raise ValidationFailed("Issue image is required", detail={"field": "image"})

        severity = severity_service.calculate(category, description)

        issue = Issue(
            image_url=image_url,
            latitude=latitude,
            longitude=longitude,
            address=address or "",
            description=description,
            category=category,
            ai_confidence=max(0.0, min(100.0, float(ai_confidence or 0))),
            severity=severity["severity"],
            severity_score=severity["severity_score"],
            status="pending",
            verifications=0,
            fake_reports=0,
            is_authentic=False,
            priority_boost=0,
            assigned_department=department_service.department_for(category),
            predicted_resolution_time=department_service.predicted_resolution_hours(
                category, severity["severity"]
            ),
            reported_by=reporter.id,
        )

        try:
            db.add(issue)
            db.flush()
            self._append_timeline(db, issue.id, "pending", reporter.id, "Issue reported")
            db.query(User).filter(User.id == reporter.id).update(
                {User.issues_reported: User.issues_reported + 1},
                synchronize_session=False
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(issue)
        logger.info(
            f"Issue {issue.id} created: {issue.category}/{issue.severity} -> {issue.assigned_department}"
        )
        return issue

    def verify(self, db: Session, issue_id: int, user: User, is_real: bool = True) -> Issue:
        """
        Record a community vote on an issue.

        The vote row is unique per (issue, user), so a second vote from the
        same user fails on insert rather than on a prior read. The counters
        are recomputed from the vote rows in the same transaction and the
        authenticity flag is flipped by a conditional update, so only the
        request that reaches the threshold appends the "verified" entry.
        """
        issue = self.get_issue(db, issue_id, lock=True)

        if issue.reported_by == user.id:
            db.rollback()
            raise SelfVerificationForbidden("You cannot verify your own issue")

        try:
            db.add(IssueVerification(issue_id=issue_id, user_id=user.id, is_real=is_real))
            db.flush()
        except IntegrityError:
            db.rollback()
            raise AlreadyVerified("You have already verified this issue")

        try:
            real_votes = db.query(func.count(IssueVerification.id)).filter(
                IssueVerification.issue_id == issue_id,
                IssueVerification.is_real.is_(True)
            ).scalar_subquery()
            fake_votes = db.query(func.count(IssueVerification.id)).filter(
                IssueVerification.issue_id == issue_id,
                IssueVerification.is_real.is_(False)
            ).scalar_subquery()

            db.query(Issue).filter(Issue.id == issue_id).update(
                {Issue.verifications: real_votes, Issue.fake_reports: fake_votes},
                synchronize_session=False
            )
            db.query(Issue).filter(Issue.id == issue_id).update(
                {
                    Issue.priority_boost: case(
                        (Issue.verifications * 0.5 >= MAX_PRIORITY_BOOST, MAX_PRIORITY_BOOST),
                        else_=Issue.verifications * 0.5
                    )
                },
                synchronize_session=False
            )

            crossed = db.query(Issue).filter(
                Issue.id == issue_id,
                Issue.is_authentic.is_(False),
                Issue.verifications >= self.verification_threshold
            ).update({Issue.is_authentic: True}, synchronize_session=False)

            if crossed:
                moved = db.query(Issue).filter(
                    Issue.id == issue_id,
                    Issue.status == "pending"
                ).update({Issue.status: "verified"}, synchronize_session=False)
                # Staff already moved it on: the milestone is stamped with the current status
                entry_status = "verified" if moved else db.query(Issue.status).filter(
                    Issue.id == issue_id
                ).scalar()
                self._append_timeline(
                    db, issue_id, entry_status, user.id, COMMUNITY_VERIFIED_NOTE
                )

            db.query(User).filter(User.id == user.id).update(
                {
                    User.issues_verified: User.issues_verified + 1,
                    User.trust_score: case(
                        (User.trust_score >= MAX_TRUST_SCORE, MAX_TRUST_SCORE),
                        else_=User.trust_score + 1
                    ),
                },
                synchronize_session=False
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        if crossed:
            logger.info(f"Issue {issue_id} reached {self.verification_threshold} verifications")

        db.expire_all()
        return self.get_issue(db, issue_id)

    def transition_status(
        self,
        db: Session,
        issue_id: int,
        new_status: str,
        actor: User,
        note: Optional[str] = None,
        proof_image: Optional[str] = None,
        resolution_notes: Optional[str] = None
    ) -> Issue:
        """
        Move an issue to a new status and append one timeline entry.

        Only moves listed in TRANSITIONS are accepted; repeating the current
        status is rejected. Moving to "resolved" fills the resolution block.
        """
        self._require_staff(actor)
        issue = self.get_issue(db, issue_id, lock=True)
        current = issue.status

        try:
            self._apply_status(
                db, issue, new_status, actor, note, proof_image, resolution_notes
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(issue)
        logger.info(f"Issue {issue.id} status {current} -> {new_status} by user {actor.id}")
        return issue

    def check_transition(self, current: str, new_status: str) -> None:
        """Raise unless moving from current to new_status is allowed"""
        if new_status not in STATUSES:
            raise ValidationFailed(f"Invalid status: {new_status}", detail={"field": "status"})
        if new_status == current:
            raise InvalidTransition(f"Issue is already {current}")
        if new_status not in TRANSITIONS.get(current, ()):
            raise InvalidTransition(f"Cannot change status from {current} to {new_status}")

    def _apply_status(
        self,
        db: Session,
        issue: Issue,
        new_status: str,
        actor: User,
        note: Optional[str] = None,
        proof_image: Optional[str] = None,
        resolution_notes: Optional[str] = None
    ) -> None:
        """Stage a status move and its timeline entry; the caller commits"""
        self.check_transition(issue.status, new_status)

        issue.status = new_status
        self._append_timeline(
            db, issue.id, new_status, actor.id, note or f"Status changed to {new_status}"
        )

        if new_status == "resolved":
            issue.resolved_at = datetime.utcnow()
            issue.resolved_by = actor.id
            if proof_image:
                issue.resolution_proof_image = proof_image
            if resolution_notes:
                issue.resolution_notes = resolution_notes

    def _check_assignee(self, db: Session, assignee_id: Optional[int]) -> None:
        if assignee_id is None:
            return
        assignee = db.get(User, assignee_id)
        if not assignee:
            raise NotFound("Assignee not found")
        if assignee.role not in STAFF_ROLES:
            raise ValidationFailed(
                "Issues can only be assigned to authority or admin users",
                detail={"field": "assigned_to"}
            )

    def assign(self, db: Session, issue_id: int, assignee_id: Optional[int], actor: User) -> Issue:
        """Set or clear the responsible authority"""
        return self.update(db, issue_id, actor, {"assigned_to": assignee_id})

    def update(
        self,
        db: Session,
        issue_id: int,
        actor: User,
        changes: Dict[str, Any]
    ) -> Issue:
        """
        Apply a partial update from the authority dashboard in one commit.

        Every change is checked before anything is written, so a rejected
        assignee leaves the status untouched and vice versa. An unchanged
        status is treated as no status change. "assigned_to" is only
        touched when present in changes (None clears it).
        """
        self._require_staff(actor)
        issue = self.get_issue(db, issue_id, lock=True)
        current = issue.status

        status = changes.get("status")
        move = bool(status) and status != current

        try:
            if "assigned_to" in changes:
                self._check_assignee(db, changes["assigned_to"])
            if move:
                self._apply_status(db, issue, status, actor, note=changes.get("note"))
            if "assigned_to" in changes:
                issue.assigned_to = changes["assigned_to"]
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(issue)
        if move:
            logger.info(f"Issue {issue.id} status {current} -> {status} by user {actor.id}")
        return issue

    def resolve(
        self,
        db: Session,
        issue_id: int,
        actor: User,
        notes: Optional[str] = None,
        proof_image: Optional[str] = None
    ) -> Issue:
        return self.transition_status(
            db,
            issue_id,
            "resolved",
            actor,
            note=notes or "Issue resolved",
            proof_image=proof_image,
            resolution_notes=notes
        )

    def add_comment(self, db: Session, issue_id: int, user: User, text: str) -> IssueComment:
        text = (text or "").strip()
        if not text:
            raise ValidationFailed("Comment text is required", detail={"field": "text"})

        self.get_issue(db, issue_id)
        comment = IssueComment(issue_id=issue_id, user_id=user.id, text=text)
        db.add(comment)
        db.commit()
        db.refresh(comment)
        return comment

    def delete(self, db: Session, issue_id: int, actor: User) -> None:
        """Reporters delete their own issues; admins delete any"""
        issue = self.get_issue(db, issue_id)
        is_owner = issue.reported_by == actor.id
        if not is_owner and actor.role != "admin":
            raise Forbidden("Not authorized to delete this issue")

        try:
            db.delete(issue)
            if is_owner:
                db.query(User).filter(
                    User.id == actor.id,
                    User.issues_reported > 0
                ).update(
                    {User.issues_reported: User.issues_reported - 1},
                    synchronize_session=False
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"Issue {issue_id} deleted by user {actor.id}")


# Singleton instance
issue_service = IssueService()
