"""
SQLAlchemy ORM Models for CivicSense
"""
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, DateTime,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from civicsense.db.database import Base


ROLES = ("citizen", "authority", "admin")

CATEGORIES = (
    "pothole", "garbage", "water_leakage", "streetlight", "drainage",
    "road_damage", "illegal_parking", "noise", "air_pollution", "others"
)

SEVERITIES = ("low", "medium", "high", "critical")

STATUSES = (
    "pending", "verified", "under_review", "in_progress",
    "resolved", "rejected", "duplicate"
)

DEPARTMENTS = ("roads", "sanitation", "water", "electricity", "general")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # NULLs never collide on a unique column, so this is unique only when set
    firebase_uid = Column(String(128), unique=True, nullable=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255))
    role = Column(String(20), nullable=False, default="citizen", index=True)
    department = Column(String(20))  # authority only
    avatar = Column(Text)
    phone = Column(String(30))
    issues_reported = Column(Integer, nullable=False, default=0)
    issues_verified = Column(Integer, nullable=False, default=0)
    trust_score = Column(Integer, nullable=False, default=0)  # 0-100
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    issues = relationship(
        "Issue", back_populates="reporter", foreign_keys="Issue.reported_by"
    )


class Issue(Base):
    __tablename__ = "issues"

    id = Column(Integer, primary_key=True, index=True)
    image_url = Column(Text, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(Text, default="")
    description = Column(String(500), nullable=False)
    category = Column(String(30), nullable=False)
    ai_confidence = Column(Float, nullable=False, default=0)
    severity = Column(String(20), nullable=False)
    severity_score = Column(Integer, nullable=False, default=5)  # 1-10
    status = Column(String(20), nullable=False, default="pending")
    verifications = Column(Integer, nullable=False, default=0)
    fake_reports = Column(Integer, nullable=False, default=0)
    is_authentic = Column(Boolean, nullable=False, default=False)
    priority_boost = Column(Float, nullable=False, default=0)
    assigned_department = Column(String(20), nullable=False)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    reported_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    predicted_resolution_time = Column(Integer)  # hours

    # Resolution block
    resolved_at = Column(DateTime)
    resolved_by = Column(Integer, ForeignKey("users.id"))
    resolution_proof_image = Column(Text)
    resolution_notes = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_issue_location", "latitude", "longitude"),
        Index("idx_issue_status", "status"),
        Index("idx_issue_category", "category"),
        Index("idx_issue_severity", "severity"),
        Index("idx_issue_department", "assigned_department"),
        Index("idx_issue_reported_by", "reported_by"),
        Index("idx_issue_created_at", "created_at"),
        Index("idx_issue_priority", "severity_score", "created_at"),
    )

    # Relationships
    reporter = relationship("User", back_populates="issues", foreign_keys=[reported_by])
    assignee = relationship("User", foreign_keys=[assigned_to])
    resolver = relationship("User", foreign_keys=[resolved_by])
    timeline = relationship(
        "TimelineEntry",
        back_populates="issue",
        order_by="TimelineEntry.id",
        cascade="all, delete-orphan"
    )
    votes = relationship(
        "IssueVerification",
        back_populates="issue",
        order_by="IssueVerification.id",
        cascade="all, delete-orphan"
    )
    comments = relationship(
        "IssueComment",
        back_populates="issue",
        order_by="IssueComment.id",
        cascade="all, delete-orphan"
    )

    @property
    def verified_by(self):
        """Ids of users who endorsed the issue as real, in voting order"""
        return [vote.user_id for vote in self.votes if vote.is_real]


class TimelineEntry(Base):
    __tablename__ = "issue_timeline"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(Integer, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    updated_by = Column(Integer, ForeignKey("users.id"))
    note = Column(Text, default="")

    __table_args__ = (
        Index("idx_timeline_issue", "issue_id", "id"),
    )

    # Relationships
    issue = relationship("Issue", back_populates="timeline")
    actor = relationship("User")


class IssueVerification(Base):
    __tablename__ = "issue_verifications"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(Integer, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_real = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("issue_id", "user_id", name="unique_issue_verifier"),
    )

    # Relationships
    issue = relationship("Issue", back_populates="votes")
    user = relationship("User")


class IssueComment(Base):
    __tablename__ = "issue_comments"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(Integer, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    issue = relationship("Issue", back_populates="comments")
    user = relationship("User")
