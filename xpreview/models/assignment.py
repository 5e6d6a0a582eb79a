from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, Index, text
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class AssignmentStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MISSED = "missed"
    REASSIGNED = "reassigned"


ACTIVE_ASSIGNMENT_STATUSES = (AssignmentStatus.PENDING, AssignmentStatus.IN_PROGRESS)


class ReviewAssignment(BaseModel):
    __tablename__ = 'review_assignments'
    __table_args__ = (
        # At most one live assignment per (submission, reviewer)
        Index(
            'uq_review_assignment_active',
            'submission_id', 'reviewer_id',
            unique=True,
            sqlite_where=text("status != 'REASSIGNED'"),
            postgresql_where=text("status != 'REASSIGNED'"),
        ),
    )

    submission_id = Column(Integer, ForeignKey('submissions.id'), nullable=False, index=True)
    reviewer_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Status
    status = Column(Enum(AssignmentStatus), default=AssignmentStatus.PENDING, nullable=False, index=True)

    # Timing
    assigned_at = Column(DateTime, nullable=False)
    deadline = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)
    released_at = Column(DateTime)
    release_reason = Column(String(255))

    # Relationships
    submission = relationship("Submission", back_populates="assignments")
    reviewer = relationship("User", back_populates="review_assignments")
    review = relationship("PeerReview", back_populates="assignment", uselist=False)
