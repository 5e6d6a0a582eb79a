from sqlalchemy import Column, String, Integer, Float, ForeignKey, DateTime, Enum, JSON
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel
from xpreview.utils.dates import get_week_year


class SubmissionStatus(enum.Enum):
    PENDING = "pending"
    AI_REVIEWED = "ai_reviewed"
    UNDER_PEER_REVIEW = "under_peer_review"
    FINALIZED = "finalized"
    FLAGGED = "flagged"
    REJECTED = "rejected"


TERMINAL_SUBMISSION_STATUSES = (SubmissionStatus.FINALIZED, SubmissionStatus.REJECTED)


class Submission(BaseModel):
    __tablename__ = 'submissions'

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    url = Column(String(2048), nullable=False)
    title = Column(String(500))
    platform = Column(String(50))
    task_types = Column(JSON, default=list)

    # Lifecycle
    status = Column(Enum(SubmissionStatus), default=SubmissionStatus.PENDING, index=True)
    week_year = Column(Integer, nullable=False, default=lambda: get_week_year())  # ISO year of week_number
    week_number = Column(Integer, nullable=False, index=True)

    # Scoring
    ai_xp = Column(Integer, default=0)
    originality_score = Column(Float)
    peer_xp = Column(Integer)
    final_xp = Column(Integer)  # Only set once status is terminal

    # Peer review
    review_count = Column(Integer, default=0)
    review_deadline = Column(DateTime)
    assignment_attempted_at = Column(DateTime)
    assignment_error = Column(JSON)

    # Relationships
    user = relationship("User", back_populates="submissions")
    assignments = relationship("ReviewAssignment", back_populates="submission", lazy='dynamic')
    peer_reviews = relationship("PeerReview", back_populates="submission", lazy='dynamic')
    ai_evaluation = relationship("AiEvaluation", back_populates="submission", uselist=False)
