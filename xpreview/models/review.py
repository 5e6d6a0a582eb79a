from sqlalchemy import Column, String, Integer, ForeignKey, Boolean
from sqlalchemy.orm import relationship
from .base import BaseModel


class PeerReview(BaseModel):
    __tablename__ = 'peer_reviews'

    submission_id = Column(Integer, ForeignKey('submissions.id'), nullable=False, index=True)
    reviewer_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    assignment_id = Column(Integer, ForeignKey('review_assignments.id'), unique=True)

    xp_score = Column(Integer, nullable=False)
    content_category = Column(String(50))  # e.g. thread, article, meme
    quality_tier = Column(String(20))
    comments = Column(String(2000))
    is_late = Column(Boolean, default=False)

    # Relationships
    submission = relationship("Submission", back_populates="peer_reviews")
    assignment = relationship("ReviewAssignment", back_populates="review")
