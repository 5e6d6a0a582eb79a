from sqlalchemy import Column, String, Integer, Float, ForeignKey, DateTime, Enum, JSON
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class EvaluationStatus(enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AiEvaluation(BaseModel):
    __tablename__ = 'ai_evaluations'

    submission_id = Column(Integer, ForeignKey('submissions.id'), nullable=False, unique=True)
    status = Column(Enum(EvaluationStatus), default=EvaluationStatus.PENDING, nullable=False, index=True)

    # Results
    task_types = Column(JSON, default=list)
    base_xp = Column(Integer)
    originality_score = Column(Float)
    quality_score = Column(Float)
    confidence = Column(Float)
    reasoning = Column(String(2000))

    # Processing
    retry_count = Column(Integer, default=0, nullable=False)
    error_message = Column(String(1000))
    processing_started_at = Column(DateTime)
    processing_completed_at = Column(DateTime)

    # Relationships
    submission = relationship("Submission", back_populates="ai_evaluation")
