from sqlalchemy import Column, String, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel
from xpreview.utils.dates import get_week_year


class XpTransactionType(enum.Enum):
    SUBMISSION_REWARD = "SUBMISSION_REWARD"
    REVIEW_REWARD = "REVIEW_REWARD"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    CONSENSUS_ADJUSTMENT = "CONSENSUS_ADJUSTMENT"
    PENALTY = "PENALTY"


class XpTransaction(BaseModel):
    """Append-only ledger entry. User.total_xp is the running sum of these."""
    __tablename__ = 'xp_transactions'

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(String(50), nullable=False, index=True)
    source_id = Column(Integer, index=True)  # Submission the amount relates to
    week_number = Column(Integer, nullable=False)
    week_year = Column(Integer, nullable=False, default=lambda: get_week_year())
    description = Column(String(500))

    # Relationships
    user = relationship("User", back_populates="xp_transactions")


class WeeklyStats(BaseModel):
    __tablename__ = 'weekly_stats'
    __table_args__ = (UniqueConstraint('user_id', 'week_year', 'week_number', name='uq_weekly_stats_user_week'),)

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    week_year = Column(Integer, nullable=False, default=lambda: get_week_year())
    week_number = Column(Integer, nullable=False, index=True)
    xp_total = Column(Integer, default=0, nullable=False)
    reviews_done = Column(Integer, default=0, nullable=False)
    reviews_missed = Column(Integer, default=0, nullable=False)
