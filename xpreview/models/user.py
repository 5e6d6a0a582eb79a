from datetime import datetime
from sqlalchemy import Column, String, Boolean, Enum, JSON, Integer, DateTime
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class UserRole(enum.Enum):
    USER = "user"
    REVIEWER = "reviewer"
    ADMIN = "admin"


class User(BaseModel):
    __tablename__ = 'users'

    # Basic Info
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100))
    role = Column(Enum(UserRole), nullable=False, default=UserRole.USER)
    last_active_at = Column(DateTime)

    # XP caches, reconciled against the transaction ledger
    total_xp = Column(Integer, default=0, nullable=False)
    current_week_xp = Column(Integer, default=0, nullable=False)
    week_xp_reset_at = Column(DateTime, default=datetime.utcnow)  # current_week_xp counts from here

    # Reviewer standing
    missed_reviews = Column(Integer, default=0, nullable=False)
    review_paused_until = Column(DateTime)
    review_paused_permanently = Column(Boolean, default=False)

    # Preferences
    # Reviewer opt-out, e.g. {"reviewerOptOut": true, "reviewerOptOutUntil": "2025-01-15T00:00:00"}
    preferences = Column(JSON)
    notification_preferences = Column(JSON, default=lambda: {"email": True, "in_app": True})

    # Relationships
    submissions = relationship("Submission", back_populates="user", lazy='dynamic')
    review_assignments = relationship("ReviewAssignment", back_populates="reviewer", lazy='dynamic')
    xp_transactions = relationship("XpTransaction", back_populates="user", lazy='dynamic')

    @property
    def display_name(self):
        return self.username or self.email.split('@')[0]
