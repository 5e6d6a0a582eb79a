from sqlalchemy import Column, String, Integer, ForeignKey, Boolean, JSON, UniqueConstraint
from .base import BaseModel


class Notification(BaseModel):
    __tablename__ = 'notifications'

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(String(1000), nullable=False)
    data = Column(JSON)
    read = Column(Boolean, default=False)


class Achievement(BaseModel):
    __tablename__ = 'achievements'

    name = Column(String(100), unique=True, nullable=False)
    description = Column(String(500))
    xp_threshold = Column(Integer)


class UserAchievement(BaseModel):
    __tablename__ = 'user_achievements'
    __table_args__ = (UniqueConstraint('user_id', 'achievement_id', name='uq_user_achievement'),)

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    achievement_id = Column(Integer, ForeignKey('achievements.id'), nullable=False)
