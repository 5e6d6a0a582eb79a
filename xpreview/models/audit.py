from sqlalchemy import Column, String, JSON
from .base import BaseModel


class AdminAction(BaseModel):
    __tablename__ = 'admin_actions'

    # User id of the admin, or "system" for automated actions
    admin_id = Column(String(64), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(64), nullable=False, index=True)
    details = Column(JSON, default=dict)
