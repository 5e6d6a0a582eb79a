from .user import User
from .submission import Submission
from .assignment import ReviewAssignment
from .review import PeerReview
from .xp import XpTransaction, WeeklyStats
from .audit import AdminAction
from .evaluation import AiEvaluation
from .notification import Notification, Achievement, UserAchievement

__all__ = [
    'User', 'Submission', 'ReviewAssignment', 'PeerReview',
    'XpTransaction', 'WeeklyStats', 'AdminAction', 'AiEvaluation',
    'Notification', 'Achievement', 'UserAchievement'
]
