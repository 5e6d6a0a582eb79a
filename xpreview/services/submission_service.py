from datetime import datetime
from typing import Dict
from xpreview.database import DatabaseManager
from xpreview.models import Submission, User
from xpreview.models.submission import SubmissionStatus
from xpreview.services.ai_evaluation_queue import AiEvaluationQueue
from xpreview.utils.validators import validate_url, detect_platform
from xpreview.utils.dates import get_week_number, get_week_year
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


class SubmissionService:
    """Submission intake"""

    def __init__(self, evaluation_queue: AiEvaluationQueue = None):
        self.submission_db = DatabaseManager(Submission)
        self.user_db = DatabaseManager(User)
        self.evaluation_queue = evaluation_queue or AiEvaluationQueue()

    def create_submission(self, user_id: int, url: str, title: str = None) -> Dict:
        """Store a new submission and queue it for AI evaluation"""
        valid, error = validate_url(url)
        if not valid:
            return {'error': error}

        if not self.user_db.get(user_id):
            return {'error': 'User not found'}

        if self.submission_db.count(user_id=user_id, url=url):
            return {'error': 'This URL has already been submitted'}

        now = datetime.utcnow()
        submission = self.submission_db.create(
            user_id=user_id,
            url=url,
            title=title,
            platform=detect_platform(url),
            status=SubmissionStatus.PENDING,
            week_year=get_week_year(now),
            week_number=get_week_number(now),
            task_types=[]
        )
        logger.info(f"User {user_id} submitted {url} as submission {submission.id}")

        queued = self.evaluation_queue.queue_evaluation(submission.id)
        return {
            'success': True,
            'submission_id': submission.id,
            'platform': submission.platform,
            'evaluation_id': queued.get('evaluation_id')
        }

    def get_submission(self, submission_id: int) -> Dict:
        submission = self.submission_db.get(submission_id)
        if not submission:
            return {'error': 'Submission not found'}

        return {
            'id': submission.id,
            'user_id': submission.user_id,
            'url': submission.url,
            'platform': submission.platform,
            'status': submission.status.value,
            'week_year': submission.week_year,
            'week_number': submission.week_number,
            'ai_xp': submission.ai_xp,
            'peer_xp': submission.peer_xp,
            'final_xp': submission.final_xp,
            'review_count': submission.review_count,
            'review_deadline': submission.review_deadline.isoformat() if submission.review_deadline else None,
            'assignment_error': submission.assignment_error
        }
