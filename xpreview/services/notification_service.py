from typing import Dict, Optional
from xpreview.database import get_db
from xpreview.models import Notification, User
from xpreview.integrations import SendGridClient
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


class NotificationType:
    REVIEW_ASSIGNED = 'REVIEW_ASSIGNED'
    XP_AWARDED = 'XP_AWARDED'
    SUBMISSION_PROCESSED = 'SUBMISSION_PROCESSED'
    DEADLINE_WARNING = 'DEADLINE_WARNING'


class NotificationService:
    """
    In-app notifications plus email delivery.

    Methods raise when the in-app record cannot be written so that callers
    can decide whether the failure matters. Email delivery is best-effort.
    """

    def __init__(self, email_client: SendGridClient = None):
        self.sendgrid = email_client or SendGridClient()

    def create_notification(self, user_id: int, notification_type: str, title: str,
                            message: str, data: Dict = None) -> Optional[User]:
        """Store an in-app notification and return the recipient"""
        with get_db() as db:
            user = db.query(User).filter_by(id=user_id).first()
            if not user:
                raise ValueError(f"User {user_id} not found")

            db.add(Notification(
                user_id=user_id,
                type=notification_type,
                title=title,
                message=message,
                data=data or {}
            ))
            return user

    def notify_review_assigned(self, reviewer_id: int, submission_id: int, submission_url: str = None,
                               deadline=None):
        """Tell a reviewer about a new assignment"""
        data = {'submissionId': submission_id}
        if submission_url:
            data['submissionUrl'] = submission_url

        reviewer = self.create_notification(
            reviewer_id,
            NotificationType.REVIEW_ASSIGNED,
            'New review assignment',
            f'You have been assigned a new submission to review. '
            f'Complete it within {Config.REVIEW_WINDOW_HOURS} hours to keep your reviewer standing.',
            data
        )

        if self._wants_email(reviewer):
            self.sendgrid.send_review_assignment_email(
                reviewer.email,
                reviewer.display_name,
                submission_url or '',
                deadline.strftime('%B %d, %Y at %I:%M %p UTC') if deadline else 'in 72 hours',
                f"{Config.APP_URL}/review/{submission_id}"
            )

        logger.info(f"Notified reviewer {reviewer_id} of assignment to submission {submission_id}")

    def notify_xp_change(self, user_id: int, xp_difference: int, reason: str):
        """Tell a user their XP was corrected"""
        direction = 'increased' if xp_difference >= 0 else 'decreased'
        user = self.create_notification(
            user_id,
            NotificationType.XP_AWARDED,
            'XP Updated',
            f'Your XP was {direction} by {abs(xp_difference)} points. Reason: {reason}',
            {'xpDifference': xp_difference, 'reason': reason}
        )

        if self._wants_email(user):
            self.sendgrid.send_xp_change_email(user.email, user.display_name, xp_difference, reason)

        logger.info(f"Sent XP change notification to user {user_id}: {xp_difference:+d}")

    def notify_submission_processed(self, user_id: int, submission_id: int, ai_xp: int, url: str = None):
        """Tell an author their submission moved on to peer review"""
        self.create_notification(
            user_id,
            NotificationType.SUBMISSION_PROCESSED,
            'Ready for Peer Review',
            'Your submission is now ready for peer review. Reviewers will determine your final XP.',
            {'submissionId': submission_id, 'aiXp': ai_xp, 'url': url, 'nextStep': 'peer_review'}
        )

    def notify_deadline_warning(self, reviewer_id: int, assignment_id: int, hours_left: int):
        """Remind a reviewer of an approaching deadline"""
        self.create_notification(
            reviewer_id,
            NotificationType.DEADLINE_WARNING,
            'Review Deadline Warning',
            f"You have a review due in approximately {hours_left} hour{'' if hours_left == 1 else 's'}.",
            {'assignmentId': assignment_id, 'reminderInterval': hours_left}
        )

    @staticmethod
    def _wants_email(user: User) -> bool:
        preferences = user.notification_preferences or {}
        return bool(user.email) and preferences.get('email', True)
