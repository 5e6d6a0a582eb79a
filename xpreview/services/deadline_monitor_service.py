from datetime import datetime, timedelta
from typing import Dict, List, Optional
from xpreview.database import get_db
from xpreview.models import ReviewAssignment, Submission, Notification, User, XpTransaction
from xpreview.models.assignment import AssignmentStatus, ACTIVE_ASSIGNMENT_STATUSES
from xpreview.models.submission import TERMINAL_SUBMISSION_STATUSES
from xpreview.models.xp import XpTransactionType
from xpreview.services.reviewer_pool_service import ReviewerPoolService, ReviewerPoolOptions, count_live_assignments
from xpreview.services.notification_service import NotificationService, NotificationType
from xpreview.services.xp_ledger import record_xp_transaction, upsert_weekly_stats, lock_user
from xpreview.services.audit_service import record_admin_action, SYSTEM_ACTOR
from xpreview.utils.dates import hours_between, skip_weekend, get_week_number, get_week_year
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


class DeadlineMonitorService:
    """Reminds, penalizes and replaces reviewers around their deadlines"""

    def __init__(self, pool_service: ReviewerPoolService = None,
                 notification_service: NotificationService = None):
        self.notification_service = notification_service or NotificationService()
        self.pool_service = pool_service or ReviewerPoolService(notification_service=self.notification_service)

    def process_deadlines(self, now: datetime = None) -> Dict:
        """Run one pass over open and missed assignments"""
        now = now or datetime.utcnow()
        result = {'processed': 0, 'reminders': 0, 'reassignments': 0, 'penalties': 0, 'errors': []}

        with get_db() as db:
            rows = db.query(ReviewAssignment.id, ReviewAssignment.status, ReviewAssignment.deadline).join(
                Submission, Submission.id == ReviewAssignment.submission_id
            ).filter(
                ReviewAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES + (AssignmentStatus.MISSED,)),
                Submission.status.notin_(TERMINAL_SUBMISSION_STATUSES)
            ).all()

        logger.info(f"Checking deadlines for {len(rows)} assignments")

        for assignment_id, status, deadline in rows:
            result['processed'] += 1
            hours_left = hours_between(now, deadline)
            try:
                if status == AssignmentStatus.MISSED:
                    if -hours_left >= Config.REASSIGNMENT_DELAY_HOURS and self.reassign_missed(assignment_id, now):
                        result['reassignments'] += 1
                elif hours_left <= 0:
                    if self.handle_overdue(assignment_id, now):
                        result['penalties'] += 1
                elif self.send_reminder(assignment_id, hours_left):
                    result['reminders'] += 1
            except Exception as e:
                logger.error(f"Error processing deadline for assignment {assignment_id}: {str(e)}")
                result['errors'].append(f'Assignment {assignment_id}: {str(e)}')

        logger.info(
            f"Deadline pass complete: {result['penalties']} penalties, {result['reassignments']} reassignments, "
            f"{result['reminders']} reminders"
        )
        return result

    def handle_overdue(self, assignment_id: int, now: datetime = None) -> bool:
        """
        Mark an overdue assignment MISSED and penalize the reviewer once.
        Returns True when a penalty was applied.
        """
        now = now or datetime.utcnow()

        with get_db() as db:
            assignment = db.query(ReviewAssignment).filter_by(id=assignment_id).with_for_update().first()
            if not assignment or assignment.status not in ACTIVE_ASSIGNMENT_STATUSES:
                return False

            assignment.status = AssignmentStatus.MISSED

            # One penalty per reviewer per submission
            already_penalized = db.query(XpTransaction.id).filter(
                XpTransaction.user_id == assignment.reviewer_id,
                XpTransaction.type == XpTransactionType.PENALTY.value,
                XpTransaction.source_id == assignment.submission_id
            ).first()
            if already_penalized:
                logger.info(f"Penalty already applied for assignment {assignment_id}, marking missed only")
                return False

            reviewer = lock_user(db, assignment.reviewer_id)
            reviewer.missed_reviews = (reviewer.missed_reviews or 0) + 1
            week_number = get_week_number(now)
            week_year = get_week_year(now)

            record_xp_transaction(
                db,
                reviewer,
                -Config.MISSED_REVIEW_PENALTY_XP,
                XpTransactionType.PENALTY,
                f'Missed review deadline for submission {assignment.submission_id}',
                source_id=assignment.submission_id,
                week_number=week_number,
                week_year=week_year
            )
            upsert_weekly_stats(db, reviewer.id, week_number, reviews_missed=1, week_year=week_year)
            self._apply_strike(db, reviewer, now)

            logger.warning(
                f"Reviewer {reviewer.id} missed assignment {assignment_id} "
                f"({abs(hours_between(now, assignment.deadline)):.0f}h overdue). Total missed: {reviewer.missed_reviews}"
            )
            return True

    def reassign_missed(self, assignment_id: int, now: datetime = None) -> bool:
        """Replace a reviewer whose assignment has been missed past the grace period"""
        now = now or datetime.utcnow()

        with get_db() as db:
            assignment = db.query(ReviewAssignment).filter_by(id=assignment_id).first()
            if not assignment or assignment.status != AssignmentStatus.MISSED:
                return False
            submission_id = assignment.submission_id
            old_reviewer_id = assignment.reviewer_id
            author_id = assignment.submission.user_id
            hours_overdue = -hours_between(now, assignment.deadline)
            assigned_ids = [
                row.reviewer_id for row in db.query(ReviewAssignment.reviewer_id).filter(
                    ReviewAssignment.submission_id == submission_id,
                    ReviewAssignment.status != AssignmentStatus.REASSIGNED
                ).all()
            ]

        assignment_result = self.pool_service.assign_reviewers(
            submission_id,
            author_id,
            ReviewerPoolOptions(
                minimum_reviewers=1,
                exclude_reviewer_ids=assigned_ids,
                max_active_assignments=Config.MAX_ACTIVE_ASSIGNMENTS,
                allow_partial_assignment=False
            ),
            now=now
        )

        if not assignment_result.success:
            logger.warning(
                f"Failed to reassign submission {submission_id}: {', '.join(assignment_result.errors)}"
            )
            return False

        new_reviewer = assignment_result.assigned_reviewers[0]

        with get_db() as db:
            assignment = db.query(ReviewAssignment).filter_by(id=assignment_id).with_for_update().first()
            assignment.status = AssignmentStatus.REASSIGNED
            assignment.released_at = now
            assignment.release_reason = 'Missed deadline'

            submission = db.query(Submission).filter_by(id=submission_id).first()
            db.flush()
            submission.review_count = count_live_assignments(db, submission_id)

            record_admin_action(db, SYSTEM_ACTOR, 'REVIEW_DEADLINE_REASSIGN', 'submission', submission_id, {
                'subAction': 'AUTO_REASSIGN_DEADLINE',
                'oldReviewerId': old_reviewer_id,
                'newReviewerId': new_reviewer.id,
                'newReviewerName': new_reviewer.display_name,
                'reason': 'Missed deadline',
                'hoursOverdue': round(hours_overdue, 1),
                'timestamp': now.isoformat()
            })

        try:
            self.notification_service.notify_review_assigned(
                new_reviewer.id, submission_id, deadline=assignment_result.deadline
            )
        except Exception as e:
            logger.warning(f"Failed to notify replacement reviewer {new_reviewer.id}: {str(e)}")

        logger.info(f"Reassigned submission {submission_id} from reviewer {old_reviewer_id} to {new_reviewer.id}")
        return True

    def send_reminder(self, assignment_id: int, hours_left: float) -> bool:
        """Send the reminder matching hours_left, at most once per interval"""
        interval = next(
            (hours for hours in Config.DEADLINE_REMINDER_HOURS if abs(hours_left - hours) < 0.5),
            None
        )
        if interval is None:
            return False

        with get_db() as db:
            assignment = db.query(ReviewAssignment).filter_by(id=assignment_id).first()
            reviewer_id = assignment.reviewer_id
            sent = db.query(Notification).filter(
                Notification.user_id == reviewer_id,
                Notification.type == NotificationType.DEADLINE_WARNING
            ).all()

        for notification in sent:
            data = notification.data or {}
            if data.get('assignmentId') == assignment_id and data.get('reminderInterval') == interval:
                return False

        self.notification_service.notify_deadline_warning(reviewer_id, assignment_id, interval)
        logger.info(f"Sent {interval}h deadline warning for assignment {assignment_id}")
        return True

    def extend_deadline(self, assignment_id: int, additional_hours: int, reason: str, actor_id) -> Dict:
        """Push an open assignment's deadline back"""
        if not isinstance(additional_hours, int) or additional_hours <= 0:
            return {'success': False, 'errors': ['Additional hours must be a positive integer']}
        if not reason or len(reason.strip()) < Config.MIN_REASON_LENGTH:
            return {
                'success': False,
                'errors': [f'Reason must be at least {Config.MIN_REASON_LENGTH} characters long']
            }

        try:
            with get_db() as db:
                assignment = db.query(ReviewAssignment).filter_by(id=assignment_id).with_for_update().first()
                if not assignment:
                    return {'success': False, 'errors': ['Assignment not found']}
                if assignment.status not in ACTIVE_ASSIGNMENT_STATUSES:
                    return {'success': False, 'errors': ['Only open assignments can be extended']}

                old_deadline = assignment.deadline
                assignment.deadline = skip_weekend(old_deadline + timedelta(hours=additional_hours))

                record_admin_action(db, actor_id, 'EXTEND_REVIEW_DEADLINE', 'assignment', assignment_id, {
                    'oldDeadline': old_deadline.isoformat(),
                    'newDeadline': assignment.deadline.isoformat(),
                    'additionalHours': additional_hours,
                    'reason': reason
                })
                new_deadline = assignment.deadline

        except Exception as e:
            logger.error(f"Error extending deadline for assignment {assignment_id}: {str(e)}")
            return {'success': False, 'errors': [f'Failed to extend deadline: {str(e)}']}

        logger.info(f"Extended assignment {assignment_id} deadline by {additional_hours}h: {reason}")
        return {'success': True, 'deadline': new_deadline.isoformat()}

    def get_deadline_statuses(self, now: datetime = None) -> List[Dict]:
        """Open assignments with their deadline status, most pressing first"""
        now = now or datetime.utcnow()

        with get_db() as db:
            assignments = db.query(ReviewAssignment).filter(
                ReviewAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES)
            ).order_by(ReviewAssignment.deadline).all()

            statuses = []
            for assignment in assignments:
                hours_left = hours_between(now, assignment.deadline)
                statuses.append({
                    'assignment_id': assignment.id,
                    'submission_id': assignment.submission_id,
                    'reviewer_id': assignment.reviewer_id,
                    'deadline': assignment.deadline.isoformat(),
                    'status': self._deadline_status(hours_left),
                    'hours_remaining': round(hours_left, 1)
                })

        return statuses

    def get_urgent_assignments(self, now: datetime = None) -> List[Dict]:
        return [s for s in self.get_deadline_statuses(now) if s['status'] != 'upcoming']

    @staticmethod
    def _deadline_status(hours_left: float) -> str:
        if hours_left <= 0:
            return 'overdue'
        if hours_left <= Config.URGENT_DEADLINE_HOURS:
            return 'urgent'
        return 'upcoming'

    @staticmethod
    def _apply_strike(db, reviewer: User, now: datetime) -> Optional[str]:
        """Escalating pause and penalty when the missed count hits a strike threshold"""
        strike = Config.MISSED_REVIEW_STRIKES.get(reviewer.missed_reviews)
        if not strike:
            return None

        pause_days, penalty = strike
        if pause_days is None:
            reviewer.review_paused_permanently = True
            description = f'Permanent ban: {reviewer.missed_reviews} missed reviews'
        else:
            reviewer.review_paused_until = now + timedelta(days=pause_days)
            description = f'{reviewer.missed_reviews} missed reviews: {pause_days} day pause from reviewing'

        record_xp_transaction(db, reviewer, -penalty, XpTransactionType.PENALTY, description,
                              week_number=get_week_number(now), week_year=get_week_year(now))
        logger.warning(f"Strike for reviewer {reviewer.id}: {description} (-{penalty} XP)")
        return description
