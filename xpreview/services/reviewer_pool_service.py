from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from xpreview.database import get_db
from xpreview.models import Submission, ReviewAssignment, User
from xpreview.models.assignment import AssignmentStatus, ACTIVE_ASSIGNMENT_STATUSES
from xpreview.models.submission import SubmissionStatus, TERMINAL_SUBMISSION_STATUSES
from xpreview.services.eligibility_service import EligibilityService, ReviewerCandidate
from xpreview.services.audit_service import record_admin_action
from xpreview.services.notification_service import NotificationService
from xpreview.utils.dates import skip_weekend, get_week_start
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ReviewerPoolOptions:
    minimum_reviewers: Optional[int] = None
    allow_partial_assignment: bool = False
    exclude_reviewer_ids: List[int] = field(default_factory=list)
    max_active_assignments: Optional[int] = None

    @property
    def target_count(self) -> int:
        requested = self.minimum_reviewers
        if requested is None:
            requested = Config.REVIEWER_MINIMUM_REQUIRED
        return min(max(1, requested), Config.MAX_REVIEWERS_PER_SUBMISSION)


@dataclass
class AssignmentResult:
    success: bool = False
    assigned_reviewers: List[ReviewerCandidate] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    deadline: Optional[datetime] = None
    total_assignments: int = 0

    @property
    def assigned_reviewer_ids(self) -> List[int]:
        return [reviewer.id for reviewer in self.assigned_reviewers]

    def to_dict(self) -> Dict:
        return {
            'success': self.success,
            'assigned_reviewers': [reviewer.to_dict() for reviewer in self.assigned_reviewers],
            'errors': self.errors,
            'warnings': self.warnings,
            'deadline': self.deadline.isoformat() if self.deadline else None,
            'total_assignments': self.total_assignments
        }


def calculate_review_deadline(now: datetime = None) -> datetime:
    """Review window from now, pushed to Monday if it lands on a weekend"""
    now = now or datetime.utcnow()
    return skip_weekend(now + timedelta(hours=Config.REVIEW_WINDOW_HOURS))


def count_live_assignments(db, submission_id: int) -> int:
    """Assignments that still count toward a submission's reviewer total"""
    return db.query(func.count(ReviewAssignment.id)).filter(
        ReviewAssignment.submission_id == submission_id,
        ReviewAssignment.status != AssignmentStatus.REASSIGNED
    ).scalar()


class ReviewerPoolService:
    """Selects reviewers for submissions and persists their assignments"""

    def __init__(self, eligibility_service: EligibilityService = None,
                 notification_service: NotificationService = None):
        self.eligibility = eligibility_service or EligibilityService()
        self.notification_service = notification_service or NotificationService()

    def assign_reviewers(self, submission_id: int, author_id: int, options: ReviewerPoolOptions = None,
                         now: datetime = None) -> AssignmentResult:
        """
        Pick the top ranked eligible reviewers and assign them.

        Assignment rows and the submission update commit together. Nothing is
        written when the pool is empty, or short without partial mode.
        """
        options = options or ReviewerPoolOptions()
        now = now or datetime.utcnow()
        target = options.target_count
        result = AssignmentResult()

        try:
            with get_db() as db:
                submission = db.query(Submission).filter_by(id=submission_id).with_for_update().first()
                if not submission:
                    result.errors.append('Submission not found')
                    return result

                candidates = self.eligibility.get_available_reviewers(
                    author_id,
                    exclude_ids=options.exclude_reviewer_ids,
                    max_active_assignments=options.max_active_assignments,
                    db=db,
                    now=now
                )

                if not candidates:
                    result.errors.append(f'No eligible reviewers available. Need at least {target}')
                    return result

                if len(candidates) < target:
                    if not options.allow_partial_assignment:
                        result.errors.append(
                            f'Insufficient reviewers available. Found {len(candidates)}, need {target}'
                        )
                        return result
                    result.warnings.append(
                        f'Insufficient reviewers available. Assigning {len(candidates)} of {target} requested'
                    )

                selected = candidates[:target]
                result.deadline = calculate_review_deadline(now)
                created = self._create_assignments(db, submission, selected, result.deadline, now, result)

                if not created:
                    result.errors.append('No new assignments were created')
                    return result

                result.total_assignments = self._mark_under_review(db, submission, result.deadline)
                result.assigned_reviewers = created
                result.success = True

            logger.info(
                f"Assigned {len(result.assigned_reviewers)} reviewers to submission {submission_id}: "
                f"{result.assigned_reviewer_ids}"
            )

        except Exception as e:
            logger.error(f"Error assigning reviewers to submission {submission_id}: {str(e)}")
            result.success = False
            result.assigned_reviewers = []
            result.errors.append(f'Unexpected error: {str(e)}')

        return result

    def manual_assign(self, submission_id: int, reviewer_ids: List[int], actor_id) -> Dict:
        """Admin assignment of specific reviewers, with per-reviewer validation"""
        if not reviewer_ids or not isinstance(reviewer_ids, list):
            return {'success': False, 'errors': ['reviewer_ids must be a non-empty list']}

        if len(reviewer_ids) > Config.MAX_MANUAL_REVIEWERS:
            return {
                'success': False,
                'errors': [f'Must assign between 1 and {Config.MAX_MANUAL_REVIEWERS} reviewers']
            }

        reviewer_ids = list(dict.fromkeys(reviewer_ids))
        now = datetime.utcnow()
        deadline = calculate_review_deadline(now)
        notify = []

        try:
            with get_db() as db:
                submission = db.query(Submission).filter_by(id=submission_id).with_for_update().first()
                if not submission:
                    return {'success': False, 'errors': ['Submission not found']}

                if submission.status in TERMINAL_SUBMISSION_STATUSES:
                    return {'success': False, 'errors': ['Submission has already been finalized']}

                invalid = []
                for reviewer_id in reviewer_ids:
                    can_assign, reason = self.eligibility.can_assign_reviewer(
                        reviewer_id, submission.user_id, db=db, now=now
                    )
                    if not can_assign:
                        invalid.append({'reviewer_id': reviewer_id, 'reason': reason})

                if invalid:
                    return {
                        'success': False,
                        'errors': [f"Reviewer {item['reviewer_id']}: {item['reason']}" for item in invalid],
                        'invalid_reviewers': invalid
                    }

                existing_ids = {
                    row.reviewer_id for row in db.query(ReviewAssignment.reviewer_id).filter(
                        ReviewAssignment.submission_id == submission_id,
                        ReviewAssignment.status != AssignmentStatus.REASSIGNED
                    ).all()
                }
                new_ids = [reviewer_id for reviewer_id in reviewer_ids if reviewer_id not in existing_ids]
                if not new_ids:
                    return {'success': False, 'errors': ['All selected reviewers are already assigned']}

                candidates = self.eligibility.load_candidate_pool(db, new_ids)
                result = AssignmentResult(deadline=deadline)
                created = self._create_assignments(db, submission, candidates, deadline, now, result)
                total = self._mark_under_review(db, submission, deadline)

                record_admin_action(db, actor_id, 'MANUAL_REVIEWER_ASSIGNMENT', 'submission', submission_id, {
                    'reviewerIds': [reviewer.id for reviewer in created],
                    'skippedReviewerIds': sorted(existing_ids.intersection(reviewer_ids)),
                    'deadline': deadline.isoformat(),
                    'totalAssignments': total
                })
                notify = [(reviewer.id, submission.url) for reviewer in created]

        except Exception as e:
            logger.error(f"Error in manual assignment for submission {submission_id}: {str(e)}")
            return {'success': False, 'errors': [f'Failed to create assignments: {str(e)}']}

        warnings = list(result.warnings)
        for reviewer_id, url in notify:
            try:
                self.notification_service.notify_review_assigned(reviewer_id, submission_id, url, deadline)
            except Exception as e:
                logger.warning(f"Failed to notify reviewer {reviewer_id}: {str(e)}")
                warnings.append(f'Failed to notify reviewer {reviewer_id}')

        return {
            'success': True,
            'message': f'Successfully assigned {len(notify)} reviewers',
            'assigned_reviewer_ids': [reviewer_id for reviewer_id, _ in notify],
            'skipped_reviewers': len(reviewer_ids) - len(notify),
            'total_assignments': total,
            'deadline': deadline.isoformat(),
            'warnings': warnings
        }

    def get_reviewer_workload(self, reviewer_id: int) -> Dict:
        """Active load, reviews completed this week and missed reviews"""
        try:
            with get_db() as db:
                active = db.query(func.count(ReviewAssignment.id)).filter(
                    ReviewAssignment.reviewer_id == reviewer_id,
                    ReviewAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES)
                ).scalar()

                completed = db.query(func.count(ReviewAssignment.id)).filter(
                    ReviewAssignment.reviewer_id == reviewer_id,
                    ReviewAssignment.status == AssignmentStatus.COMPLETED,
                    ReviewAssignment.completed_at >= get_week_start()
                ).scalar()

                user = db.query(User).filter_by(id=reviewer_id).first()

                return {
                    'active_assignments': active or 0,
                    'completed_this_week': completed or 0,
                    'missed_reviews': user.missed_reviews if user else 0
                }

        except Exception as e:
            logger.error(f"Error getting workload for reviewer {reviewer_id}: {str(e)}")
            return {'active_assignments': 0, 'completed_this_week': 0, 'missed_reviews': 0}

    def _create_assignments(self, db, submission: Submission, reviewers: List[ReviewerCandidate],
                            deadline: datetime, now: datetime, result: AssignmentResult) -> List[ReviewerCandidate]:
        created = []
        for reviewer in reviewers:
            if reviewer.id == submission.user_id:
                # Never reachable through the filter; guards direct callers
                result.warnings.append(f'Skipped reviewer {reviewer.id}: cannot review own submission')
                continue
            try:
                with db.begin_nested():
                    db.add(ReviewAssignment(
                        submission_id=submission.id,
                        reviewer_id=reviewer.id,
                        status=AssignmentStatus.PENDING,
                        assigned_at=now,
                        deadline=deadline
                    ))
                    db.flush()
                created.append(reviewer)
            except IntegrityError:
                logger.warning(f"Reviewer {reviewer.id} already assigned to submission {submission.id}")
                result.warnings.append(f'Reviewer {reviewer.id} is already assigned to this submission')
        return created

    @staticmethod
    def _mark_under_review(db, submission: Submission, deadline: datetime) -> int:
        total = count_live_assignments(db, submission.id)
        if submission.status not in TERMINAL_SUBMISSION_STATUSES:
            submission.status = SubmissionStatus.UNDER_PEER_REVIEW
        submission.review_deadline = deadline
        submission.review_count = total
        db.flush()
        return total
