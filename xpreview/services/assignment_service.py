from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional
from xpreview.database import get_db
from xpreview.models import Submission, ReviewAssignment
from xpreview.models.assignment import AssignmentStatus
from xpreview.services.reviewer_pool_service import (
    ReviewerPoolService, ReviewerPoolOptions, AssignmentResult, count_live_assignments
)
from xpreview.services.notification_service import NotificationService
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


class EnsureStatus:
    ASSIGNED = 'ASSIGNED'
    SKIPPED_ALREADY_ASSIGNED = 'SKIPPED_ALREADY_ASSIGNED'
    FAILED = 'FAILED'


@dataclass
class EnsureAssignmentsResult:
    success: bool
    status: str
    assignment_result: Optional[AssignmentResult] = None
    existing_assignments: int = 0
    error: Optional[str] = None

    @property
    def warnings(self) -> List[str]:
        return self.assignment_result.warnings if self.assignment_result else []

    def to_dict(self) -> Dict:
        return {
            'success': self.success,
            'status': self.status,
            'existing_assignments': self.existing_assignments,
            'assignment_result': self.assignment_result.to_dict() if self.assignment_result else None,
            'error': self.error
        }


class AssignmentService:
    """Idempotent entry point that tops a submission up to its required reviewers"""

    def __init__(self, pool_service: ReviewerPoolService = None,
                 notification_service: NotificationService = None):
        self.notification_service = notification_service or NotificationService()
        self.pool_service = pool_service or ReviewerPoolService(notification_service=self.notification_service)

    def ensure_review_assignments(self, submission_id: int, author_id: int,
                                  options: ReviewerPoolOptions = None) -> EnsureAssignmentsResult:
        """
        Assign only the reviewers still missing.

        Calling this again once the submission is fully staffed is a no-op.
        Partial staffing is reported as FAILED even though the allocator
        succeeded with warnings.
        """
        try:
            options = self._resolve_options(options)
            required = options.target_count

            with get_db() as db:
                existing_ids = [
                    row.reviewer_id for row in db.query(ReviewAssignment.reviewer_id).filter(
                        ReviewAssignment.submission_id == submission_id,
                        ReviewAssignment.status != AssignmentStatus.REASSIGNED
                    ).all()
                ]

            if len(existing_ids) >= required:
                logger.info(
                    f"Skipping auto-assignment for submission {submission_id}: "
                    f"already has {len(existing_ids)} reviewer(s)"
                )
                return EnsureAssignmentsResult(
                    success=True,
                    status=EnsureStatus.SKIPPED_ALREADY_ASSIGNED,
                    existing_assignments=len(existing_ids)
                )

            remaining = required - len(existing_ids)
            exclude_ids = list(dict.fromkeys(list(options.exclude_reviewer_ids) + existing_ids))

            assignment_result = self.pool_service.assign_reviewers(
                submission_id,
                author_id,
                replace(options, minimum_reviewers=remaining, exclude_reviewer_ids=exclude_ids)
            )

            if not assignment_result.success:
                error = '; '.join(assignment_result.errors) or 'Unknown error'
                logger.warning(f"Failed to auto-assign reviewers for submission {submission_id}: {error}")
                return EnsureAssignmentsResult(
                    success=False,
                    status=EnsureStatus.FAILED,
                    assignment_result=assignment_result,
                    existing_assignments=len(existing_ids),
                    error=error
                )

            logger.info(
                f"Auto-assigned {len(assignment_result.assigned_reviewers)} reviewer(s) "
                f"to submission {submission_id}"
            )
            self._notify_reviewers(submission_id, assignment_result)
            self._verify_assignment_count(submission_id, required, assignment_result)

            assigned = len(assignment_result.assigned_reviewers)
            if assigned < remaining:
                shortfall = remaining - assigned
                message = (
                    f'Auto-assignment incomplete: needed {remaining}, assigned {assigned} (short {shortfall})'
                )
                if message not in assignment_result.warnings:
                    assignment_result.warnings.append(message)
                logger.warning(f"Submission {submission_id}: {message}")
                return EnsureAssignmentsResult(
                    success=False,
                    status=EnsureStatus.FAILED,
                    assignment_result=assignment_result,
                    existing_assignments=len(existing_ids),
                    error=message
                )

            if assignment_result.warnings:
                logger.warning(
                    f"Assignment warnings for submission {submission_id}: {'; '.join(assignment_result.warnings)}"
                )

            return EnsureAssignmentsResult(
                success=True,
                status=EnsureStatus.ASSIGNED,
                assignment_result=assignment_result,
                existing_assignments=len(existing_ids)
            )

        except Exception as e:
            logger.error(f"Error ensuring review assignments for submission {submission_id}: {str(e)}")
            return EnsureAssignmentsResult(success=False, status=EnsureStatus.FAILED, error=str(e))

    def record_assignment_attempt(self, submission_id: int, result: EnsureAssignmentsResult):
        """Remember when assignment was last tried and why it failed, if it did"""
        error = None
        if not result.success:
            error = {
                'status': result.status,
                'message': result.error,
                'warnings': result.warnings
            }

        with get_db() as db:
            submission = db.query(Submission).filter_by(id=submission_id).first()
            if submission:
                submission.assignment_attempted_at = datetime.utcnow()
                submission.assignment_error = error

    def _resolve_options(self, options: Optional[ReviewerPoolOptions]) -> ReviewerPoolOptions:
        if options is None:
            return ReviewerPoolOptions(allow_partial_assignment=Config.ALLOW_PARTIAL_REVIEW_ASSIGNMENTS)
        return options

    def _notify_reviewers(self, submission_id: int, assignment_result: AssignmentResult):
        if not assignment_result.assigned_reviewers:
            return

        submission_url = None
        try:
            with get_db() as db:
                submission = db.query(Submission).filter_by(id=submission_id).first()
                submission_url = submission.url if submission else None
        except Exception as e:
            logger.error(f"Failed to fetch submission {submission_id} for notifications: {str(e)}")

        for reviewer in assignment_result.assigned_reviewers:
            try:
                self.notification_service.notify_review_assigned(
                    reviewer.id, submission_id, submission_url, assignment_result.deadline
                )
            except Exception as e:
                logger.error(
                    f"Failed to notify reviewer {reviewer.id} about assignment to submission "
                    f"{submission_id}: {str(e)}"
                )
                assignment_result.warnings.append(f'Failed to notify reviewer {reviewer.display_name}')

    def _verify_assignment_count(self, submission_id: int, required: int, assignment_result: AssignmentResult):
        """Re-read after insert; concurrent ensure calls can over-assign"""
        try:
            with get_db() as db:
                total = count_live_assignments(db, submission_id)
        except Exception as e:
            logger.error(f"Failed to verify assignment count for submission {submission_id}: {str(e)}")
            return

        assignment_result.total_assignments = total
        if total > required:
            message = f'Submission has {total} active reviewers, more than the {required} required'
            logger.warning(f"Submission {submission_id}: {message}")
            assignment_result.warnings.append(message)
