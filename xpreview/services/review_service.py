from datetime import datetime
from typing import Dict, Tuple
from sqlalchemy import func
from xpreview.database import get_db
from xpreview.models import PeerReview, ReviewAssignment, Submission
from xpreview.models.assignment import AssignmentStatus, ACTIVE_ASSIGNMENT_STATUSES
from xpreview.models.submission import SubmissionStatus, TERMINAL_SUBMISSION_STATUSES
from xpreview.models.xp import XpTransactionType
from xpreview.services.xp_ledger import record_xp_transaction, upsert_weekly_stats, lock_user
from xpreview.services.consensus_service import calculate_peer_xp
from xpreview.services.xp_propagation_service import XpPropagationService
from xpreview.utils.validators import validate_review_score
from xpreview.utils.dates import get_week_number, get_week_year
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


class ReviewService:
    """Service for recording peer reviews and finalizing submissions"""

    def __init__(self, propagation_service: XpPropagationService = None):
        self.propagation_service = propagation_service or XpPropagationService()

    def submit_review(self, assignment_id: int, reviewer_id: int, xp_score: int,
                      content_category: str = None, quality_tier: str = None,
                      comments: str = None) -> Dict:
        """
        Record a reviewer's score.

        When this completes the required number of reviews the submission is
        finalized and its author is credited in the same transaction.
        """
        valid, error = validate_review_score(xp_score)
        if not valid:
            return {'error': error}

        now = datetime.utcnow()
        award = None

        try:
            with get_db() as db:
                assignment = db.query(ReviewAssignment).filter_by(id=assignment_id).with_for_update().first()
                if not assignment:
                    return {'error': 'Assignment not found'}

                if assignment.reviewer_id != reviewer_id:
                    return {'error': 'Assignment belongs to another reviewer'}

                if assignment.status not in ACTIVE_ASSIGNMENT_STATUSES + (AssignmentStatus.MISSED,):
                    return {'error': 'Assignment is no longer open for review'}

                submission = db.query(Submission).filter_by(id=assignment.submission_id).with_for_update().first()
                if submission.status in TERMINAL_SUBMISSION_STATUSES:
                    return {'error': 'Submission has already been finalized'}

                is_late = now > assignment.deadline
                review = PeerReview(
                    submission_id=submission.id,
                    reviewer_id=reviewer_id,
                    assignment_id=assignment.id,
                    xp_score=xp_score,
                    content_category=content_category,
                    quality_tier=quality_tier,
                    comments=comments[:2000] if comments else None,
                    is_late=is_late
                )
                db.add(review)

                assignment.status = AssignmentStatus.COMPLETED
                assignment.completed_at = now
                db.flush()

                reviewer = lock_user(db, reviewer_id)
                week_number = get_week_number(now)
                week_year = get_week_year(now)
                if not is_late and Config.REVIEW_REWARD_XP:
                    record_xp_transaction(
                        db,
                        reviewer,
                        Config.REVIEW_REWARD_XP,
                        XpTransactionType.REVIEW_REWARD,
                        f'Peer review of submission {submission.id}',
                        source_id=submission.id,
                        week_number=week_number,
                        week_year=week_year
                    )
                upsert_weekly_stats(db, reviewer_id, week_number, reviews_done=1, week_year=week_year)

                completed = db.query(func.count(PeerReview.id)).filter(
                    PeerReview.submission_id == submission.id
                ).scalar()

                if completed >= Config.REVIEWER_MINIMUM_REQUIRED:
                    award = self._finalize(db, submission)

                review_id = review.id
                submission_id = submission.id
                author_id = submission.user_id
                award_week = submission.week_number
                award_year = submission.week_year

        except Exception as e:
            logger.error(f"Error submitting review for assignment {assignment_id}: {str(e)}")
            return {'error': 'Failed to submit review'}

        logger.info(f"Reviewer {reviewer_id} scored submission {submission_id} at {xp_score} XP")

        result = {
            'success': True,
            'review_id': review_id,
            'is_late': is_late,
            'finalized': award is not None
        }

        if award is not None:
            final_xp, applied = award
            result['final_xp'] = final_xp
            result['warnings'] = self.propagation_service.run_post_transaction_effects(
                author_id,
                award_week,
                applied,
                f"Submission {submission_id} finalized by peer review",
                week_year=award_year
            )

        return result

    def _finalize(self, db, submission: Submission) -> Tuple[int, int]:
        scores = [
            row.xp_score for row in db.query(PeerReview.xp_score).filter(
                PeerReview.submission_id == submission.id
            ).all()
        ]
        final_xp = calculate_peer_xp(scores)

        submission.peer_xp = final_xp
        submission.final_xp = final_xp
        submission.status = SubmissionStatus.FINALIZED

        author = lock_user(db, submission.user_id)
        _, delta = record_xp_transaction(
            db,
            author,
            final_xp,
            XpTransactionType.SUBMISSION_REWARD,
            f'Submission finalized with {len(scores)} peer reviews',
            source_id=submission.id,
            week_number=submission.week_number,
            week_year=submission.week_year
        )

        logger.info(f"Finalized submission {submission.id} at {final_xp} XP from scores {scores}")
        return final_xp, delta.applied_delta
