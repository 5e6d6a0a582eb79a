"""
Background AI evaluation queue.

Evaluations move PENDING -> PROCESSING -> COMPLETED, falling back to PENDING
on error until AI_MAX_RETRIES is reached, then FAILED. Records are claimed
with a conditional UPDATE so several workers can drain the queue; the
in-process lock only stops one process from draining twice at once.
"""
import threading
from datetime import datetime, timedelta
from typing import Dict, List
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from xpreview.database import get_db
from xpreview.models import AiEvaluation, Submission
from xpreview.models.evaluation import EvaluationStatus
from xpreview.models.submission import SubmissionStatus
from xpreview.integrations import ContentScoringClient
from xpreview.services.assignment_service import AssignmentService
from xpreview.services.notification_service import NotificationService
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)

BYPASS_REASONING = 'AI evaluation disabled: content fetch and LLM scoring are turned off'


def default_task_types(platform: str) -> List[str]:
    """Task types assumed from the platform when scoring is skipped"""
    platform = (platform or '').lower()
    if 'twitter' in platform or 'x.com' in platform:
        return ['A']
    if 'reddit' in platform or 'notion' in platform or 'medium' in platform:
        return ['B']
    return []


class AiEvaluationQueue:
    """Drives submissions from intake through scoring into peer review"""

    _processing_lock = threading.Lock()

    def __init__(self, scoring_client: ContentScoringClient = None,
                 assignment_service: AssignmentService = None,
                 notification_service: NotificationService = None):
        self.scoring_client = scoring_client or ContentScoringClient()
        self.notification_service = notification_service or NotificationService()
        self.assignment_service = assignment_service or AssignmentService(
            notification_service=self.notification_service
        )

    @property
    def scoring_disabled(self) -> bool:
        return Config.DISABLE_CONTENT_FETCH or not Config.ENABLE_AI_EVALUATION

    def queue_evaluation(self, submission_id: int) -> Dict:
        """Create the evaluation record for a submission; a second call is a no-op"""
        try:
            with get_db() as db:
                existing = db.query(AiEvaluation).filter_by(submission_id=submission_id).first()
                if existing:
                    logger.info(f"AI evaluation already exists for submission {submission_id}")
                    return {'queued': False, 'evaluation_id': existing.id, 'status': existing.status.value}

                evaluation = AiEvaluation(submission_id=submission_id, status=EvaluationStatus.PENDING)
                db.add(evaluation)
                db.flush()
                evaluation_id = evaluation.id

        except IntegrityError:
            logger.info(f"AI evaluation for submission {submission_id} was queued concurrently")
            return {'queued': False}

        logger.info(f"Queued AI evaluation for submission {submission_id}")
        return {'queued': True, 'evaluation_id': evaluation_id, 'status': EvaluationStatus.PENDING.value}

    def process_queue(self, now: datetime = None) -> Dict:
        """Requeue stalled work, claim a batch of pending evaluations and process them"""
        if not self._processing_lock.acquire(blocking=False):
            logger.info("AI evaluation processing already in progress")
            return {'processed': 0, 'failed': 0, 'requeued': 0}

        processed = failed = requeued = 0
        try:
            now = now or datetime.utcnow()
            requeued = self.requeue_stalled(now)
            claimed = self.claim_batch(now)

            if not claimed:
                logger.info("No AI evaluations to process")
                return {'processed': 0, 'failed': 0, 'requeued': requeued}

            logger.info(f"Processing {len(claimed)} AI evaluations")
            for evaluation_id in claimed:
                try:
                    succeeded = self.process_evaluation(evaluation_id)
                except Exception as e:
                    logger.error(f"Unhandled error processing evaluation {evaluation_id}: {str(e)}")
                    succeeded = False

                if succeeded:
                    processed += 1
                else:
                    failed += 1

            logger.info(f"AI evaluation processing complete: {processed} processed, {failed} failed")

        except Exception as e:
            logger.error(f"Error in AI evaluation queue processing: {str(e)}")
        finally:
            self._processing_lock.release()

        return {'processed': processed, 'failed': failed, 'requeued': requeued}

    def requeue_stalled(self, now: datetime = None) -> int:
        """Treat PROCESSING records past the timeout as failed attempts"""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=Config.AI_PROCESSING_TIMEOUT_SECONDS)

        with get_db() as db:
            stalled = [
                row.id for row in db.query(AiEvaluation.id).filter(
                    AiEvaluation.status == EvaluationStatus.PROCESSING,
                    AiEvaluation.processing_started_at < cutoff
                ).all()
            ]

        for evaluation_id in stalled:
            logger.warning(f"AI evaluation {evaluation_id} timed out, retrying")
            self.handle_evaluation_error(evaluation_id, 'Processing timeout')

        return len(stalled)

    def claim_batch(self, now: datetime = None) -> List[int]:
        """Move up to AI_BATCH_SIZE pending evaluations to PROCESSING; returns ids this worker owns"""
        now = now or datetime.utcnow()

        with get_db() as db:
            candidates = [
                row.id for row in db.query(AiEvaluation.id).filter(
                    AiEvaluation.status == EvaluationStatus.PENDING,
                    AiEvaluation.retry_count < Config.AI_MAX_RETRIES
                ).order_by(AiEvaluation.created_at, AiEvaluation.id).limit(Config.AI_BATCH_SIZE).all()
            ]

        claimed = []
        for evaluation_id in candidates:
            with get_db() as db:
                updated = db.query(AiEvaluation).filter(
                    AiEvaluation.id == evaluation_id,
                    AiEvaluation.status == EvaluationStatus.PENDING
                ).update({
                    AiEvaluation.status: EvaluationStatus.PROCESSING,
                    AiEvaluation.processing_started_at: now
                }, synchronize_session=False)
            if updated == 1:
                claimed.append(evaluation_id)

        return claimed

    def process_evaluation(self, evaluation_id: int) -> bool:
        """Score one claimed evaluation and hand the submission to peer review"""
        started = datetime.utcnow()

        try:
            with get_db() as db:
                evaluation = db.query(AiEvaluation).filter_by(id=evaluation_id).first()
                if not evaluation:
                    logger.error(f"Evaluation {evaluation_id} not found")
                    return False
                submission = evaluation.submission
                submission_id = submission.id
                author_id = submission.user_id
                url = submission.url
                platform = submission.platform

            if self.scoring_disabled:
                logger.info(f"AI/content fetch disabled, skipping scoring for submission {submission_id}")
                analysis = {
                    'taskTypes': [],
                    'baseXp': 0,
                    'originalityScore': 0,
                    'qualityScore': 0,
                    'confidence': 0,
                    'reasoning': BYPASS_REASONING
                }
                submission_task_types = default_task_types(platform)
            else:
                content = self.scoring_client.fetch_content(url, platform)
                analysis = self.scoring_client.evaluate(content)
                submission_task_types = analysis['taskTypes']

            with get_db() as db:
                evaluation = db.query(AiEvaluation).filter_by(id=evaluation_id).first()
                evaluation.status = EvaluationStatus.COMPLETED
                evaluation.task_types = analysis['taskTypes']
                evaluation.base_xp = analysis['baseXp']
                evaluation.originality_score = analysis['originalityScore']
                evaluation.quality_score = analysis['qualityScore']
                evaluation.confidence = analysis['confidence']
                evaluation.reasoning = analysis['reasoning']
                evaluation.error_message = None
                evaluation.processing_completed_at = datetime.utcnow()

                submission = db.query(Submission).filter_by(id=submission_id).first()
                submission.status = SubmissionStatus.AI_REVIEWED
                submission.ai_xp = analysis['baseXp']
                submission.originality_score = analysis['originalityScore']
                submission.task_types = submission_task_types

        except Exception as e:
            logger.error(f"AI evaluation failed for {evaluation_id}: {str(e)}")
            self.handle_evaluation_error(evaluation_id, str(e))
            return False

        self._seed_peer_review(submission_id, author_id)

        try:
            self.notification_service.notify_submission_processed(author_id, submission_id, analysis['baseXp'], url)
        except Exception as e:
            logger.warning(f"Failed to notify author {author_id} about submission {submission_id}: {str(e)}")

        elapsed = (datetime.utcnow() - started).total_seconds()
        logger.info(
            f"Processed submission {submission_id} in {elapsed:.2f}s, ready for peer review "
            f"with {analysis['baseXp']} AI XP"
        )
        return True

    def handle_evaluation_error(self, evaluation_id: int, error_message: str):
        """Count a failed attempt; after AI_MAX_RETRIES the evaluation fails and the submission goes back to PENDING"""
        with get_db() as db:
            evaluation = db.query(AiEvaluation).filter_by(id=evaluation_id).with_for_update().first()
            if not evaluation:
                logger.error(f"Evaluation {evaluation_id} not found")
                return

            evaluation.retry_count = (evaluation.retry_count or 0) + 1
            should_fail = evaluation.retry_count >= Config.AI_MAX_RETRIES
            evaluation.status = EvaluationStatus.FAILED if should_fail else EvaluationStatus.PENDING
            evaluation.error_message = (error_message or 'Unknown error')[:1000]
            evaluation.processing_started_at = None

            if should_fail:
                submission = db.query(Submission).filter_by(id=evaluation.submission_id).first()
                submission.status = SubmissionStatus.PENDING
                logger.error(
                    f"AI evaluation {evaluation_id} failed permanently after {Config.AI_MAX_RETRIES} attempts; "
                    f"submission {submission.id} left for manual review"
                )
            else:
                logger.info(
                    f"AI evaluation {evaluation_id} will be retried "
                    f"(attempt {evaluation.retry_count}/{Config.AI_MAX_RETRIES})"
                )

    def get_evaluation_stats(self) -> Dict:
        with get_db() as db:
            counts = dict(
                db.query(AiEvaluation.status, func.count(AiEvaluation.id)).group_by(AiEvaluation.status).all()
            )

            timings = db.query(AiEvaluation.processing_started_at, AiEvaluation.processing_completed_at).filter(
                AiEvaluation.status == EvaluationStatus.COMPLETED,
                AiEvaluation.processing_started_at.isnot(None),
                AiEvaluation.processing_completed_at.isnot(None)
            ).order_by(AiEvaluation.processing_completed_at.desc()).limit(100).all()

        completed = counts.get(EvaluationStatus.COMPLETED, 0)
        failed = counts.get(EvaluationStatus.FAILED, 0)

        average_ms = 0.0
        if timings:
            total = sum((end - start).total_seconds() for start, end in timings)
            average_ms = total * 1000 / len(timings)

        return {
            'total': sum(counts.values()),
            'pending': counts.get(EvaluationStatus.PENDING, 0),
            'processing': counts.get(EvaluationStatus.PROCESSING, 0),
            'completed': completed,
            'failed': failed,
            'average_processing_time_ms': average_ms,
            'success_rate': (completed / (completed + failed)) * 100 if completed + failed else 0.0
        }

    def retry_failed_evaluations(self) -> int:
        """Give permanently failed evaluations a fresh set of attempts"""
        with get_db() as db:
            failed = db.query(AiEvaluation).filter(AiEvaluation.status == EvaluationStatus.FAILED).all()
            for evaluation in failed:
                evaluation.status = EvaluationStatus.PENDING
                evaluation.retry_count = 0
                evaluation.error_message = None
                evaluation.processing_started_at = None

        logger.info(f"Reset {len(failed)} failed evaluations for retry")
        return len(failed)

    def _seed_peer_review(self, submission_id: int, author_id: int):
        try:
            result = self.assignment_service.ensure_review_assignments(submission_id, author_id)
            self.assignment_service.record_assignment_attempt(submission_id, result)
        except Exception as e:
            logger.error(f"Failed to seed peer review for submission {submission_id}: {str(e)}")
