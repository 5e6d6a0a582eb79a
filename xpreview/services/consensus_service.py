import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from xpreview.database import get_db
from xpreview.models import Submission, PeerReview
from xpreview.models.submission import SubmissionStatus
from xpreview.models.xp import XpTransactionType
from xpreview.services.xp_propagation_service import XpPropagationService, XpChangeResult
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


class ConflictType:
    SPAM_DISPUTE = 'spam_dispute'
    CATEGORY_MISMATCH = 'category_mismatch'
    TIER_DISPUTE = 'tier_dispute'
    OUTLIER = 'outlier'
    GENERAL = 'general'


@dataclass
class ScoreDispersion:
    scores: List[int] = field(default_factory=list)
    mean: float = 0.0
    std_dev: float = 0.0

    @property
    def count(self) -> int:
        return len(self.scores)


@dataclass
class ConsensusResult:
    submission_id: int
    std_dev: float
    mean: float
    scores: List[int]
    is_divergent: bool
    conflict_type: Optional[str] = None
    description: str = ''

    def to_dict(self) -> Dict:
        return {
            'submission_id': self.submission_id,
            'std_dev': round(self.std_dev, 2),
            'mean': round(self.mean, 2),
            'scores': self.scores,
            'is_divergent': self.is_divergent,
            'conflict_type': self.conflict_type,
            'description': self.description
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_dispersion(scores: Sequence[int]) -> ScoreDispersion:
    """Population standard deviation of review scores"""
    scores = list(scores)
    if not scores:
        return ScoreDispersion()
    mean = sum(scores) / len(scores)
    variance = sum((score - mean) ** 2 for score in scores) / len(scores)
    return ScoreDispersion(scores=scores, mean=mean, std_dev=math.sqrt(variance))


def _distinct_labels(labels) -> int:
    distinct = set()
    for label in labels or ():
        if not label:
            continue
        if isinstance(label, (list, tuple, set)):
            label = tuple(sorted(str(item) for item in label))
            if not label:
                continue
        distinct.add(label)
    return len(distinct)


def classify_conflict(scores: Sequence[int], categories=None, tiers=None,
                      spam_low_xp: int = None, spam_high_xp: int = None) -> str:
    """
    Name the kind of disagreement between reviewers, checked in priority order.
    Classification does not look at the divergence threshold.
    """
    spam_low = Config.SPAM_DISPUTE_LOW_XP if spam_low_xp is None else spam_low_xp
    spam_high = Config.SPAM_DISPUTE_HIGH_XP if spam_high_xp is None else spam_high_xp
    scores = list(scores)

    if scores and min(scores) <= spam_low and max(scores) >= spam_high:
        return ConflictType.SPAM_DISPUTE

    if _distinct_labels(categories) > 1:
        return ConflictType.CATEGORY_MISMATCH

    if _distinct_labels(tiers) > 1:
        return ConflictType.TIER_DISPUTE

    if scores:
        mean = sum(scores) / len(scores)
        if mean > 0:
            far = [score for score in scores if abs(score - mean) > mean * Config.OUTLIER_MEAN_RATIO]
            if len(far) == 1:
                return ConflictType.OUTLIER

    return ConflictType.GENERAL


def describe_conflict(conflict_type: str, dispersion: ScoreDispersion) -> str:
    low = min(dispersion.scores) if dispersion.scores else 0
    high = max(dispersion.scores) if dispersion.scores else 0
    if conflict_type == ConflictType.SPAM_DISPUTE:
        return f'Reviewers disagree on whether this is spam: scores range from {low} to {high} XP'
    if conflict_type == ConflictType.CATEGORY_MISMATCH:
        return 'Reviewers placed this submission in different content categories'
    if conflict_type == ConflictType.TIER_DISPUTE:
        return 'Reviewers assigned different quality tiers'
    if conflict_type == ConflictType.OUTLIER:
        return f'One reviewer scored far from the average of {dispersion.mean:.0f} XP'
    return f'Scores vary widely ({low}-{high} XP, standard deviation {dispersion.std_dev:.1f})'


def calculate_peer_xp(scores: Sequence[int]) -> Optional[int]:
    """Rounded mean of review scores, dropping z-score outliers when there are three or more"""
    scores = list(scores)
    if not scores:
        return None

    kept = scores
    if len(scores) >= 3:
        dispersion = calculate_dispersion(scores)
        if dispersion.std_dev > 0:
            kept = [
                score for score in scores
                if abs(score - dispersion.mean) / dispersion.std_dev <= Config.OUTLIER_Z_SCORE
            ] or scores

    return round_half_up(sum(kept) / len(kept))


class ConsensusService:
    """Detects reviewer disagreement and resolves disputed submissions"""

    def __init__(self, propagation_service: XpPropagationService = None):
        self.propagation_service = propagation_service or XpPropagationService()

    def get_score_dispersion(self, submission_id: int, db=None) -> ScoreDispersion:
        if db is None:
            with get_db() as session:
                return self.get_score_dispersion(submission_id, session)

        rows = db.query(PeerReview.xp_score).filter(
            PeerReview.submission_id == submission_id
        ).order_by(PeerReview.id).all()
        return calculate_dispersion([row.xp_score for row in rows])

    def detect(self, submission_id: int, threshold: float = None) -> Optional[ConsensusResult]:
        """Dispersion and conflict type for one submission; None when it has no reviews"""
        threshold = Config.DIVERGENCE_STDDEV_THRESHOLD if threshold is None else threshold

        with get_db() as db:
            reviews = db.query(PeerReview).filter(
                PeerReview.submission_id == submission_id
            ).order_by(PeerReview.id).all()

            if not reviews:
                return None

            return self._evaluate(submission_id, reviews, threshold)

    def get_divergent_cases(self, lookback_days: int = None, threshold: float = None,
                            limit: int = 50) -> List[Dict]:
        """Finalized submissions in the lookback window whose reviewers disagree"""
        lookback_days = lookback_days or Config.CONSENSUS_LOOKBACK_DAYS
        threshold = Config.DIVERGENCE_STDDEV_THRESHOLD if threshold is None else threshold
        cutoff = datetime.utcnow() - timedelta(days=lookback_days)

        with get_db() as db:
            rows = db.query(PeerReview, Submission).join(
                Submission, Submission.id == PeerReview.submission_id
            ).filter(
                Submission.status == SubmissionStatus.FINALIZED,
                Submission.created_at >= cutoff
            ).order_by(PeerReview.submission_id, PeerReview.id).all()

            reviews_by_submission = defaultdict(list)
            submissions = {}
            for review, submission in rows:
                reviews_by_submission[submission.id].append(review)
                submissions[submission.id] = submission

            cases = []
            for submission_id, reviews in reviews_by_submission.items():
                if len(reviews) < 2:
                    continue
                consensus = self._evaluate(submission_id, reviews, threshold)
                if not consensus.is_divergent:
                    continue

                submission = submissions[submission_id]
                case = consensus.to_dict()
                case.update({
                    'url': submission.url,
                    'platform': submission.platform,
                    'final_xp': submission.final_xp,
                    'review_count': len(reviews),
                    'divergent_scores': [min(consensus.scores), max(consensus.scores)]
                })
                cases.append(case)

        cases.sort(key=lambda case: case['std_dev'], reverse=True)
        return cases[:limit]

    def resolve_dispute(self, submission_id: int, resolved_xp: int, reason: str, actor_id,
                        confirmed: bool = False) -> XpChangeResult:
        """Settle a disputed submission at resolved_xp as a consensus adjustment"""
        logger.info(f"Resolving consensus dispute for submission {submission_id} at {resolved_xp} XP")
        return self.propagation_service.modify_submission_xp(
            submission_id,
            resolved_xp,
            reason,
            actor_id,
            confirmed=confirmed,
            tx_type=XpTransactionType.CONSENSUS_ADJUSTMENT,
            action='CONSENSUS_RESOLUTION'
        )

    @staticmethod
    def _evaluate(submission_id: int, reviews: List[PeerReview], threshold: float) -> ConsensusResult:
        dispersion = calculate_dispersion([review.xp_score for review in reviews])
        is_divergent = dispersion.std_dev > threshold

        conflict_type = None
        description = 'Reviewers are in agreement'
        if is_divergent:
            conflict_type = classify_conflict(
                dispersion.scores,
                [review.content_category for review in reviews],
                [review.quality_tier for review in reviews]
            )
            description = describe_conflict(conflict_type, dispersion)

        return ConsensusResult(
            submission_id=submission_id,
            std_dev=dispersion.std_dev,
            mean=dispersion.mean,
            scores=dispersion.scores,
            is_divergent=is_divergent,
            conflict_type=conflict_type,
            description=description
        )
