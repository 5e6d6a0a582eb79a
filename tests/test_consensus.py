import pytest
from datetime import datetime, timedelta
from unittest.mock import Mock
from xpreview.database import DatabaseManager
from xpreview.models import Submission, PeerReview
from xpreview.models.user import UserRole
from xpreview.models.submission import SubmissionStatus
from xpreview.models.xp import XpTransactionType
from xpreview.services.consensus_service import (
    ConsensusService, ConflictType, calculate_dispersion, calculate_peer_xp, classify_conflict, round_half_up
)


class TestDispersion:
    """Population statistics over review scores"""

    def test_empty(self):
        dispersion = calculate_dispersion([])
        assert dispersion.count == 0
        assert dispersion.std_dev == 0.0

    def test_values(self):
        dispersion = calculate_dispersion([10, 20, 30])
        assert dispersion.mean == 20
        assert dispersion.std_dev == pytest.approx(8.165, abs=0.001)

    def test_agreement_has_zero_spread(self):
        assert calculate_dispersion([75, 75, 75]).std_dev == 0.0

    def test_two_scores(self):
        assert calculate_dispersion([0, 180]).std_dev == pytest.approx(90.0)


class TestClassifyConflict:
    """Conflict categories in priority order"""

    def test_spam_dispute(self):
        assert classify_conflict([0, 180], ['meme', 'meme']) == ConflictType.SPAM_DISPUTE

    def test_spam_dispute_beats_category_mismatch(self):
        assert classify_conflict([0, 200], ['meme', 'thread']) == ConflictType.SPAM_DISPUTE

    def test_category_mismatch_without_divergence(self):
        # Classification runs even when the spread is below the divergence threshold
        assert calculate_dispersion([40, 40, 120]).std_dev < 50
        assert classify_conflict([40, 40, 120], ['thread', 'thread', 'article']) == ConflictType.CATEGORY_MISMATCH

    def test_category_lists(self):
        categories = [['thread', 'tutorial'], ['tutorial', 'thread']]
        assert classify_conflict([100, 110], categories) != ConflictType.CATEGORY_MISMATCH
        assert classify_conflict([100, 110], [['thread'], ['article']]) == ConflictType.CATEGORY_MISMATCH

    def test_missing_labels_are_ignored(self):
        assert classify_conflict([100, 105], [None, 'thread', '']) == ConflictType.GENERAL

    def test_tier_dispute(self):
        assert classify_conflict([100, 200], ['thread', 'thread'], ['high', 'low']) == ConflictType.TIER_DISPUTE

    def test_single_outlier(self):
        assert classify_conflict([100, 100, 100, 300]) == ConflictType.OUTLIER

    def test_two_far_scores_are_general(self):
        assert classify_conflict([50, 150, 250]) == ConflictType.GENERAL

    def test_spam_thresholds_configurable(self):
        assert classify_conflict([5, 100], spam_low_xp=10, spam_high_xp=100) == ConflictType.SPAM_DISPUTE
        assert classify_conflict([5, 100]) != ConflictType.SPAM_DISPUTE


class TestPeerXp:
    """Final XP from peer scores"""

    def test_no_scores(self):
        assert calculate_peer_xp([]) is None

    def test_mean_rounds_half_up(self):
        assert calculate_peer_xp([1, 2]) == 2
        assert round_half_up(2.5) == 3
        assert round_half_up(2.49) == 2

    def test_small_panel_keeps_every_score(self):
        assert calculate_peer_xp([100, 110, 120]) == 110

    def test_outlier_dropped_from_large_panel(self):
        assert calculate_peer_xp([100, 100, 100, 100, 100, 400]) == 100


@pytest.fixture
def author(make_user):
    return make_user(role=UserRole.USER, total_xp=0)


def finalized_submission(author, scores, categories=None, created_at=None, status=SubmissionStatus.FINALIZED):
    extra = {'created_at': created_at} if created_at else {}
    submission = DatabaseManager(Submission).create(
        user_id=author.id,
        url=f'https://x.com/author/status/{len(scores)}{sum(scores)}',
        platform='Twitter',
        status=status,
        week_number=11,
        final_xp=calculate_peer_xp(scores),
        **extra
    )
    review_db = DatabaseManager(PeerReview)
    for index, score in enumerate(scores):
        review_db.create(
            submission_id=submission.id,
            reviewer_id=author.id,
            xp_score=score,
            content_category=categories[index] if categories else None
        )
    return submission


class TestConsensusService:
    """Divergence detection against stored reviews"""

    def test_detect_divergent_submission(self, author):
        submission = finalized_submission(author, [0, 180], ['meme', 'meme'])

        consensus = ConsensusService(propagation_service=Mock()).detect(submission.id)

        assert consensus.is_divergent is True
        assert consensus.conflict_type == ConflictType.SPAM_DISPUTE
        assert consensus.std_dev == pytest.approx(90.0)
        assert consensus.to_dict()['scores'] == [0, 180]

    def test_detect_agreement(self, author):
        submission = finalized_submission(author, [40, 40, 120], ['thread', 'thread', 'article'])

        consensus = ConsensusService(propagation_service=Mock()).detect(submission.id)

        assert consensus.is_divergent is False
        assert consensus.conflict_type is None

    def test_detect_without_reviews(self, author):
        submission = finalized_submission(author, [])
        assert ConsensusService(propagation_service=Mock()).detect(submission.id) is None

    def test_divergent_cases(self, author):
        wide = finalized_submission(author, [0, 180])
        wider = finalized_submission(author, [0, 300, 10])
        finalized_submission(author, [100, 110])
        finalized_submission(author, [500])
        finalized_submission(author, [0, 250], status=SubmissionStatus.UNDER_PEER_REVIEW)
        finalized_submission(author, [0, 400], created_at=datetime.utcnow() - timedelta(days=200))

        cases = ConsensusService(propagation_service=Mock()).get_divergent_cases()

        assert [case['submission_id'] for case in cases] == [wider.id, wide.id]
        assert cases[0]['divergent_scores'] == [0, 300]
        assert cases[0]['review_count'] == 3
        assert cases[1]['url'] == wide.url

    def test_resolve_dispute_is_consensus_adjustment(self):
        propagation = Mock()
        service = ConsensusService(propagation_service=propagation)

        service.resolve_dispute(7, 120, 'Reviewers agreed after discussion', actor_id=1)

        propagation.modify_submission_xp.assert_called_once_with(
            7, 120, 'Reviewers agreed after discussion', 1,
            confirmed=False,
            tx_type=XpTransactionType.CONSENSUS_ADJUSTMENT,
            action='CONSENSUS_RESOLUTION'
        )
