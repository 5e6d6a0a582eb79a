import pytest
from datetime import datetime, timedelta
from unittest.mock import Mock
from xpreview.database import DatabaseManager, get_db
from xpreview.models import Submission, ReviewAssignment, AdminAction
from xpreview.models.user import UserRole
from xpreview.models.assignment import AssignmentStatus
from xpreview.models.submission import SubmissionStatus
from xpreview.services.eligibility_service import ReviewerCandidate
from xpreview.services.reviewer_pool_service import (
    ReviewerPoolService, ReviewerPoolOptions, AssignmentResult, calculate_review_deadline
)
from xpreview.utils.dates import skip_weekend

WEDNESDAY_NOON = datetime(2025, 3, 12, 12, 0, 0)


def add_assignment(submission_id, reviewer_id, status=AssignmentStatus.PENDING, now=WEDNESDAY_NOON):
    return DatabaseManager(ReviewAssignment).create(
        submission_id=submission_id,
        reviewer_id=reviewer_id,
        status=status,
        assigned_at=now,
        deadline=now + timedelta(hours=72)
    )


@pytest.fixture
def author(make_user):
    return make_user(role=UserRole.USER, total_xp=0)


@pytest.fixture
def submission(author):
    return DatabaseManager(Submission).create(
        user_id=author.id,
        url='https://x.com/author/status/1',
        platform='Twitter',
        status=SubmissionStatus.AI_REVIEWED,
        week_number=11
    )


@pytest.fixture
def pool_service():
    return ReviewerPoolService(notification_service=Mock())


class TestReviewDeadline:
    """Review window and weekend handling"""

    def test_weekday_deadline_unchanged(self):
        monday = datetime(2025, 3, 10, 9, 30)
        assert calculate_review_deadline(monday) == datetime(2025, 3, 13, 9, 30)

    def test_saturday_deadline_moves_to_monday(self):
        assert calculate_review_deadline(WEDNESDAY_NOON) == datetime(2025, 3, 17, 12, 0)

    def test_sunday_deadline_moves_to_monday(self):
        thursday = datetime(2025, 3, 13, 8, 15)
        assert calculate_review_deadline(thursday) == datetime(2025, 3, 17, 8, 15)

    def test_skip_weekend_never_returns_weekend(self):
        start = datetime(2025, 3, 10, 18, 0)
        for offset in range(14):
            assert skip_weekend(start + timedelta(days=offset)).weekday() < 5


class TestAssignReviewers:
    """Automatic reviewer selection"""

    def test_selects_least_busy_then_most_experienced(self, make_user, author, submission, pool_service):
        r1 = make_user(total_xp=200)
        r2 = make_user(total_xp=150)
        r3 = make_user(total_xp=500)
        r4 = make_user(total_xp=100)
        r5 = make_user(total_xp=90)

        # Existing workload on other submissions
        other_db = DatabaseManager(Submission)
        others = [
            other_db.create(user_id=author.id, url=f'https://x.com/author/status/{n}', week_number=11)
            for n in range(10, 12)
        ]
        add_assignment(others[0].id, r3.id)
        add_assignment(others[0].id, r4.id)
        add_assignment(others[1].id, r4.id)
        add_assignment(others[0].id, r5.id)
        add_assignment(others[1].id, r5.id, status=AssignmentStatus.IN_PROGRESS)

        result = pool_service.assign_reviewers(
            submission.id, author.id, ReviewerPoolOptions(minimum_reviewers=3), now=WEDNESDAY_NOON
        )

        assert result.success is True
        assert result.assigned_reviewer_ids == [r1.id, r2.id, r3.id]
        assert result.total_assignments == 3
        assert result.deadline == datetime(2025, 3, 17, 12, 0)

        updated = DatabaseManager(Submission).get(submission.id)
        assert updated.status == SubmissionStatus.UNDER_PEER_REVIEW
        assert updated.review_count == 3
        assert updated.review_deadline == result.deadline

    def test_insufficient_pool_writes_nothing(self, make_user, author, submission, pool_service):
        make_user(total_xp=200)
        make_user(total_xp=150)

        result = pool_service.assign_reviewers(
            submission.id, author.id,
            ReviewerPoolOptions(minimum_reviewers=3, allow_partial_assignment=False),
            now=WEDNESDAY_NOON
        )

        assert result.success is False
        assert result.errors == ['Insufficient reviewers available. Found 2, need 3']
        assert result.assigned_reviewers == []
        assert DatabaseManager(ReviewAssignment).count(submission_id=submission.id) == 0
        assert DatabaseManager(Submission).get(submission.id).status == SubmissionStatus.AI_REVIEWED

    def test_partial_assignment_warns(self, make_user, author, submission, pool_service):
        make_user(total_xp=200)
        make_user(total_xp=150)

        result = pool_service.assign_reviewers(
            submission.id, author.id,
            ReviewerPoolOptions(minimum_reviewers=3, allow_partial_assignment=True),
            now=WEDNESDAY_NOON
        )

        assert result.success is True
        assert len(result.assigned_reviewers) == 2
        assert result.warnings == ['Insufficient reviewers available. Assigning 2 of 3 requested']

    def test_empty_pool(self, author, submission, pool_service):
        result = pool_service.assign_reviewers(
            submission.id, author.id, ReviewerPoolOptions(minimum_reviewers=3), now=WEDNESDAY_NOON
        )

        assert result.success is False
        assert result.errors == ['No eligible reviewers available. Need at least 3']

    def test_requested_count_capped(self, make_user, author, submission, pool_service):
        for xp in range(8):
            make_user(total_xp=300 + xp)

        result = pool_service.assign_reviewers(
            submission.id, author.id,
            ReviewerPoolOptions(minimum_reviewers=50, allow_partial_assignment=True),
            now=WEDNESDAY_NOON
        )

        assert ReviewerPoolOptions(minimum_reviewers=50).target_count == 5
        assert len(result.assigned_reviewers) == 5
        assert DatabaseManager(ReviewAssignment).count(submission_id=submission.id) == 5

    def test_author_never_reviews_own_submission(self, make_user, pool_service):
        reviewer_author = make_user(total_xp=1000)
        other = make_user(total_xp=60)
        own = DatabaseManager(Submission).create(
            user_id=reviewer_author.id, url='https://reddit.com/r/x/1', week_number=11
        )

        result = pool_service.assign_reviewers(
            own.id, reviewer_author.id,
            ReviewerPoolOptions(minimum_reviewers=2, allow_partial_assignment=True),
            now=WEDNESDAY_NOON
        )

        assert result.assigned_reviewer_ids == [other.id]
        assert DatabaseManager(ReviewAssignment).count(reviewer_id=reviewer_author.id) == 0

    def test_excluded_reviewers_skipped(self, make_user, author, submission, pool_service):
        r1 = make_user(total_xp=300)
        r2 = make_user(total_xp=200)

        result = pool_service.assign_reviewers(
            submission.id, author.id,
            ReviewerPoolOptions(minimum_reviewers=1, exclude_reviewer_ids=[r1.id]),
            now=WEDNESDAY_NOON
        )

        assert result.assigned_reviewer_ids == [r2.id]

    def test_missing_submission(self, database, pool_service):
        result = pool_service.assign_reviewers(9999, 1, ReviewerPoolOptions(minimum_reviewers=1))
        assert result.success is False
        assert result.errors == ['Submission not found']


class TestCreateAssignments:
    """Duplicate protection on the live assignment index"""

    def test_duplicate_insert_becomes_warning(self, make_user, submission):
        reviewer = make_user(total_xp=200)
        add_assignment(submission.id, reviewer.id)
        candidate = ReviewerCandidate(id=reviewer.id, email=reviewer.email, role=reviewer.role, total_xp=200)

        result = AssignmentResult()
        with get_db() as db:
            loaded = db.query(Submission).filter_by(id=submission.id).first()
            created = ReviewerPoolService()._create_assignments(
                db, loaded, [candidate], WEDNESDAY_NOON, WEDNESDAY_NOON, result
            )

        assert created == []
        assert result.warnings == [f'Reviewer {reviewer.id} is already assigned to this submission']
        assert DatabaseManager(ReviewAssignment).count(submission_id=submission.id) == 1

    def test_reassigned_row_does_not_block(self, make_user, submission):
        reviewer = make_user(total_xp=200)
        add_assignment(submission.id, reviewer.id, status=AssignmentStatus.REASSIGNED)
        candidate = ReviewerCandidate(id=reviewer.id, email=reviewer.email, role=reviewer.role, total_xp=200)

        result = AssignmentResult()
        with get_db() as db:
            loaded = db.query(Submission).filter_by(id=submission.id).first()
            created = ReviewerPoolService()._create_assignments(
                db, loaded, [candidate], WEDNESDAY_NOON, WEDNESDAY_NOON, result
            )

        assert [c.id for c in created] == [reviewer.id]
        assert result.warnings == []


class TestManualAssign:
    """Admin-selected reviewers"""

    def test_invalid_reviewers_itemized(self, make_user, author, submission, pool_service):
        plain = make_user(role=UserRole.USER, total_xp=500)
        novice = make_user(total_xp=10)

        result = pool_service.manual_assign(submission.id, [author.id, plain.id, novice.id, 9999], actor_id=1)

        assert result['success'] is False
        assert result['invalid_reviewers'] == [
            {'reviewer_id': author.id, 'reason': 'Cannot review own submission'},
            {'reviewer_id': plain.id, 'reason': 'User does not have reviewer privileges'},
            {'reviewer_id': novice.id, 'reason': 'Insufficient experience (minimum 50 XP required)'},
            {'reviewer_id': 9999, 'reason': 'Reviewer not found'},
        ]
        assert DatabaseManager(ReviewAssignment).count(submission_id=submission.id) == 0

    def test_too_many_reviewers(self, submission, pool_service):
        result = pool_service.manual_assign(submission.id, [1, 2, 3, 4, 5, 6], actor_id=1)
        assert result['success'] is False
        assert result['errors'] == ['Must assign between 1 and 5 reviewers']

    def test_assigns_and_audits(self, make_user, submission, pool_service):
        admin = make_user(role=UserRole.ADMIN, total_xp=0)
        existing = make_user(total_xp=200)
        fresh = make_user(total_xp=80)
        add_assignment(submission.id, existing.id)

        result = pool_service.manual_assign(submission.id, [existing.id, fresh.id, fresh.id], actor_id=admin.id)

        assert result['success'] is True
        assert result['assigned_reviewer_ids'] == [fresh.id]
        assert result['skipped_reviewers'] == 1
        assert result['total_assignments'] == 2

        audit = DatabaseManager(AdminAction).get_by(action='MANUAL_REVIEWER_ASSIGNMENT')
        assert audit.admin_id == str(admin.id)
        assert audit.details['reviewerIds'] == [fresh.id]
        assert audit.details['skippedReviewerIds'] == [existing.id]
        pool_service.notification_service.notify_review_assigned.assert_called_once()

    def test_all_already_assigned(self, make_user, submission, pool_service):
        reviewer = make_user(total_xp=200)
        add_assignment(submission.id, reviewer.id)

        result = pool_service.manual_assign(submission.id, [reviewer.id], actor_id=1)

        assert result == {'success': False, 'errors': ['All selected reviewers are already assigned']}

    def test_finalized_submission_rejected(self, make_user, author, pool_service):
        reviewer = make_user(total_xp=200)
        done = DatabaseManager(Submission).create(
            user_id=author.id, url='https://medium.com/p/1', week_number=11,
            status=SubmissionStatus.FINALIZED, final_xp=100
        )

        result = pool_service.manual_assign(done.id, [reviewer.id], actor_id=1)

        assert result['errors'] == ['Submission has already been finalized']


class TestReviewerWorkload:
    """Workload summary"""

    def test_counts_active_and_missed(self, make_user, submission, pool_service):
        reviewer = make_user(total_xp=200, missed_reviews=2)
        add_assignment(submission.id, reviewer.id)

        workload = pool_service.get_reviewer_workload(reviewer.id)

        assert workload['active_assignments'] == 1
        assert workload['completed_this_week'] == 0
        assert workload['missed_reviews'] == 2
