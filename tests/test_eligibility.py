import pytest
from datetime import datetime, timedelta
from xpreview.database import DatabaseManager, get_db
from xpreview.models import Submission, ReviewAssignment
from xpreview.models.user import UserRole
from xpreview.models.assignment import AssignmentStatus
from xpreview.services.eligibility_service import (
    EligibilityService, ReviewerCandidate, ReviewerPreferences,
    parse_reviewer_preferences, rank_candidates, filter_candidates
)

NOW = datetime(2025, 3, 12, 12, 0, 0)


def candidate(id, active=0, total_xp=100, **kwargs):
    kwargs.setdefault('role', UserRole.REVIEWER)
    return ReviewerCandidate(id=id, email=f'r{id}@test.com', total_xp=total_xp,
                             active_assignments=active, **kwargs)


class TestReviewerPreferences:
    """Opt-out parsing"""

    def test_missing_preferences_are_not_opted_out(self):
        assert parse_reviewer_preferences(None).is_opted_out(NOW) is False
        assert parse_reviewer_preferences({}).is_opted_out(NOW) is False

    def test_explicit_flag(self):
        prefs = parse_reviewer_preferences({'reviewerOptOut': True})
        assert prefs.opted_out is True
        assert prefs.is_opted_out(NOW) is True

    def test_truthy_non_boolean_flag_is_ignored(self):
        assert parse_reviewer_preferences({'reviewerOptOut': 'yes'}).opted_out is False

    def test_future_window_opts_out(self):
        until = (NOW + timedelta(days=3)).isoformat()
        assert parse_reviewer_preferences({'reviewerOptOutUntil': until}).is_opted_out(NOW) is True

    def test_expired_window_does_not_opt_out(self):
        until = (NOW - timedelta(days=1)).isoformat()
        assert parse_reviewer_preferences({'reviewerOptOutUntil': until}).is_opted_out(NOW) is False

    def test_utc_suffix_is_understood(self):
        prefs = parse_reviewer_preferences({'reviewerOptOutUntil': '2025-03-20T00:00:00Z'})
        assert prefs.opted_out_until == datetime(2025, 3, 20)

    def test_json_string_is_parsed(self):
        prefs = parse_reviewer_preferences('{"reviewerOptOut": true}')
        assert prefs.opted_out is True

    def test_malformed_json_fails_open(self, caplog):
        prefs = parse_reviewer_preferences('{reviewerOptOut: tru')
        assert prefs == ReviewerPreferences()
        assert 'Failed to parse reviewer preferences' in caplog.text

    def test_unparseable_date_is_ignored(self):
        prefs = parse_reviewer_preferences({'reviewerOptOutUntil': 'next tuesday'})
        assert prefs.opted_out_until is None
        assert prefs.is_opted_out(NOW) is False


class TestRanking:
    """Workload-balanced ordering"""

    def test_rank_by_workload_then_xp(self):
        pool = [
            candidate(4, active=2, total_xp=100),
            candidate(3, active=1, total_xp=500),
            candidate(5, active=2, total_xp=90),
            candidate(1, active=0, total_xp=200),
            candidate(2, active=0, total_xp=150),
        ]
        assert [c.id for c in rank_candidates(pool)] == [1, 2, 3, 4, 5]

    def test_ties_broken_by_id(self):
        pool = [candidate(9, total_xp=100), candidate(3, total_xp=100), candidate(6, total_xp=100)]
        assert [c.id for c in rank_candidates(pool)] == [3, 6, 9]

    def test_rank_does_not_mutate_input(self):
        pool = [candidate(2, active=1), candidate(1)]
        rank_candidates(pool)
        assert [c.id for c in pool] == [2, 1]


class TestFilterCandidates:
    """Eligibility rules"""

    def test_excludes_author_and_excluded_ids(self):
        pool = [candidate(1), candidate(2), candidate(3)]
        result = filter_candidates(pool, author_id=1, exclude_ids=[3], now=NOW)
        assert [c.id for c in result] == [2]

    def test_excludes_overloaded_reviewers(self):
        pool = [candidate(1, active=5), candidate(2, active=4)]
        assert [c.id for c in filter_candidates(pool, author_id=99, now=NOW)] == [2]

    def test_custom_workload_cap(self):
        pool = [candidate(1, active=2), candidate(2, active=1)]
        result = filter_candidates(pool, author_id=99, max_active_assignments=2, now=NOW)
        assert [c.id for c in result] == [2]

    def test_excludes_reviewers_with_too_many_misses(self):
        pool = [candidate(1, missed_reviews=4), candidate(2, missed_reviews=3)]
        assert [c.id for c in filter_candidates(pool, author_id=99, now=NOW)] == [2]

    def test_minimum_experience_except_admins(self):
        pool = [
            candidate(1, total_xp=49),
            candidate(2, total_xp=10, role=UserRole.ADMIN),
            candidate(3, total_xp=50),
        ]
        assert [c.id for c in filter_candidates(pool, author_id=99, now=NOW)] == [3, 2]

    def test_excludes_opted_out_and_paused(self):
        pool = [
            candidate(1, preferences=ReviewerPreferences(opted_out=True)),
            candidate(2, preferences=ReviewerPreferences(opted_out_until=NOW + timedelta(hours=1))),
            candidate(3, paused_until=NOW + timedelta(days=2)),
            candidate(4, paused_permanently=True),
            candidate(5, paused_until=NOW - timedelta(days=1)),
        ]
        assert [c.id for c in filter_candidates(pool, author_id=99, now=NOW)] == [5]


@pytest.fixture
def eligibility_data(make_user):
    author = make_user(role=UserRole.USER, total_xp=0)
    busy = make_user(total_xp=300)
    idle = make_user(total_xp=80)
    plain_user = make_user(role=UserRole.USER, total_xp=1000)
    opted_out = make_user(total_xp=500, preferences='not json at all')

    submission_db = DatabaseManager(Submission)
    assignment_db = DatabaseManager(ReviewAssignment)
    submissions = [
        submission_db.create(user_id=author.id, url=f'https://x.com/a/status/{i}', week_number=11)
        for i in range(2)
    ]
    for submission in submissions:
        assignment_db.create(
            submission_id=submission.id,
            reviewer_id=busy.id,
            status=AssignmentStatus.PENDING,
            assigned_at=NOW,
            deadline=NOW + timedelta(days=3)
        )
    # Completed work does not count toward the load
    assignment_db.create(
        submission_id=submissions[0].id,
        reviewer_id=idle.id,
        status=AssignmentStatus.COMPLETED,
        assigned_at=NOW,
        deadline=NOW + timedelta(days=3)
    )

    return {
        'author': author,
        'busy': busy,
        'idle': idle,
        'plain_user': plain_user,
        'opted_out': opted_out
    }


class TestEligibilityService:
    """Candidate pool built from the database"""

    def test_pool_counts_active_assignments(self, eligibility_data):
        service = EligibilityService()

        with get_db() as db:
            pool = {c.id: c for c in service.load_candidate_pool(db)}

        assert eligibility_data['plain_user'].id not in pool
        assert pool[eligibility_data['busy'].id].active_assignments == 2
        assert pool[eligibility_data['idle'].id].active_assignments == 0

    def test_available_reviewers_ranked(self, eligibility_data):
        service = EligibilityService()
        reviewers = service.get_available_reviewers(eligibility_data['author'].id, now=NOW)

        # Malformed preferences fail open, so the 500 XP reviewer ranks first
        assert [r.id for r in reviewers] == [
            eligibility_data['opted_out'].id,
            eligibility_data['idle'].id,
            eligibility_data['busy'].id
        ]

    def test_can_assign_reviewer_reasons(self, eligibility_data):
        service = EligibilityService()
        author_id = eligibility_data['author'].id

        assert service.can_assign_reviewer(author_id, author_id) == (False, 'Cannot review own submission')
        assert service.can_assign_reviewer(9999, author_id) == (False, 'Reviewer not found')
        assert service.can_assign_reviewer(eligibility_data['plain_user'].id, author_id) == (
            False, 'User does not have reviewer privileges'
        )
        assert service.can_assign_reviewer(eligibility_data['idle'].id, author_id) == (True, None)

        can_assign, reason = service.can_assign_reviewer(
            eligibility_data['busy'].id, author_id, max_active_assignments=2
        )
        assert can_assign is False
        assert reason == 'Reviewer has too many active assignments'
