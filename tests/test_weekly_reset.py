import pytest
from datetime import datetime
from unittest.mock import Mock, patch
from xpreview.database import DatabaseManager, get_db
from xpreview.models import User, WeeklyStats
from xpreview.services.weekly_reset_service import WeeklyResetService
from xpreview.scheduler import start_scheduler
from xpreview.utils.dates import get_week_number, get_week_year

MONDAY = datetime(2025, 3, 17, 0, 5)
PREVIOUS_WEEK_START = datetime(2025, 3, 10)


@pytest.fixture
def leaderboard():
    return Mock()


@pytest.fixture
def reset_service(leaderboard):
    return WeeklyResetService(leaderboard_service=leaderboard)


class TestIsoWeeks:
    """Week keys around the new year"""

    def test_week_belongs_to_next_year(self):
        assert get_week_number(datetime(2024, 12, 30)) == 1
        assert get_week_year(datetime(2024, 12, 30)) == 2025

    def test_week_belongs_to_previous_year(self):
        assert get_week_number(datetime(2027, 1, 1)) == 53
        assert get_week_year(datetime(2027, 1, 1)) == 2026


class TestWeeklyReset:
    """Closing out the previous week"""

    def test_counter_snapshotted_and_zeroed(self, make_user, reset_service, leaderboard):
        user = make_user(total_xp=500, current_week_xp=120, week_xp_reset_at=PREVIOUS_WEEK_START)

        result = reset_service.process_weekly_reset(MONDAY)

        assert result == {
            'week_year': 2025,
            'week_number': 11,
            'users_reset': 1,
            'snapshots_created': 1,
            'errors': []
        }
        updated = DatabaseManager(User).get(user.id)
        assert updated.current_week_xp == 0
        assert updated.total_xp == 500
        assert updated.week_xp_reset_at == datetime(2025, 3, 17)

        stats = DatabaseManager(WeeklyStats).get_by(user_id=user.id, week_year=2025, week_number=11)
        assert stats.xp_total == 120
        leaderboard.refresh_weekly_leaderboard.assert_called_once_with(11, 2025)

    def test_existing_week_row_kept(self, make_user, reset_service):
        user = make_user(current_week_xp=120, week_xp_reset_at=PREVIOUS_WEEK_START)
        DatabaseManager(WeeklyStats).create(
            user_id=user.id, week_year=2025, week_number=11, xp_total=40, reviews_done=2, reviews_missed=0
        )

        result = reset_service.process_weekly_reset(MONDAY)

        assert result['users_reset'] == 1
        assert result['snapshots_created'] == 0
        assert DatabaseManager(WeeklyStats).get_by(user_id=user.id, week_number=11).xp_total == 40
        assert DatabaseManager(User).get(user.id).current_week_xp == 0

    def test_idle_user_gets_no_snapshot(self, make_user, reset_service):
        user = make_user(total_xp=80, current_week_xp=0, week_xp_reset_at=PREVIOUS_WEEK_START)

        result = reset_service.process_weekly_reset(MONDAY)

        assert result['users_reset'] == 1
        assert result['snapshots_created'] == 0
        assert DatabaseManager(WeeklyStats).count(user_id=user.id) == 0

    def test_second_run_same_week_is_noop(self, make_user, reset_service):
        user = make_user(current_week_xp=120, week_xp_reset_at=PREVIOUS_WEEK_START)
        reset_service.process_weekly_reset(MONDAY)
        with get_db() as db:
            db.query(User).filter_by(id=user.id).update({'current_week_xp': 30})

        result = reset_service.process_weekly_reset(datetime(2025, 3, 19, 12, 0))

        assert result['users_reset'] == 0
        assert DatabaseManager(User).get(user.id).current_week_xp == 30
        assert DatabaseManager(WeeklyStats).count(user_id=user.id) == 1

    def test_users_created_this_week_skipped(self, make_user, reset_service, leaderboard):
        user = make_user(current_week_xp=50)

        result = reset_service.process_weekly_reset()

        assert result['users_reset'] == 0
        assert DatabaseManager(User).get(user.id).current_week_xp == 50
        leaderboard.refresh_weekly_leaderboard.assert_not_called()

    def test_year_boundary(self, make_user, reset_service):
        user = make_user(current_week_xp=70, week_xp_reset_at=datetime(2025, 12, 22))

        result = reset_service.process_weekly_reset(datetime(2025, 12, 29, 0, 5))

        assert (result['week_year'], result['week_number']) == (2025, 52)
        assert DatabaseManager(WeeklyStats).get_by(user_id=user.id, week_year=2025, week_number=52).xp_total == 70

    def test_one_failure_does_not_stop_the_rest(self, make_user, reset_service):
        first = make_user(current_week_xp=10, week_xp_reset_at=PREVIOUS_WEEK_START)
        make_user(current_week_xp=20, week_xp_reset_at=PREVIOUS_WEEK_START)

        with patch.object(WeeklyResetService, 'reset_user', side_effect=[Exception('row locked'), True]):
            result = reset_service.process_weekly_reset(MONDAY)

        assert result['users_reset'] == 1
        assert result['errors'] == [f'User {first.id}: row locked']

    def test_leaderboard_failure_ignored(self, make_user, reset_service, leaderboard):
        make_user(current_week_xp=10, week_xp_reset_at=PREVIOUS_WEEK_START)
        leaderboard.refresh_weekly_leaderboard.side_effect = Exception('cache offline')

        result = reset_service.process_weekly_reset(MONDAY)

        assert result['users_reset'] == 1
        assert result['errors'] == []


class TestScheduler:
    """Background job registration"""

    def test_weekly_reset_job_registered(self):
        with patch('xpreview.scheduler.BackgroundScheduler') as scheduler_class:
            scheduler = start_scheduler(queue=Mock(), monitor=Mock(), reset_service=Mock())

        jobs = {call.kwargs['id']: call for call in scheduler.add_job.call_args_list}
        assert set(jobs) == {'ai_evaluation_queue', 'deadline_monitor', 'weekly_reset'}
        weekly = jobs['weekly_reset']
        assert weekly.args[1] == 'cron'
        assert weekly.kwargs['day_of_week'] == 'mon'
        scheduler_class.return_value.start.assert_called_once()
