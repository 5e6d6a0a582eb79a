import os

# Settings are read at import time
os.environ['DATABASE_URL'] = 'sqlite:///test_xpreview.db'
os.environ['FLASK_ENV'] = 'testing'
os.environ['LOG_FILE'] = ''
os.environ['REVIEWER_MINIMUM_REQUIRED'] = '3'
os.environ.pop('SENDGRID_API_KEY', None)
os.environ.pop('OPENROUTER_API_KEY', None)

import pytest
from xpreview.database import init_db, drop_db, DatabaseManager
from xpreview.models import User
from xpreview.models.user import UserRole
from xpreview.services.leaderboard_service import LeaderboardService


@pytest.fixture
def database():
    """Fresh schema per test"""
    init_db()
    LeaderboardService.clear_cache()
    yield
    drop_db()


@pytest.fixture
def make_user(database):
    """Factory for users with reviewer-relevant defaults"""
    user_db = DatabaseManager(User)
    counter = {'n': 0}

    def _make_user(role=UserRole.REVIEWER, total_xp=100, **kwargs):
        counter['n'] += 1
        kwargs.setdefault('email', f"user{counter['n']}@test.com")
        kwargs.setdefault('username', f"user{counter['n']}")
        kwargs.setdefault('current_week_xp', total_xp)
        return user_db.create(role=role, total_xp=total_xp, **kwargs)

    return _make_user
