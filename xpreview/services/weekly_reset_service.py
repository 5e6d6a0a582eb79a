"""
Weekly XP reset.

User.current_week_xp only covers the ISO week in progress. When a new week
starts, each user's closing value is kept as the previous week's WeeklyStats
row (if the ledger never wrote one) and the counter returns to zero. Users
already reset since the week began are skipped, so the job can run as often
as the scheduler likes.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional
from sqlalchemy import or_
from xpreview.database import get_db
from xpreview.models import User, WeeklyStats
from xpreview.services.xp_ledger import lock_user
from xpreview.services.leaderboard_service import LeaderboardService
from xpreview.utils.dates import get_week_number, get_week_year, get_week_start
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


class WeeklyResetService:
    """Closes out the previous week's XP counters"""

    def __init__(self, leaderboard_service: LeaderboardService = None):
        self.leaderboard_service = leaderboard_service or LeaderboardService()

    def process_weekly_reset(self, now: datetime = None) -> Dict:
        now = now or datetime.utcnow()
        week_start = get_week_start(now)
        previous_day = week_start - timedelta(days=1)
        previous_week = get_week_number(previous_day)
        previous_year = get_week_year(previous_day)

        result = {
            'week_year': previous_year,
            'week_number': previous_week,
            'users_reset': 0,
            'snapshots_created': 0,
            'errors': []
        }

        with get_db() as db:
            user_ids = [
                row.id for row in db.query(User.id).filter(
                    or_(User.week_xp_reset_at.is_(None), User.week_xp_reset_at < week_start)
                ).order_by(User.id).all()
            ]

        for user_id in user_ids:
            try:
                snapshot = self.reset_user(user_id, week_start, previous_week, previous_year)
            except Exception as e:
                logger.error(f"Weekly reset failed for user {user_id}: {str(e)}")
                result['errors'].append(f'User {user_id}: {str(e)}')
                continue

            if snapshot is None:
                continue
            result['users_reset'] += 1
            if snapshot:
                result['snapshots_created'] += 1

        if result['users_reset']:
            try:
                self.leaderboard_service.refresh_weekly_leaderboard(previous_week, previous_year)
            except Exception as e:
                logger.warning(f"Leaderboard refresh after weekly reset failed: {str(e)}")

        logger.info(
            f"Weekly reset for {previous_year}-W{previous_week:02d}: {result['users_reset']} users reset, "
            f"{result['snapshots_created']} snapshots, {len(result['errors'])} errors"
        )
        return result

    def reset_user(self, user_id: int, week_start: datetime, previous_week: int,
                   previous_year: int) -> Optional[bool]:
        """
        Zero one user's weekly counter.
        Returns None if the user was already reset this week, otherwise
        whether a snapshot row had to be written for the previous week.
        """
        with get_db() as db:
            user = lock_user(db, user_id)
            if not user or (user.week_xp_reset_at and user.week_xp_reset_at >= week_start):
                return None

            snapshot = False
            stats = db.query(WeeklyStats).filter_by(
                user_id=user.id,
                week_year=previous_year,
                week_number=previous_week
            ).first()
            if not stats and user.current_week_xp:
                db.add(WeeklyStats(
                    user_id=user.id,
                    week_year=previous_year,
                    week_number=previous_week,
                    xp_total=max(0, user.current_week_xp),
                    reviews_done=0,
                    reviews_missed=0
                ))
                snapshot = True

            user.current_week_xp = 0
            user.week_xp_reset_at = week_start

        return snapshot
