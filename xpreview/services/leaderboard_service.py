import threading
from datetime import datetime
from typing import Dict, List, Tuple
from xpreview.database import get_db
from xpreview.models import User, WeeklyStats
from config.config import Config
from xpreview.utils.dates import get_week_number, get_week_year
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


class LeaderboardService:
    """Weekly XP leaderboard, cached in process and rebuilt after XP changes"""

    _cache: Dict[Tuple[int, int], Dict] = {}
    _lock = threading.Lock()

    def refresh_weekly_leaderboard(self, week_number: int = None, week_year: int = None) -> List[Dict]:
        """Rebuild the cached ranking for a week from WeeklyStats"""
        week_number = week_number or get_week_number()
        week_year = week_year or get_week_year()

        with get_db() as db:
            rows = db.query(WeeklyStats, User).join(User, User.id == WeeklyStats.user_id).filter(
                WeeklyStats.week_year == week_year,
                WeeklyStats.week_number == week_number,
                WeeklyStats.xp_total > 0
            ).order_by(WeeklyStats.xp_total.desc(), User.id).limit(Config.LEADERBOARD_SIZE).all()

            entries = [
                {
                    'rank': position,
                    'user_id': user.id,
                    'username': user.display_name,
                    'weekly_xp': stats.xp_total,
                    'total_xp': user.total_xp,
                    'reviews_done': stats.reviews_done
                }
                for position, (stats, user) in enumerate(rows, start=1)
            ]

        with self._lock:
            self._cache[(week_year, week_number)] = {'entries': entries, 'refreshed_at': datetime.utcnow()}

        logger.info(f"Refreshed leaderboard for week {week_year}-W{week_number:02d} with {len(entries)} entries")
        return entries

    def get_weekly_leaderboard(self, week_number: int = None, week_year: int = None) -> List[Dict]:
        week_number = week_number or get_week_number()
        week_year = week_year or get_week_year()
        with self._lock:
            cached = self._cache.get((week_year, week_number))
        if cached:
            return cached['entries']
        return self.refresh_weekly_leaderboard(week_number, week_year)

    @classmethod
    def clear_cache(cls):
        with cls._lock:
            cls._cache.clear()
