from typing import List
from sqlalchemy.exc import IntegrityError
from xpreview.database import get_db
from xpreview.models import User, Achievement, UserAchievement
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


def milestone_name(threshold: int) -> str:
    return f'{threshold} XP Milestone'


class AchievementService:
    """Awards XP milestone achievements"""

    def ensure_milestones(self, db) -> List[Achievement]:
        existing = {a.xp_threshold: a for a in db.query(Achievement).filter(Achievement.xp_threshold.isnot(None)).all()}

        for threshold in Config.XP_MILESTONES:
            if threshold not in existing:
                achievement = Achievement(
                    name=milestone_name(threshold),
                    description=f'Earned {threshold:,} total XP',
                    xp_threshold=threshold
                )
                db.add(achievement)
                existing[threshold] = achievement
        db.flush()

        return sorted(existing.values(), key=lambda a: a.xp_threshold)

    def check_xp_milestones(self, user_id: int) -> List[str]:
        """Grant every milestone the user's total XP has reached; returns names newly awarded"""
        awarded = []

        with get_db() as db:
            user = db.query(User).filter_by(id=user_id).first()
            if not user:
                raise ValueError(f"User {user_id} not found")

            earned = {
                row.achievement_id for row in db.query(UserAchievement.achievement_id).filter_by(user_id=user_id).all()
            }

            for achievement in self.ensure_milestones(db):
                if achievement.xp_threshold > (user.total_xp or 0) or achievement.id in earned:
                    continue
                try:
                    with db.begin_nested():
                        db.add(UserAchievement(user_id=user_id, achievement_id=achievement.id))
                        db.flush()
                    awarded.append(achievement.name)
                except IntegrityError:
                    # Awarded concurrently
                    continue

        if awarded:
            logger.info(f"User {user_id} earned achievements: {', '.join(awarded)}")

        return awarded
