"""
XP propagation.

A correction to a submission's final XP touches the submission, the author's
cached totals, the ledger, weekly stats and the audit log. Those writes share
one transaction. Leaderboard, achievements and notifications run afterwards
and only ever add warnings.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from xpreview.database import get_db
from xpreview.models import Submission
from xpreview.models.submission import TERMINAL_SUBMISSION_STATUSES
from xpreview.models.xp import XpTransactionType
from xpreview.services.xp_ledger import XpDelta, record_xp_transaction, lock_user
from xpreview.services.audit_service import record_admin_action
from xpreview.services.leaderboard_service import LeaderboardService
from xpreview.services.achievement_service import AchievementService
from xpreview.services.notification_service import NotificationService
from xpreview.utils.validators import validate_xp_modification
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class XpChangeResult:
    success: bool = False
    message: str = ''
    updated_entities: Dict[str, bool] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    delta: Optional[XpDelta] = None

    def to_dict(self) -> Dict:
        data = {
            'success': self.success,
            'message': self.message,
            'updated_entities': self.updated_entities,
            'errors': self.errors,
            'warnings': self.warnings
        }
        if self.delta:
            data['requested_delta'] = self.delta.requested_delta
            data['applied_delta'] = self.delta.applied_delta
        return data


class XpPropagationService:
    """Applies admin and consensus XP corrections to finalized submissions"""

    def __init__(self, leaderboard_service: LeaderboardService = None,
                 achievement_service: AchievementService = None,
                 notification_service: NotificationService = None):
        self.leaderboard_service = leaderboard_service or LeaderboardService()
        self.achievement_service = achievement_service or AchievementService()
        self.notification_service = notification_service or NotificationService()

    def modify_submission_xp(self, submission_id: int, new_xp: int, reason: str, actor_id,
                             confirmed: bool = False,
                             tx_type: XpTransactionType = XpTransactionType.ADMIN_ADJUSTMENT,
                             action: str = 'XP_OVERRIDE') -> XpChangeResult:
        """Validate an XP correction, then propagate it"""
        with get_db() as db:
            submission = db.query(Submission).filter_by(id=submission_id).first()
            if not submission:
                return XpChangeResult(message='Submission not found', errors=['Submission not found'])
            old_xp = submission.final_xp or 0

        valid, errors = validate_xp_modification(old_xp, new_xp, reason, confirmed)
        if not valid:
            logger.warning(f"Rejected XP change for submission {submission_id}: {'; '.join(errors)}")
            return XpChangeResult(message='Validation failed', errors=errors)

        return self.propagate_xp_changes(submission_id, old_xp, new_xp, reason, actor_id, tx_type, action,
                                         confirmed=confirmed)

    def propagate_xp_changes(self, submission_id: int, old_xp: int, new_xp: int, reason: str, actor_id,
                             tx_type: XpTransactionType = XpTransactionType.ADMIN_ADJUSTMENT,
                             action: str = 'XP_OVERRIDE', confirmed: bool = True) -> XpChangeResult:
        """
        Write the corrected XP and fan it out atomically.

        The delta is taken against the locked submission row, so a correction
        that raced another one applies only the remaining difference. The
        ledger and user totals take the clamped delta so neither total can go
        negative. Weekly stats take the raw delta, floored at zero.
        """
        result = XpChangeResult()

        try:
            with get_db() as db:
                submission = db.query(Submission).filter_by(id=submission_id).with_for_update().first()
                if not submission:
                    result.errors.append('Submission not found')
                    result.message = 'Submission not found'
                    return result

                if submission.status not in TERMINAL_SUBMISSION_STATUSES:
                    result.errors.append('Submission XP can only be corrected after it is finalized')
                    result.message = 'Submission is not finalized'
                    return result

                current_xp = submission.final_xp or 0
                if current_xp != old_xp:
                    valid, errors = validate_xp_modification(current_xp, new_xp, reason, confirmed)
                    if not valid:
                        return XpChangeResult(message='Validation failed', errors=errors)
                    logger.warning(
                        f"Submission {submission_id} XP changed from {old_xp} to {current_xp} "
                        f"before this correction was applied"
                    )
                    result.warnings.append(f'Final XP was {current_xp}, not {old_xp}; delta taken from {current_xp}')
                    old_xp = current_xp

                requested = new_xp - old_xp
                submission.final_xp = new_xp

                user = lock_user(db, submission.user_id)
                if not user:
                    raise ValueError(f"Author {submission.user_id} of submission {submission_id} not found")

                transaction, delta = record_xp_transaction(
                    db,
                    user,
                    requested,
                    tx_type,
                    f"{'Consensus' if tx_type == XpTransactionType.CONSENSUS_ADJUSTMENT else 'Admin'} "
                    f"XP modification: {reason}",
                    source_id=submission_id,
                    week_number=submission.week_number,
                    weekly_delta=requested,
                    week_year=submission.week_year
                )
                result.delta = delta
                result.updated_entities['submission'] = True
                result.updated_entities['user_xp'] = True
                result.updated_entities['weekly_stats'] = True

                record_admin_action(db, actor_id, action, 'submission', submission_id, {
                    'oldXp': old_xp,
                    'newXp': new_xp,
                    'requestedDelta': delta.requested_delta,
                    'appliedDelta': delta.applied_delta,
                    'appliedWeekDelta': delta.applied_week_delta,
                    'reason': reason,
                    'transactionType': tx_type.value
                })
                result.updated_entities['audit'] = True

                author_id = user.id
                week_number = submission.week_number
                week_year = submission.week_year

        except Exception as e:
            logger.error(f"Error propagating XP change for submission {submission_id}: {str(e)}")
            return XpChangeResult(
                message='Failed to propagate XP changes',
                errors=[f'Transaction failed: {str(e)}']
            )

        result.warnings.extend(self.run_post_transaction_effects(
            author_id, week_number, delta.applied_delta, reason, result.updated_entities, week_year=week_year
        ))

        result.success = True
        result.message = (
            f"Successfully propagated XP change: {old_xp} -> {new_xp} "
            f"({delta.applied_delta:+d} applied of {delta.requested_delta:+d} requested)"
        )
        logger.info(f"Submission {submission_id}: {result.message}")
        return result

    def run_post_transaction_effects(self, user_id: int, week_number: int, xp_difference: int, reason: str,
                                     updated_entities: Dict[str, bool] = None,
                                     week_year: int = None) -> List[str]:
        """Leaderboard, achievements and notification; each failure becomes a warning"""
        updated_entities = updated_entities if updated_entities is not None else {}
        warnings = []

        try:
            self.leaderboard_service.refresh_weekly_leaderboard(week_number, week_year)
            updated_entities['leaderboard'] = True
        except Exception as e:
            logger.warning(f"Leaderboard refresh failed for week {week_number}: {str(e)}")
            warnings.append(f'Leaderboard refresh failed: {str(e)}')

        try:
            self.achievement_service.check_xp_milestones(user_id)
            updated_entities['achievements'] = True
        except Exception as e:
            logger.warning(f"Achievement check failed for user {user_id}: {str(e)}")
            warnings.append(f'Achievement check failed: {str(e)}')

        try:
            self.notification_service.notify_xp_change(user_id, xp_difference, reason)
            updated_entities['notifications'] = True
        except Exception as e:
            logger.warning(f"XP change notification failed for user {user_id}: {str(e)}")
            warnings.append(f'Notification failed: {str(e)}')

        return warnings
