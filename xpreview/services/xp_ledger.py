"""
XP ledger primitives.

Every change to a user's XP caches goes through record_xp_transaction so the
denormalized totals on User and the append-only XpTransaction ledger move
together inside the caller's database transaction.
"""
from dataclasses import dataclass
from typing import Dict, Tuple
from sqlalchemy import func
from xpreview.database import get_db
from xpreview.models import User, XpTransaction, WeeklyStats
from xpreview.models.xp import XpTransactionType
from xpreview.utils.dates import get_week_number, get_week_year
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class XpDelta:
    """Requested change versus what could be applied without going negative"""
    requested_delta: int
    applied_delta: int
    applied_week_delta: int

    @property
    def was_clamped(self) -> bool:
        return self.requested_delta != self.applied_delta


def clamp_xp_delta(requested_delta: int, total_xp: int, current_week_xp: int) -> XpDelta:
    """Bound a negative delta by what each cache still holds"""
    if requested_delta >= 0:
        return XpDelta(requested_delta, requested_delta, requested_delta)

    magnitude = -requested_delta
    return XpDelta(
        requested_delta=requested_delta,
        applied_delta=-min(max(total_xp or 0, 0), magnitude),
        applied_week_delta=-min(max(current_week_xp or 0, 0), magnitude),
    )


def upsert_weekly_stats(db, user_id: int, week_number: int, xp_delta: int = 0,
                        reviews_done: int = 0, reviews_missed: int = 0,
                        week_year: int = None) -> WeeklyStats:
    """Increment a (user, ISO year, week) aggregate, flooring every counter at zero"""
    week_year = week_year or get_week_year()
    stats = db.query(WeeklyStats).filter_by(
        user_id=user_id,
        week_year=week_year,
        week_number=week_number
    ).with_for_update().first()

    if not stats:
        stats = WeeklyStats(
            user_id=user_id,
            week_year=week_year,
            week_number=week_number,
            xp_total=0,
            reviews_done=0,
            reviews_missed=0
        )
        db.add(stats)

    stats.xp_total = max(0, (stats.xp_total or 0) + xp_delta)
    stats.reviews_done = max(0, (stats.reviews_done or 0) + reviews_done)
    stats.reviews_missed = max(0, (stats.reviews_missed or 0) + reviews_missed)
    db.flush()
    return stats


def record_xp_transaction(db, user: User, amount: int, tx_type: XpTransactionType, description: str,
                          source_id: int = None, week_number: int = None,
                          weekly_delta: int = None, week_year: int = None) -> Tuple[XpTransaction, XpDelta]:
    """
    Apply a clamped XP change to a locked user row and append it to the ledger.

    The ledger records the applied amount. Weekly stats take weekly_delta when
    given (still floored at zero), otherwise the applied amount.
    """
    week_number = week_number or get_week_number()
    week_year = week_year or get_week_year()
    delta = clamp_xp_delta(amount, user.total_xp, user.current_week_xp)

    user.total_xp = (user.total_xp or 0) + delta.applied_delta
    user.current_week_xp = (user.current_week_xp or 0) + delta.applied_week_delta

    transaction = XpTransaction(
        user_id=user.id,
        amount=delta.applied_delta,
        type=tx_type.value,
        source_id=source_id,
        week_number=week_number,
        week_year=week_year,
        description=description[:500] if description else None
    )
    db.add(transaction)

    upsert_weekly_stats(
        db,
        user.id,
        week_number,
        xp_delta=delta.applied_delta if weekly_delta is None else weekly_delta,
        week_year=week_year
    )

    if delta.was_clamped:
        logger.warning(
            f"Clamped XP change for user {user.id}: requested {delta.requested_delta}, "
            f"applied {delta.applied_delta}"
        )

    return transaction, delta


def lock_user(db, user_id: int) -> User:
    return db.query(User).filter_by(id=user_id).with_for_update().first()


def recalculate_user_totals(user_id: int) -> Dict:
    """Rebuild the cached total_xp from the ledger"""
    try:
        with get_db() as db:
            user = lock_user(db, user_id)
            if not user:
                return {'success': False, 'error': 'User not found'}

            ledger_total = db.query(func.coalesce(func.sum(XpTransaction.amount), 0)).filter(
                XpTransaction.user_id == user_id
            ).scalar()

            previous = user.total_xp
            user.total_xp = max(0, int(ledger_total))

        if previous != user.total_xp:
            logger.warning(f"User {user_id} total XP drifted from ledger: {previous} -> {user.total_xp}")

        return {
            'success': True,
            'previous_total_xp': previous,
            'total_xp': user.total_xp,
            'message': f"Recalculated total XP: {user.total_xp}"
        }

    except Exception as e:
        logger.error(f"Error recalculating totals for user {user_id}: {str(e)}")
        return {'success': False, 'error': f"Failed to recalculate user totals: {str(e)}"}
