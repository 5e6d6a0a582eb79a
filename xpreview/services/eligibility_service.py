import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from sqlalchemy import func
from xpreview.database import get_db
from xpreview.models import User, ReviewAssignment
from xpreview.models.user import UserRole
from xpreview.models.assignment import ACTIVE_ASSIGNMENT_STATUSES
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)

REVIEWER_ROLES = (UserRole.REVIEWER, UserRole.ADMIN)


@dataclass(frozen=True)
class ReviewerPreferences:
    """Typed view of the reviewer opt-out stored in User.preferences"""
    opted_out: bool = False
    opted_out_until: Optional[datetime] = None

    def is_opted_out(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        if self.opted_out_until and self.opted_out_until > now:
            return True
        return self.opted_out


NOT_OPTED_OUT = ReviewerPreferences()


def parse_reviewer_preferences(raw) -> ReviewerPreferences:
    """
    Read the opt-out record from a dict or a JSON string.
    Malformed or legacy data means "not opted out".
    """
    if not raw:
        return NOT_OPTED_OUT

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Failed to parse reviewer preferences JSON: {str(e)}")
            return NOT_OPTED_OUT

    if not isinstance(raw, dict):
        logger.warning(f"Ignoring reviewer preferences of type {type(raw).__name__}")
        return NOT_OPTED_OUT

    until = raw.get('reviewerOptOutUntil')
    if isinstance(until, str):
        try:
            until = datetime.fromisoformat(until.replace('Z', '+00:00'))
        except ValueError:
            logger.warning(f"Ignoring unparseable reviewerOptOutUntil value {until!r}")
            until = None
    if isinstance(until, datetime) and until.tzinfo is not None:
        # Stored timestamps are naive UTC
        until = until.replace(tzinfo=None) - until.utcoffset()
    if not isinstance(until, datetime):
        until = None

    return ReviewerPreferences(opted_out=raw.get('reviewerOptOut') is True, opted_out_until=until)


@dataclass
class ReviewerCandidate:
    """Allocation-time view of a user, computed fresh for each request"""
    id: int
    email: str
    role: UserRole
    total_xp: int = 0
    missed_reviews: int = 0
    active_assignments: int = 0
    username: Optional[str] = None
    preferences: ReviewerPreferences = field(default=NOT_OPTED_OUT)
    paused_until: Optional[datetime] = None
    paused_permanently: bool = False
    last_active_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.username or self.email.split('@')[0]

    def is_unavailable(self, now: datetime) -> bool:
        if self.paused_permanently:
            return True
        if self.paused_until and self.paused_until > now:
            return True
        return self.preferences.is_opted_out(now)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'username': self.display_name,
            'role': self.role.value,
            'total_xp': self.total_xp,
            'missed_reviews': self.missed_reviews,
            'active_assignments': self.active_assignments
        }


def rank_candidates(candidates: Iterable[ReviewerCandidate]) -> List[ReviewerCandidate]:
    """Least busy first, then most experienced; id keeps ties deterministic"""
    return sorted(candidates, key=lambda c: (c.active_assignments, -c.total_xp, c.id))


def check_candidate(candidate: ReviewerCandidate, author_id: int, max_active_assignments: int,
                    now: datetime) -> Optional[str]:
    """Return the first rule a candidate fails, or None when eligible"""
    if candidate.id == author_id:
        return 'Cannot review own submission'
    if candidate.active_assignments >= max_active_assignments:
        return 'Reviewer has too many active assignments'
    if candidate.missed_reviews > Config.MAX_MISSED_REVIEWS:
        return 'Too many missed reviews'
    if candidate.total_xp < Config.MIN_REVIEWER_XP and candidate.role != UserRole.ADMIN:
        return f'Insufficient experience (minimum {Config.MIN_REVIEWER_XP} XP required)'
    if candidate.is_unavailable(now):
        return 'Reviewer is temporarily unavailable'
    return None


def filter_candidates(pool: Iterable[ReviewerCandidate], author_id: int, exclude_ids: Iterable[int] = (),
                      max_active_assignments: int = None, now: datetime = None) -> List[ReviewerCandidate]:
    """Apply the eligibility rules in order and return the ranked survivors"""
    now = now or datetime.utcnow()
    max_active = max_active_assignments or Config.MAX_ACTIVE_ASSIGNMENTS
    excluded = set(exclude_ids or ())
    excluded.add(author_id)

    eligible = []
    for candidate in pool:
        if candidate.id in excluded:
            continue
        if check_candidate(candidate, author_id, max_active, now) is None:
            eligible.append(candidate)

    return rank_candidates(eligible)


class EligibilityService:
    """Builds reviewer candidates from persistence and applies the eligibility rules"""

    def load_candidate_pool(self, db, user_ids: List[int] = None) -> List[ReviewerCandidate]:
        """Snapshot reviewer-privileged users with their active workload"""
        query = db.query(User).filter(User.role.in_(REVIEWER_ROLES))
        if user_ids is not None:
            query = query.filter(User.id.in_(user_ids))
        users = query.all()

        if not users:
            return []

        counts = dict(
            db.query(ReviewAssignment.reviewer_id, func.count(ReviewAssignment.id)).filter(
                ReviewAssignment.reviewer_id.in_([u.id for u in users]),
                ReviewAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES)
            ).group_by(ReviewAssignment.reviewer_id).all()
        )

        return [self._to_candidate(user, counts.get(user.id, 0)) for user in users]

    def get_available_reviewers(self, author_id: int, exclude_ids: Iterable[int] = (),
                                max_active_assignments: int = None, db=None,
                                now: datetime = None) -> List[ReviewerCandidate]:
        """Ranked list of reviewers eligible for a submission by author_id"""
        if db is not None:
            pool = self.load_candidate_pool(db)
        else:
            with get_db() as session:
                pool = self.load_candidate_pool(session)

        return filter_candidates(pool, author_id, exclude_ids, max_active_assignments, now)

    def can_assign_reviewer(self, reviewer_id: int, author_id: int, max_active_assignments: int = None,
                            db=None, now: datetime = None) -> Tuple[bool, Optional[str]]:
        """Check one reviewer, returning the reason when they cannot be assigned"""
        if reviewer_id == author_id:
            return False, 'Cannot review own submission'

        if db is None:
            with get_db() as session:
                return self.can_assign_reviewer(reviewer_id, author_id, max_active_assignments, session, now)

        user = db.query(User).filter_by(id=reviewer_id).first()
        if not user:
            return False, 'Reviewer not found'
        if user.role not in REVIEWER_ROLES:
            return False, 'User does not have reviewer privileges'

        candidate = self.load_candidate_pool(db, [reviewer_id])[0]
        reason = check_candidate(
            candidate,
            author_id,
            max_active_assignments or Config.MAX_ACTIVE_ASSIGNMENTS,
            now or datetime.utcnow()
        )
        return reason is None, reason

    @staticmethod
    def _to_candidate(user: User, active_assignments: int) -> ReviewerCandidate:
        return ReviewerCandidate(
            id=user.id,
            email=user.email,
            username=user.username,
            role=user.role,
            total_xp=user.total_xp or 0,
            missed_reviews=user.missed_reviews or 0,
            active_assignments=active_assignments,
            preferences=parse_reviewer_preferences(user.preferences),
            paused_until=user.review_paused_until,
            paused_permanently=bool(user.review_paused_permanently),
            last_active_at=user.last_active_at
        )
