from typing import List, Optional, Tuple
from urllib.parse import urlparse
from config.config import Config


def validate_url(url: str) -> Tuple[bool, Optional[str]]:
    """Validate submission URL"""
    if not url:
        return False, "URL is required"
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return False, "Invalid URL format"
    return True, None


def detect_platform(url: str) -> str:
    """Map a submission URL to its platform tag"""
    host = (urlparse(url).netloc or '').lower()
    if host.startswith('www.'):
        host = host[4:]
    if host in ('twitter.com', 'x.com'):
        return 'Twitter'
    if host.endswith('reddit.com'):
        return 'Reddit'
    if host.endswith('medium.com'):
        return 'Medium'
    if host.endswith('notion.site') or host.endswith('notion.so'):
        return 'Notion'
    if host.endswith('linkedin.com'):
        return 'LinkedIn'
    return 'Other'


def validate_review_score(xp_score) -> Tuple[bool, Optional[str]]:
    """Validate a reviewer's XP score"""
    if not isinstance(xp_score, int) or isinstance(xp_score, bool):
        return False, "XP score must be an integer"
    if xp_score < 0 or xp_score > Config.MAX_SUBMISSION_XP:
        return False, f"XP score must be between 0 and {Config.MAX_SUBMISSION_XP}"
    return True, None


def validate_xp_modification(old_xp: int, new_xp: int, reason: str,
                             confirmed: bool = False) -> Tuple[bool, List[str]]:
    """
    Validate an XP correction before any write happens.
    Returns (valid, errors) with one entry per failed rule.
    """
    errors = []

    if new_xp < 0:
        errors.append('XP cannot be negative')

    if new_xp > Config.MAX_SUBMISSION_XP:
        errors.append(f'XP cannot exceed {Config.MAX_SUBMISSION_XP:,} points')

    if not reason or len(reason.strip()) < Config.MIN_REASON_LENGTH:
        errors.append(f'Reason must be at least {Config.MIN_REASON_LENGTH} characters long')

    difference = abs(new_xp - (old_xp or 0))
    if difference > Config.XP_CONFIRMATION_THRESHOLD and not confirmed:
        errors.append(
            f'XP changes greater than {Config.XP_CONFIRMATION_THRESHOLD:,} points require additional confirmation'
        )

    return len(errors) == 0, errors


def validate_reviewer_count(count) -> Tuple[bool, Optional[str]]:
    """Validate a requested number of reviewers for one submission"""
    limit = Config.MAX_REVIEWERS_PER_SUBMISSION
    if not isinstance(count, int) or isinstance(count, bool) or not 1 <= count <= limit:
        return False, f"minimum_reviewers must be an integer between 1 and {limit}"
    return True, None
