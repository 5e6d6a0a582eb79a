from .logger import setup_logger, get_logger
from .security import generate_token, verify_token
from .validators import validate_url, validate_review_score, validate_xp_modification, validate_reviewer_count
from .dates import get_week_number, get_week_year, skip_weekend

__all__ = [
    'setup_logger', 'get_logger',
    'generate_token', 'verify_token',
    'validate_url', 'validate_review_score', 'validate_xp_modification', 'validate_reviewer_count',
    'get_week_number', 'get_week_year', 'skip_weekend'
]
