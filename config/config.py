import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default='false'):
    return (os.environ.get(name) or default).lower() == 'true'


def _env_int(*names, default):
    for name in names:
        value = os.environ.get(name)
        if value:
            try:
                parsed = int(value)
            except ValueError:
                continue
            if parsed > 0:
                return parsed
    return default


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    DATABASE_URL = os.environ.get('DATABASE_URL') or 'sqlite:///xpreview.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    ENV = os.environ.get('FLASK_ENV', 'development')

    # API Keys
    SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY')
    SENDGRID_FROM_EMAIL = os.environ.get('SENDGRID_FROM_EMAIL', 'noreply@scholarsxp.com')
    OPENROUTER_API_KEY = os.environ.get('OPENROUTER_API_KEY')
    AI_API_URL = os.environ.get('AI_API_URL', 'https://openrouter.ai/api/v1/chat/completions')
    AI_MODEL = os.environ.get('AI_MODEL', 'z-ai/glm-4.5-air:free')

    # Application Settings
    APP_URL = os.environ.get('APP_URL', 'http://localhost:5001')

    # Reviewer pool
    REVIEWER_MINIMUM_REQUIRED = _env_int('REVIEWER_MINIMUM_REQUIRED', 'MIN_REVIEWERS_REQUIRED', default=3)
    ALLOW_PARTIAL_REVIEW_ASSIGNMENTS = _env_bool('ALLOW_PARTIAL_REVIEW_ASSIGNMENTS') or ENV != 'production'
    MAX_ACTIVE_ASSIGNMENTS = int(os.environ.get('MAX_ACTIVE_ASSIGNMENTS', '5'))
    MIN_REVIEWER_XP = int(os.environ.get('MIN_REVIEWER_XP', '50'))
    MAX_MISSED_REVIEWS = int(os.environ.get('MAX_MISSED_REVIEWS', '3'))
    MAX_REVIEWERS_PER_SUBMISSION = int(os.environ.get('MAX_REVIEWERS_PER_SUBMISSION', '5'))
    MAX_MANUAL_REVIEWERS = MAX_REVIEWERS_PER_SUBMISSION
    REVIEW_WINDOW_HOURS = int(os.environ.get('REVIEW_WINDOW_HOURS', '72'))

    # Deadlines
    MISSED_REVIEW_PENALTY_XP = int(os.environ.get('MISSED_REVIEW_PENALTY_XP', '10'))
    REASSIGNMENT_DELAY_HOURS = int(os.environ.get('REASSIGNMENT_DELAY_HOURS', '24'))
    URGENT_DEADLINE_HOURS = 6
    DEADLINE_REMINDER_HOURS = [24, 6, 1]
    # missed_reviews count -> (pause days, XP penalty); None pauses permanently
    MISSED_REVIEW_STRIKES = {4: (14, 100), 7: (28, 200), 10: (None, 500)}
    REVIEW_REWARD_XP = int(os.environ.get('REVIEW_REWARD_XP', '10'))

    # AI evaluation
    ENABLE_AI_EVALUATION = _env_bool('ENABLE_AI_EVALUATION', 'true')
    DISABLE_CONTENT_FETCH = _env_bool('DISABLE_CONTENT_FETCH')
    AI_MAX_RETRIES = int(os.environ.get('AI_MAX_RETRIES', '3'))
    AI_PROCESSING_TIMEOUT_SECONDS = int(os.environ.get('AI_PROCESSING_TIMEOUT_SECONDS', '120'))
    AI_BATCH_SIZE = int(os.environ.get('AI_BATCH_SIZE', '5'))
    CONTENT_FETCH_TIMEOUT_SECONDS = 15

    # Consensus
    DIVERGENCE_STDDEV_THRESHOLD = float(os.environ.get('DIVERGENCE_STDDEV_THRESHOLD', '50'))
    SPAM_DISPUTE_LOW_XP = int(os.environ.get('SPAM_DISPUTE_LOW_XP', '0'))
    SPAM_DISPUTE_HIGH_XP = int(os.environ.get('SPAM_DISPUTE_HIGH_XP', '150'))
    OUTLIER_MEAN_RATIO = 0.5
    OUTLIER_Z_SCORE = 2.0
    CONSENSUS_LOOKBACK_DAYS = int(os.environ.get('CONSENSUS_LOOKBACK_DAYS', '90'))

    # XP modification limits
    MAX_SUBMISSION_XP = int(os.environ.get('MAX_SUBMISSION_XP', '10000'))
    XP_CONFIRMATION_THRESHOLD = int(os.environ.get('XP_CONFIRMATION_THRESHOLD', '1000'))
    MIN_REASON_LENGTH = 5
    XP_MILESTONES = [100, 500, 1000, 2500, 5000, 10000]
    LEADERBOARD_SIZE = 50

    # Token Settings
    ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours

    # Scheduler
    AI_QUEUE_INTERVAL_MINUTES = 1
    DEADLINE_MONITOR_INTERVAL_MINUTES = 15
    WEEKLY_RESET_HOUR = 0
    WEEKLY_RESET_MINUTE = 5

    # Logging
    LOG_FILE = os.environ.get('LOG_FILE', 'logs/xpreview.log')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    DEBUG = True
    TESTING = True


class ProductionConfig(Config):
    DEBUG = False
    TESTING = False


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
