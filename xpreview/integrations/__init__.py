from .sendgrid_client import SendGridClient
from .ai_client import ContentScoringClient, ContentFetchError, ScoringError

__all__ = ['SendGridClient', 'ContentScoringClient', 'ContentFetchError', 'ScoringError']
