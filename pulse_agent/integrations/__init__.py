"""
External integrations: Linear (tracking system), Slack (mention surface),
and the retry/concurrency policy that wraps every outbound call.
"""
from .error_handler import (
    IntegrationError,
    IntegrationErrorHandler,
    IntegrationErrorType,
    RetryResult,
    classify_error,
)

__all__ = [
    'IntegrationError',
    'IntegrationErrorHandler',
    'IntegrationErrorType',
    'RetryResult',
    'classify_error',
]
