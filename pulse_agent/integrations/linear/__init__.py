"""
Linear integration
"""
from .client import LinearAPIException, LinearAuthenticationException, LinearClient
from .repository import TransitionRepository
from .service import LinearService

__all__ = [
    'LinearAPIException',
    'LinearAuthenticationException',
    'LinearClient',
    'LinearService',
    'TransitionRepository',
]
