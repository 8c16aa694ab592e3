"""
Bearer token helpers for the Access Gateway service.
"""

from .tokens import TokenClaims, TokenVerifier

__all__ = [
    "TokenClaims",
    "TokenVerifier",
]
