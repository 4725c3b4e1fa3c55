"""
API v2 endpoints.
"""

from . import automation

__all__ = [
    'automation',
]
