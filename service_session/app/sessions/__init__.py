"""
Session persistence package.

A session is created once, gains at most one authorization code, and is
removed by storage-layer expiry rather than explicit deletion.
"""

from .models import Session, SessionRequest, SessionState
from .store import SessionStore

__all__ = ["Session", "SessionRequest", "SessionState", "SessionStore"]
