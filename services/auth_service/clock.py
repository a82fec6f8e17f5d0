"""
Time sources for the authentication service.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


class SystemClock:
    """Wall-clock time in UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """
    Clock that only moves when told to.
    Used to simulate session expiry and lockout windows.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta built from kwargs (hours=1, seconds=5, ...)"""
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, moment: datetime):
        self._now = moment
