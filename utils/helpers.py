"""
============================================================================
UPTIME MONITOR - HELPERS UTILITY
============================================================================
Time helpers shared by the recorder, incident tracker, stats and
notification layers. All timestamps are naive UTC.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from datetime import datetime, time, timezone


# ============================================================================
# TIME UTILITIES
# ============================================================================

class TimeHelper:
    """
    Time and date manipulation utilities.
    """

    @staticmethod
    def get_utc_now() -> datetime:
        """Get current UTC datetime (naive)."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def to_naive_utc(dt: datetime) -> datetime:
        """Convert an aware datetime to naive UTC; naive values pass through."""
        if dt.tzinfo is None:
            return dt
        return dt.astimezone(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def minutes_between(start: datetime, end: datetime) -> float:
        """Elapsed minutes from start to end, never negative."""
        return max(0.0, (end - start).total_seconds() / 60.0)

    @staticmethod
    def seconds_to_human_readable(seconds: int) -> str:
        """
        Convert seconds to human-readable format.

        Args:
            seconds: Number of seconds

        Returns:
            Human-readable string (e.g., "2h 30m 15s")
        """
        seconds = int(seconds)
        if seconds < 0:
            return "0s"

        days, remainder = divmod(seconds, 86400)
        hours, remainder = divmod(remainder, 3600)
        minutes, secs = divmod(remainder, 60)

        parts = []
        if days > 0:
            parts.append(f"{days}d")
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        if secs > 0 or not parts:
            parts.append(f"{secs}s")

        return " ".join(parts)

    @staticmethod
    def in_window(moment: time, start: time, end: time) -> bool:
        """
        Check whether a wall-clock time falls in [start, end).

        Windows whose end is before their start wrap past midnight,
        so 22:00-06:00 contains 23:30 and 05:59 but not 06:00.
        An empty window (start == end) contains nothing.

        Args:
            moment: Time of day to test
            start: Window start (inclusive)
            end: Window end (exclusive)

        Returns:
            True if moment is inside the window
        """
        if start == end:
            return False
        if start < end:
            return start <= moment < end
        return moment >= start or moment < end
