import logging
from datetime import datetime
from typing import Mapping, Optional

from models import RateLimitWindow

logger = logging.getLogger(__name__)

LIMIT_HEADER = "X-RateLimit-Limit"
REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_HEADER = "X-RateLimit-Reset"


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


class RateLimitTracker:
    """
    Holds the quota window reported by the most recent response.

    Advisory only, nothing throttles on it. Every update replaces the whole
    window, so a response without quota headers resets it to zero values.
    """

    def __init__(self):
        self._window = RateLimitWindow()

    @property
    def window(self) -> RateLimitWindow:
        return self._window

    @property
    def limit(self) -> int:
        return self._window.limit

    @property
    def remaining(self) -> int:
        return self._window.remaining

    @property
    def reset_at(self) -> datetime:
        return self._window.reset_at

    def update_from(self, headers: Mapping[str, str]) -> RateLimitWindow:
        """
        Replace the window from response headers.

        ``headers`` should be case-insensitive, as ``httpx.Headers`` is.
        """
        limit = _parse_int(headers.get(LIMIT_HEADER)) or 0
        remaining = _parse_int(headers.get(REMAINING_HEADER)) or 0

        reset_at = datetime.min
        reset_epoch = _parse_int(headers.get(RESET_HEADER))
        if reset_epoch is not None:
            try:
                reset_at = datetime.fromtimestamp(reset_epoch)
            except (OverflowError, OSError, ValueError):
                reset_at = datetime.min

        self._window = RateLimitWindow(limit=limit, remaining=remaining, reset_at=reset_at)
        logger.debug("Rate limit: %d, remaining: %d, reset: %s", limit, remaining, reset_at)
        return self._window
