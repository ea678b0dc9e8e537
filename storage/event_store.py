"""In-memory snapshot cache for the event collection."""
import logging
import time
from typing import Callable, List, Optional

from processor.models import Event

logger = logging.getLogger(__name__)


class EventStore:
    """Whole-collection cache with a time-to-live."""

    DEFAULT_TTL_SECONDS = 300

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize an empty store.

        Args:
            ttl_seconds: Age after which a snapshot is treated as a miss
            clock: Source of the current time in seconds
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[List[Event]] = None
        self._timestamp: Optional[float] = None

    def get(self) -> Optional[List[Event]]:
        """
        Return the cached snapshot while it is fresh.

        Returns:
            The cached list (same object on every hit) or None on a miss
        """
        if not self.is_fresh():
            return None
        return self._snapshot

    def put(self, events: List[Event]) -> None:
        """Replace the snapshot wholesale and restart its TTL."""
        self._snapshot = events
        self._timestamp = self._clock()
        logger.debug(f"Cached {len(events)} events")

    def invalidate(self) -> None:
        if self._snapshot is not None:
            logger.debug("Event cache invalidated")
        self._snapshot = None
        self._timestamp = None

    def is_fresh(self) -> bool:
        if self._snapshot is None or self._timestamp is None:
            return False
        return self._clock() - self._timestamp <= self.ttl_seconds
