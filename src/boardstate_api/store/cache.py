"""In-memory cache for the current board document.

The cache only ever holds the wire form of the latest document ({...document, "version": n}).
Writers invalidate it synchronously after commit. A generation counter stops a reader
that fetched before an invalidation from repopulating the cache with the older value.
"""

import copy
import threading
import time
from abc import ABC
from abc import abstractmethod
from typing import Any
from typing import Callable
from typing import Dict
from typing import Optional

from loguru import logger


def is_valid_cached_state(value: Any) -> bool:
    """Shape check for a cached payload: object with a "projects" list and an integer "version"."""
    if not isinstance(value, dict):
        return False
    if not isinstance(value.get("projects"), list):
        return False
    version = value.get("version")
    return isinstance(version, int) and not isinstance(version, bool) and version >= 0


class StateCache(ABC):
    """Cache interface used by the document store."""

    @property
    @abstractmethod
    def generation(self) -> int:
        """Counter that moves on every invalidation."""

    @abstractmethod
    def get(self) -> Optional[Dict[str, Any]]:
        """Return the cached payload, or None on miss."""

    @abstractmethod
    def set(self, value: Dict[str, Any], generation: int) -> bool:
        """Store the payload if no invalidation happened since `generation` was read."""

    @abstractmethod
    def invalidate(self) -> None:
        """Drop the cached payload."""


class MemoryStateCache(StateCache):
    """
    Thread-safe TTL cache holding one board payload in process memory.

    Attributes
    ----------
    ttl_seconds : float
        Lifetime of a cached payload
    _value : Optional[Dict[str, Any]]
        Cached payload (deep copy, never handed out directly)
    _expires_at : float
        Monotonic deadline of the cached payload
    _generation : int
        Bumped by invalidate()
    _lock : threading.Lock
        Lock for thread-safe access
    """

    def __init__(self, ttl_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        """
        Parameters
        ----------
        ttl_seconds : float
            Lifetime of a cached payload, 0 disables caching
        clock : Callable[[], float]
            Monotonic clock, injectable for tests
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[Dict[str, Any]] = None
        self._expires_at = 0.0
        self._generation = 0
        self._lock = threading.Lock()

        logger.info("State cache initialized", provider="memory", ttl_seconds=ttl_seconds)

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            if self._value is None:
                return None

            if self._clock() >= self._expires_at:
                logger.debug("Cached board state expired")
                self._value = None
                return None

            if not is_valid_cached_state(self._value):
                logger.warning("Discarding malformed cached board state")
                self._value = None
                return None

            return copy.deepcopy(self._value)

    def set(self, value: Dict[str, Any], generation: int) -> bool:
        if self.ttl_seconds <= 0:
            return False
        if not is_valid_cached_state(value):
            logger.warning("Refusing to cache malformed board state")
            return False

        with self._lock:
            if generation != self._generation:
                logger.debug(
                    "Skipping stale cache fill",
                    read_generation=generation,
                    current_generation=self._generation,
                )
                return False
            self._value = copy.deepcopy(value)
            self._expires_at = self._clock() + self.ttl_seconds
            return True

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1
            self._value = None
        logger.debug("State cache invalidated")
