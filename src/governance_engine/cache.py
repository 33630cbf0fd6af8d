"""
Result and Response Cache

Content-addressed memoization for governor results and generator output.
Entries never go stale for the same key, so the only policy is a bounded
size with least-recently-used eviction.
"""

import json
import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, Generic, Hashable, Mapping, Optional, Tuple, TypeVar

from .main import Artifact, VerificationResult, fingerprint_text

logger = logging.getLogger(__name__)

V = TypeVar("V")


def fingerprint_context(context: Optional[Mapping[str, Any]]) -> str:
    """Fingerprint of a generation context via canonical JSON"""
    canonical = json.dumps(context or {}, sort_keys=True, separators=(",", ":"), default=str)
    return fingerprint_text(canonical)


class LRUCache(Generic[V]):
    """
    Bounded, thread-safe LRU map.

    The first insert for a key wins; a later insert for the same key only
    refreshes recency. A capacity of 0 disables storage entirely.
    """

    def __init__(self, capacity: int = 1024, name: str = "cache"):
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.name = name
        self._capacity = capacity
        self._data: "OrderedDict[Hashable, V]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._data

    def get(self, key: Hashable) -> Optional[V]:
        with self._lock:
            if key not in self._data:
                self._misses += 1
                return None
            self._data.move_to_end(key)
            self._hits += 1
            return self._data[key]

    def put(self, key: Hashable, value: V) -> V:
        """Insert unless present; returns the value now stored for key"""
        with self._lock:
            if self._capacity == 0:
                return value
            if key in self._data:
                self._data.move_to_end(key)
                return self._data[key]
            self._data[key] = value
            self._evict_locked()
            return value

    def resize(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        with self._lock:
            self._capacity = capacity
            self._evict_locked()

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "name": self.name,
                "size": len(self._data),
                "capacity": self._capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }

    def _evict_locked(self) -> None:
        while len(self._data) > self._capacity:
            key, _ = self._data.popitem(last=False)
            self._evictions += 1
            logger.debug(f"{self.name}: evicted {key!r}")


class VerificationCache(LRUCache[VerificationResult]):
    """(governor_id, artifact fingerprint) -> VerificationResult"""

    def __init__(self, capacity: int = 1024):
        super().__init__(capacity, name="verification")

    def lookup(self, governor_id: str, fingerprint: str) -> Optional[VerificationResult]:
        return self.get((governor_id, fingerprint))

    def store(self, result: VerificationResult) -> VerificationResult:
        return self.put((result.governor_id, result.artifact_fingerprint), result)


class GenerationCache(LRUCache[Artifact]):
    """(prompt fingerprint, context fingerprint) -> generated Artifact"""

    def __init__(self, capacity: int = 1024):
        super().__init__(capacity, name="generation")

    @staticmethod
    def key_for(prompt: str, context: Optional[Mapping[str, Any]]) -> Tuple[str, str]:
        return (fingerprint_text(prompt), fingerprint_context(context))

    def lookup(self, prompt: str, context: Optional[Mapping[str, Any]]) -> Optional[Artifact]:
        return self.get(self.key_for(prompt, context))

    def store(
        self,
        prompt: str,
        context: Optional[Mapping[str, Any]],
        artifact: Artifact,
    ) -> Artifact:
        return self.put(self.key_for(prompt, context), artifact)
