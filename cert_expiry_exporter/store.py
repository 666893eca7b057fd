"""
In-memory store of the latest expiry measurement per endpoint.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

SENTINEL = -1.0


class EndpointKey(NamedTuple):
    """Identity of a stored value: endpoint address plus origin label."""

    url: str
    origin: str


class CheckStatus(str, Enum):
    """Outcome of the most recent check for an endpoint."""

    UNMEASURED = "unmeasured"
    OK = "ok"
    TRANSPORT_ERROR = "transport_error"
    CONTRACT_ERROR = "contract_error"


@dataclass(frozen=True)
class Measurement:
    """Current knowledge about one endpoint's expiry horizon."""

    value: float = SENTINEL
    status: CheckStatus = CheckStatus.UNMEASURED
    updated_at: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "value": self.value,
            "status": self.status.value,
            "updated_at": self.updated_at,
            "error": self.error,
        }


class MetricStore:
    """
    Thread-safe mapping from EndpointKey to Measurement.

    Measurements are immutable and replaced whole under the lock, so
    readers never observe a partially written entry.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[EndpointKey, Measurement] = {}

    def initialize(self, key: EndpointKey) -> bool:
        """
        Seed the sentinel for a key that has no entry yet.

        Returns:
            True if an entry was created, False if one already existed
        """
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = Measurement()
            return True

    def set(
        self,
        key: EndpointKey,
        value: float,
        status: CheckStatus = CheckStatus.OK,
        error: Optional[str] = None,
    ) -> Measurement:
        """Overwrite the entry for a key, creating it if unknown."""
        measurement = Measurement(
            value=float(value), status=status, updated_at=time.time(), error=error
        )
        with self._lock:
            self._entries[key] = measurement
        return measurement

    def set_failed(
        self, key: EndpointKey, status: CheckStatus, error: Optional[str] = None
    ) -> Measurement:
        """Publish the sentinel for a failed check."""
        return self.set(key, SENTINEL, status=status, error=error)

    def get(self, key: EndpointKey) -> Optional[Measurement]:
        with self._lock:
            return self._entries.get(key)

    def snapshot(self) -> Dict[EndpointKey, Measurement]:
        """Point-in-time copy of every entry."""
        with self._lock:
            return dict(self._entries)

    def keys(self) -> List[EndpointKey]:
        with self._lock:
            return list(self._entries)

    def status_counts(self) -> Dict[str, int]:
        """Number of entries per check status."""
        counts = {status.value: 0 for status in CheckStatus}
        for measurement in self.snapshot().values():
            counts[measurement.status.value] += 1
        return counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
