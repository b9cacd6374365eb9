"""In-process memo of analysis verdicts."""

from __future__ import annotations

import threading

from depaudit.models.schemas import AnalysisResult, PackageIdentity


class AnalysisCache:
    """Thread-safe mapping of ``name@version`` to AnalysisResult.

    Entries live until ``clear`` is called. The cache knows nothing about
    deny-list freshness; clear it after refreshing the deny-list.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[str, AnalysisResult] = {}

    @staticmethod
    def key_for(identity: PackageIdentity | str) -> str:
        return identity.key if isinstance(identity, PackageIdentity) else identity

    def get(self, key: PackageIdentity | str) -> AnalysisResult | None:
        with self._lock:
            return self._results.get(self.key_for(key))

    def set(self, key: PackageIdentity | str, result: AnalysisResult) -> None:
        with self._lock:
            self._results[self.key_for(key)] = result

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._results)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (PackageIdentity, str)):
            return False
        with self._lock:
            return self.key_for(key) in self._results
