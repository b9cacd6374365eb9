"""Common contract for dependency scan strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from depaudit.analyzers.deny_list import DenyListRegistry
from depaudit.models.schemas import AnalysisResult, KnownBadSet, PackageIdentity, ScanStrategy


class BaseScanner(ABC):
    """Base class for scan strategies.

    A scanner never raises to its caller: failures are reported through
    ``AnalysisResult.error``.
    """

    def __init__(self, deny_list: DenyListRegistry) -> None:
        self.deny_list = deny_list

    @property
    @abstractmethod
    def strategy(self) -> ScanStrategy:
        """Return the strategy this scanner implements."""
        ...

    @abstractmethod
    async def scan(self, identity: PackageIdentity) -> AnalysisResult:
        """Analyze a package and its dependencies.

        Args:
            identity: Package to analyze.

        Returns:
            AnalysisResult, with ``error`` set if the scan could not complete.
        """
        ...

    def new_result(self) -> AnalysisResult:
        return AnalysisResult(strategy=self.strategy)


def check_names(result: AnalysisResult, names: Iterable[str], known_bad: KnownBadSet) -> None:
    """Flag every name found in the deny-list or the built-in unsafe set."""
    for name in names:
        if name in known_bad:
            result.flag(name)
