"""Dependency scan that walks registry manifests.

Starting from the requested release, declared dependencies (regular, peer
and optional) are followed breadth-first down to a fixed depth. Every edge
is identified by ``name@declaredRange`` and visited at most once, so cyclic
graphs terminate and shared subtrees are fetched once.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from depaudit.adapters.base import BaseRegistryAdapter
from depaudit.analyzers.base import BaseScanner, check_names
from depaudit.analyzers.deny_list import DenyListRegistry
from depaudit.fetcher import FetchError
from depaudit.models.schemas import AnalysisResult, KnownBadSet, PackageIdentity, ScanStrategy

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 3
DEFAULT_BATCH_SIZE = 10


@dataclass
class TraversalState:
    """Mutable state of one graph traversal."""

    known_bad: KnownBadSet
    result: AnalysisResult
    visited: set[str] = field(default_factory=set)
    fetched: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def visit(self, name: str, spec: str) -> bool:
        """Mark an edge as visited; False if it was seen before."""
        key = f"{name}@{spec}"
        if key in self.visited:
            return False
        self.visited.add(key)
        return True


class MetadataGraphScanner(BaseScanner):
    """Scans declared dependencies through registry metadata.

    Manifests are fetched for packages at depths ``0 .. max_depth - 1``;
    dependency names are checked down to ``max_depth``. Siblings at one level
    are fetched in concurrent batches of ``batch_size``.
    """

    def __init__(
        self,
        adapter: BaseRegistryAdapter,
        deny_list: DenyListRegistry,
        max_depth: int = DEFAULT_MAX_DEPTH,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        super().__init__(deny_list)
        self.adapter = adapter
        self.max_depth = max_depth
        self.batch_size = batch_size

    @property
    def strategy(self) -> ScanStrategy:
        return ScanStrategy.METADATA

    async def scan(self, identity: PackageIdentity) -> AnalysisResult:
        result = self.new_result()
        try:
            known_bad = await self.deny_list.load()
            state = TraversalState(known_bad=known_bad, result=result)
            await self._traverse(identity, state)
        except Exception as e:
            logger.exception(f"Error analyzing dependencies for {identity}")
            result.error = str(e) or type(e).__name__
        return result

    async def _traverse(self, identity: PackageIdentity, state: TraversalState) -> None:
        result = state.result
        try:
            manifest = await self.adapter.get_manifest(identity.name, identity.version)
        except (FetchError, ValueError) as e:
            logger.error(f"Failed to fetch metadata for {identity}: {e}")
            result.error = f"Failed to fetch metadata: {e}"
            return

        if manifest is None:
            result.error = "version not found"
            return

        state.visit(identity.name, identity.version)
        state.fetched.append(identity.name)
        check_names(result, [identity.name], state.known_bad)
        check_names(result, manifest.dependencies.names, state.known_bad)

        frontier = list(manifest.dependencies.ranges.items())
        for depth in range(1, self.max_depth):
            if not frontier:
                break
            frontier = await self._scan_level(state, frontier, depth)

        logger.debug(
            f"Scanned {identity}: {len(state.fetched)} manifests, "
            f"{len(state.visited)} edges, {len(state.skipped)} skipped"
        )

    async def _scan_level(
        self,
        state: TraversalState,
        frontier: list[tuple[str, str]],
        depth: int,
    ) -> list[tuple[str, str]]:
        """Expand every unvisited edge of one level; return the next level."""
        pending = [(name, spec) for name, spec in frontier if state.visit(name, spec)]
        next_frontier: list[tuple[str, str]] = []

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            expanded = await asyncio.gather(
                *(self._expand(state, name, spec, depth) for name, spec in batch)
            )
            for edges in expanded:
                next_frontier.extend(edges)

        return next_frontier

    async def _expand(
        self,
        state: TraversalState,
        name: str,
        spec: str,
        depth: int,
    ) -> list[tuple[str, str]]:
        """Fetch one dependency's manifest and check its own dependencies."""
        try:
            manifest = await self.adapter.resolve_dependency(name, spec)
        except (FetchError, ValueError) as e:
            logger.warning(f"Skipping {name}@{spec} at depth {depth}: {e}")
            state.skipped.append(f"{name}@{spec}")
            return []

        state.fetched.append(name)
        if manifest is None:
            return []

        check_names(state.result, manifest.dependencies.names, state.known_bad)
        return list(manifest.dependencies.ranges.items())
