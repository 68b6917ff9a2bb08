"""
Fork service - forking and deleting gists with fork-count bookkeeping.

Fork counts live in the external metadata store. Every git mutation that
changes the number of forks is followed by an explicit counter call, and
reconcile_fork_counts() recomputes all counters from the lineage recorded
in the repositories themselves to repair any drift.
"""

import logging
from collections import Counter
from typing import Protocol

from gistvault.services.repositories import RepositoryLifecycleManager

logger = logging.getLogger(__name__)


class GistMetadataStore(Protocol):
    """What the content engine needs from the relational store."""

    async def increment_fork_count(self, owner: str, gist_id: str) -> None: ...

    async def decrement_fork_count(self, owner: str, gist_id: str) -> None: ...

    async def set_fork_count(self, owner: str, gist_id: str, count: int) -> None: ...


class InMemoryMetadataStore:
    """Fork counters held in a dict, for tests and single-process setups."""

    def __init__(self):
        self.fork_counts: dict[tuple[str, str], int] = {}

    async def increment_fork_count(self, owner: str, gist_id: str) -> None:
        key = (owner, gist_id)
        self.fork_counts[key] = self.fork_counts.get(key, 0) + 1

    async def decrement_fork_count(self, owner: str, gist_id: str) -> None:
        key = (owner, gist_id)
        self.fork_counts[key] = max(self.fork_counts.get(key, 0) - 1, 0)

    async def set_fork_count(self, owner: str, gist_id: str, count: int) -> None:
        self.fork_counts[(owner, gist_id)] = count


class ForkService:
    """Keeps fork lineage in git and fork counts in the metadata store aligned."""

    def __init__(self, lifecycle: RepositoryLifecycleManager, store: GistMetadataStore):
        self.lifecycle = lifecycle
        self.store = store

    async def fork(
        self, src_owner: str, src_gist_id: str, dst_owner: str, dst_gist_id: str
    ) -> None:
        """Fork a gist and report the new fork to the metadata store."""
        await self.lifecycle.fork_clone(src_owner, src_gist_id, dst_owner, dst_gist_id)
        await self.lifecycle.update_server_info(dst_owner, dst_gist_id)
        await self.store.increment_fork_count(src_owner, src_gist_id)

    async def delete(self, owner: str, gist_id: str) -> None:
        """Delete a gist, decrementing its parent's fork count if it was a fork."""
        parent = self.lifecycle.fork_parent(owner, gist_id)
        await self.lifecycle.delete(owner, gist_id)
        if parent is not None and self.lifecycle.exists(*parent):
            await self.store.decrement_fork_count(*parent)

    async def reconcile_fork_counts(self) -> dict[tuple[str, str], int]:
        """
        Recount forks from repository lineage and overwrite the stored counts.

        Returns:
            The fork count of every repository on disk
        """
        identities = self.lifecycle.list_repositories()
        counts = Counter()
        for identity in identities:
            parent = self.lifecycle.fork_parent(*identity)
            if parent is not None:
                counts[parent] += 1

        result = {}
        for identity in identities:
            result[identity] = counts.get(identity, 0)
            await self.store.set_fork_count(*identity, result[identity])

        logger.info("reconciled fork counts for %d repositories", len(identities))
        return result
