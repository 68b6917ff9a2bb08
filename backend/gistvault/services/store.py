"""
GitStore - wires the content engine components from one Settings value.
"""

from dataclasses import dataclass

from gistvault.config import Settings
from gistvault.services.forks import ForkService, GistMetadataStore, InMemoryMetadataStore
from gistvault.services.git_command import GitCommandRunner
from gistvault.services.paths import RepositoryPathResolver
from gistvault.services.repositories import RepositoryLifecycleManager
from gistvault.services.revisions import RevisionReader
from gistvault.services.smart_http import SmartHTTPBridge
from gistvault.services.working_copy import WorkingCopyWriter


@dataclass
class GitStore:
    """All content engine components sharing one repository root."""
    settings: Settings
    resolver: RepositoryPathResolver
    runner: GitCommandRunner
    repositories: RepositoryLifecycleManager
    reader: RevisionReader
    writer: WorkingCopyWriter
    bridge: SmartHTTPBridge
    forks: ForkService

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        metadata_store: GistMetadataStore | None = None,
        runner: GitCommandRunner | None = None,
    ) -> "GitStore":
        resolver = RepositoryPathResolver(settings.home_dir)
        runner = runner or GitCommandRunner(settings.git_binary, settings.git_timeout)
        repositories = RepositoryLifecycleManager(resolver, runner, settings.default_branch)
        reader = RevisionReader(
            repositories,
            runner,
            truncate_limit=settings.truncate_limit,
            log_page_size=settings.log_page_size,
        )
        writer = WorkingCopyWriter(
            repositories,
            reader,
            runner,
            resolver.scratch_dir,
            commit_message=settings.commit_message,
        )
        return cls(
            settings=settings,
            resolver=resolver,
            runner=runner,
            repositories=repositories,
            reader=reader,
            writer=writer,
            bridge=SmartHTTPBridge(repositories, runner),
            forks=ForkService(repositories, metadata_store or InMemoryMetadataStore()),
        )
