"""
Repository lifecycle - creates, deletes and fork-clones bare repositories.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from uuid import uuid4

from dulwich.repo import Repo as DulwichRepo
from dulwich.server import update_server_info as dulwich_update_server_info

from gistvault.services.errors import (
    AlreadyExistsError,
    IOFailureError,
    RepositoryNotFoundError,
)
from gistvault.services.git_command import GitCommandRunner, ensure_ok
from gistvault.services.paths import REPO_SUFFIX, RepositoryPathResolver

logger = logging.getLogger(__name__)


class RepositoryLifecycleManager:
    """Owns the canonical bare repository of every gist."""

    def __init__(
        self,
        resolver: RepositoryPathResolver,
        runner: GitCommandRunner,
        default_branch: str = "master",
    ):
        self.resolver = resolver
        self.runner = runner
        self.default_branch = default_branch

    def repo_path(self, owner: str, gist_id: str) -> Path:
        return self.resolver.resolve(owner, gist_id)

    def exists(self, owner: str, gist_id: str) -> bool:
        return self.repo_path(owner, gist_id).is_dir()

    def require(self, owner: str, gist_id: str) -> Path:
        """Return the repository path, raising if there is no repository."""
        repo_path = self.repo_path(owner, gist_id)
        if not repo_path.is_dir():
            raise RepositoryNotFoundError(owner, gist_id)
        return repo_path

    async def init(self, owner: str, gist_id: str) -> Path:
        """Create a new empty bare repository."""
        repo_path = self.repo_path(owner, gist_id)
        if repo_path.exists():
            raise AlreadyExistsError(f"Repository {owner}/{gist_id} already exists")

        try:
            repo_path.parent.mkdir(parents=True, exist_ok=True)
            repo_path.mkdir()
        except FileExistsError:
            raise AlreadyExistsError(f"Repository {owner}/{gist_id} already exists")
        except OSError as e:
            logger.error("cannot create %s: %s", repo_path, e)
            raise IOFailureError(f"Cannot create repository {owner}/{gist_id}") from e

        try:
            repo = DulwichRepo.init_bare(
                str(repo_path), default_branch=self.default_branch.encode()
            )
            try:
                self._configure(repo)
            finally:
                repo.close()
        except OSError as e:
            shutil.rmtree(repo_path, ignore_errors=True)
            logger.error("cannot initialize %s: %s", repo_path, e)
            raise IOFailureError(f"Cannot create repository {owner}/{gist_id}") from e

        logger.info("initialized repository %s/%s", owner, gist_id)
        return repo_path

    async def delete(self, owner: str, gist_id: str) -> None:
        """
        Remove a repository.

        The directory is first renamed into the trash area so that observers
        see either the whole repository or nothing, then removed.
        """
        repo_path = self.require(owner, gist_id)
        trash_dir = self.resolver.trash_dir
        staged = trash_dir / f"{owner}-{gist_id}-{uuid4().hex}"

        try:
            trash_dir.mkdir(parents=True, exist_ok=True)
            os.rename(repo_path, staged)
        except FileNotFoundError:
            raise RepositoryNotFoundError(owner, gist_id)
        except OSError as e:
            logger.error("cannot move %s to trash: %s", repo_path, e)
            raise IOFailureError(f"Cannot delete repository {owner}/{gist_id}") from e

        try:
            await asyncio.to_thread(shutil.rmtree, staged)
        except OSError as e:
            # Already invisible to readers; the trash entry is garbage only.
            logger.warning("could not purge %s: %s", staged, e)

        logger.info("deleted repository %s/%s", owner, gist_id)

    async def fork_clone(
        self,
        src_owner: str,
        src_gist_id: str,
        dst_owner: str,
        dst_gist_id: str,
    ) -> Path:
        """
        Clone a repository into a new bare repository.

        The clone is built in a staging directory and renamed into place, so a
        timeout or failure never leaves a half-written destination.
        """
        src_path = self.require(src_owner, src_gist_id)
        dst_path = self.repo_path(dst_owner, dst_gist_id)
        if dst_path.exists():
            raise AlreadyExistsError(f"Repository {dst_owner}/{dst_gist_id} already exists")

        staging = self.resolver.forks_dir / f"{uuid4().hex}{REPO_SUFFIX}"
        try:
            staging.parent.mkdir(parents=True, exist_ok=True)
            result = await self.runner.run(
                ["clone", "--bare", "--quiet", str(src_path), str(staging)]
            )
            ensure_ok(result, "clone --bare")

            repo = DulwichRepo(str(staging))
            try:
                self._configure(repo)
            finally:
                repo.close()

            dst_path.parent.mkdir(parents=True, exist_ok=True)
            if dst_path.exists():
                raise AlreadyExistsError(
                    f"Repository {dst_owner}/{dst_gist_id} already exists"
                )
            os.rename(staging, dst_path)
        except OSError as e:
            logger.error("fork of %s/%s failed: %s", src_owner, src_gist_id, e)
            raise IOFailureError(f"Cannot fork repository {src_owner}/{src_gist_id}") from e
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        logger.info(
            "forked %s/%s into %s/%s", src_owner, src_gist_id, dst_owner, dst_gist_id
        )
        return dst_path

    async def update_server_info(self, owner: str, gist_id: str) -> None:
        """Regenerate info/refs and objects/info/packs."""
        repo_path = self.require(owner, gist_id)
        try:
            repo = DulwichRepo(str(repo_path))
            try:
                dulwich_update_server_info(repo)
            finally:
                repo.close()
        except OSError as e:
            logger.error("update-server-info failed for %s/%s: %s", owner, gist_id, e)
            raise IOFailureError(f"Cannot update server info for {owner}/{gist_id}") from e

    def default_branch_of(self, owner: str, gist_id: str) -> str:
        """Get the branch HEAD points to in the canonical repository."""
        repo_path = self.require(owner, gist_id)
        repo = DulwichRepo(str(repo_path))
        try:
            head_ref = repo.refs.read_ref(b"HEAD")
        finally:
            repo.close()
        if head_ref and head_ref.startswith(b"ref: refs/heads/"):
            return head_ref[16:].decode("utf-8")
        return self.default_branch

    def fork_parent(self, owner: str, gist_id: str) -> tuple[str, str] | None:
        """Identity of the repository this one was forked from, if any."""
        repo_path = self.require(owner, gist_id)
        repo = DulwichRepo(str(repo_path))
        try:
            config = repo.get_config()
            try:
                url = config.get((b"remote", b"origin"), b"url")
            except KeyError:
                return None
        finally:
            repo.close()
        return self.resolver.identity_of(Path(os.fsdecode(url)))

    def list_repositories(self) -> list[tuple[str, str]]:
        """List the identities of all repositories on disk."""
        repos_dir = self.resolver.repos_dir
        if not repos_dir.is_dir():
            return []
        identities = []
        for owner_dir in sorted(repos_dir.iterdir()):
            if not owner_dir.is_dir():
                continue
            for path in sorted(owner_dir.iterdir()):
                if path.is_dir() and path.name.endswith(REPO_SUFFIX):
                    identity = self.resolver.identity_of(path)
                    if identity:
                        identities.append(identity)
        return identities

    @staticmethod
    def _configure(repo: DulwichRepo) -> None:
        # History of a canonical repository only moves forward.
        config = repo.get_config()
        config.set((b"receive",), b"denyNonFastForwards", True)
        config.set((b"receive",), b"denyDeletes", True)
        config.write_to_path()
