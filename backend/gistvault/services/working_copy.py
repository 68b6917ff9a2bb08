"""
Working-copy writer - turns a set of files into a commit on a gist.

Each edit runs as an EditTransaction with these states:
- start: nothing allocated yet
- cloned: private scratch clone of the canonical repository exists
- files_written: working tree replaced by the submitted files
- staged: all adds, modifications and deletions staged
- committed: one commit created in the scratch clone
- pushed: commit pushed to the canonical repository
- done: server info regenerated (terminal)
- failed: any step raised (terminal)

Only the push touches the canonical repository. The scratch clone is
removed when the transaction closes, whatever state it ended in.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from gistvault.schemas.gist import EditResult, EditStatus, FileEdit
from gistvault.services.errors import ConflictError, IOFailureError, InvalidIdentifierError
from gistvault.services.git_command import GitCommandRunner, GitResult, ensure_ok
from gistvault.services.paths import validate_identifier
from gistvault.services.repositories import RepositoryLifecycleManager
from gistvault.services.revisions import RevisionReader

logger = logging.getLogger(__name__)


class EditState(str, Enum):
    """Edit transaction states."""
    START = "start"
    CLONED = "cloned"
    FILES_WRITTEN = "files_written"
    STAGED = "staged"
    COMMITTED = "committed"
    PUSHED = "pushed"
    DONE = "done"
    FAILED = "failed"


# Valid state transitions
VALID_TRANSITIONS: Dict[EditState, List[EditState]] = {
    EditState.START: [EditState.CLONED, EditState.FAILED],
    EditState.CLONED: [EditState.FILES_WRITTEN, EditState.FAILED],
    EditState.FILES_WRITTEN: [EditState.STAGED, EditState.FAILED],
    EditState.STAGED: [EditState.COMMITTED, EditState.FAILED],
    EditState.COMMITTED: [EditState.PUSHED, EditState.FAILED],
    EditState.PUSHED: [EditState.DONE, EditState.FAILED],
    EditState.DONE: [],  # Terminal
    EditState.FAILED: [],  # Terminal
}

# Written to .git/info/attributes so submitted .gitattributes files cannot
# rewrite content on the way into the object store.
RAW_ATTRIBUTES = "* -text -eol -ident -filter -working-tree-encoding\n"

# Host config must not convert line endings either.
RAW_CONTENT_CONFIG = ["-c", "core.autocrlf=false", "-c", "core.safecrlf=false"]

TERMINAL_STATES = {EditState.DONE, EditState.FAILED}

# Push output that means the canonical branch moved underneath us.
CONFLICT_MARKERS = (
    "fetch first",
    "non-fast-forward",
    "failed to update ref",
    "cannot lock ref",
    "incorrect old value",
)


def is_push_conflict(result: GitResult) -> bool:
    output = (result.stdout + result.stderr).decode("utf-8", errors="replace")
    return "rejected" in output and any(marker in output for marker in CONFLICT_MARKERS)


class EditTransaction:
    """One edit of one gist, performed in a private scratch clone."""

    def __init__(
        self,
        lifecycle: RepositoryLifecycleManager,
        reader: RevisionReader,
        runner: GitCommandRunner,
        owner: str,
        gist_id: str,
        session_id: str,
        scratch_dir: Path,
    ):
        self.lifecycle = lifecycle
        self.reader = reader
        self.runner = runner
        self.owner = owner
        self.gist_id = gist_id
        self.session_id = validate_identifier(session_id, "session id")
        self.scratch_dir = scratch_dir

        self.work_dir: Optional[Path] = None
        self.branch: Optional[str] = None
        self.base_commit: Optional[str] = None
        self.commit_sha: Optional[str] = None

        self._state = EditState.START
        self._history: List[Dict[str, Any]] = []

    @property
    def state(self) -> EditState:
        return self._state

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    def can_transition_to(self, new_state: EditState) -> bool:
        return new_state in VALID_TRANSITIONS.get(self._state, [])

    def _transition(self, new_state: EditState) -> None:
        if not self.can_transition_to(new_state):
            raise ValueError(
                f"Invalid edit transition: {self._state.value} -> {new_state.value}"
            )
        self._history.append({
            "from": self._state,
            "to": new_state,
            "timestamp": datetime.utcnow(),
        })
        self._state = new_state

    @asynccontextmanager
    async def _step(self, target: EditState):
        """Run one step; success moves to ``target``, any error to FAILED."""
        if not self.can_transition_to(target):
            raise ValueError(
                f"Invalid edit transition: {self._state.value} -> {target.value}"
            )
        try:
            yield
        except BaseException:
            self._transition(EditState.FAILED)
            raise
        self._transition(target)

    async def __aenter__(self) -> "EditTransaction":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None and self._state not in TERMINAL_STATES:
            self._transition(EditState.FAILED)
        await self.close()

    async def close(self) -> None:
        """Remove the scratch clone. Safe to call more than once."""
        work_dir, self.work_dir = self.work_dir, None
        if work_dir is None:
            return
        await asyncio.to_thread(shutil.rmtree, work_dir, True)
        if work_dir.exists():
            logger.warning("scratch clone %s could not be removed", work_dir)

    async def clone(self) -> None:
        async with self._step(EditState.CLONED):
            repo_path = self.lifecycle.require(self.owner, self.gist_id)
            self.branch = self.lifecycle.default_branch_of(self.owner, self.gist_id)
            self.base_commit = await self.reader.head_commit(self.owner, self.gist_id)

            try:
                self.scratch_dir.mkdir(parents=True, exist_ok=True)
                self.work_dir = Path(
                    tempfile.mkdtemp(prefix=f"{self.session_id}-", dir=self.scratch_dir)
                )
            except OSError as e:
                raise IOFailureError(f"Cannot allocate scratch clone: {e}") from e

            ensure_ok(
                await self.runner.run(
                    ["clone", "--quiet", str(repo_path), str(self.work_dir)]
                ),
                "clone",
            )
            if self.base_commit is None:
                # First commit: make sure it lands on the canonical default branch.
                ensure_ok(
                    await self.runner.run(
                        ["symbolic-ref", "HEAD", f"refs/heads/{self.branch}"],
                        cwd=self.work_dir,
                    ),
                    "symbolic-ref",
                )
            logger.debug(
                "cloned %s/%s into %s (base %s)",
                self.owner, self.gist_id, self.work_dir, self.base_commit or "empty",
            )

    async def write_files(self, files: List[FileEdit]) -> None:
        """
        Replace the working tree with ``files``.

        Files present in the clone but absent from ``files`` are deleted.
        An entry carrying ``old_filename`` renames that file.
        """
        async with self._step(EditState.FILES_WRITTEN):
            names = [f.filename for f in files]
            duplicates = {name for name in names if names.count(name) > 1}
            if duplicates:
                raise InvalidIdentifierError(
                    f"Duplicate filenames: {', '.join(sorted(duplicates))}"
                )

            try:
                for entry in os.scandir(self.work_dir):
                    if entry.name == ".git":
                        continue
                    if entry.is_dir(follow_symlinks=False):
                        shutil.rmtree(entry.path)
                    else:
                        os.unlink(entry.path)

                for edit in files:
                    target = self.work_dir / edit.filename
                    if target.parent != self.work_dir:
                        raise InvalidIdentifierError(f"Invalid filename: {edit.filename!r}")
                    target.write_bytes(edit.content_bytes())
                    if edit.old_filename and edit.old_filename != edit.filename:
                        logger.debug("renaming %s -> %s", edit.old_filename, edit.filename)
            except OSError as e:
                raise IOFailureError(f"Cannot write files: {e}") from e

    async def stage(self) -> None:
        """Stage the working tree exactly as written, ignoring gitignore and gitattributes."""
        async with self._step(EditState.STAGED):
            try:
                info_dir = self.work_dir / ".git" / "info"
                info_dir.mkdir(parents=True, exist_ok=True)
                (info_dir / "attributes").write_text(RAW_ATTRIBUTES)
            except OSError as e:
                raise IOFailureError(f"Cannot write attributes: {e}") from e
            ensure_ok(
                await self.runner.run(
                    [*RAW_CONTENT_CONFIG, "add", "--all", "--force"], cwd=self.work_dir
                ),
                "add",
            )

    async def commit(
        self,
        author_name: str,
        author_email: str | None = None,
        message: str = "",
    ) -> str:
        """Commit everything staged, authored by the invoking user."""
        async with self._step(EditState.COMMITTED):
            email = author_email or f"{author_name}@localhost"
            env = {
                "GIT_AUTHOR_NAME": author_name,
                "GIT_AUTHOR_EMAIL": email,
                "GIT_COMMITTER_NAME": author_name,
                "GIT_COMMITTER_EMAIL": email,
            }
            ensure_ok(
                await self.runner.run(
                    [
                        *RAW_CONTENT_CONFIG,
                        "-c", "commit.gpgsign=false",
                        "commit", "--quiet", "--no-verify",
                        "--allow-empty", "--allow-empty-message",
                        "-m", message,
                    ],
                    cwd=self.work_dir,
                    env=env,
                ),
                "commit",
            )
            result = ensure_ok(
                await self.runner.run(["rev-parse", "HEAD"], cwd=self.work_dir), "rev-parse"
            )
            self.commit_sha = result.text.strip()
        return self.commit_sha

    async def push(self) -> None:
        """
        Push the commit to the canonical repository.

        Raises:
            ConflictError: If the canonical branch moved since the clone
        """
        async with self._step(EditState.PUSHED):
            result = await self.runner.run(
                ["push", "--porcelain", "origin", f"HEAD:refs/heads/{self.branch}"],
                cwd=self.work_dir,
            )
            if not result.ok:
                if is_push_conflict(result):
                    logger.warning(
                        "push to %s/%s rejected: branch %s moved",
                        self.owner, self.gist_id, self.branch,
                    )
                    raise ConflictError(
                        f"Gist {self.owner}/{self.gist_id} changed since the edit started"
                    )
                ensure_ok(result, "push")

    async def finish(self) -> None:
        """Refresh server info after the push."""
        async with self._step(EditState.DONE):
            await self.lifecycle.update_server_info(self.owner, self.gist_id)


class WorkingCopyWriter:
    """Creates edit transactions and runs them end to end."""

    def __init__(
        self,
        lifecycle: RepositoryLifecycleManager,
        reader: RevisionReader,
        runner: GitCommandRunner,
        scratch_dir: Path,
        commit_message: str = "",
    ):
        self.lifecycle = lifecycle
        self.reader = reader
        self.runner = runner
        self.scratch_dir = scratch_dir
        self.commit_message = commit_message

    def transaction(
        self, owner: str, gist_id: str, session_id: str | None = None
    ) -> EditTransaction:
        return EditTransaction(
            self.lifecycle,
            self.reader,
            self.runner,
            owner,
            gist_id,
            session_id or gist_id,
            self.scratch_dir,
        )

    async def commit_files(
        self,
        owner: str,
        gist_id: str,
        files: List[FileEdit],
        author_name: str,
        author_email: str | None = None,
        message: str | None = None,
        session_id: str | None = None,
    ) -> EditResult:
        """
        Make ``files`` the content of the gist in one commit.

        Returns:
            EditResult with status ok (and the commit SHA) or conflict

        Raises:
            RepositoryNotFoundError, IOFailureError, InvalidIdentifierError
        """
        async with self.transaction(owner, gist_id, session_id) as tx:
            await tx.clone()
            await tx.write_files(files)
            await tx.stage()
            await tx.commit(
                author_name,
                author_email,
                self.commit_message if message is None else message,
            )
            try:
                await tx.push()
            except ConflictError:
                return EditResult(status=EditStatus.CONFLICT)
            try:
                await tx.finish()
            except IOFailureError as e:
                # The commit is already on the canonical branch.
                logger.warning(
                    "server info for %s/%s not refreshed after %s: %s",
                    owner, gist_id, tx.commit_sha, e,
                )

        logger.info("committed %s to %s/%s", tx.commit_sha, owner, gist_id)
        return EditResult(status=EditStatus.OK, commit=tx.commit_sha)
