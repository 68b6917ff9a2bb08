"""
Revision reader - file listings, file content and history of a gist.

A revision or file that does not exist is an expected condition (a user
browsing a deleted file, an empty repository) and is returned as ``None``,
never raised. Only a missing repository or a real git failure raises.
"""

import logging
import re

from gistvault.schemas.gist import Commit, CommitFileChange, GistFile
from gistvault.services.git_command import ExitStatus, GitCommandRunner, ensure_ok
from gistvault.services.paths import validate_filename
from gistvault.services.errors import InvalidIdentifierError
from gistvault.services.repositories import RepositoryLifecycleManager

logger = logging.getLogger(__name__)


# Record separator before each commit, unit separator between header fields.
LOG_FORMAT = "%x1e%H%x1f%an%x1f%at"

_UNSAFE_REVISION = re.compile(r"[\s:\x00]")


def is_usable_revision(revision: str) -> bool:
    """Check a revision can be passed to git without being read as an option."""
    return (
        isinstance(revision, str)
        and bool(revision)
        and not revision.startswith("-")
        and not _UNSAFE_REVISION.search(revision)
    )


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def summarize_changes(files: list[CommitFileChange]) -> str:
    """Build a git --shortstat style summary from numstat entries."""
    if not files:
        return ""
    additions = sum(f.additions for f in files)
    deletions = sum(f.deletions for f in files)
    parts = [_plural(len(files), "file changed", "files changed")]
    if additions or not deletions:
        parts.append(_plural(additions, "insertion(+)", "insertions(+)"))
    if deletions or not additions:
        parts.append(_plural(deletions, "deletion(-)", "deletions(-)"))
    return ", ".join(parts)


# Ends the header line of a log record.
_HEADER_END = re.compile(r"[\n\x00]")


def parse_log(output: str) -> list[Commit]:
    """
    Parse ``git log -z --format=LOG_FORMAT --numstat`` output.

    Numstat entries are NUL terminated, so paths arrive verbatim, including
    ones with tabs, newlines or non-ASCII characters.
    """
    commits = []
    for record in output.split("\x1e"):
        record = record.lstrip("\n\x00")
        if not record:
            continue
        header, *rest = _HEADER_END.split(record, maxsplit=1)
        body = rest[0] if rest else ""
        fields = header.split("\x1f")
        if len(fields) != 3:
            logger.warning("skipping unparseable log header: %r", header)
            continue
        commit_hash, author, timestamp = fields

        files = []
        for entry in body.split("\x00"):
            parts = entry.lstrip("\n").split("\t", 2)
            if len(parts) != 3:
                continue
            added, deleted, filename = parts
            if added == "-" or deleted == "-":
                files.append(CommitFileChange(filename=filename, binary=True))
            else:
                files.append(
                    CommitFileChange(
                        filename=filename, additions=int(added), deletions=int(deleted)
                    )
                )

        commits.append(
            Commit(
                hash=commit_hash,
                author=author,
                timestamp=int(timestamp),
                changed=summarize_changes(files),
                files=files,
            )
        )
    return commits


class RevisionReader:
    """Read-only access to the content and history of gist repositories."""

    def __init__(
        self,
        lifecycle: RepositoryLifecycleManager,
        runner: GitCommandRunner,
        truncate_limit: int = 2 << 18,
        log_page_size: int = 10,
    ):
        self.lifecycle = lifecycle
        self.runner = runner
        self.truncate_limit = truncate_limit
        self.log_page_size = log_page_size

    def _git_dir_args(self, owner: str, gist_id: str) -> list[str]:
        return ["--git-dir", str(self.lifecycle.require(owner, gist_id))]

    async def list_files(
        self, owner: str, gist_id: str, revision: str = "HEAD"
    ) -> list[str] | None:
        """
        List the files in the tree at ``revision``.

        Returns:
            Filenames in tree order, or None if the revision has no tree
        """
        base = self._git_dir_args(owner, gist_id)
        if not is_usable_revision(revision):
            return None

        result = await self.runner.run([*base, "ls-tree", "-z", revision])
        if result.status == ExitStatus.NOT_FOUND:
            return None
        ensure_ok(result, "ls-tree")

        filenames = []
        for entry in result.stdout.split(b"\x00"):
            if not entry:
                continue
            meta, _, name = entry.partition(b"\t")
            # Only blobs are gist files; subtrees can only come from a raw push.
            if meta.split(b" ")[1:2] == [b"blob"]:
                filenames.append(name.decode("utf-8", errors="replace"))
        return filenames

    async def read_file(
        self,
        owner: str,
        gist_id: str,
        revision: str,
        filename: str,
        truncate: bool = True,
    ) -> GistFile | None:
        """
        Read one file at ``revision``.

        With ``truncate``, at most ``truncate_limit`` bytes are returned and
        ``truncated`` tells whether more content exists.

        Returns:
            GistFile, or None if the revision or the file does not exist
        """
        base = self._git_dir_args(owner, gist_id)
        if not is_usable_revision(revision):
            return None
        try:
            validate_filename(filename)
        except InvalidIdentifierError:
            return None

        result = await self.runner.run(
            [*base, "cat-file", "blob", f"{revision}:{filename}"],
            stdout_limit=self.truncate_limit if truncate else None,
        )
        if result.status == ExitStatus.NOT_FOUND:
            return None
        ensure_ok(result, "cat-file")

        return GistFile(filename=filename, content=result.stdout, truncated=result.truncated)

    async def files(
        self, owner: str, gist_id: str, revision: str = "HEAD"
    ) -> list[GistFile] | None:
        """Read every file at ``revision``, truncated."""
        filenames = await self.list_files(owner, gist_id, revision)
        if filenames is None:
            return None

        files = []
        for filename in filenames:
            gist_file = await self.read_file(owner, gist_id, revision, filename, truncate=True)
            if gist_file is not None:
                files.append(gist_file)
        return files

    async def log(
        self, owner: str, gist_id: str, skip: int | str = 0, limit: int | None = None
    ) -> list[Commit]:
        """
        Get commits starting ``skip`` commits back from HEAD.

        An empty repository has no history and yields an empty list.
        """
        base = self._git_dir_args(owner, gist_id)
        skip = int(skip)
        if skip < 0:
            raise ValueError(f"skip must be >= 0, got {skip}")
        limit = self.log_page_size if limit is None else limit

        result = await self.runner.run([
            "-c", "core.quotePath=false",
            *base,
            "log",
            "-z",
            f"--format={LOG_FORMAT}",
            "--numstat",
            "--no-renames",
            "--no-color",
            f"--skip={skip}",
            f"--max-count={limit}",
            "HEAD",
            "--",
        ])
        if result.status == ExitStatus.NOT_FOUND:
            return []
        ensure_ok(result, "log")
        return parse_log(result.text)

    async def commit_count(self, owner: str, gist_id: str) -> str:
        """Number of commits reachable from any ref, as text."""
        base = self._git_dir_args(owner, gist_id)
        result = ensure_ok(
            await self.runner.run([*base, "rev-list", "--all", "--count"]), "rev-list"
        )
        return result.text.strip()

    async def head_commit(self, owner: str, gist_id: str) -> str | None:
        """SHA of HEAD, or None for an empty repository."""
        base = self._git_dir_args(owner, gist_id)
        result = await self.runner.run([*base, "rev-parse", "--verify", "--quiet", "HEAD^{commit}"])
        # --verify --quiet exits 1 for an unknown revision.
        if result.returncode == 1 or result.status == ExitStatus.NOT_FOUND:
            return None
        return ensure_ok(result, "rev-parse").text.strip()
