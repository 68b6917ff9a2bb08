"""
Repository path resolution.

Maps a repository identity (owner, gist id) onto its canonical bare
repository directory. Pure: no filesystem access. Identifiers are used
verbatim, so distinct identities always resolve to distinct paths.
"""

import re
from pathlib import Path

from gistvault.services.errors import InvalidIdentifierError


IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]*$")
MAX_IDENTIFIER_LENGTH = 255
MAX_FILENAME_LENGTH = 255
REPO_SUFFIX = ".git"


def validate_identifier(value: str, kind: str = "identifier") -> str:
    """Reject identifiers that could escape the repository root."""
    if not isinstance(value, str) or not value:
        raise InvalidIdentifierError(f"Empty {kind}")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifierError(f"{kind} too long: {value[:32]}...")
    if "/" in value or "\\" in value or "\x00" in value or ".." in value:
        raise InvalidIdentifierError(f"Invalid {kind}: {value!r}")
    if not IDENTIFIER_PATTERN.match(value):
        raise InvalidIdentifierError(f"Invalid {kind}: {value!r}")
    return value


def validate_filename(filename: str) -> str:
    """Validate a gist filename (a single path component inside the tree)."""
    if not isinstance(filename, str) or not filename:
        raise InvalidIdentifierError("Empty filename")
    if len(filename) > MAX_FILENAME_LENGTH:
        raise InvalidIdentifierError(f"Filename too long: {filename[:32]}...")
    if "/" in filename or "\\" in filename or "\x00" in filename:
        raise InvalidIdentifierError(f"Invalid filename: {filename!r}")
    if filename in (".", "..") or filename.lower() == ".git":
        raise InvalidIdentifierError(f"Invalid filename: {filename!r}")
    return filename


class RepositoryPathResolver:
    """Resolves gist repositories under a configured root directory."""

    def __init__(self, root: Path):
        # Absolute, since git subprocesses run with other working directories.
        self.root = Path(root).resolve()

    @property
    def repos_dir(self) -> Path:
        return self.root / "repos"

    @property
    def scratch_dir(self) -> Path:
        """Where temporary working clones are created."""
        return self.root / "tmp" / "repos"

    @property
    def forks_dir(self) -> Path:
        """Staging area for fork clones before they are moved into place."""
        return self.root / "tmp" / "forks"

    @property
    def trash_dir(self) -> Path:
        """Staging area for repositories being deleted."""
        return self.root / "tmp" / "trash"

    def resolve(self, owner: str, gist_id: str) -> Path:
        validate_identifier(owner, "owner")
        validate_identifier(gist_id, "gist id")
        return self.repos_dir / owner / f"{gist_id}{REPO_SUFFIX}"

    def identity_of(self, path: Path) -> tuple[str, str] | None:
        """Inverse of resolve(). Returns None for paths outside the repos dir."""
        try:
            relative = Path(path).resolve().relative_to(self.repos_dir.resolve())
        except ValueError:
            return None
        parts = relative.parts
        if len(parts) != 2 or not parts[1].endswith(REPO_SUFFIX):
            return None
        owner, gist_id = parts[0], parts[1][: -len(REPO_SUFFIX)]
        try:
            validate_identifier(owner)
            validate_identifier(gist_id)
        except InvalidIdentifierError:
            return None
        return owner, gist_id
