"""
Error taxonomy for the git content engine.

Every git subprocess failure is classified into one of these types at the
boundary where the subprocess is invoked. Missing revisions and files are
not errors: readers return ``None`` for those.
"""


class GistGitError(Exception):
    """Base exception for git content engine operations."""
    pass


class InvalidIdentifierError(GistGitError, ValueError):
    """Raised when an owner, gist id or filename is not acceptable."""
    pass


class NotFoundError(GistGitError):
    """Raised when a repository (or other required resource) is absent."""
    pass


class RepositoryNotFoundError(NotFoundError):
    """Raised when the canonical repository for a gist does not exist."""

    def __init__(self, owner: str, gist_id: str):
        self.owner = owner
        self.gist_id = gist_id
        super().__init__(f"Repository {owner}/{gist_id} not found")


class AlreadyExistsError(GistGitError):
    """Raised when a repository path is already occupied."""
    pass


class ConflictError(GistGitError):
    """Raised when a push is rejected as non-fast-forward."""
    pass


class IOFailureError(GistGitError):
    """Raised on disk, permission or corruption failures."""

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)


class GitTimeoutError(IOFailureError):
    """Raised when a git subprocess exceeds its time budget."""
    pass


class ProtocolFailureError(GistGitError):
    """Raised when a smart-HTTP request is malformed."""
    pass
