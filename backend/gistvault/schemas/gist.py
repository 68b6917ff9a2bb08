"""
Schemas for gist content flowing in and out of the git content engine.

GistFile and Commit are projections built from git output on each read;
they are never persisted outside the repository itself.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from gistvault.services.paths import validate_filename


class GistFile(BaseModel):
    """One file of one revision."""
    filename: str
    content: bytes = b""
    truncated: bool = Field(
        False, description="Only a prefix of the stored content was returned"
    )

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class CommitFileChange(BaseModel):
    filename: str
    additions: int = 0
    deletions: int = 0
    binary: bool = False


class Commit(BaseModel):
    """A commit parsed from git log output."""
    hash: str
    author: str
    timestamp: int = Field(..., description="Author time, seconds since epoch")
    changed: str = Field("", description="Summary such as '1 file changed, 2 insertions(+)'")
    files: list[CommitFileChange] = Field(default_factory=list)


class FileEdit(BaseModel):
    """
    One file of an edit transaction.

    Example:
        FileEdit(filename="new.py", content="print(1)", old_filename="old.py")
    """
    filename: str
    content: str | bytes
    old_filename: Optional[str] = Field(None, description="Previous name when renaming")

    @field_validator("filename", "old_filename")
    @classmethod
    def check_filename(cls, v):
        if v is None:
            return v
        return validate_filename(v)

    def content_bytes(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")


class EditStatus(str, Enum):
    OK = "ok"
    CONFLICT = "conflict"


class EditResult(BaseModel):
    """Outcome of WorkingCopyWriter.commit_files()."""
    status: EditStatus
    commit: Optional[str] = Field(None, description="SHA of the pushed commit")

    @property
    def ok(self) -> bool:
        return self.status == EditStatus.OK
