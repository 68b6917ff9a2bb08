from gistvault.schemas.gist import (
    Commit,
    CommitFileChange,
    EditResult,
    EditStatus,
    FileEdit,
    GistFile,
)

__all__ = [
    "GistFile",
    "Commit",
    "CommitFileChange",
    "FileEdit",
    "EditResult",
    "EditStatus",
]
