from pydantic import BaseModel
from functools import lru_cache
from pathlib import Path
import os


class Settings(BaseModel):
    app_name: str = "gistvault"
    home_dir: Path = Path.home() / ".gistvault"
    git_binary: str = "git"
    git_timeout: float = 60.0  # seconds, per git subprocess
    truncate_limit: int = 2 << 18  # bytes returned by a truncated file read
    log_page_size: int = 10
    default_branch: str = "master"
    commit_message: str = ""
    allow_push: bool = False  # default access policy for git-receive-pack
    log_level: str = "INFO"

    @property
    def repos_dir(self) -> Path:
        return self.home_dir / "repos"

    @property
    def tmp_dir(self) -> Path:
        return self.home_dir / "tmp"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@lru_cache
def get_settings() -> Settings:
    overrides = {}
    if os.getenv("GISTVAULT_HOME"):
        overrides["home_dir"] = Path(os.environ["GISTVAULT_HOME"])
    return Settings(
        git_binary=os.getenv("GISTVAULT_GIT_BINARY", "git"),
        git_timeout=float(os.getenv("GISTVAULT_GIT_TIMEOUT", "60")),
        truncate_limit=int(os.getenv("GISTVAULT_TRUNCATE_LIMIT", str(2 << 18))),
        allow_push=_env_bool("GISTVAULT_ALLOW_PUSH"),
        log_level=os.getenv("GISTVAULT_LOG_LEVEL", "INFO"),
        **overrides,
    )
