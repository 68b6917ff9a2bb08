"""
Git command runner.

All git subprocesses are spawned from here, which makes this module:
- The single place where timeouts and cancellation are enforced
- The single place where exit codes are classified
- Easy to replace with a fake in tests

A child process is always killed and reaped before an operation returns,
whether it finished, timed out, or the awaiting task was cancelled.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from gistvault.services.errors import GitTimeoutError, IOFailureError

logger = logging.getLogger(__name__)


# git exits with 128 for "fatal" errors such as an unknown revision or a
# path missing from a tree. Readers treat this status as "not found".
GIT_NOT_FOUND_EXIT_CODE = 128

READ_CHUNK_SIZE = 64 * 1024


class ExitStatus(str, Enum):
    """Classification of a git exit code."""
    OK = "ok"
    NOT_FOUND = "not_found"
    FAILURE = "failure"


def classify_exit(returncode: int) -> ExitStatus:
    """Translate a git exit code into an ExitStatus.

    Only GIT_NOT_FOUND_EXIT_CODE maps to NOT_FOUND. Every other non-zero
    code (including negative codes for signalled processes) is a FAILURE.
    """
    if returncode == 0:
        return ExitStatus.OK
    if returncode == GIT_NOT_FOUND_EXIT_CODE:
        return ExitStatus.NOT_FOUND
    return ExitStatus.FAILURE


@dataclass
class GitResult:
    """Outcome of a single git invocation."""
    args: list[str]
    returncode: int
    stdout: bytes
    stderr: bytes
    truncated: bool = False

    @property
    def status(self) -> ExitStatus:
        # A process we stopped after reading enough output is a success.
        if self.truncated:
            return ExitStatus.OK
        return classify_exit(self.returncode)

    @property
    def ok(self) -> bool:
        return self.status == ExitStatus.OK

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace").strip()


def ensure_ok(result: GitResult, action: str) -> GitResult:
    """Raise IOFailureError unless the invocation succeeded."""
    if not result.ok:
        logger.error(
            "git %s failed (exit %s): %s", action, result.returncode, result.stderr_text
        )
        raise IOFailureError(f"git {action} failed", stderr=result.stderr_text)
    return result


class GitCommandRunner:
    """Runs git as an asyncio subprocess."""

    def __init__(self, git_binary: str = "git", timeout: float = 60.0):
        self.git_binary = git_binary
        self.timeout = timeout

    def _environment(self, extra: dict[str, str] | None) -> dict[str, str]:
        env = os.environ.copy()
        # Never prompt, and keep messages stable for stderr matching.
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["LC_ALL"] = "C"
        if extra:
            env.update(extra)
        return env

    async def run(
        self,
        args: list[str],
        cwd: Path | None = None,
        input: bytes | None = None,
        timeout: float | None = None,
        stdout_limit: int | None = None,
        env: dict[str, str] | None = None,
    ) -> GitResult:
        """
        Run ``git <args>`` and collect its output.

        Args:
            args: Arguments after the git binary
            cwd: Working directory
            input: Bytes piped to stdin (stdin is closed when None)
            timeout: Seconds before the process is killed (default: self.timeout)
            stdout_limit: Stop reading after this many bytes and kill the process
            env: Extra environment variables

        Returns:
            GitResult, whatever the exit code

        Raises:
            GitTimeoutError: If the timeout expires
            IOFailureError: If git cannot be started
        """
        cmd = [self.git_binary, *args]
        timeout = self.timeout if timeout is None else timeout
        started = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd) if cwd else None,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._environment(env),
            )
        except OSError as e:
            logger.error("could not start %s: %s", self.git_binary, e)
            raise IOFailureError(f"Could not start git: {e}") from e

        try:
            if stdout_limit is None:
                stdout, stderr = await asyncio.wait_for(proc.communicate(input), timeout)
                truncated = False
            else:
                stdout, stderr, truncated = await asyncio.wait_for(
                    self._read_limited(proc, stdout_limit), timeout
                )
        except asyncio.TimeoutError:
            logger.warning("git %s timed out after %.1fs", args[0] if args else "", timeout)
            raise GitTimeoutError(f"git {args[0] if args else ''} timed out")
        finally:
            await self._reap(proc)

        result = GitResult(
            args=list(args),
            returncode=proc.returncode,
            stdout=stdout,
            stderr=stderr,
            truncated=truncated,
        )
        logger.debug(
            "git %s -> exit %s in %.3fs",
            " ".join(args),
            proc.returncode,
            time.monotonic() - started,
        )
        return result

    async def _read_limited(self, proc, limit: int) -> tuple[bytes, bytes, bool]:
        """Read at most ``limit`` bytes of stdout, killing the process past that."""
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        try:
            chunks = []
            size = 0
            while size <= limit:
                chunk = await proc.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                chunks.append(chunk)
                size += len(chunk)

            data = b"".join(chunks)
            truncated = len(data) > limit
            if truncated:
                data = data[:limit]
                self._kill(proc)

            stderr = await stderr_task
            await proc.wait()
            return data, stderr, truncated
        finally:
            if not stderr_task.done():
                stderr_task.cancel()

    @staticmethod
    def _kill(proc) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    async def _reap(self, proc) -> None:
        """Kill the process if still running and wait for it to exit."""
        if proc.returncode is None:
            self._kill(proc)
            await proc.wait()
