"""
Unit tests for GitCommandRunner and exit-code classification.

These tests verify:
- Exit code 128 (and only 128) is classified as "not found"
- Output capture, stdin piping and environment passing
- Bounded stdout reads
- Timeouts kill the child process
- Missing git binary becomes an IOFailureError
"""
import asyncio

import pytest

from gistvault.services.errors import GitTimeoutError, IOFailureError
from gistvault.services.git_command import (
    GIT_NOT_FOUND_EXIT_CODE,
    ExitStatus,
    GitCommandRunner,
    GitResult,
    classify_exit,
    ensure_ok,
)


@pytest.fixture
def runner():
    return GitCommandRunner(timeout=30.0)


# -----------------------------------------------------------------------------
# Classification Tests
# -----------------------------------------------------------------------------

class TestClassifyExit:
    """Tests for classify_exit()."""

    def test_zero_is_ok(self):
        assert classify_exit(0) == ExitStatus.OK

    def test_128_is_not_found(self):
        assert GIT_NOT_FOUND_EXIT_CODE == 128
        assert classify_exit(128) == ExitStatus.NOT_FOUND

    @pytest.mark.parametrize("code", [1, 2, 127, 129, 255, -9])
    def test_other_codes_are_failures(self, code):
        assert classify_exit(code) == ExitStatus.FAILURE

    def test_truncated_result_is_ok_even_when_killed(self):
        result = GitResult(args=["cat-file"], returncode=-9, stdout=b"x", stderr=b"", truncated=True)
        assert result.status == ExitStatus.OK

    def test_ensure_ok_raises_io_failure(self):
        result = GitResult(args=["log"], returncode=1, stdout=b"", stderr=b"boom")
        with pytest.raises(IOFailureError) as exc_info:
            ensure_ok(result, "log")
        assert exc_info.value.stderr == "boom"

    def test_ensure_ok_raises_for_not_found_too(self):
        result = GitResult(args=["log"], returncode=128, stdout=b"", stderr=b"")
        with pytest.raises(IOFailureError):
            ensure_ok(result, "log")


# -----------------------------------------------------------------------------
# Run Tests
# -----------------------------------------------------------------------------

class TestRun:
    """Tests for GitCommandRunner.run()."""

    async def test_captures_stdout(self, runner):
        result = await runner.run(["--version"])
        assert result.ok
        assert result.text.startswith("git version")

    async def test_unknown_revision_is_not_found(self, runner, tmp_path, git):
        git(["init", "--bare", "--quiet", str(tmp_path / "r.git")])
        result = await runner.run(
            ["--git-dir", str(tmp_path / "r.git"), "cat-file", "blob", "HEAD:nope.txt"]
        )
        assert result.status == ExitStatus.NOT_FOUND
        assert result.stderr_text

    async def test_pipes_input(self, runner, tmp_path, git):
        git(["init", "--bare", "--quiet", str(tmp_path / "r.git")])
        result = await runner.run(
            ["--git-dir", str(tmp_path / "r.git"), "hash-object", "--stdin"],
            input=b"hello",
        )
        assert result.ok
        assert len(result.text.strip()) == 40

    async def test_passes_environment(self, runner):
        result = await runner.run(["var", "GIT_AUTHOR_IDENT"], env={
            "GIT_AUTHOR_NAME": "Tester",
            "GIT_AUTHOR_EMAIL": "tester@example.com",
        })
        assert result.ok
        assert "Tester <tester@example.com>" in result.text

    async def test_stdout_limit_truncates(self, runner, tmp_path, git):
        repo = tmp_path / "r.git"
        git(["init", "--bare", "--quiet", str(repo)])
        sha = git(["--git-dir", str(repo), "hash-object", "-w", "--stdin"], input=b"x" * 1000).decode().strip()

        result = await runner.run(["--git-dir", str(repo), "cat-file", "blob", sha], stdout_limit=100)
        assert result.ok
        assert result.truncated
        assert result.stdout == b"x" * 100

    async def test_stdout_limit_not_reached(self, runner, tmp_path, git):
        repo = tmp_path / "r.git"
        git(["init", "--bare", "--quiet", str(repo)])
        sha = git(["--git-dir", str(repo), "hash-object", "-w", "--stdin"], input=b"x" * 100).decode().strip()

        result = await runner.run(["--git-dir", str(repo), "cat-file", "blob", sha], stdout_limit=100)
        assert result.ok
        assert not result.truncated
        assert result.stdout == b"x" * 100

    async def test_timeout_raises_and_kills(self, monkeypatch):
        # Any executable works as the "git binary" for the runner mechanics.
        runner = GitCommandRunner(git_binary="sleep", timeout=0.2)
        spawned = []
        original = asyncio.create_subprocess_exec

        async def spy(*args, **kwargs):
            proc = await original(*args, **kwargs)
            spawned.append(proc)
            return proc

        monkeypatch.setattr(asyncio, "create_subprocess_exec", spy)

        with pytest.raises(GitTimeoutError):
            await runner.run(["30"])

        assert len(spawned) == 1
        assert spawned[0].returncode is not None

    async def test_cancellation_kills_child(self, monkeypatch):
        runner = GitCommandRunner(git_binary="sleep", timeout=30.0)
        spawned = []
        original = asyncio.create_subprocess_exec

        async def spy(*args, **kwargs):
            proc = await original(*args, **kwargs)
            spawned.append(proc)
            return proc

        monkeypatch.setattr(asyncio, "create_subprocess_exec", spy)

        task = asyncio.ensure_future(runner.run(["30"]))
        while not spawned:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert spawned[0].returncode is not None

    async def test_missing_binary_is_io_failure(self):
        runner = GitCommandRunner(git_binary="/nonexistent/git-binary")
        with pytest.raises(IOFailureError):
            await runner.run(["--version"])


