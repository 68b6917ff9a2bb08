"""
Tests for the gistvault command line.

The commands run their own event loop, so these tests are synchronous and
prepare repositories with asyncio.run().
"""
import asyncio

import pytest
from click.testing import CliRunner

import gistvault.cli as cli_module
from gistvault.cli import cli
from gistvault.schemas.gist import FileEdit


@pytest.fixture
def runner(monkeypatch, git_store):
    monkeypatch.setattr(cli_module, "get_store", lambda: git_store)
    return CliRunner()


@pytest.fixture
def populated(git_store, owner, gist_id):
    async def _populate():
        await git_store.repositories.init(owner, gist_id)
        await git_store.writer.commit_files(
            owner, gist_id, [FileEdit(filename="hello.txt", content="hello")], author_name="alice"
        )
        await git_store.forks.fork(owner, gist_id, "bob", gist_id)

    asyncio.run(_populate())
    return owner, gist_id


class TestFilesCommand:
    """Tests for `gistvault files`."""

    def test_lists_files(self, runner, populated):
        result = runner.invoke(cli, ["files", *populated])
        assert result.exit_code == 0, result.output
        assert "hello.txt" in result.output

    def test_unknown_revision(self, runner, populated):
        result = runner.invoke(cli, ["files", *populated, "--revision", "0" * 40])
        assert result.exit_code == 0
        assert "No such revision" in result.output

    def test_missing_gist_exits_1(self, runner, git_store):
        result = runner.invoke(cli, ["files", "alice", "missing"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestLogCommand:
    """Tests for `gistvault log`."""

    def test_shows_commits(self, runner, populated):
        result = runner.invoke(cli, ["log", *populated])
        assert result.exit_code == 0, result.output
        assert "alice" in result.output

    def test_skip_past_history(self, runner, populated):
        result = runner.invoke(cli, ["log", *populated, "--skip", "5"])
        assert result.exit_code == 0
        assert "No commits" in result.output


class TestForksCommand:
    """Tests for `gistvault forks`."""

    def test_reconciles_counts(self, runner, populated, metadata_store):
        result = runner.invoke(cli, ["forks"])
        assert result.exit_code == 0, result.output
        assert metadata_store.fork_counts[populated] == 1
        assert metadata_store.fork_counts[("bob", populated[1])] == 0

    def test_help_says_counts_are_not_saved(self, runner):
        result = runner.invoke(cli, ["forks", "--help"])
        assert result.exit_code == 0
        assert "nothing is saved" in result.output
