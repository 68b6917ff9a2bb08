"""
gistvault CLI - inspect and maintain gist repositories.

Usage:
    gistvault serve --port 8000
    gistvault files alice 3f2a9c --revision HEAD
    gistvault log alice 3f2a9c
    gistvault forks
"""

import asyncio
import sys
from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from gistvault.config import get_settings
from gistvault.services.errors import GistGitError
from gistvault.services.store import GitStore

console = Console()


def get_store() -> GitStore:
    return GitStore.from_settings(get_settings())


def run(coro):
    """Run a coroutine, turning engine errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except GistGitError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.version_option()
def cli():
    """gistvault - git-backed gist storage."""
    pass


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", "-p", default=8000, type=int, help="Port to listen on")
def serve(host: str, port: int):
    """Serve the git smart-HTTP endpoints."""
    import uvicorn

    uvicorn.run("gistvault.main:app", host=host, port=port)


@cli.command()
@click.argument("owner")
@click.argument("gist_id")
@click.option("--revision", "-r", default="HEAD", help="Revision to list")
def files(owner: str, gist_id: str, revision: str):
    """List the files of a gist at a revision."""
    store = get_store()
    gist_files = run(store.reader.files(owner, gist_id, revision))
    if gist_files is None:
        console.print(f"[yellow]No such revision:[/yellow] {revision}")
        return

    table = Table(title=f"{owner}/{gist_id} @ {revision}")
    table.add_column("Filename", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Truncated")
    for gist_file in gist_files:
        table.add_row(
            gist_file.filename,
            str(len(gist_file.content)),
            "yes" if gist_file.truncated else "",
        )
    console.print(table)


@cli.command()
@click.argument("owner")
@click.argument("gist_id")
@click.option("--skip", default=0, type=int, help="Commits to skip from HEAD")
def log(owner: str, gist_id: str, skip: int):
    """Show the revision history of a gist."""
    store = get_store()
    commits = run(store.reader.log(owner, gist_id, skip))
    total = run(store.reader.commit_count(owner, gist_id))
    if not commits:
        console.print("No commits")
        return

    table = Table(title=f"{owner}/{gist_id} ({total} commits)")
    table.add_column("Commit", style="cyan")
    table.add_column("Author")
    table.add_column("Date")
    table.add_column("Changes")
    for commit in commits:
        table.add_row(
            commit.hash[:8],
            commit.author,
            datetime.fromtimestamp(commit.timestamp).strftime("%Y-%m-%d %H:%M"),
            commit.changed,
        )
    console.print(table)


@cli.command()
def forks():
    """Print fork counts recomputed from repository lineage.

    The counts are only printed; nothing is saved.
    """
    store = get_store()
    counts = run(store.forks.reconcile_fork_counts())

    table = Table(title="Fork counts")
    table.add_column("Gist", style="cyan")
    table.add_column("Forks", justify="right")
    for (owner, gist_id), count in sorted(counts.items()):
        table.add_row(f"{owner}/{gist_id}", str(count))
    console.print(table)


if __name__ == "__main__":
    cli()
