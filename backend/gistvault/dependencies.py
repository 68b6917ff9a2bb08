"""
FastAPI dependencies shared by the routers.
"""

from typing import Protocol

from fastapi import Request

from gistvault.services.store import GitStore


class GitAccessPolicy(Protocol):
    """Authorization gate in front of the smart-HTTP bridge."""

    async def can_read(self, request: Request, owner: str, gist_id: str) -> bool: ...

    async def can_write(self, request: Request, owner: str, gist_id: str) -> bool: ...


class DefaultAccessPolicy:
    """Anyone may clone and fetch; pushing is off unless allow_push is set."""

    def __init__(self, allow_push: bool = False):
        self.allow_push = allow_push

    async def can_read(self, request: Request, owner: str, gist_id: str) -> bool:
        return True

    async def can_write(self, request: Request, owner: str, gist_id: str) -> bool:
        return self.allow_push


def get_git_store(request: Request) -> GitStore:
    return request.app.state.git_store


def get_access_policy(request: Request) -> GitAccessPolicy:
    return request.app.state.access_policy
