"""
Git HTTP smart protocol endpoints.

Lets standard git clients clone, fetch and push gists:
- GET  /git/{owner}/{gist_id}.git/info/refs?service=git-upload-pack|git-receive-pack
- POST /git/{owner}/{gist_id}.git/git-upload-pack
- POST /git/{owner}/{gist_id}.git/git-receive-pack
- GET  /git/{owner}/{gist_id}.git/HEAD
"""

import asyncio
import gzip
import logging
import zlib

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from gistvault.dependencies import GitAccessPolicy, get_access_policy, get_git_store
from gistvault.services.errors import (
    GistGitError,
    InvalidIdentifierError,
    NotFoundError,
    ProtocolFailureError,
)
from gistvault.services.smart_http import (
    RECEIVE_PACK,
    SERVICES,
    UPLOAD_PACK,
    advertisement_content_type,
    result_content_type,
    service_header,
)
from gistvault.services.store import GitStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/git", tags=["git"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, max-age=0, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "Fri, 01 Jan 1980 00:00:00 GMT",
}

# How often a running exchange checks whether the client went away.
DISCONNECT_POLL_INTERVAL = 1.0


async def get_request_body(request: Request) -> bytes:
    """Get request body, decompressing gzip if needed."""
    body = await request.body()
    content_encoding = request.headers.get("content-encoding", "").lower()

    if content_encoding == "gzip" or (len(body) > 2 and body[:2] == b"\x1f\x8b"):
        try:
            body = gzip.decompress(body)
        except (OSError, EOFError, zlib.error) as e:
            logger.warning("undecodable gzip request body: %s", e)
            raise HTTPException(status_code=400, detail="Invalid git request")

    return body


def to_http_error(error: GistGitError) -> HTTPException:
    """Map engine errors to HTTP errors without leaking internals."""
    if isinstance(error, (NotFoundError, InvalidIdentifierError)):
        return HTTPException(status_code=404, detail="Repository not found")
    if isinstance(error, ProtocolFailureError):
        return HTTPException(status_code=400, detail="Invalid git request")
    logger.error("git request failed: %s", error)
    return HTTPException(status_code=500, detail="Git error")


async def authorize(
    request: Request,
    policy: GitAccessPolicy,
    owner: str,
    gist_id: str,
    service: str,
) -> None:
    # Unreadable gists look like missing ones.
    if not await policy.can_read(request, owner, gist_id):
        raise HTTPException(status_code=404, detail="Repository not found")
    if service == RECEIVE_PACK and not await policy.can_write(request, owner, gist_id):
        raise HTTPException(status_code=403, detail="Push not allowed")


async def run_until_disconnect(request: Request, coro):
    """Await ``coro``, cancelling it if the client disconnects first."""
    task = asyncio.ensure_future(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("client disconnected, abandoning %s", request.url.path)
                task.cancel()
                raise HTTPException(status_code=499, detail="Client disconnected")
    finally:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


@router.get("/{owner}/{gist_id}.git/info/refs")
async def get_info_refs(
    owner: str,
    gist_id: str,
    request: Request,
    service: str = Query(..., description="git-upload-pack or git-receive-pack"),
    store: GitStore = Depends(get_git_store),
    policy: GitAccessPolicy = Depends(get_access_policy),
):
    """
    Refs discovery endpoint for git clone/fetch/push.

    GET /git/{owner}/{gist_id}.git/info/refs?service=git-upload-pack  (clone/fetch)
    GET /git/{owner}/{gist_id}.git/info/refs?service=git-receive-pack (push)
    """
    if service not in SERVICES:
        raise HTTPException(status_code=400, detail="Invalid service")
    await authorize(request, policy, owner, gist_id, service)

    try:
        advertisement = await store.bridge.advertise(owner, gist_id, service)
    except GistGitError as e:
        raise to_http_error(e)

    return Response(
        content=service_header(service) + advertisement,
        media_type=advertisement_content_type(service),
        headers=NO_CACHE_HEADERS,
    )


async def _exchange(
    owner: str,
    gist_id: str,
    service: str,
    request: Request,
    store: GitStore,
    policy: GitAccessPolicy,
) -> Response:
    await authorize(request, policy, owner, gist_id, service)
    try:
        store.repositories.require(owner, gist_id)
    except GistGitError as e:
        raise to_http_error(e)

    body = await get_request_body(request)
    try:
        result = await run_until_disconnect(
            request, store.bridge.exchange(owner, gist_id, service, body)
        )
    except GistGitError as e:
        raise to_http_error(e)

    return Response(
        content=result,
        media_type=result_content_type(service),
        headers=NO_CACHE_HEADERS,
    )


@router.post("/{owner}/{gist_id}.git/git-upload-pack")
async def git_upload_pack(
    owner: str,
    gist_id: str,
    request: Request,
    store: GitStore = Depends(get_git_store),
    policy: GitAccessPolicy = Depends(get_access_policy),
):
    """
    Handle git clone/fetch pack negotiation.

    POST /git/{owner}/{gist_id}.git/git-upload-pack
    """
    return await _exchange(owner, gist_id, UPLOAD_PACK, request, store, policy)


@router.post("/{owner}/{gist_id}.git/git-receive-pack")
async def git_receive_pack(
    owner: str,
    gist_id: str,
    request: Request,
    store: GitStore = Depends(get_git_store),
    policy: GitAccessPolicy = Depends(get_access_policy),
):
    """
    Handle git push pack reception.

    POST /git/{owner}/{gist_id}.git/git-receive-pack
    """
    return await _exchange(owner, gist_id, RECEIVE_PACK, request, store, policy)


@router.get("/{owner}/{gist_id}.git/HEAD")
async def get_head(
    owner: str,
    gist_id: str,
    request: Request,
    store: GitStore = Depends(get_git_store),
    policy: GitAccessPolicy = Depends(get_access_policy),
):
    """Get HEAD reference (required by some git clients)."""
    await authorize(request, policy, owner, gist_id, UPLOAD_PACK)
    try:
        branch = store.repositories.default_branch_of(owner, gist_id)
    except GistGitError as e:
        raise to_http_error(e)

    return Response(
        content=f"ref: refs/heads/{branch}\n",
        media_type="text/plain",
        headers={"Cache-Control": "no-cache"},
    )
