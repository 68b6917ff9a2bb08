"""
Smart-HTTP protocol bridge.

Hands git protocol traffic to ``git upload-pack`` / ``git receive-pack`` in
stateless-rpc mode against the canonical repository. Payloads pass through
byte for byte; nothing here parses or rewrites pack data.

Permission checks are the caller's job. In particular a receive-pack
exchange must only be reached after the caller has authorized a write.
"""

import logging
import re

from dulwich.protocol import pkt_line

from gistvault.services.errors import ProtocolFailureError
from gistvault.services.git_command import GitCommandRunner, GitResult, ensure_ok
from gistvault.services.repositories import RepositoryLifecycleManager

logger = logging.getLogger(__name__)


UPLOAD_PACK = "git-upload-pack"
RECEIVE_PACK = "git-receive-pack"
SERVICES = (UPLOAD_PACK, RECEIVE_PACK)

FLUSH_PKT = pkt_line(None)

_PKT_LENGTH = re.compile(rb"^[0-9a-fA-F]{4}$")

# stderr fragments git prints when the client payload is malformed.
PROTOCOL_ERROR_MARKERS = (
    "protocol error",
    "bad line length",
    "expected flush",
    "expected shallow",
    "unexpected line",
    "not our ref",
)


def service_header(service: str) -> bytes:
    """Service announcement the HTTP layer puts before an advertisement."""
    return pkt_line(f"# service={service}\n".encode()) + FLUSH_PKT


def advertisement_content_type(service: str) -> str:
    return f"application/x-{service}-advertisement"


def result_content_type(service: str) -> str:
    return f"application/x-{service}-result"


def check_service(service: str) -> str:
    if service not in SERVICES:
        raise ProtocolFailureError(f"Invalid service: {service}")
    return service


def looks_like_pkt_lines(payload: bytes) -> bool:
    """Cheap framing check: a request must start with a 4 hex digit length."""
    return len(payload) >= 4 and bool(_PKT_LENGTH.match(payload[:4]))


class SmartHTTPBridge:
    """Runs smart-HTTP advertisement and exchange phases as subprocesses."""

    def __init__(self, lifecycle: RepositoryLifecycleManager, runner: GitCommandRunner):
        self.lifecycle = lifecycle
        self.runner = runner

    def _command(self, service: str, repo_path, advertise: bool) -> list[str]:
        # "git-upload-pack" -> "git upload-pack"
        args = [service[len("git-"):], "--stateless-rpc"]
        if advertise:
            args.append("--advertise-refs")
        args.append(str(repo_path))
        return args

    async def advertise(self, owner: str, gist_id: str, service: str) -> bytes:
        """
        Ref advertisement for GET info/refs.

        Returns:
            Raw stdout of the service in advertise mode (without the
            ``# service=`` header, see service_header())
        """
        check_service(service)
        repo_path = self.lifecycle.require(owner, gist_id)
        result = await self.runner.run(self._command(service, repo_path, advertise=True))
        ensure_ok(result, f"{service} --advertise-refs")
        return result.stdout

    async def exchange(
        self,
        owner: str,
        gist_id: str,
        service: str,
        payload: bytes,
        timeout: float | None = None,
    ) -> bytes:
        """
        Negotiation/pack exchange for POST <service>.

        Exactly one subprocess is started per call; ``payload`` goes to its
        stdin and its stdout is returned unchanged.

        Raises:
            ProtocolFailureError: Malformed payload or service name
            IOFailureError: git failed for another reason
        """
        check_service(service)
        repo_path = self.lifecycle.require(owner, gist_id)
        if not looks_like_pkt_lines(payload):
            logger.warning("%s for %s/%s: payload is not pkt-line framed", service, owner, gist_id)
            raise ProtocolFailureError("Malformed git request")

        result = await self.runner.run(
            self._command(service, repo_path, advertise=False),
            input=payload,
            timeout=timeout,
        )
        if not result.ok:
            self._raise_for(service, owner, gist_id, result)

        logger.debug(
            "%s for %s/%s: %d bytes in, %d bytes out",
            service, owner, gist_id, len(payload), len(result.stdout),
        )
        return result.stdout

    def _raise_for(self, service: str, owner: str, gist_id: str, result: GitResult) -> None:
        stderr = result.stderr_text.lower()
        if any(marker in stderr for marker in PROTOCOL_ERROR_MARKERS):
            logger.warning(
                "%s for %s/%s rejected: %s", service, owner, gist_id, result.stderr_text
            )
            raise ProtocolFailureError("Malformed git request")
        ensure_ok(result, service)
