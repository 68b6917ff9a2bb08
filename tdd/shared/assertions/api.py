"""
Custom assertion helpers for API testing.

These helpers provide cleaner, more expressive assertions for common
patterns in API tests.
"""
from typing import Any

from httpx import Response


def assert_status_code(response: Response, expected: int) -> None:
    """Assert response has expected status code with helpful error message."""
    assert response.status_code == expected, (
        f"Expected status {expected}, got {response.status_code}. "
        f"Response body: {response.text}"
    )


def assert_json_contains(response: Response, expected: dict[str, Any] = None, **kwargs) -> None:
    """Assert response JSON contains all expected key-value pairs.

    This allows for partial matching - the response can contain additional
    fields not specified in expected.

    Can be called as:
        assert_json_contains(response, {"name": "value"})
        assert_json_contains(response, name="value")
    """
    if expected is None:
        expected = kwargs
    else:
        expected = {**expected, **kwargs}

    actual = response.json()
    for key, value in expected.items():
        assert key in actual, f"Expected key '{key}' not found in response: {actual}"
        assert actual[key] == value, (
            f"Expected {key}={value!r}, got {key}={actual[key]!r}"
        )


def assert_error_response(response: Response, status_code: int, detail: str) -> None:
    """Assert response is an error with expected status and detail message."""
    assert_status_code(response, status_code)
    actual = response.json()
    assert "detail" in actual, f"Expected 'detail' in error response: {actual}"
    assert actual["detail"] == detail, (
        f"Expected detail '{detail}', got '{actual['detail']}'"
    )


def assert_not_found(response: Response, resource_type: str = None) -> None:
    """Assert response is a 404 Not Found error.

    If resource_type is provided, checks for "{resource_type} not found".
    Otherwise, just checks for 404 status and any "not found" message.
    """
    assert_status_code(response, 404)
    actual = response.json()
    assert "detail" in actual, f"Expected 'detail' in error response: {actual}"

    if resource_type:
        expected_detail = f"{resource_type} not found"
        assert actual["detail"] == expected_detail, (
            f"Expected detail '{expected_detail}', got '{actual['detail']}'"
        )
    else:
        assert "not found" in actual["detail"].lower(), (
            f"Expected 'not found' in detail, got '{actual['detail']}'"
        )


# -----------------------------------------------------------------------------
# Git Protocol Assertions
# -----------------------------------------------------------------------------

def assert_git_info_refs_response(
    response: Response,
    service: str,
) -> bytes:
    """Assert response is a valid git info/refs response.

    Args:
        response: HTTP response
        service: Expected service (git-upload-pack or git-receive-pack)

    Returns:
        The response content for further inspection
    """
    assert_status_code(response, 200)

    expected_content_type = f"application/x-{service}-advertisement"
    assert response.headers["content-type"] == expected_content_type, (
        f"Expected content-type '{expected_content_type}', "
        f"got '{response.headers['content-type']}'"
    )

    content = response.content
    service_line = f"# service={service}\n".encode()
    assert service_line in content, f"Missing service announcement: {service_line}"
    assert content.endswith(b"0000"), "Response should end with flush packet"

    return content


def assert_git_head_response(response: Response) -> str:
    """Assert response is a valid git HEAD response.

    Returns:
        The HEAD reference (e.g., 'ref: refs/heads/main')
    """
    assert_status_code(response, 200)
    assert "text/plain" in response.headers["content-type"]

    content = response.text
    assert content.startswith("ref: refs/heads/"), (
        f"HEAD should be symbolic ref, got: {content}"
    )
    assert content.endswith("\n"), "HEAD response should end with newline"

    return content.strip()


def assert_git_pack_response(
    response: Response,
    service: str,
) -> bytes:
    """Assert response is a valid git pack response.

    Args:
        response: HTTP response
        service: git-upload-pack or git-receive-pack

    Returns:
        The response content
    """
    assert_status_code(response, 200)

    expected_content_type = f"application/x-{service}-result"
    assert response.headers["content-type"] == expected_content_type, (
        f"Expected content-type '{expected_content_type}', "
        f"got '{response.headers['content-type']}'"
    )

    return response.content

