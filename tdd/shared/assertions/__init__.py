# Custom assertion helpers

from .api import (
    assert_error_response,
    assert_git_head_response,
    assert_git_info_refs_response,
    assert_git_pack_response,
    assert_json_contains,
    assert_not_found,
    assert_status_code,
)
from .models import (
    assert_schema_invalid,
    assert_schema_valid,
)

__all__ = [
    # API assertions
    "assert_status_code",
    "assert_json_contains",
    "assert_error_response",
    "assert_not_found",
    # Git protocol assertions
    "assert_git_info_refs_response",
    "assert_git_head_response",
    "assert_git_pack_response",
    # Schema assertions
    "assert_schema_valid",
    "assert_schema_invalid",
]
