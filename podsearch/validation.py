import re
from typing import Any, Optional, Sequence

from podsearch.models import ValidationResult

MAX_QUERY_LENGTH = 500
MAX_OFFSET = 10000
MAX_FILTERS = 50

_UNSAFE_CHARS = re.compile(r"[<>\"'&]")
_WHITESPACE = re.compile(r"\s+")


def validate_search_query(query: Any) -> ValidationResult:
    if not query or not isinstance(query, str):
        return ValidationResult(valid=False, error="Search query is required and must be a string")
    if not query.strip():
        return ValidationResult(valid=False, error="Search query cannot be empty")
    if len(query) > MAX_QUERY_LENGTH:
        return ValidationResult(
            valid=False, error=f"Search query is too long (max {MAX_QUERY_LENGTH} characters)"
        )
    return ValidationResult(valid=True)


def validate_search_params(params: Any) -> ValidationResult:
    """
    Accepts a SearchParams model or a plain dict. Missing keys are not
    checked; present ones must satisfy the query / offset / filter limits.
    """
    if not isinstance(params, dict):
        params = params.model_dump()

    if "query" in params:
        result = validate_search_query(params["query"])
        if not result.valid:
            return result

    offset: Optional[int] = params.get("offset")
    if offset is not None and (offset < 0 or offset > MAX_OFFSET):
        return ValidationResult(valid=False, error=f"Offset must be between 0 and {MAX_OFFSET}")

    filters: Optional[Sequence[str]] = params.get("filter")
    if filters and len(filters) > MAX_FILTERS:
        return ValidationResult(valid=False, error=f"Too many filters (max {MAX_FILTERS})")

    return ValidationResult(valid=True)


def sanitize_search_query(query: str) -> str:
    """Trim, drop <>"'& characters, collapse whitespace, cap length."""
    q = query.strip()
    q = _UNSAFE_CHARS.sub("", q)
    q = _WHITESPACE.sub(" ", q)
    return q[:MAX_QUERY_LENGTH]
