"""Matching error taxonomy and raise helpers.

All lifecycle errors are integrity violations, not transient failures, so
callers should not retry them.
"""

from typing import NoReturn


class MatchingError(Exception):
    """Base exception for matching service errors."""


class NotFoundError(MatchingError):
    """Transaction, match, occurrence or template is absent or not owned by the caller."""


class AlreadyMatchedError(MatchingError):
    """The transaction already has a match record."""


class InvalidArgumentError(MatchingError):
    """Malformed occurrence id or invalid read filter."""


def raise_not_found(resource_name: str, *, cause: Exception | None = None) -> NoReturn:
    raise NotFoundError(f"{resource_name} not found") from cause


def raise_already_matched(*, cause: Exception | None = None) -> NoReturn:
    raise AlreadyMatchedError("Transaction is already matched") from cause


def raise_invalid_argument(detail: str, *, cause: Exception | None = None) -> NoReturn:
    raise InvalidArgumentError(detail) from cause
