"""Ordered identifier fallback for trust-setting and the encryption test.

Both steps first address the key by its discovered id and, if gpg rejects
it, retry once with the user's email identity. The candidates are a plain
ordered list so the policy can be tested without running gpg.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from .errors import IdentifierError
from .types import Result

T = TypeVar("T")


def candidate_identifiers(key_id: str, email: str) -> list[str]:
    """Key id first, then the email identity; empties and duplicates dropped."""
    candidates: list[str] = []
    for identifier in (key_id, email):
        if identifier and identifier not in candidates:
            candidates.append(identifier)
    return candidates


def try_candidates(
    candidates: list[str],
    attempt: Callable[[str], Result[T]],
    on_retry: Callable[[str, str], None] | None = None,
    failure_message: str = "All identifiers failed",
) -> Result[T]:
    """Call attempt() for each candidate in order until one succeeds.

    on_retry(failed, next) is called before every attempt after the first.
    Each candidate is attempted exactly once.
    """
    last_error: Exception | None = None

    for index, identifier in enumerate(candidates):
        if index > 0 and on_retry is not None:
            on_retry(candidates[index - 1], identifier)

        result = attempt(identifier)
        if result.is_ok():
            return result
        last_error = result.unwrap_err()

    return Result.err(IdentifierError(failure_message, candidates=candidates, cause=last_error))
