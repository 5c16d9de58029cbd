"""
Failure classification for upstream attempts.

PSI does not return structured error codes that distinguish "you are calling
too fast" from "the target site refused Lighthouse", so the decision is made
from the HTTP status and well-known phrases in the error body.
"""

from typing import Iterable, Optional, Tuple

from speedsnapshot.models import Failure, FailureKind


RATE_LIMIT_STATUSES: Tuple[int, ...] = (403, 429)
RATE_LIMIT_PHRASES: Tuple[str, ...] = (
    'rate limit',
    'quota',
    'too many requests',
)

BLOCKED_STATUSES: Tuple[int, ...] = (400,)
BLOCKED_PHRASES: Tuple[str, ...] = (
    'failed_document_request',
    'unable to reliably load',
    'lighthouse returned error',
)


class FailureClassifier:
    """Labels a failed attempt as rate limited, upstream blocked or generic."""

    def __init__(
        self,
        rate_limit_statuses: Iterable[int] = RATE_LIMIT_STATUSES,
        rate_limit_phrases: Iterable[str] = RATE_LIMIT_PHRASES,
        blocked_statuses: Iterable[int] = BLOCKED_STATUSES,
        blocked_phrases: Iterable[str] = BLOCKED_PHRASES,
    ):
        self.rate_limit_statuses = frozenset(rate_limit_statuses)
        self.rate_limit_phrases = tuple(p.lower() for p in rate_limit_phrases)
        self.blocked_statuses = frozenset(blocked_statuses)
        self.blocked_phrases = tuple(p.lower() for p in blocked_phrases)

    def classify(self, failure: Failure) -> FailureKind:
        """
        Classify a failure.

        Rate limiting is checked before blocking: a 403/429 or a quota
        message means retrying slower can help, while a 400 or a Lighthouse
        load error means the target site will keep refusing.
        """
        message = (failure.message or '').lower()
        status = failure.status_code

        if self._matches(status, message, self.rate_limit_statuses, self.rate_limit_phrases):
            return FailureKind.RATE_LIMITED

        if self._matches(status, message, self.blocked_statuses, self.blocked_phrases):
            return FailureKind.UPSTREAM_BLOCKED

        return FailureKind.GENERIC

    @staticmethod
    def _matches(
        status: Optional[int],
        message: str,
        statuses: frozenset,
        phrases: Tuple[str, ...],
    ) -> bool:
        if status is not None and status in statuses:
            return True
        return any(phrase in message for phrase in phrases)


default_classifier = FailureClassifier()
