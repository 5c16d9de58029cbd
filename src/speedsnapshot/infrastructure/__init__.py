"""
Infrastructure Package.

Provides failure classification, the policy-driven retry engine and the
upstream quota guard used by every transport strategy.
"""

from .failure_classifier import (
    FailureClassifier,
    default_classifier,
    RATE_LIMIT_STATUSES,
    RATE_LIMIT_PHRASES,
    BLOCKED_STATUSES,
    BLOCKED_PHRASES,
)
from .retry import (
    run_with_policy,
    NORMAL_POLICY,
    SAFE_POLICY,
)
from .rate_limiter import (
    UpstreamQuota,
    QuotaMetrics,
    get_shared_quota,
)

__all__ = [
    # Failure Classifier
    "FailureClassifier",
    "default_classifier",
    "RATE_LIMIT_STATUSES",
    "RATE_LIMIT_PHRASES",
    "BLOCKED_STATUSES",
    "BLOCKED_PHRASES",
    # Retry Engine
    "run_with_policy",
    "NORMAL_POLICY",
    "SAFE_POLICY",
    # Quota
    "UpstreamQuota",
    "QuotaMetrics",
    "get_shared_quota",
]
