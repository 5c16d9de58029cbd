"""With/without page-performance comparisons on PageSpeed Insights."""

__version__ = "0.1.0"

from speedsnapshot.models import (
    DeviceStrategy,
    FailureKind,
    FetchMode,
    FetchPolicy,
    MeasurementRequest,
    MeasurementResult,
    Success,
    Failure,
    ComparisonPair,
    Job,
    JobState,
    JobOutcome,
    SummaryRow,
    BLOCKING_DETECTED,
)
from speedsnapshot.config import settings, Config
from speedsnapshot.fetcher import SmartFetcher
from speedsnapshot.identity import (
    CaseIdAllocator,
    DuplicateIdentifierError,
    generate_case_id,
    make_group_id,
)
from speedsnapshot.orchestrator import ComparisonRunner, SafeModeLatch

# Infrastructure
from speedsnapshot.infrastructure import (
    FailureClassifier,
    run_with_policy,
    NORMAL_POLICY,
    SAFE_POLICY,
    UpstreamQuota,
)

__all__ = [
    # Core
    "SmartFetcher",
    "ComparisonRunner",
    "SafeModeLatch",
    "CaseIdAllocator",
    "DuplicateIdentifierError",
    "generate_case_id",
    "make_group_id",
    # Models
    "DeviceStrategy",
    "FailureKind",
    "FetchMode",
    "FetchPolicy",
    "MeasurementRequest",
    "MeasurementResult",
    "Success",
    "Failure",
    "ComparisonPair",
    "Job",
    "JobState",
    "JobOutcome",
    "SummaryRow",
    "BLOCKING_DETECTED",
    "settings",
    "Config",
    # Infrastructure
    "FailureClassifier",
    "run_with_policy",
    "NORMAL_POLICY",
    "SAFE_POLICY",
    "UpstreamQuota",
]
