"""Data models for with/without performance comparisons."""

import math
from dataclasses import dataclass, field, replace, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class DeviceStrategy(str, Enum):
    """PSI device profile."""
    MOBILE = "mobile"
    DESKTOP = "desktop"

    @classmethod
    def parse(cls, device: str) -> List["DeviceStrategy"]:
        """Expand a submitted device choice ('mobile', 'desktop' or 'both')."""
        if device == "both":
            return [cls.MOBILE, cls.DESKTOP]
        return [cls(device)]


class FailureKind(str, Enum):
    """Why an attempt against the upstream failed."""
    RATE_LIMITED = "rate_limited"  # Our calling rate; slow down and retry
    UPSTREAM_BLOCKED = "upstream_blocked"  # Target site refuses the analyzer
    GENERIC = "generic"


class FetchMode(str, Enum):
    NORMAL = "normal"
    SAFE = "safe"


@dataclass(frozen=True)
class FetchPolicy:
    """Timeout and retry schedule applied to a single transport strategy."""
    timeout: float  # seconds, per attempt
    retry_delays: tuple  # seconds to wait after each non-final failed attempt
    mode: FetchMode = FetchMode.NORMAL

    @property
    def max_attempts(self) -> int:
        return len(self.retry_delays) + 1


@dataclass(frozen=True)
class MeasurementRequest:
    """One PSI run: a URL on a device profile."""
    target_url: str
    strategy: DeviceStrategy
    api_key: Optional[str] = field(default=None, repr=False)

    def with_target(self, url: str) -> "MeasurementRequest":
        return replace(self, target_url=url)


@dataclass
class MeasurementResult:
    """Parsed PSI payload for a successful run."""

    performance_score: Optional[float]  # 0-100, None when PSI returned no score
    timing_metrics: Dict[str, float] = field(default_factory=dict)
    final_url: str = "(n/a)"
    raw_payload: Dict[str, Any] = field(default_factory=dict, repr=False)
    strategy: Optional[str] = None
    requested_url: Optional[str] = None
    fetch_time: Optional[str] = None
    lighthouse_version: Optional[str] = None

    def metric(self, name: str, default: float = 0) -> float:
        value = self.timing_metrics.get(name)
        return default if value is None else value


@dataclass
class Success:
    result: MeasurementResult

    @property
    def ok(self) -> bool:
        return True


@dataclass
class Failure:
    message: str
    status_code: Optional[int] = None
    kind: Optional[FailureKind] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return False


AttemptOutcome = Union[Success, Failure]


@dataclass
class ComparisonPair:
    """Optimized and baseline measurements of one URL on one device."""
    optimized_url: str
    baseline_url: str
    optimized: Optional[MeasurementResult] = None
    baseline: Optional[MeasurementResult] = None

    @property
    def complete(self) -> bool:
        return self.optimized is not None and self.baseline is not None

    @property
    def any(self) -> bool:
        return self.optimized is not None or self.baseline is not None


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Diverted to the serialized safe-mode pass
    RETRIED = "retried"  # Running in the safe-mode pass


BLOCKING_DETECTED = "Website blocking detected - PSI cannot access this URL"


@dataclass
class Job:
    """One URL entry in a comparison run."""
    index: int
    page_url: str
    group_id: str
    case_id: Optional[str]
    strategies: List[DeviceStrategy]
    state: JobState = JobState.PENDING
    results: Dict[DeviceStrategy, ComparisonPair] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        """At least one device produced both an optimized and baseline result."""
        return any(pair.complete for pair in self.results.values())


@dataclass
class JobOutcome:
    """What the caller receives for one submitted URL."""
    page_url: str
    case_id: Optional[str]
    group_id: str
    results: Dict[DeviceStrategy, ComparisonPair] = field(default_factory=dict)
    error: Optional[str] = None
    safe_mode: bool = False
    submitted_at: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        return self.error is None and any(p.complete for p in self.results.values())

    @classmethod
    def from_job(cls, job: Job, safe_mode: bool = False) -> "JobOutcome":
        return cls(
            page_url=job.page_url,
            case_id=job.case_id,
            group_id=job.group_id,
            results=dict(job.results),
            error=job.error,
            safe_mode=safe_mode,
        )

    def to_dict(self) -> Dict[str, Any]:
        devices = {}
        for strategy, pair in self.results.items():
            devices[strategy.value] = {
                'optimized_url': pair.optimized_url,
                'baseline_url': pair.baseline_url,
                'perf_with': pair.optimized.performance_score if pair.optimized else None,
                'perf_without': pair.baseline.performance_score if pair.baseline else None,
                'final_with': pair.optimized.final_url if pair.optimized else None,
                'final_without': pair.baseline.final_url if pair.baseline else None,
            }
        return {
            'page_url': self.page_url,
            'case_id': self.case_id,
            'group_id': self.group_id,
            'error': self.error,
            'safe_mode': self.safe_mode,
            'submitted_at': self.submitted_at.isoformat(),
            'devices': devices,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class SummaryRow:
    """Compact, store-friendly row for one URL on one device."""

    group_id: str
    url: str
    device: str
    case_id: Optional[str] = None
    perf_with: int = 0
    perf_without: int = 0
    fcp_with_s: float = 0.0
    fcp_without_s: float = 0.0
    lcp_with_s: float = 0.0
    lcp_without_s: float = 0.0
    tbt_with_ms: float = 0.0
    tbt_without_ms: float = 0.0
    cls_with: float = 0.0
    cls_without: float = 0.0

    @classmethod
    def from_pair(
        cls,
        url: str,
        device: str,
        pair: ComparisonPair,
        group_id: str,
        case_id: Optional[str] = None,
    ) -> "SummaryRow":
        """Flatten a comparison pair. Missing results and metrics count as zero."""
        w = pair.optimized
        wo = pair.baseline

        def perf(result: Optional[MeasurementResult]) -> int:
            if result is None or result.performance_score is None:
                return 0
            return max(0, min(100, _round_half_up(result.performance_score)))

        def metric(result: Optional[MeasurementResult], name: str) -> float:
            return result.metric(name) if result is not None else 0

        return cls(
            group_id=group_id,
            case_id=case_id or None,
            url=url,
            device=device,
            perf_with=perf(w),
            perf_without=perf(wo),
            fcp_with_s=metric(w, 'fcp') / 1000,
            fcp_without_s=metric(wo, 'fcp') / 1000,
            lcp_with_s=metric(w, 'lcp') / 1000,
            lcp_without_s=metric(wo, 'lcp') / 1000,
            tbt_with_ms=metric(w, 'tbt'),
            tbt_without_ms=metric(wo, 'tbt'),
            cls_with=metric(w, 'cls'),
            cls_without=metric(wo, 'cls'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
