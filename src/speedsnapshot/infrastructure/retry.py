"""
Policy-driven retry engine.

One primitive, ``run_with_policy``, drives a transport strategy through the
attempt/backoff schedule described by a ``FetchPolicy``. The Normal and Safe
profiles are just two policy values.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, Optional

from speedsnapshot.infrastructure.failure_classifier import (
    FailureClassifier,
    default_classifier,
)
from speedsnapshot.models import (
    AttemptOutcome,
    Failure,
    FailureKind,
    FetchMode,
    FetchPolicy,
    MeasurementRequest,
)

logger = logging.getLogger(__name__)

NORMAL_POLICY = FetchPolicy(timeout=180.0, retry_delays=(1.0, 3.0, 7.0), mode=FetchMode.NORMAL)
SAFE_POLICY = FetchPolicy(timeout=600.0, retry_delays=(15.0, 30.0, 60.0), mode=FetchMode.SAFE)

Sleeper = Callable[[float], Awaitable[None]]


async def run_with_policy(
    strategy,
    request: MeasurementRequest,
    policy: FetchPolicy,
    classifier: Optional[FailureClassifier] = None,
    sleep: Sleeper = asyncio.sleep,
) -> AttemptOutcome:
    """
    Run a transport strategy under a retry policy.

    Args:
        strategy: Object with ``async attempt(request, timeout)``
        request: Measurement to obtain
        policy: Timeout per attempt and delays between attempts
        classifier: Failure classifier (default rules if omitted)
        sleep: Awaitable used for backoff delays

    Returns:
        ``Success`` as soon as an attempt succeeds. Otherwise the last
        ``Failure``, tagged with the classification of the *first* failure
        and the number of attempts made.
    """
    classifier = classifier or default_classifier
    name = getattr(strategy, 'name', type(strategy).__name__)
    max_attempts = policy.max_attempts

    first_kind: Optional[FailureKind] = None
    last_failure: Optional[Failure] = None

    for attempt in range(max_attempts):
        outcome = await strategy.attempt(request, policy.timeout)
        if outcome.ok:
            if attempt:
                logger.info(
                    f"[{name}] {request.strategy.value.upper()} succeeded on attempt "
                    f"{attempt + 1}/{max_attempts} for {request.target_url}"
                )
            return outcome

        last_failure = outcome
        if first_kind is None:
            first_kind = classifier.classify(outcome)
            if first_kind is FailureKind.RATE_LIMITED:
                logger.warning(f"[{name}] Rate limit detected for {request.target_url}")

        logger.error(
            f"[{name}] {request.strategy.value.upper()} attempt {attempt + 1}/{max_attempts} "
            f"({policy.mode.value}) failed for {request.target_url} -> {outcome.message}"
        )

        if attempt < max_attempts - 1:
            await sleep(policy.retry_delays[attempt])

    return replace(last_failure, kind=first_kind, attempts=max_attempts)
