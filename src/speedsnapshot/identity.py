"""Case and group identifiers for submitted comparison runs."""

import logging
import random
import threading
import time
from datetime import datetime
from typing import Callable, Optional

logger = logging.getLogger(__name__)

CASE_ID_ATTEMPTS = 5


class DuplicateIdentifierError(ValueError):
    """A user-supplied case id is already used by a stored report."""

    def __init__(self, case_id: str):
        self.case_id = case_id
        super().__init__(f'Case ID "{case_id}" already exists. Please enter a different one.')


def generate_case_id(now: Optional[datetime] = None, suffix: Optional[int] = None) -> str:
    """
    Build a 12-digit case id: YYMMDDHHMM followed by two random digits.

    Args:
        now: Timestamp to use (default: current local time)
        suffix: Two-digit suffix (default: random)
    """
    now = now or datetime.now()
    if suffix is None:
        suffix = random.randrange(100)
    return f"{now:%y%m%d%H%M}{suffix:02d}"


class CaseIdAllocator:
    """
    Hands out user-facing case ids that are not yet used in the store.

    An explicitly requested id is honoured exactly or rejected. Generated ids
    are checked up to five times; after five collisions the last candidate is
    returned anyway, so uniqueness is a bounded risk rather than a guarantee.
    """

    def __init__(
        self,
        store,
        max_attempts: int = CASE_ID_ATTEMPTS,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            store: Report store exposing ``query_reports(case_id=...)``
            max_attempts: Generated candidates to try (at most 100)
            clock: Source of the timestamp prefix
            rng: Random source for the two-digit suffix
        """
        self.store = store
        self.max_attempts = min(max_attempts, 100)
        self.clock = clock
        self.rng = rng or random.Random()

    def is_taken(self, case_id: str) -> bool:
        """True if a stored report already uses ``case_id``."""
        try:
            rows = self.store.query_reports(case_id=case_id, limit=1)
        except Exception as e:
            logger.warning(f"[CASE-ID] Lookup failed for {case_id}: {e} - assuming free")
            return False
        return bool(rows)

    def allocate(self, requested: Optional[str] = None) -> str:
        """
        Return a case id for a new submission.

        Args:
            requested: Id typed by the user, if any

        Returns:
            The requested id, or a generated one

        Raises:
            DuplicateIdentifierError: If the requested id already exists
        """
        wanted = (requested or '').strip()
        if wanted:
            if self.is_taken(wanted):
                raise DuplicateIdentifierError(wanted)
            return wanted

        # Distinct suffixes so the candidates can never repeat
        now = self.clock()
        suffixes = self.rng.sample(range(100), self.max_attempts)
        candidate = ''
        for suffix in suffixes:
            candidate = generate_case_id(now, suffix)
            if not self.is_taken(candidate):
                return candidate
            logger.debug(f"[CASE-ID] {candidate} already taken")

        logger.warning(
            f"[CASE-ID] {self.max_attempts} generated ids collided; using {candidate}"
        )
        return candidate


_group_lock = threading.Lock()
_last_group_ts = 0


def make_group_id() -> str:
    """
    Internal correlation key for one submission.

    The millisecond timestamp is strictly increasing within the process. In
    bulk mode each job appends its 1-based ordinal: ``{timestamp}-{index}``.
    """
    global _last_group_ts
    with _group_lock:
        ts = int(time.time() * 1000)
        if ts <= _last_group_ts:
            ts = _last_group_ts + 1
        _last_group_ts = ts
    return str(ts)
