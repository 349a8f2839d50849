"""Pending SSO authorization store.

Binds a correlation token (kept in the user's cookie) to the authorization
request that started an SSO round trip and to the nonce sent to the
provider. Records are single use: ``resolve`` deletes what it returns.

Expiry is checked lazily in ``resolve``. ``sweep`` only reclaims memory and
is driven by one ``ExpiryReaper`` task per process.

WARNING: Records live in process memory. Running several instances behind a
load balancer requires sticky sessions.
"""

import asyncio
import heapq
import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sso_bridge.core.errors import PendingLimitExceededError, SessionNotFoundError
from sso_bridge.domain.models import PendingAuthorization

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_TTL = timedelta(minutes=10)
NONCE_UPPER_BOUND = 2**63
HEAP_COMPACT_MIN_SIZE = 64


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PendingAuthorizationStore:
    """In-memory store of SSO round trips waiting for their callback.

    Every read-modify-delete runs under a single lock, so two concurrent
    resolutions of the same token cannot both succeed.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        clock: Clock = utc_now,
        max_pending: Optional[int] = None,
    ):
        """Initialize the store.

        Args:
            ttl: Lifetime of a pending record
            clock: Returns the current time (timezone aware)
            max_pending: Upper bound on live records (None = unbounded)
        """
        self.ttl = ttl
        self.max_pending = max_pending
        self._clock = clock
        self._records: dict[str, PendingAuthorization] = {}
        self._expiry_heap: list[tuple[datetime, str]] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def begin(self, external_request: Any) -> tuple[str, int]:
        """Register a new SSO round trip.

        Args:
            external_request: Engine authorization request to hand back on callback

        Returns:
            Tuple of (correlation_id, nonce)

        Raises:
            PendingLimitExceededError: If max_pending records are already live
        """
        nonce = secrets.randbelow(NONCE_UPPER_BOUND)

        with self._lock:
            now = self._clock()
            if self.max_pending is not None and len(self._records) >= self.max_pending:
                self._sweep_locked(now)
                if len(self._records) >= self.max_pending:
                    logger.warning(
                        f"Rejecting SSO attempt: {len(self._records)} pending authorizations"
                    )
                    raise PendingLimitExceededError(
                        "too many sign-in attempts in progress, please try again later"
                    )

            correlation_id = secrets.token_urlsafe(32)
            while correlation_id in self._records:
                correlation_id = secrets.token_urlsafe(32)

            record = PendingAuthorization(
                correlation_id=correlation_id,
                nonce=nonce,
                external_request=external_request,
                created_at=now,
                expires_at=now + self.ttl,
            )
            self._records[correlation_id] = record
            heapq.heappush(self._expiry_heap, (record.expires_at, correlation_id))

        logger.debug(f"Registered pending authorization (expires_at={record.expires_at.isoformat()})")
        return correlation_id, nonce

    def resolve(self, correlation_id: Optional[str]) -> PendingAuthorization:
        """Remove and return the pending record for ``correlation_id``.

        Args:
            correlation_id: Token from the correlation cookie

        Returns:
            The pending authorization

        Raises:
            SessionNotFoundError: If the token is unknown, already used or expired
        """
        if not correlation_id:
            raise SessionNotFoundError("invalid session, please try again")

        with self._lock:
            record = self._records.pop(correlation_id, None)
            now = self._clock()
            if record is not None:
                self._maybe_compact_locked()

        if record is None:
            raise SessionNotFoundError("invalid session, please try again")

        if record.is_expired(now):
            logger.debug("Pending authorization found but already expired")
            raise SessionNotFoundError("invalid session, please try again")

        return record

    def sweep(self) -> int:
        """Delete expired records.

        Returns:
            Number of records removed
        """
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: datetime) -> int:
        removed = 0
        while self._expiry_heap and self._expiry_heap[0][0] <= now:
            expires_at, correlation_id = heapq.heappop(self._expiry_heap)
            record = self._records.get(correlation_id)
            # Already resolved; deleting an absent key is a no-op
            if record is None or record.expires_at != expires_at:
                continue
            del self._records[correlation_id]
            removed += 1

        if removed:
            logger.debug(f"Deleted {removed} expired pending authorizations")
        return removed

    def _maybe_compact_locked(self) -> None:
        # Resolved records leave stale heap entries behind until their expiry
        if len(self._expiry_heap) <= HEAP_COMPACT_MIN_SIZE + 2 * len(self._records):
            return
        self._expiry_heap = [
            (record.expires_at, correlation_id)
            for correlation_id, record in self._records.items()
        ]
        heapq.heapify(self._expiry_heap)


class ExpiryReaper:
    """Background task that periodically sweeps a PendingAuthorizationStore"""

    def __init__(self, store: PendingAuthorizationStore, interval_seconds: float = 30.0):
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start sweeping on the running event loop"""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Expiry reaper started (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish"""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry reaper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.store.sweep()
            except Exception as e:
                logger.error(f"Pending authorization sweep failed: {e}", exc_info=True)
