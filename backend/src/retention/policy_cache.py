"""Time-boxed cache of active retention policies.

The cache is the only shared mutable state read by possibly-concurrent
callers. Concurrent refreshes collapse into a single in-flight load: the
first caller performs it and every other caller waits on the same future.
"""

import logging
import threading
import time
from concurrent.futures import Future
from typing import Callable, List, Optional, Union

from .schemas import RetentionPolicy

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL_SECONDS = 300.0


class RetentionPolicyCache:
    """Cache the result of the configuration load for ``refresh_interval_seconds``.

    A failed refresh leaves the previous contents intact and raises to the
    callers that were waiting on that refresh. Callers served from a fresh
    cache never see the error.
    """

    def __init__(
        self,
        loader: Callable[[], List[RetentionPolicy]],
        refresh_interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not callable(loader):
            raise ValueError("RetentionPolicyCache requires a callable loader")

        self.loader = loader
        self.refresh_interval_seconds = refresh_interval_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._policies: List[RetentionPolicy] = []
        self._loaded_at: Optional[float] = None
        self._inflight: Optional[Future] = None

    def _is_fresh(self) -> bool:
        if self._loaded_at is None:
            return False
        return (self.clock() - self._loaded_at) < self.refresh_interval_seconds

    def refresh(self, force: bool = False) -> List[RetentionPolicy]:
        """Return cached policies, loading them first when stale or forced."""
        with self._lock:
            if not force and self._is_fresh():
                return list(self._policies)

            inflight = self._inflight
            owner = inflight is None
            if owner:
                inflight = Future()
                self._inflight = inflight

        if not owner:
            return list(inflight.result())

        try:
            policies = list(self.loader())
        except Exception as exc:
            with self._lock:
                self._inflight = None
            logger.error("Retention policy cache refresh failed", exc_info=True)
            inflight.set_exception(exc)
            raise

        with self._lock:
            self._policies = policies
            self._loaded_at = self.clock()
            self._inflight = None

        inflight.set_result(policies)
        logger.debug(f"Retention policy cache refreshed with {len(policies)} policies")
        return list(policies)

    def list_active_policies(self, force_refresh: bool = False) -> List[RetentionPolicy]:
        return [policy for policy in self.refresh(force=force_refresh) if policy.active]

    def get_policy_by_id(
        self,
        policy_id: Union[int, str],
        force_refresh: bool = False,
    ) -> Optional[RetentionPolicy]:
        for policy in self.refresh(force=force_refresh):
            if str(policy.id) == str(policy_id):
                return policy
        return None

    def invalidate(self) -> None:
        """Mark the cache stale; the next read reloads."""
        with self._lock:
            self._loaded_at = None
