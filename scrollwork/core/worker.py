"""
Usage worker.

Periodically fetches usage for every configured model and hands the
resulting snapshot to the agent over a bounded queue. The worker never
touches the usage store directly.

Lifecycle:
    CREATED -> STARTING -> READY -> RUNNING -> STOPPING -> STOPPED
    STARTING -> FAILED when a health check or the first fetch fails
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from scrollwork.providers.base import ProviderClient

from .errors import HealthCheckError, StartupError, UsageFetchError
from .token_counter import ensure_token_count
from .usage import UsageSnapshot

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Lifecycle states of the usage worker."""
    CREATED = auto()
    STARTING = auto()
    READY = auto()
    RUNNING = auto()
    STOPPING = auto()
    STOPPED = auto()
    FAILED = auto()


def next_delay(interval: float, elapsed: float) -> float:
    """Time to wait before the next tick.

    The fetch duration is subtracted so ticks stay on a fixed schedule;
    a fetch slower than the interval makes the next tick fire immediately.
    """
    return max(interval - elapsed, 0.0)


def _group_by_client(
    clients: Mapping[str, ProviderClient]
) -> List[Tuple[ProviderClient, List[str]]]:
    """Models served by each distinct client, in configuration order."""
    groups: Dict[int, Tuple[ProviderClient, List[str]]] = {}
    for model, client in clients.items():
        groups.setdefault(id(client), (client, []))[1].append(model)
    return list(groups.values())


class UsageWorker:
    """Fetches usage snapshots on a fixed interval.

    Args:
        clients: Provider client for each tracked model
        usage_queue: Bounded queue the snapshots are delivered on
        interval: Seconds between the start of consecutive fetches
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(
        self,
        clients: Mapping[str, ProviderClient],
        usage_queue: "asyncio.Queue[UsageSnapshot]",
        interval: float,
        clock: Callable[[], float] = time.monotonic
    ):
        if not clients:
            raise ValueError("at least one provider client is required")
        if interval <= 0:
            raise ValueError("interval must be > 0")

        self._client_models = _group_by_client(clients)
        self._missing_models: Set[str] = set()
        self._queue = usage_queue
        self._interval = interval
        self._clock = clock
        self._state = WorkerState.CREATED

        self.ready = asyncio.Event()
        self._stop_requested = asyncio.Event()
        self._stopped = asyncio.Event()

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def interval(self) -> float:
        return self._interval

    async def start(self) -> None:
        """Health check every provider, then fetch and deliver the first snapshot.

        Returning from this coroutine is the readiness signal: at least one
        usage value has been delivered.

        Raises:
            HealthCheckError: If any provider fails its health check
            StartupError: If the first fetch yields no usage at all
        """
        if self._state != WorkerState.CREATED:
            raise RuntimeError(f"Usage worker cannot start from state {self._state.name}")

        self._state = WorkerState.STARTING
        try:
            await self._health_check()
            snapshot = await self._fetch_snapshot()
            if not snapshot.tokens:
                reasons = "; ".join(str(failure) for failure in snapshot.failures) or "no data"
                raise StartupError(f"Initial usage fetch failed: {reasons}")
            await self._queue.put(snapshot)
        except BaseException:
            self._state = WorkerState.FAILED
            raise

        self._state = WorkerState.READY
        self.ready.set()
        logger.info("Usage worker is ready with %d tokens used", snapshot.total_tokens)

    async def run(self) -> None:
        """Tick until a stop is requested or the task is cancelled."""
        if self._stop_requested.is_set():
            logger.info("Usage worker was stopped before it started ticking")
            return
        if self._state != WorkerState.READY:
            raise RuntimeError(f"Usage worker cannot run from state {self._state.name}")

        self._state = WorkerState.RUNNING
        logger.info("Usage worker started with interval %.1fs", self._interval)

        delay = self._interval
        try:
            while not await self._wait_for_stop(delay):
                started = self._clock()
                logger.info("Usage worker is fetching latest usage...")
                snapshot = await self._fetch_snapshot()
                elapsed = self._clock() - started

                if self._stop_requested.is_set():
                    logger.info("Discarding usage fetched after stop was requested")
                    break

                await self._queue.put(snapshot)
                delay = next_delay(self._interval, elapsed)
        finally:
            self._state = WorkerState.STOPPED
            self._stopped.set()
            logger.info("Usage worker stopped")

    async def stop(self, timeout: Optional[float] = None) -> bool:
        """Request a stop and wait for the run loop to acknowledge it.

        Safe to call more than once and before the worker ever ran.

        Returns:
            True if the worker acknowledged within the timeout
        """
        self._stop_requested.set()

        if self._state == WorkerState.RUNNING:
            self._state = WorkerState.STOPPING
        elif self._state not in (WorkerState.STOPPING, WorkerState.STOPPED):
            # Nothing is ticking; no acknowledgement will come from run()
            if self._state != WorkerState.FAILED:
                self._state = WorkerState.STOPPED
            self._stopped.set()

        try:
            await asyncio.wait_for(self._stopped.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Usage worker did not acknowledge stop within %ss", timeout)
            return False
        return True

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if a stop was requested."""
        if timeout <= 0:
            await asyncio.sleep(0)
            return self._stop_requested.is_set()
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _health_check(self) -> None:
        for client, _ in self._client_models:
            try:
                await client.health_check()
            except Exception as e:
                raise HealthCheckError(
                    f"{client.family.value} health check failed: {e}"
                ) from e

    async def _fetch_snapshot(self) -> UsageSnapshot:
        """Fetch usage for every model with one report request per client.

        All models of a client are read from the same report. Models of a
        timed out client are left out so the store keeps their previous
        value; other failures are attached to the snapshot.
        """
        tokens: Dict[str, int] = {}
        failures: List[UsageFetchError] = []

        for client, models in self._client_models:
            try:
                report = await client.fetch_usage_report()
            except (TimeoutError, asyncio.TimeoutError) as e:
                logger.warning(
                    "Usage fetch for %s timed out, keeping previous values: %s",
                    ", ".join(models), e
                )
                continue
            except Exception as e:
                failures.extend(UsageFetchError(model, e) for model in models)
                continue

            for model in models:
                if report and model not in report:
                    self._warn_missing_model(model, client)
                try:
                    tokens[model] = ensure_token_count(report.get(model, 0), f"usage report for {model}")
                except ValueError as e:
                    failures.append(UsageFetchError(model, e))

        return UsageSnapshot(
            tokens=tokens,
            fetched_at=datetime.now(timezone.utc),
            failures=tuple(failures)
        )

    def _warn_missing_model(self, model: str, client: ProviderClient) -> None:
        if model in self._missing_models:
            return
        self._missing_models.add(model)
        logger.warning(
            "%s is not in the %s usage report; usage is counted as 0. "
            "Reports use dated model ids, so aliases never match",
            model, client.family.value
        )
