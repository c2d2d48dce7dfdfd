"""
Scrollwork agent.

Sequences the usage worker against the unix socket front end and owns
the shutdown protocol.

Startup Order:
1. Resolve every configured model to a provider family
2. Build one provider client per family
3. Start the usage worker under a bounded timeout; no listener before it is ready
4. Run: bind the socket, then worker ticks, usage ingestion and accept

Shutdown Order:
1. Stop the worker and wait for its acknowledgement
2. Close the listener and cancel open connections
3. Join all background tasks and close provider clients
"""

import asyncio
import logging
import os
from typing import Callable, Dict, List, Optional, Sequence, Set

from scrollwork.config.loader import AgentConfig
from scrollwork.providers import create_provider_client
from scrollwork.providers.base import ProviderClient
from scrollwork.providers.models import ModelFamily, resolve_model_family
from scrollwork.server.client import is_agent_listening
from scrollwork.server.connection import ConnectionHandler
from scrollwork.server.protocol import MAX_LINE_BYTES

from .errors import ConfigurationError, ListenerError, StartupTimeoutError
from .risk import Assessment, RiskThresholds
from .token_counter import Message, count_prompt_tokens
from .usage import UsageSnapshot, UsageStore
from .worker import UsageWorker

logger = logging.getLogger(__name__)

# Bound on waiting for the worker's stop acknowledgement and the listener close
STOP_TIMEOUT_SECONDS = 5.0

ClientFactory = Callable[[ModelFamily, AgentConfig], ProviderClient]


class Agent:
    """Answers prompt cost-risk queries against live organization usage.

    The agent exclusively owns the usage store and the listener. The usage
    worker only communicates through the usage queue.
    """

    def __init__(self, config: AgentConfig, client_factory: ClientFactory = create_provider_client):
        """Initialize the agent.

        Args:
            config: Validated agent configuration
            client_factory: Builds the provider client for a model family
        """
        self._config = config
        self._client_factory = client_factory
        self._store = UsageStore()
        self._thresholds = config.thresholds.to_risk_thresholds()
        self._connection_handler = ConnectionHandler(self.assess)

        self._families: Dict[str, ModelFamily] = {}
        self._clients: Dict[ModelFamily, ProviderClient] = {}
        self._usage_queue: Optional["asyncio.Queue[UsageSnapshot]"] = None
        self._worker: Optional[UsageWorker] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._tasks: List[asyncio.Task] = []
        self._connections: Set[asyncio.Task] = set()

        self._started = False
        self._running = False
        self._stop_task: Optional[asyncio.Future] = None

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def store(self) -> UsageStore:
        return self._store

    @property
    def thresholds(self) -> RiskThresholds:
        return self._thresholds

    @property
    def worker(self) -> Optional[UsageWorker]:
        return self._worker

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> None:
        """Validate providers and wait for the first usage snapshot.

        Returns without accepting connections.

        Raises:
            UnsupportedModelError: If a configured model has no provider family
            HealthCheckError: If a provider fails its health check
            StartupTimeoutError: If the worker is not ready in time
            StartupError: If the first usage fetch yields nothing
        """
        if self._stop_task is not None:
            raise RuntimeError("Agent has been stopped and cannot be restarted")
        if self._started:
            raise RuntimeError("Agent is already started")

        self._families = {model: resolve_model_family(model) for model in self._config.models}
        for model, family in self._families.items():
            logger.info("Tracking usage for %s (%s)", model, family.value)

        timeout = self._config.startup_timeout_seconds
        ready = False
        try:
            for family in dict.fromkeys(self._families.values()):
                self._clients[family] = self._client_factory(family, self._config)

            self._usage_queue = asyncio.Queue(maxsize=1)
            self._worker = UsageWorker(
                clients={model: self._clients[family] for model, family in self._families.items()},
                usage_queue=self._usage_queue,
                interval=self._config.refresh_interval_seconds
            )

            try:
                await asyncio.wait_for(self._worker.start(), timeout)
            except asyncio.TimeoutError:
                raise StartupTimeoutError(
                    f"Usage worker was not ready within {timeout}s"
                ) from None
            ready = True
        finally:
            if not ready:
                await self._close_clients()

        # The worker delivered its first snapshot before signalling readiness
        self._ingest(self._usage_queue.get_nowait())
        self._started = True
        logger.info("Scrollwork agent started")

    async def run(self) -> None:
        """Bind the listener, then launch the worker, ingestion and accept loops.

        Returns once the listener accepts connections; serving continues in the
        background until ``stop`` is called.

        Raises:
            ListenerError: If the socket cannot be bound
        """
        if not self._started or self._worker is None:
            raise RuntimeError("Agent.start() must complete before Agent.run()")
        if self._stop_task is not None:
            raise RuntimeError("Agent has been stopped")
        if self._running:
            raise RuntimeError("Agent is already running")
        self._running = True

        try:
            self._server = await self._bind_listener()
            await self._server.start_serving()
        except BaseException:
            await self.stop()
            raise

        self._tasks.append(asyncio.create_task(self._worker.run(), name="scrollwork-usage-worker"))
        self._tasks.append(asyncio.create_task(self._ingest_usage(), name="scrollwork-usage-ingestion"))
        self._tasks.append(asyncio.create_task(self._server.serve_forever(), name="scrollwork-accept"))
        logger.info(
            "Scrollwork agent is listening on %s and ready for connections",
            self._config.socket_path
        )

    async def stop(self) -> None:
        """Stop the agent. Idempotent and safe before ``start``."""
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._stop_task)

    async def assess(self, model: Optional[str], messages: Sequence[Message]) -> Assessment:
        """Classify a prompt against current organization usage.

        Args:
            model: Target model; the first configured model when omitted
            messages: Prompt messages to count

        Returns:
            Assessment with the risk level and current usage

        Raises:
            UnsupportedModelError: If the model has no provider family
            ConfigurationError: If no client serves the model's family
        """
        model = model or self._config.models[0]
        family = self._families.get(model) or resolve_model_family(model)
        client = self._clients.get(family)
        if client is None:
            raise ConfigurationError(
                f"No {family.value} provider is configured for model {model}"
            )

        prompt_tokens = await count_prompt_tokens(client, model, messages)
        total_tokens = self._store.total_tokens()
        return Assessment(
            risk_level=self._thresholds.assess(total_tokens + prompt_tokens),
            total_tokens_used=total_tokens,
            prompt_tokens=prompt_tokens,
            model=model
        )

    async def _shutdown(self) -> None:
        logger.info("Scrollwork agent is shutting down...")

        if self._worker is not None:
            await self._worker.stop(timeout=STOP_TIMEOUT_SECONDS)

        if self._server is not None:
            self._server.close()

        for task in list(self._connections):
            task.cancel()
        for task in self._tasks:
            if not task.done():
                task.cancel()

        results = await asyncio.gather(*self._tasks, *self._connections, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("Background task failed during shutdown: %s", result)
        self._tasks.clear()

        if self._server is not None:
            try:
                await asyncio.wait_for(self._server.wait_closed(), STOP_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Listener did not close within %ss", STOP_TIMEOUT_SECONDS)
            self._remove_socket_file()
            logger.info("Scrollwork socket at %s closed", self._config.socket_path)

        await self._close_clients()
        logger.info("Scrollwork agent stopped")

    async def _bind_listener(self) -> asyncio.AbstractServer:
        path = self._config.socket_path
        if os.path.exists(path) and await is_agent_listening(path):
            raise ListenerError(f"Another agent is already listening on {path}")

        try:
            return await asyncio.start_unix_server(
                self._handle_connection,
                path=path,
                limit=MAX_LINE_BYTES,
                start_serving=False
            )
        except OSError as e:
            raise ListenerError(f"Failed to listen on unix socket {path}: {e}") from e

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        self._connections.add(task)
        try:
            await self._connection_handler(reader, writer)
        finally:
            self._connections.discard(task)

    async def _ingest_usage(self) -> None:
        while True:
            snapshot = await self._usage_queue.get()
            self._ingest(snapshot)

    def _ingest(self, snapshot: UsageSnapshot) -> None:
        self._store.apply(snapshot)
        for failure in snapshot.failures:
            logger.error("%s; usage for %s is stale", failure, failure.model)
        if snapshot.tokens:
            logger.info("Organization usage updated: %d tokens used", self._store.total_tokens())

    def _remove_socket_file(self) -> None:
        try:
            os.unlink(self._config.socket_path)
        except FileNotFoundError:
            pass

    async def _close_clients(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning("Failed to close %s client: %s", client.family.value, e)
