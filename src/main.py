"""
Main entry point for the Elasticsearch operator.

Builds the informers, convergence strategy and controller from configuration
and runs them until SIGINT or SIGTERM.
"""

import asyncio
import logging
import signal
from typing import List, Optional

from kubernetes_asyncio.client import ApiClient

from api import APIServer, create_app
from config import Config, get_config
from controller import ElasticsearchController
from events import EventBus, EventRecorder
from kube import build_informers, new_api_client
from plugins.registry import get_registry, register_builtin_strategies

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application that wires the controller to the cluster."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.api_client: Optional[ApiClient] = None
        self.controller: Optional[ElasticsearchController] = None
        self.api_server: Optional[APIServer] = None
        self.event_bus = EventBus()
        self.stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    async def initialize(self) -> None:
        """Initialize all components."""
        logger.info("Initializing Elasticsearch operator")

        register_builtin_strategies()
        strategy = await get_registry().get_strategy(
            self.config.strategy.name, self.config.strategy.options
        )
        logger.info(f"Using convergence strategy: {strategy.name}")

        self.api_client = await new_api_client(self.config.kube)
        informers = build_informers(
            self.api_client,
            self.config.kube,
            retry_delay=self.config.controller.watch_retry_delay,
        )

        self.controller = ElasticsearchController(
            clusters=informers["clusters"],
            deployments=informers["deployments"],
            statefulsets=informers["statefulsets"],
            service_accounts=informers["service_accounts"],
            services=informers["services"],
            strategy=strategy,
            config=self.config.controller,
            recorder=EventRecorder(self.event_bus),
        )

        if self.config.api.enabled:
            self.api_server = APIServer(
                create_app(self.controller, self.event_bus), self.config.api
            )

        logger.info("All components initialized")

    async def run(self) -> None:
        """Run until :meth:`stop` is called."""
        if self.controller is None:
            await self.initialize()

        for informer in self.controller.informers:
            self._tasks.append(asyncio.create_task(informer.run(self.stop_event)))
        if self.api_server:
            self._tasks.append(asyncio.create_task(self.api_server.start()))

        try:
            await self.controller.run(self.config.controller.workers, self.stop_event)
        finally:
            await self.shutdown()

    def stop(self) -> None:
        """Signal every component to stop."""
        if not self.stop_event.is_set():
            logger.info("Stopping Elasticsearch operator")
            self.stop_event.set()

    async def shutdown(self) -> None:
        self.stop()
        if self.api_server:
            await self.api_server.stop()

        # Watches block on the network; they do not notice the stop event
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.api_client is not None:
            await self.api_client.close()
            self.api_client = None

        logger.info("Elasticsearch operator stopped")


async def main() -> None:
    """Main entry point."""
    config = get_config()
    configure_logging(config.api.log_level)
    app = Application(config)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        app.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await app.run()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
