"""
Delivery Worker Runner

Standalone entry point that runs the delivery workers as their own process,
separately from the API.

Usage:
    python -m newsdesk.core.outbox.runner

Environment Variables:
    DATABASE_BACKEND / DATABASE_URL / SQLITE_PATH: store to drain
    DELIVERY_WORKERS: number of concurrent worker loops (default: 1)
    DELIVERY_POLL_INTERVAL: idle sleep in seconds (default: 10)
    DELIVERY_MAX_ATTEMPTS: attempts before a task is abandoned (default: 3)
    EMAIL_BASE_URL / EMAIL_SENDER / EMAIL_AUTHORIZATION_TOKEN: email service
    LOG_LEVEL: Logging level (default: INFO)
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

from ...config import Settings, get_settings
from ..database import DatabaseAdapter, DatabaseConfig
from ..email import EmailClient
from ..observability import configure_logging, init_metrics, init_tracing
from .lifecycle import start_delivery_workers, stop_delivery_workers
from .worker import DeliveryWorker

logger = logging.getLogger(__name__)


class DeliveryRunner:
    """
    Manages the delivery workers' lifecycle with graceful shutdown.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.workers: List[DeliveryWorker] = []
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        """Handle shutdown signal."""
        if self._shutdown_requested:
            logger.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(1)

        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self.request_shutdown()

    def request_shutdown(self):
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def run(self, install_signal_handlers: bool = True):
        """Run the workers until shutdown is requested."""
        settings = self.settings

        logger.info("Starting Delivery Worker Runner")
        logger.info(f"  Workers: {settings.DELIVERY_WORKERS}")
        logger.info(f"  Poll interval: {settings.DELIVERY_POLL_INTERVAL}s")
        logger.info(f"  Max attempts: {settings.DELIVERY_MAX_ATTEMPTS}")

        if install_signal_handlers:
            self._setup_signal_handlers()

        db = DatabaseAdapter(DatabaseConfig.from_settings(settings))
        await db.connect()
        email_client = EmailClient.from_settings(settings)

        try:
            self.workers = await start_delivery_workers(db, settings, email_client)
            logger.info("Delivery workers are running")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Delivery runner error: {e}", exc_info=True)
            raise
        finally:
            logger.info("Stopping delivery workers")
            await stop_delivery_workers(self.workers)
            await email_client.aclose()
            await db.disconnect()
            logger.info("Delivery workers stopped")

    def health_check(self) -> dict:
        """Return health status for monitoring."""
        running = sum(1 for worker in self.workers if worker.is_running)
        return {
            "status": "healthy" if self.workers and running == len(self.workers) else "unhealthy",
            "running": running,
            "shutdown_requested": self._shutdown_requested
        }


async def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(
        level=settings.LOG_LEVEL,
        structured=settings.LOG_STRUCTURED,
        service_name="newsdesk-delivery"
    )

    issues = settings.validate()
    for issue in issues:
        if issue.startswith("ERROR"):
            logger.error(issue)
        else:
            logger.warning(issue)
    if any(issue.startswith("ERROR") for issue in issues):
        sys.exit(1)

    init_tracing(
        service_name="newsdesk-delivery",
        otlp_endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        console_export=settings.OTEL_CONSOLE_EXPORT
    )
    init_metrics(
        service_name="newsdesk-delivery",
        otlp_endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        console_export=settings.OTEL_CONSOLE_EXPORT
    )

    runner = DeliveryRunner(settings)
    await runner.run()


if __name__ == "__main__":
    asyncio.run(main())
