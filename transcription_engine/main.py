"""Transcription engine entry point.

Serves the webhook and admin API with uvicorn alongside the periodic retry
scheduler. Handles SIGTERM for graceful shutdown: the scheduler stops,
in-flight attempts get a bounded window to finish, then clients close.
"""

import asyncio
import logging
import signal

import uvicorn

from transcription_engine.api.app import create_app
from transcription_engine.bootstrap import EngineContext, build_context
from transcription_engine.config import EngineSettings
from transcription_engine.observability.logger import setup_logging

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 30.0
DRAIN_POLL_SECONDS = 0.5


def _setup_logging(level: str) -> None:
    """Configure root logger with structured JSON output."""
    setup_logging(level)


async def _drain(context: EngineContext, timeout: float) -> None:
    """Wait for in-flight attempts to finish, up to timeout seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while context.orchestrator.active_recordings:
        if asyncio.get_running_loop().time() >= deadline:
            logger.warning(
                "Shutdown with %d attempts still in flight",
                len(context.orchestrator.active_recordings),
            )
            return
        await asyncio.sleep(DRAIN_POLL_SECONDS)


async def _run(context: EngineContext) -> None:
    """Run the HTTP server and retry scheduler until a shutdown signal."""
    settings = context.settings
    config = uvicorn.Config(
        create_app(context),
        host="0.0.0.0",
        port=settings.port,
        log_config=None,
    )
    server = uvicorn.Server(config)
    # Signals are handled here so the drain runs before clients close.
    server.install_signal_handlers = lambda: None

    if settings.scheduler_enabled:
        context.scheduler.start()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _shutdown() -> None:
        logger.info("Received shutdown signal")
        server.should_exit = True
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown)

    server_task = asyncio.create_task(server.serve())
    logger.info("HTTP server listening on port %d", settings.port)

    await stop_event.wait()
    await context.scheduler.stop()
    await _drain(context, SHUTDOWN_TIMEOUT_SECONDS)
    await server_task
    await context.aclose()


def main() -> None:
    """Start the transcription engine."""
    settings = EngineSettings.from_env()
    _setup_logging(settings.log_level)
    logger.info("Transcription engine starting")

    context = build_context(settings)
    asyncio.run(_run(context))


if __name__ == "__main__":
    main()
