"""
Perk Boost Engine - Process Entry Point
=======================================

Bootstrap
---------
- Logging setup
- Config validation
- ApplicationContext initialization (database, event bus, services, sweeper)
- Run until SIGINT / SIGTERM
- Graceful shutdown
"""

import asyncio
import signal
import sys

from perkboost.core.config.config import Config
from perkboost.core.infra.application_context import ApplicationContext
from perkboost.core.logging.logger import get_logger, setup_logging, shutdown_logging

logger = get_logger(__name__)


# ============================================================================
# Signal Handling
# ============================================================================

def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop_event: asyncio.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            logger.debug("%s handler installed", sig.name)
        except NotImplementedError:
            logger.debug("%s not supported on this platform (likely Windows)", sig.name)


# ============================================================================
# Application Entrypoint
# ============================================================================

async def main() -> None:
    """
    Lifecycle:
        1. Validate configuration
        2. Initialize the application context
        3. Sweep until a shutdown signal arrives
        4. Shut down gracefully
    """
    logger.info("========== PERK BOOST ENGINE START ==========")

    try:
        Config.validate()
        logger.info("✓ Configuration validated", extra=Config.get_config_summary())
    except Exception as exc:
        logger.critical(f"Configuration validation failed: {exc}")
        raise

    stop_event = asyncio.Event()
    _install_signal_handlers(asyncio.get_running_loop(), stop_event)

    context = ApplicationContext()
    try:
        await context.initialize()
        logger.info("Boost engine running; waiting for shutdown signal")
        await stop_event.wait()

    except asyncio.CancelledError:
        logger.warning("Asyncio task cancellation received; shutting down gracefully.")
        raise

    finally:
        await context.shutdown()
        logger.info("========== SHUTDOWN COMPLETE ==========")


def run() -> None:
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Engine manually stopped via keyboard interrupt.")
    except Exception as exc:
        logger.critical(f"Startup failure: {exc}", exc_info=True)
        sys.exit(1)
    finally:
        shutdown_logging()


if __name__ == "__main__":
    run()
