"""
Main entry point for the Vault plugin manager.

This module wires configuration, the sync session factory and the
controller together, and relays termination signals to the controller.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from config import Config, get_config
from controller import Controller
from stores.filesystem import LocalPluginDirectory
from sync import SyncSession, build_session

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Log to stdout, where the sidecar's log collector picks it up."""
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        stream=sys.stdout,
        force=True,
    )


class Application:
    """Main application that orchestrates the session factory and the controller."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.controller: Optional[Controller] = None

    def build_session(self) -> SyncSession:
        """Session factory handed to the controller; called once per cycle."""
        return build_session(self.config)

    async def initialize(self):
        """
        Validate configuration and check that a sync session can be built.

        Raises:
            ConfigurationError: If the configuration is invalid
            SessionError: If the S3 or Vault client cannot be created
            FilesystemError: If the plugin directory cannot be created
        """
        logger.info("Initializing Vault plugin manager")
        self.config.validate()

        LocalPluginDirectory(self.config.sync.plugin_path).ensure_exists()

        # Fail at startup rather than on every cycle
        session = self.build_session()
        await session.close()

        self.controller = Controller(
            session_factory=self.build_session,
            interval=self.config.sync.interval,
        )
        logger.info("All components initialized")

    async def start(self):
        """Run the controller until a stop is requested."""
        if not self.controller:
            await self.initialize()

        logger.info(
            f"Syncing plugins from s3://{self.config.object_store.bucket} "
            f"to {self.config.sync.plugin_path}"
        )
        await self.controller.start()

    def stop(self):
        """Request a graceful stop after the cycle in progress."""
        if self.controller:
            self.controller.request_stop()


async def main(config: Optional[Config] = None):
    """Main entry point."""
    app = Application(config)
    await app.initialize()

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals):
        logger.info(f"Received {sig.name}, stopping after the current sync")
        app.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        await app.start()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def sync_once(config: Optional[Config] = None):
    """Run a single sync cycle and return its report (None if it was aborted)."""
    app = Application(config)
    await app.initialize()
    return await app.controller.run_cycle()


if __name__ == "__main__":
    config = get_config()
    config.validate()
    setup_logging(config.log_level)
    asyncio.run(main(config))
