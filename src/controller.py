"""
Sync Controller - runs the plugin sync cycle on a fixed interval.

One cycle runs immediately, then one per interval tick, until a stop is
requested. Stop requests arrive through a one-slot queue and are only looked
at between cycles, so a cycle is never interrupted halfway through its
plugins.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from models import PluginSyncError
from sync import CycleReport, SyncSession

logger = logging.getLogger(__name__)


class ControllerState(Enum):
    """Lifecycle states of the controller."""

    RUNNING = "running"
    WAITING = "waiting"
    STOPPED = "stopped"


class Controller:
    """
    Lifecycle controller for the sync loop.

    Builds a fresh SyncSession for every cycle through session_factory.
    Cycles never overlap: the next tick is only awaited once the previous
    cycle has returned.
    """

    def __init__(
        self,
        session_factory: Callable[[], SyncSession],
        interval: float,
    ):
        self.session_factory = session_factory
        self.interval = interval
        self.state = ControllerState.WAITING
        self._stop_requests: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._next_tick: Optional[float] = None

    def request_stop(self) -> None:
        """
        Ask the controller to stop after the current cycle.

        Safe to call from a signal handler running on the event loop. Only one
        request is kept; further requests are dropped.
        """
        try:
            self._stop_requests.put_nowait(True)
        except asyncio.QueueFull:
            logger.debug("Stop already requested")

    async def start(self) -> None:
        """Run cycles until a stop is requested. Never raises for sync failures."""
        loop = asyncio.get_running_loop()
        logger.info(f"Starting plugin sync every {self.interval}s")
        self._next_tick = loop.time() + self.interval

        await self._cycle()

        stop_waiter = asyncio.ensure_future(self._stop_requests.get())
        timer: Optional[asyncio.Future] = None
        try:
            while True:
                self._set_state(ControllerState.WAITING)
                delay = max(0.0, self._next_tick - loop.time())
                timer = asyncio.ensure_future(asyncio.sleep(delay))

                done, _ = await asyncio.wait(
                    {stop_waiter, timer}, return_when=asyncio.FIRST_COMPLETED
                )
                if stop_waiter in done:
                    break

                self._advance_tick(loop.time())
                await self._cycle()
        finally:
            for task in (stop_waiter, timer):
                if task is not None and not task.done():
                    task.cancel()
            self._set_state(ControllerState.STOPPED)

        logger.info("Plugin sync stopped")

    async def _cycle(self) -> None:
        self._set_state(ControllerState.RUNNING)
        await self.run_cycle()

    def _advance_tick(self, now: float) -> None:
        # Ticks missed by a long cycle collapse into the one just taken
        self._next_tick += self.interval
        while self._next_tick <= now:
            self._next_tick += self.interval

    def _set_state(self, state: ControllerState) -> None:
        if state is not self.state:
            logger.debug(f"Controller state {self.state.value} -> {state.value}")
            self.state = state

    async def run_cycle(self) -> Optional[CycleReport]:
        """
        Run a single sync cycle.

        Session construction and cycle errors are logged, not raised.

        Returns:
            The cycle report, or None if the cycle was aborted
        """
        report = None
        try:
            session = self.session_factory()
        except PluginSyncError as e:
            logger.error(f"Failed to create plugin sync session: {e}")
        except Exception as e:
            logger.error(f"Failed to create plugin sync session: {e}", exc_info=True)
        else:
            async with session:
                try:
                    report = await session.sync_plugins()
                except PluginSyncError as e:
                    logger.error(f"Failed to sync plugins: {e}")
                except Exception as e:
                    logger.error(f"Failed to sync plugins: {e}", exc_info=True)

        logger.info(f"Next sync in about {self.interval}s")
        return report
