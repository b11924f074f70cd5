import logging
import threading
from typing import Optional
from .config import SIMULATION_CONFIG
from .errors import SimulationError

logger = logging.getLogger(__name__)


class TickScheduler:
    """
    Calls manager.tick() on a fixed cadence from a background thread.

    Ticks never overlap: the next wait starts only after the previous tick
    returned. A fatal error stops the scheduler.
    """

    def __init__(self, manager, interval: float = None):
        self.manager = manager
        self.interval = SIMULATION_CONFIG.get('tick_interval', 1.0) if interval is None else interval
        self.ticks = 0
        self.error: Optional[BaseException] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.alive:
            return
        if not self.manager.is_running:
            self.manager.start()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="tick-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Tick scheduler started (interval {self.interval}s)")

    def stop(self, timeout: Optional[float] = None):
        """Cancel pending ticks; waits for an in-flight tick to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info(f"Tick scheduler stopped after {self.ticks} ticks")

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def _loop(self):
        while not self._stop_event.wait(self.interval):
            if not self.manager.is_running:
                # Paused: keep the cadence, skip the tick
                continue
            try:
                self.manager.tick()
            except (SimulationError, IndexError) as e:
                self.error = e
                logger.error(f"Fatal error, stopping scheduler: {e}", exc_info=True)
                self._stop_event.set()
                return
            except Exception as e:
                self.error = e
                logger.error(f"Unexpected error in tick, stopping scheduler: {e}", exc_info=True)
                self.manager.stop()
                self._stop_event.set()
                return
            self.ticks += 1
