"""
Reconciliation loop — runs TaskScheduler.reconcile() every RECONCILE_INTERVAL
seconds until SIGTERM / SIGINT.

Started by `flask reconcile`. A tick that raises is logged and the loop
keeps going; ticks never overlap (see TaskScheduler.reconcile).
"""
import logging
import signal
import threading

from orchestrator.config import RECONCILE_INTERVAL

logger = logging.getLogger('scheduler.loop')


class ReconcileLoop:
    """Fixed-interval driver for the reconciliation tick."""

    def __init__(self, scheduler, interval: int = RECONCILE_INTERVAL):
        self.scheduler = scheduler
        self.interval = interval
        self._stop = threading.Event()
        self.ticks = 0
        self.errors = 0

    def _setup_signal_handlers(self):
        def shutdown_handler(signum, frame):
            logger.info("Received signal %s, shutting down...", signum)
            self.stop()

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)

    def stop(self):
        self._stop.set()

    def run_once(self):
        try:
            result = self.scheduler.reconcile()
            self.ticks += 1
            return result
        except Exception:
            self.errors += 1
            logger.error("Reconciliation tick failed", exc_info=True)
            return None

    def run(self, max_ticks: int = None, install_signals: bool = True):
        """Block, ticking every `interval` seconds. `max_ticks` bounds the run (tests, cron)."""
        if install_signals:
            self._setup_signal_handlers()
        logger.info("Reconciliation loop started (interval: %ss)", self.interval)
        while not self._stop.is_set():
            self.run_once()
            if max_ticks is not None and self.ticks + self.errors >= max_ticks:
                break
            self._stop.wait(self.interval)
        logger.info("Reconciliation loop stopped after %d ticks (%d errors)", self.ticks, self.errors)
