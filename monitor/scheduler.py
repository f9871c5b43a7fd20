"""Background scheduler driving the monitoring and decision passes."""
import logging
import threading
import schedule
import time

logger = logging.getLogger("opswatch.scheduler")


class MonitorScheduler:
    def __init__(self, engine, tick_interval=5, decision_interval=60, digest_interval=3600, poll_interval=0.5):
        self.engine = engine
        self.tick_interval = tick_interval
        self.decision_interval = decision_interval
        self.digest_interval = digest_interval
        self.poll_interval = poll_interval
        self._scheduler = schedule.Scheduler()
        self._thread = None
        self._stop = threading.Event()
        self._consecutive_failures = 0

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self):
        """Start the monitoring loop in a daemon thread."""
        if self.running:
            return
        self._stop.clear()

        self._scheduler.every(self.tick_interval).seconds.do(self._tick_job)
        self._scheduler.every(self.decision_interval).seconds.do(self._decision_job)
        self._scheduler.every(self.digest_interval).seconds.do(self._digest_job)

        self._thread = threading.Thread(target=self._run_loop, name="opswatch-monitor", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started (tick every {self.tick_interval}s, decisions every {self.decision_interval}s)")

    def stop(self, timeout=5):
        """Cancel the jobs and wait for an in-flight pass to finish."""
        self._stop.set()
        self._scheduler.clear()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def _run_loop(self):
        # Initial tick immediately
        self._tick_job()
        while not self._stop.is_set():
            self._scheduler.run_pending()
            time.sleep(self.poll_interval)

    def _tick_job(self):
        try:
            self.engine.run_tick()
            self._consecutive_failures = 0
        except Exception as e:
            self._consecutive_failures += 1
            logger.error(f"Tick failed ({self._consecutive_failures} consecutive): {e}")
            if self._consecutive_failures >= 5:
                logger.critical("5+ consecutive tick failures!")

    def _decision_job(self):
        try:
            self.engine.process_decisions()
        except Exception as e:
            logger.error(f"Decision pass failed: {e}")

    def _digest_job(self):
        try:
            self.engine.flush_digest()
        except Exception as e:
            logger.error(f"Digest flush failed: {e}")
