"""Keep-alive pinger for hosts that idle out inactive services.

Purpose of this abstraction:
    Periodically GET a health URL from a daemon thread so free-tier hosting
    does not spin the gateway down. Owned by `GatewayContext`; started at
    application startup when enabled and stopped at shutdown.

Log ring:
    The most recent `max_logs` ping results are kept newest-first and exposed
    through `get_logs()` / `get_status()` for the admin routes.

Failure handling:
    Ping failures are recorded and logged; they never stop the loop.
"""

import logging
import threading
import time
from datetime import datetime, timezone

import requests

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 5
PING_TIMEOUT_SECONDS = 10
MAX_LOGS = 100


class KeepAliveService:
    """Background pinger with start/stop control and a bounded log."""

    def __init__(self, default_url, session=None, max_logs=MAX_LOGS, timeout=PING_TIMEOUT_SECONDS):
        self.default_url = default_url
        self.session = session or requests.Session()
        self.max_logs = max_logs
        self.timeout = timeout

        self.ping_url = None
        self.ping_interval_seconds = DEFAULT_INTERVAL_MINUTES * 60
        self.logs = []

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self, url=None, interval_minutes=DEFAULT_INTERVAL_MINUTES):
        """Start pinging `url` (or the default health URL) every `interval_minutes`.

        The first ping happens immediately on the worker thread. Calling
        `start` while running is a no-op.
        """
        if self.is_running:
            logger.info("Keep-alive service is already running")
            return

        self.ping_url = url or self.default_url
        self.ping_interval_seconds = float(interval_minutes) * 60
        self._stop_event.clear()

        logger.info(
            "Starting keep-alive service: pinging %s every %s minutes",
            self.ping_url, interval_minutes,
        )
        self._thread = threading.Thread(target=self._run, name="keep-alive", daemon=True)
        self._thread.start()

    def stop(self):
        if not self.is_running:
            logger.info("Keep-alive service is not running")
            return

        self._stop_event.set()
        self._thread.join(timeout=self.timeout + 1)
        self._thread = None
        logger.info("Keep-alive service stopped")

    def _run(self):
        self.ping()
        while not self._stop_event.wait(self.ping_interval_seconds):
            self.ping()

    def ping(self):
        """Ping the configured URL once and record the outcome."""
        url = self.ping_url or self.default_url
        timestamp = datetime.now(timezone.utc).isoformat()
        start = time.perf_counter()

        try:
            response = self.session.get(url, timeout=self.timeout)
            response_time_ms = round((time.perf_counter() - start) * 1000)
            entry = {
                "timestamp": timestamp,
                "url": url,
                "status": response.status_code,
                "response_time_ms": response_time_ms,
                "success": response.ok,
            }
            logger.debug("Ping %s -> %s in %dms", url, response.status_code, response_time_ms)
        except requests.RequestException as exc:
            status = exc.response.status_code if exc.response is not None else "ERROR"
            entry = {
                "timestamp": timestamp,
                "url": url,
                "status": status,
                "error": str(exc),
                "success": False,
            }
            logger.warning("Ping %s failed: %s", url, exc)

        self._add_log(entry)
        return entry

    def _add_log(self, entry):
        with self._lock:
            self.logs.insert(0, entry)
            del self.logs[self.max_logs:]

    def get_logs(self):
        with self._lock:
            return list(self.logs)

    def get_status(self):
        with self._lock:
            last_pings = list(self.logs[:5])
        return {
            "is_running": self.is_running,
            "ping_url": self.ping_url,
            "ping_interval": f"{self.ping_interval_seconds / 60:g} minutes",
            "last_pings": last_pings,
        }
