"""
Keeps the MPD connection usable.

PlayerLink owns the one shared MPDConnection and the lock the poller also takes,
so a poll and a reconnect never run at the same time. ConnectionSupervisor runs
in its own thread: a ping every PING_INTERVAL, a closed-socket check every
HEALTH_INTERVAL, and a fresh connection swapped in when the old one died.
"""

from __future__ import annotations
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from mpd_client import MPDConnection, PlayerError

log = logging.getLogger("supervisor")


class PlayerLink:
    def __init__(self, dial: Callable[[], MPDConnection]):
        self.dial = dial
        self.lock = threading.Lock()
        self._conn: MPDConnection | None = None

    def open(self) -> None:
        """Initial connection; PlayerError here is fatal for the caller."""
        conn = self.dial()
        with self.lock:
            self._conn = conn

    @contextmanager
    def acquire(self) -> Iterator[MPDConnection]:
        with self.lock:
            if self._conn is None:
                raise PlayerError("not connected")
            yield self._conn

    def is_closed(self) -> bool:
        with self.lock:
            return self._conn is None or self._conn.closed

    def replace(self, conn: MPDConnection) -> None:
        with self.lock:
            old, self._conn = self._conn, conn
            if old is not None:
                old.close()

    def close(self) -> None:
        with self.lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def _no_alert(level: str, title: str, message: str, extra: dict | None = None) -> None:
    pass


class ConnectionSupervisor:
    def __init__(self, link: PlayerLink, stop: threading.Event, *, ping_interval: float = 30,
                 health_interval: float = 1, backoff: float = 5, alert=_no_alert,
                 clock: Callable[[], float] = time.monotonic):
        self.link = link
        self.stop = stop
        self.ping_interval = ping_interval
        self.health_interval = health_interval
        self.backoff = backoff
        self.alert = alert
        self.clock = clock
        self.failures = 0

    def run(self) -> None:
        next_ping = self.clock() + self.ping_interval
        while not self.stop.wait(self.health_interval):
            if self.clock() >= next_ping:
                self.ping()
                next_ping = self.clock() + self.ping_interval
            self.check()
        log.info("Connection supervisor stopped")

    def ping(self) -> None:
        try:
            with self.link.acquire() as conn:
                conn.ping()
        except PlayerError as e:
            log.warning("ping failed: %s", e)

    def check(self) -> bool:
        """Reconnect if the current connection is closed. Returns True when a swap happened."""
        if not self.link.is_closed():
            return False

        log.info("detected closed socket, reconnecting")
        try:
            conn = self.link.dial()
        except PlayerError as e:
            self.failures += 1
            log.warning("reconnection fail (attempt %s): %s", self.failures, e)
            if self.failures == 1:
                self.alert("WARNING", "MPD connection lost", str(e))
            self.stop.wait(self.backoff)
            return False

        self.link.replace(conn)
        log.info("successfully reconnected")
        if self.failures:
            self.alert("INFO", "MPD connection restored",
                       f"Reconnected after {self.failures} failed attempts.")
        self.failures = 0
        return True
