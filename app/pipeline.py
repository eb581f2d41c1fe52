"""
Per-backend delivery: live scrobble first, then the on-disk backlog, oldest first.

A record only leaves the queue after the backend accepted it, so a crash mid-drain
can at worst submit it twice (at-least-once). A failing record stays at the head
and draining stops, which keeps the backlog in order for the next attempt.
"""

from __future__ import annotations
import logging
from typing import Callable

from lastfm_client import LastFMAuthError, LastFMClient, LastFMUnknownError, ScrobbleError
from scrobble_queue import MalformedRecord, QueueEmpty, QueueError, QueueRecord, ScrobbleQueue
from state import TrackSnapshot

log = logging.getLogger("pipeline")

Alert = Callable[..., None]


def _no_alert(level: str, title: str, message: str, extra: dict | None = None) -> None:
    pass


class ScrobblePipeline:
    def __init__(self, api: LastFMClient, queue: ScrobbleQueue, alert: Alert = _no_alert):
        self.api = api
        self.queue = queue
        self.alert = alert
        self.logged_in = False

    @property
    def name(self) -> str:
        return self.api.name

    # -------- backend session --------
    def _login(self) -> None:
        if self.logged_in:
            return
        self.api.login()
        self.logged_in = True
        log.info("[%s] Connected", self.name)

    def _submit(self, record: QueueRecord) -> None:
        try:
            self._login()
            self.api.scrobble(
                title=record.title,
                artist=record.artist,
                album=record.album,
                album_artist=record.album_artist,
                track_number=record.track_number,
                duration=record.duration,
                timestamp=record.timestamp,
            )
        except LastFMAuthError as e:
            # force a fresh login next time
            self.logged_in = False
            self.api.logout()
            log.error("[%s] Authentication failed: %s", self.name, e)
            self.alert("ERROR", f"{self.name} authentication failed", str(e), record.to_dict())
            raise
        log.info("[%s] Submitted: %s by %s", self.name, record.title, record.artist)

    # -------- public API --------
    def now_playing(self, track: TrackSnapshot) -> bool:
        """Best-effort: failures are logged and forgotten, the next update supersedes it."""
        try:
            self._login()
            self.api.update_now_playing(
                title=track.title,
                artist=track.artist,
                album=track.album,
                album_artist=track.album_artist,
                track_number=track.track_number,
                duration=track.duration,
            )
        except LastFMAuthError as e:
            self.logged_in = False
            self.api.logout()
            log.warning("[%s] NowPlaying failed (auth): %s", self.name, e)
            return False
        except ScrobbleError as e:
            log.info("[%s] NowPlaying failed: %s", self.name, e)
            return False
        log.info("[%s] NowPlaying: %s by %s", self.name, track.title, track.artist)
        return True

    def scrobble(self, track: TrackSnapshot) -> bool:
        """Submit a live scrobble; on failure it joins the tail of the backlog."""
        record = QueueRecord.from_track(track)
        try:
            self._submit(record)
        except ScrobbleError as e:
            log.warning("[%s] Scrobble error: %s", self.name, e)
            if isinstance(e, LastFMUnknownError):
                self.alert("WARNING", f"{self.name} scrobble error", str(e), record.to_dict())
            self._enqueue(record)
            return False

        self.drain()
        return True

    def drain(self) -> int:
        """Replay the backlog oldest first until it is empty or a submit fails."""
        drained = 0
        while True:
            try:
                record = self.queue.peek()
            except QueueEmpty:
                break
            except MalformedRecord as e:
                # never submittable; the rest of the backlog drains past it
                log.error("[%s] Dropping %s", self.name, e)
                try:
                    self.queue.discard()
                except QueueError as e:
                    log.error("[%s] Dequeue error: %s", self.name, e)
                    break
                continue
            except QueueError as e:
                log.error("[%s] Dequeue error: %s", self.name, e)
                break

            try:
                self._submit(record)
            except ScrobbleError as e:
                log.info("[%s] Draining paused due to error: %s; queue size=%s",
                         self.name, e, self.queue.size())
                break

            try:
                self.queue.dequeue()
            except QueueError as e:
                # the record stays queued and will be submitted again
                log.error("[%s] Dequeue error: %s", self.name, e)
                break
            drained += 1

        if drained:
            log.info("[%s] Drained %s cached scrobbles. Queue size now %s",
                     self.name, drained, self.queue.size())
        return drained

    def drain_backlog(self) -> int:
        """Startup drain, before any live event is accepted."""
        log.info("[%s] Emptying queue (%s pending)", self.name, self.queue.size())
        drained = self.drain()
        log.info("[%s] Emptying done", self.name)
        return drained

    def _enqueue(self, record: QueueRecord) -> None:
        try:
            self.queue.enqueue(record)
        except QueueError as e:
            log.error("[%s] Could not queue %s by %s, scrobble lost: %s",
                      self.name, record.title, record.artist, e)
            return
        log.info("[%s] Queued: %s by %s. queue=%s",
                 self.name, record.title, record.artist, self.queue.size())
