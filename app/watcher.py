import logging
import threading
from typing import Callable

from mpd_client import MPDPosition, MPDSong, PlayerError
from state import PlaybackEvent, PlaybackTracker
from supervisor import PlayerLink

log = logging.getLogger("tracker")


class PlaybackWatcher:
    """Polls MPD on a fixed tick and hands tracker events to `emit`."""

    def __init__(self, link: PlayerLink, tracker: PlaybackTracker,
                 emit: Callable[[PlaybackEvent], None], stop: threading.Event, interval: float = 5):
        self.link = link
        self.tracker = tracker
        self.emit = emit
        self.stop = stop
        self.interval = interval

    def run(self) -> None:
        while not self.stop.wait(self.interval):
            self.poll_once()
        # don't lose a listen that was already good enough
        self._emit_all(self.tracker.idle())
        log.info("Watcher stopped")

    def poll_once(self) -> list[PlaybackEvent]:
        polled = self._fetch()
        if polled is None:
            events = self.tracker.idle()
        else:
            events = self.tracker.observe(*polled)
        self._emit_all(events)
        return events

    def _fetch(self) -> tuple[MPDPosition, int, MPDSong] | None:
        """One round trip under the shared lock. None when not playing or on error."""
        try:
            with self.link.acquire() as conn:
                pos, playing = conn.current_position()
                if not playing:
                    return None
                playtime = conn.play_time()
                song = conn.current_song()
        except PlayerError as e:
            log.warning("MPD poll failed: %s", e)
            return None
        return pos, playtime, song

    def _emit_all(self, events: list[PlaybackEvent]) -> None:
        for event in events:
            self.emit(event)
