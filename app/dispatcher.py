from __future__ import annotations
import logging
import queue
from dataclasses import replace

from pipeline import ScrobblePipeline
from state import NOW_PLAYING, SUBMIT, PlaybackEvent

log = logging.getLogger("dispatcher")

_STOP = object()


class Dispatcher:
    """Fans tracker events out to every backend pipeline.

    The tracker only ever calls publish(), so a slow backend never holds up
    polling. Now-playing events are dropped when the buffer is full; submit
    events wait for room.
    """

    QUEUE_SIZE = 100

    def __init__(self, pipelines: list[ScrobblePipeline], *, send_duration: bool = True,
                 maxsize: int = QUEUE_SIZE):
        self.pipelines = pipelines
        self.send_duration = send_duration
        self._events: queue.Queue = queue.Queue(maxsize=maxsize)

    def publish(self, event: PlaybackEvent) -> None:
        if event.kind == NOW_PLAYING:
            try:
                self._events.put_nowait(event)
            except queue.Full:
                log.warning("Event buffer full; dropping now playing for %s — %s",
                            event.track.artist, event.track.title)
            return
        self._events.put(event)

    def close(self) -> None:
        """Everything published before this is still delivered, then run() returns."""
        self._events.put(_STOP)

    def run(self) -> None:
        while True:
            event = self._events.get()
            if event is _STOP:
                log.info("Dispatcher stopped")
                return
            self.deliver(event)

    def deliver(self, event: PlaybackEvent) -> None:
        track = event.track
        if not self.send_duration:
            track = replace(track, duration=0)

        for pipeline in self.pipelines:
            if event.kind == SUBMIT:
                pipeline.scrobble(track)
            else:
                pipeline.now_playing(track)
