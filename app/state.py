import logging
import math
import re
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from mpd_client import MPDPosition, MPDSong

log = logging.getLogger("tracker")

# Only submit if played for SUBMIT_TIME seconds or SUBMIT_PERCENTAGE of its length,
# and never for tracks shorter than SUBMIT_MIN_DURATION.
SUBMIT_TIME = 240  # 4 minutes
SUBMIT_PERCENTAGE = 50
SUBMIT_MIN_DURATION = 30

NOW_PLAYING = "now_playing"
SUBMIT = "submit"

_TITLE_SPLIT = re.compile(r"(.+) - (.+)")


# -------------------------
# What gets handed to the backends
# -------------------------
@dataclass(frozen=True)
class TrackSnapshot:
    title: str
    artist: str
    album: str
    album_artist: str
    track_number: int | None  # None when unknown
    duration: int             # whole seconds, 0 when unknown
    start: datetime           # UTC, when this listening session began


@dataclass(frozen=True)
class PlaybackEvent:
    kind: str  # NOW_PLAYING or SUBMIT
    track: TrackSnapshot


def parse_track_number(raw: str) -> int | None:
    """'7', '7/12' -> 7; empty, garbage or negative -> None."""
    number = raw.split("/", 1)[0].strip()
    try:
        value = int(number)
    except ValueError:
        return None
    return value if value >= 0 else None


def parse_duration(raw: str) -> int:
    try:
        value = float(raw)
    except ValueError:
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return int(value + 0.5)


def same_track(a: MPDSong, b: MPDSong) -> bool:
    return (a.file, a.title, a.artist, a.album, a.album_artist) == \
        (b.file, b.title, b.artist, b.album, b.album_artist)


def can_submit(*, submitted: bool, title: str, artist: str, playtime: int, start: int, length: int,
               submit_time: int = SUBMIT_TIME, submit_percentage: int = SUBMIT_PERCENTAGE,
               submit_min_duration: int = SUBMIT_MIN_DURATION) -> bool:
    if submitted or not title or not artist or length < submit_min_duration:
        return False
    elapsed = playtime - start
    if length > 0:
        return elapsed >= submit_time or elapsed * 100 >= length * submit_percentage
    return elapsed >= submit_time


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlaybackTracker:
    """Turns periodic MPD polls into now-playing and submit events.

    Elapsed listening time is measured on MPD's lifetime play time counter
    (`playtime - start`), not on the track position, so seeking forward never
    counts as listening. Submits are held back until the session ends: the
    track changes, playback stops, or the listener jumps back (relisten).
    """

    def __init__(self, *, submit_time: int = SUBMIT_TIME, submit_percentage: int = SUBMIT_PERCENTAGE,
                 submit_min_duration: int = SUBMIT_MIN_DURATION, title_hack: bool = False,
                 title_hack_field: str = "artist", clock: Callable[[], datetime] = _utcnow):
        self.submit_time = submit_time
        self.submit_percentage = submit_percentage
        self.submit_min_duration = submit_min_duration
        self.title_hack = title_hack
        self.title_hack_field = title_hack_field
        self._clock = clock
        self._lock = threading.Lock()

        self.song: MPDSong | None = None
        self.pos = MPDPosition(0, 0)
        self.start = 0         # play time counter when the current session began
        self.playtime = 0      # last seen play time counter
        self.started_at = clock()
        self.submitted = False

    # -------- public API --------
    def observe(self, pos: MPDPosition, playtime: int, song: MPDSong) -> list[PlaybackEvent]:
        """Feed one successful poll of a playing MPD; returns events in emission order."""
        song = self._normalize(song)
        events: list[PlaybackEvent] = []

        with self._lock:
            if self.song is None or not same_track(song, self.song):
                self._flush(events)
                self.song = song
                self.pos = pos
                self.start = playtime
                self.started_at = self._clock()
                self.submitted = False
                log.info("New track: %s — %s", song.artist or "?", song.title or song.file)
                events.append(PlaybackEvent(NOW_PLAYING, self.snapshot()))
            elif playtime < self.playtime:
                # MPD was restarted, the counter never goes back otherwise
                log.info("Play time counter went back %s -> %s; shifting session start",
                         self.playtime, playtime)
                self.start -= self.playtime - playtime

            self.playtime = playtime

            if pos != self.pos:
                if pos.elapsed < self.pos.elapsed:
                    self._seek_back(pos, playtime, events)
                self.pos = pos

        return events

    def idle(self) -> list[PlaybackEvent]:
        """Poll failed or MPD is not playing: close out the session if it earned a submit."""
        events: list[PlaybackEvent] = []
        with self._lock:
            self._flush(events)
        return events

    def can_submit(self) -> bool:
        if self.song is None:
            return False
        return can_submit(
            submitted=self.submitted,
            title=self.song.title,
            artist=self.song.artist,
            playtime=self.playtime,
            start=self.start,
            length=self.pos.length,
            submit_time=self.submit_time,
            submit_percentage=self.submit_percentage,
            submit_min_duration=self.submit_min_duration,
        )

    def snapshot(self) -> TrackSnapshot:
        song = self.song or MPDSong()
        return TrackSnapshot(
            title=song.title,
            artist=song.artist,
            album=song.album,
            album_artist=song.album_artist,
            track_number=parse_track_number(song.track),
            duration=parse_duration(song.duration),
            start=self.started_at,
        )

    # -------- internals --------
    def _normalize(self, song: MPDSong) -> MPDSong:
        if not song.artist and song.album_artist:
            song = replace(song, artist=song.album_artist)
        if self.title_hack and song.title and not getattr(song, self.title_hack_field):
            m = _TITLE_SPLIT.fullmatch(song.title)
            if m:
                song = replace(song, artist=m.group(1), title=m.group(2))
        return song

    def _flush(self, events: list[PlaybackEvent]) -> None:
        if self.can_submit():
            self.submitted = True
            events.append(PlaybackEvent(SUBMIT, self.snapshot()))

    def _seek_back(self, pos: MPDPosition, playtime: int, events: list[PlaybackEvent]) -> None:
        # user seeked back or the track repeated
        if self.submitted or self.can_submit():
            if not self.submitted:
                events.append(PlaybackEvent(SUBMIT, self.snapshot()))
            log.info("Relisten of %s — %s", self.song.artist, self.song.title)
            self.submitted = False
            self.started_at = self._clock()
            self.start = playtime
            events.append(PlaybackEvent(NOW_PLAYING, self.snapshot()))
        else:
            # not yet submittable: don't count the replayed part twice,
            # but never make it worse than a fresh listen
            self.start = min(self.start + self.pos.elapsed - pos.elapsed, playtime)
