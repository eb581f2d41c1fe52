import logging
from dataclasses import dataclass

import mpd

log = logging.getLogger("mpd")


class PlayerError(Exception):
    """Any failure talking to MPD. Connection-level failures also mark the handle closed."""


@dataclass(frozen=True)
class MPDSong:
    """Raw current-song tags. track/duration are left as MPD sent them."""
    file: str = ""
    title: str = ""
    artist: str = ""
    album: str = ""
    album_artist: str = ""
    track: str = ""
    duration: str = ""


@dataclass(frozen=True)
class MPDPosition:
    elapsed: int  # seconds into the current track
    length: int   # total track length, 0 for streams


def _first(value) -> str:
    # MPD repeats a tag for multi-valued fields; python-mpd2 hands those back as lists
    if isinstance(value, list):
        value = value[0] if value else ""
    return str(value).strip() if value is not None else ""


def _to_int(s) -> int:
    return int(float(s))


class MPDConnection:
    """
    One TCP session with MPD, built on python-mpd2.
    Exposes just what the tracker and the supervisor need: position, lifetime
    play time, current song, ping and close, plus a `closed` flag.
    """

    def __init__(self, host: str, port: int = 6600, password: str = "", timeout: int = 10):
        self.host = host
        self.port = port
        self.password = password
        self.closed = True
        self._client = mpd.MPDClient()
        self._client.timeout = timeout
        self._client.idletimeout = None

    @classmethod
    def dial(cls, host: str, port: int = 6600, password: str = "", timeout: int = 10) -> "MPDConnection":
        conn = cls(host, port, password, timeout)
        conn.connect()
        return conn

    def connect(self) -> None:
        try:
            self._client.connect(self.host, self.port)
        except (mpd.MPDError, OSError) as e:
            raise PlayerError(f"cannot connect to {self.host}:{self.port}: {e}") from e
        self.closed = False
        if self.password:
            try:
                self._call("password", self.password)
            except PlayerError:
                self.close()
                raise
        log.info("Connected to MPD %s:%s (protocol %s)", self.host, self.port, self._client.mpd_version)

    def _call(self, command: str, *args):
        if self.closed:
            raise PlayerError("connection is closed")
        try:
            return getattr(self._client, command)(*args)
        except mpd.CommandError as e:
            raise PlayerError(f"{command}: {e}") from e
        except (mpd.MPDError, OSError) as e:
            # socket is gone or out of sync; let the supervisor replace it
            self.closed = True
            raise PlayerError(f"{command}: {e}") from e

    def current_position(self) -> tuple[MPDPosition, bool]:
        """Return (position, playing). Position is meaningless when not playing."""
        st = self._call("status")
        if st.get("volume") == "-1" or st.get("state") != "play":
            return MPDPosition(0, 0), False

        try:
            if "elapsed" in st and "duration" in st:
                return MPDPosition(_to_int(st["elapsed"]), _to_int(st["duration"])), True
            elapsed, _, length = st["time"].partition(":")
            return MPDPosition(_to_int(elapsed), _to_int(length or 0)), True
        except (KeyError, ValueError, OverflowError) as e:
            raise PlayerError(f"status: unparsable position {st!r}") from e

    def play_time(self) -> int:
        """MPD's cumulative play time counter (seconds since the daemon started)."""
        stats = self._call("stats")
        try:
            return int(stats["playtime"])
        except (KeyError, ValueError) as e:
            raise PlayerError(f"stats: unparsable playtime {stats!r}") from e

    def current_song(self) -> MPDSong:
        tags = {k.lower(): v for k, v in self._call("currentsong").items()}
        return MPDSong(
            file=_first(tags.get("file")),
            title=_first(tags.get("title")),
            artist=_first(tags.get("artist")),
            album=_first(tags.get("album")),
            album_artist=_first(tags.get("albumartist")),
            track=_first(tags.get("track")),
            duration=_first(tags.get("duration") or tags.get("time")),
        )

    def ping(self) -> None:
        self._call("ping")

    def close(self) -> None:
        if self.closed:
            try:
                self._client.disconnect()
            except (mpd.MPDError, OSError) as e:
                log.debug("disconnect failed: %s", e)
            return
        self.closed = True
        try:
            self._client.close()
        except (mpd.MPDError, OSError) as e:
            log.debug("close command failed: %s", e)
        finally:
            self._client.disconnect()
