"""Shared fixtures: fake MPD connection, fake scrobbling backend, temporary store."""

from __future__ import annotations

import threading
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from lastfm_client import LastFMAuthError, LastFMNetworkError
from mpd_client import MPDPosition, MPDSong, PlayerError
from scrobble_queue import QueueRecord, QueueStore
from state import TrackSnapshot

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


class FakeBackend:
    """Stands in for LastFMClient; records calls and fails on demand."""

    def __init__(self, name: str = "lastfm") -> None:
        self.name = name
        self.logins = 0
        self.scrobbles: list[dict[str, Any]] = []
        self.now_playing: list[dict[str, Any]] = []
        self.fail_login = False
        self.fail_titles: set[str] = set()
        self.error: type[Exception] = LastFMNetworkError

    def login(self) -> None:
        self.logins += 1
        if self.fail_login:
            raise LastFMAuthError("bad credentials")

    def logout(self) -> None:
        pass

    def scrobble(self, **kwargs: Any) -> None:
        if kwargs["title"] in self.fail_titles:
            raise self.error(f"cannot scrobble {kwargs['title']}")
        self.scrobbles.append(kwargs)

    def update_now_playing(self, **kwargs: Any) -> None:
        if kwargs["title"] in self.fail_titles:
            raise self.error(f"cannot update {kwargs['title']}")
        self.now_playing.append(kwargs)

    @property
    def scrobbled_titles(self) -> list[str]:
        return [s["title"] for s in self.scrobbles]


class FakeConnection:
    """Stands in for MPDConnection."""

    def __init__(self) -> None:
        self.closed = False
        self.playing = True
        self.pos = MPDPosition(0, 300)
        self.playtime = 1000
        self.song = MPDSong(file="a.flac", title="Song", artist="Artist", album="Album")
        self.fail: Exception | None = None
        self.pings = 0
        self.close_calls = 0

    def current_position(self) -> tuple[MPDPosition, bool]:
        if self.fail:
            raise self.fail
        return self.pos, self.playing

    def play_time(self) -> int:
        return self.playtime

    def current_song(self) -> MPDSong:
        return self.song

    def ping(self) -> None:
        if self.fail:
            raise self.fail
        self.pings += 1

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1


class Dialer:
    """Hands out prepared connections; raises when told to."""

    def __init__(self, *conns: FakeConnection) -> None:
        self.conns = list(conns)
        self.fail = False
        self.calls = 0

    def __call__(self) -> FakeConnection:
        self.calls += 1
        if self.fail:
            raise PlayerError("connection refused")
        return self.conns.pop(0)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store_path(tmp_path: Path) -> str:
    return str(tmp_path / "data" / "scrobble_queue.json")


@pytest.fixture
def store(store_path: str) -> Generator[QueueStore, None, None]:
    store = QueueStore(store_path)
    yield store
    store.close()


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def broken_connection() -> FakeConnection:
    conn = FakeConnection()
    conn.fail = PlayerError("connection reset")
    return conn


@pytest.fixture
def stop() -> threading.Event:
    return threading.Event()


def make_track(title: str = "Song", artist: str = "Artist", **overrides: Any) -> TrackSnapshot:
    fields: dict[str, Any] = dict(
        title=title,
        artist=artist,
        album="Album",
        album_artist="",
        track_number=3,
        duration=300,
        start=START,
    )
    fields.update(overrides)
    return TrackSnapshot(**fields)


def make_record(title: str = "Song", artist: str = "Artist") -> QueueRecord:
    return QueueRecord.from_track(make_track(title, artist))
