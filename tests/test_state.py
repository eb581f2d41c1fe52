"""Tests for the playback tracker state machine and its helpers."""

from __future__ import annotations

import pytest
from conftest import START, FakeClock
from mpd_client import MPDPosition, MPDSong
from state import (
    NOW_PLAYING,
    SUBMIT,
    PlaybackTracker,
    can_submit,
    parse_duration,
    parse_track_number,
    same_track,
)

SONG_A = MPDSong(file="a.flac", title="Alpha", artist="Xavier", album="One",
                 track="2/10", duration="300.4")
SONG_B = MPDSong(file="b.flac", title="Beta", artist="Xavier", album="One",
                 track="3", duration="250")


def kinds(events) -> list[str]:
    return [e.kind for e in events]


@pytest.fixture
def tracker(clock: FakeClock) -> PlaybackTracker:
    return PlaybackTracker(clock=clock)


# =============================================================================
# can_submit
# =============================================================================


class TestCanSubmit:
    """Tests for the submission predicate."""

    def check(self, *, playtime: int, start: int = 0, length: int = 400, **kwargs) -> bool:
        params = dict(submitted=False, title="t", artist="a", submit_time=240,
                      submit_percentage=50, submit_min_duration=30)
        params.update(kwargs)
        return can_submit(playtime=playtime, start=start, length=length, **params)

    def test_percentage_threshold_wins_for_long_tracks(self) -> None:
        """Half of a 400s track is reached at 200s, before the 240s time threshold."""
        assert not self.check(playtime=199)
        assert self.check(playtime=200)

    def test_time_threshold_wins_for_very_long_tracks(self) -> None:
        """On a 1200s track 240s comes before 50%."""
        assert not self.check(playtime=239, length=1200)
        assert self.check(playtime=240, length=1200)

    def test_stream_needs_time_threshold_only(self) -> None:
        """Length 0 ignores the percentage threshold."""
        assert not self.check(playtime=239, length=0, submit_min_duration=0)
        assert self.check(playtime=240, length=0, submit_min_duration=0)

    def test_stream_is_below_default_min_duration(self) -> None:
        """A zero length is shorter than the default minimum duration."""
        assert not self.check(playtime=10_000, length=0)

    def test_short_track_never_qualifies(self) -> None:
        """L=20 with Dmin=30 never submits, however long it played."""
        assert not self.check(playtime=1000, length=20)

    def test_requires_title_and_artist(self) -> None:
        assert not self.check(playtime=1000, title="")
        assert not self.check(playtime=1000, artist="")

    def test_already_submitted(self) -> None:
        assert not self.check(playtime=1000, submitted=True)

    def test_monotonic_in_elapsed_time(self) -> None:
        """Once true it stays true as the play time counter grows."""
        for length in (0, 45, 400, 1200):
            results = [self.check(playtime=pt, start=100, length=length, submit_min_duration=0)
                       for pt in range(100, 1500, 7)]
            first = results.index(True)
            assert all(results[first:])


# =============================================================================
# Metadata parsing
# =============================================================================


class TestMetadataParsing:
    """Tests for lenient parsing of loosely typed tags."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("7", 7), ("7/12", 7), (" 0 ", 0), ("", None), ("A1", None), ("-3", None)],
    )
    def test_track_number(self, raw: str, expected: int | None) -> None:
        assert parse_track_number(raw) == expected

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("300", 300), ("299.5", 300), ("12.4", 12), ("", 0), ("abc", 0), ("-4", 0), ("nan", 0),
         ("inf", 0), ("-inf", 0), ("1e400", 0)],
    )
    def test_duration(self, raw: str, expected: int) -> None:
        assert parse_duration(raw) == expected

    def test_infinite_duration_does_not_break_tracking(self, tracker: PlaybackTracker) -> None:
        song = MPDSong(file="s.ogg", title="Loop", artist="Xavier", duration="1e400")
        events = tracker.observe(MPDPosition(0, 100), 10, song)
        assert events[0].track.duration == 0

    def test_same_track_ignores_numeric_fields(self) -> None:
        other = MPDSong(file="a.flac", title="Alpha", artist="Xavier", album="One",
                        track="9", duration="1")
        assert same_track(SONG_A, other)
        assert not same_track(SONG_A, SONG_B)


# =============================================================================
# Track changes
# =============================================================================


class TestTrackChange:
    """Tests for new-track detection and flushing the previous session."""

    def test_first_poll_emits_now_playing(self, tracker: PlaybackTracker) -> None:
        """The first observed track is announced with parsed fields."""
        events = tracker.observe(MPDPosition(0, 300), 1000, SONG_A)

        assert kinds(events) == [NOW_PLAYING]
        track = events[0].track
        assert track.title == "Alpha"
        assert track.artist == "Xavier"
        assert track.track_number == 2
        assert track.duration == 300
        assert track.start == START

    def test_progress_alone_emits_nothing(self, tracker: PlaybackTracker) -> None:
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        assert tracker.observe(MPDPosition(5, 300), 1005, SONG_A) == []
        assert tracker.observe(MPDPosition(200, 300), 1200, SONG_A) == []

    def test_change_after_threshold_submits_previous(
        self, tracker: PlaybackTracker, clock: FakeClock
    ) -> None:
        """Submit for the old session comes before now playing for the new one."""
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(160, 300), 1160, SONG_A)
        clock.advance(160)

        events = tracker.observe(MPDPosition(0, 250), 1161, SONG_B)

        assert kinds(events) == [SUBMIT, NOW_PLAYING]
        assert events[0].track.title == "Alpha"
        assert events[0].track.start == START
        assert events[1].track.title == "Beta"
        assert events[1].track.start == clock.now
        assert tracker.submitted is False
        assert tracker.start == 1161

    def test_change_before_threshold_skips_previous(self, tracker: PlaybackTracker) -> None:
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(60, 300), 1060, SONG_A)

        events = tracker.observe(MPDPosition(0, 250), 1061, SONG_B)

        assert kinds(events) == [NOW_PLAYING]

    def test_forward_seek_does_not_count_as_listening(self, tracker: PlaybackTracker) -> None:
        """Elapsed time comes from the play time counter, not the position."""
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(290, 300), 1010, SONG_A)

        assert tracker.can_submit() is False
        assert kinds(tracker.observe(MPDPosition(0, 250), 1011, SONG_B)) == [NOW_PLAYING]


# =============================================================================
# Idle / stop
# =============================================================================


class TestIdle:
    """Tests for flushing when MPD stops or a poll fails."""

    def test_idle_flushes_once(self, tracker: PlaybackTracker) -> None:
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(200, 300), 1200, SONG_A)

        assert kinds(tracker.idle()) == [SUBMIT]
        assert tracker.idle() == []
        assert tracker.submitted is True

    def test_idle_without_track(self, tracker: PlaybackTracker) -> None:
        assert tracker.idle() == []

    def test_resume_after_pause_does_not_resubmit(self, tracker: PlaybackTracker) -> None:
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(200, 300), 1200, SONG_A)
        tracker.idle()

        assert tracker.observe(MPDPosition(210, 300), 1210, SONG_A) == []
        assert kinds(tracker.observe(MPDPosition(0, 250), 1300, SONG_B)) == [NOW_PLAYING]

    def test_short_track_is_never_submitted(self, tracker: PlaybackTracker) -> None:
        jingle = MPDSong(file="j.ogg", title="Jingle", artist="Station", duration="20")
        tracker.observe(MPDPosition(0, 20), 1000, jingle)
        tracker.observe(MPDPosition(19, 20), 2000, jingle)

        assert tracker.idle() == []


# =============================================================================
# Seeking back and relistens
# =============================================================================


class TestSeekBack:
    """Tests for position regressions on an unchanged track."""

    def test_relisten_after_submit(self, tracker: PlaybackTracker, clock: FakeClock) -> None:
        """Already submitted + jump from 180s to 5s starts a fresh session."""
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(180, 300), 1180, SONG_A)
        assert kinds(tracker.idle()) == [SUBMIT]
        clock.advance(200)

        events = tracker.observe(MPDPosition(5, 300), 1185, SONG_A)

        assert kinds(events) == [NOW_PLAYING]
        assert events[0].track.start == clock.now
        assert tracker.submitted is False
        assert tracker.start == 1185

    def test_relisten_when_eligible_flushes_first(self, tracker: PlaybackTracker) -> None:
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(200, 300), 1200, SONG_A)

        events = tracker.observe(MPDPosition(3, 300), 1205, SONG_A)

        assert kinds(events) == [SUBMIT, NOW_PLAYING]
        assert tracker.submitted is False

    def test_relisten_can_submit_again(self, tracker: PlaybackTracker) -> None:
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(200, 300), 1200, SONG_A)
        tracker.observe(MPDPosition(0, 300), 1201, SONG_A)
        tracker.observe(MPDPosition(160, 300), 1361, SONG_A)

        assert kinds(tracker.idle()) == [SUBMIT]

    def test_small_seek_back_is_absorbed(self, tracker: PlaybackTracker) -> None:
        """Before eligibility, the replayed part is not counted twice."""
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(60, 300), 1060, SONG_A)

        events = tracker.observe(MPDPosition(10, 300), 1065, SONG_A)

        assert events == []
        assert tracker.start == 1050
        assert tracker.pos == MPDPosition(10, 300)

    def test_absorbed_seek_is_clamped_to_fresh_listen(self, tracker: PlaybackTracker) -> None:
        tracker.observe(MPDPosition(0, 300), 1000, SONG_A)
        tracker.observe(MPDPosition(100, 300), 1010, SONG_A)  # skipped ahead

        tracker.observe(MPDPosition(0, 300), 1015, SONG_A)

        assert tracker.start == 1015


# =============================================================================
# Play time counter regression
# =============================================================================


class TestPlayTimeRegression:
    """Tests for MPD restarts resetting the lifetime counter."""

    def test_elapsed_is_preserved(self, tracker: PlaybackTracker) -> None:
        tracker.observe(MPDPosition(0, 300), 5000, SONG_A)
        tracker.observe(MPDPosition(60, 300), 5060, SONG_A)
        before = tracker.playtime - tracker.start

        events = tracker.observe(MPDPosition(61, 300), 100, SONG_A)

        assert events == []
        assert tracker.playtime - tracker.start == before == 60

    def test_new_track_after_restart_uses_new_counter(self, tracker: PlaybackTracker) -> None:
        tracker.observe(MPDPosition(0, 300), 5000, SONG_A)
        tracker.observe(MPDPosition(0, 250), 100, SONG_B)

        assert tracker.start == 100


# =============================================================================
# Metadata normalization
# =============================================================================


class TestNormalization:
    """Tests for artist fallback and the title-splitting heuristic."""

    def test_album_artist_fills_missing_artist(self, tracker: PlaybackTracker) -> None:
        song = MPDSong(file="c.flac", title="Gamma", album_artist="Various", duration="200")
        events = tracker.observe(MPDPosition(0, 200), 1000, song)
        assert events[0].track.artist == "Various"

    def test_title_split_disabled_by_default(self, tracker: PlaybackTracker) -> None:
        song = MPDSong(file="http://radio", title="Band - Tune")
        events = tracker.observe(MPDPosition(0, 0), 1000, song)
        assert events[0].track.title == "Band - Tune"
        assert events[0].track.artist == ""

    def test_title_split_when_artist_missing(self, clock: FakeClock) -> None:
        tracker = PlaybackTracker(title_hack=True, clock=clock)
        song = MPDSong(file="http://radio", title="Band - Tune")
        events = tracker.observe(MPDPosition(0, 0), 1000, song)
        assert (events[0].track.artist, events[0].track.title) == ("Band", "Tune")

    def test_title_split_leaves_tagged_artist(self, clock: FakeClock) -> None:
        tracker = PlaybackTracker(title_hack=True, clock=clock)
        song = MPDSong(file="x.mp3", title="Band - Tune", artist="Real")
        events = tracker.observe(MPDPosition(0, 100), 1000, song)
        assert (events[0].track.artist, events[0].track.title) == ("Real", "Band - Tune")

    def test_title_split_keyed_on_album(self, clock: FakeClock) -> None:
        tracker = PlaybackTracker(title_hack=True, title_hack_field="album", clock=clock)
        song = MPDSong(file="http://radio", title="Band - Tune", artist="Radio 1")
        events = tracker.observe(MPDPosition(0, 0), 1000, song)
        assert (events[0].track.artist, events[0].track.title) == ("Band", "Tune")

    def test_split_title_keeps_identity_stable(self, clock: FakeClock) -> None:
        tracker = PlaybackTracker(title_hack=True, clock=clock)
        song = MPDSong(file="http://radio", title="Band - Tune")
        tracker.observe(MPDPosition(0, 0), 1000, song)
        assert tracker.observe(MPDPosition(5, 0), 1005, song) == []
