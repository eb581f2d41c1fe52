import logging
from urllib.parse import urlsplit

import pylast

log = logging.getLogger("lastfm")

NETWORKS = {
    "lastfm": pylast.LastFMNetwork,
    "librefm": pylast.LibreFMNetwork,
}


# Custom error classes so callers can branch
class ScrobbleError(Exception): ...
class LastFMAuthError(ScrobbleError): ...
class LastFMRateLimitError(ScrobbleError): ...
class LastFMNetworkError(ScrobbleError): ...
class LastFMUnknownError(ScrobbleError): ...


# 4=Auth failed, 9=Invalid session, 10=Invalid API key, 14=Token not authorized, 15=Token expired
_AUTH_CODES = {4, 9, 10, 14, 15}
_RATE_LIMIT_CODES = {29}


def _map_error(e: Exception) -> ScrobbleError:
    if isinstance(e, pylast.WSError):
        try:
            code = int(e.status)
        except (TypeError, ValueError):
            code = None
        if code in _AUTH_CODES:
            return LastFMAuthError(str(e))
        if code in _RATE_LIMIT_CODES:
            return LastFMRateLimitError(str(e))
        return LastFMUnknownError(f"API error {code}: {e}")
    return LastFMNetworkError(str(e))


def ws_server(uri: str) -> tuple[str, str]:
    """Split an Audioscrobbler 2.0 endpoint such as https://gnufm.example/2.0/ into pylast's (host, path)."""
    parts = urlsplit(uri if "//" in uri else f"https://{uri}")
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"Invalid API uri {uri!r}")
    return parts.netloc, parts.path or "/2.0/"


def track_args(*, title: str, artist: str, album: str, album_artist: str,
               track_number: int | None, duration: int) -> dict:
    """pylast keyword arguments; empty/zero optional fields are left off the wire."""
    return dict(
        artist=artist,
        title=title,
        album=album or None,
        album_artist=album_artist or None,
        track_number=track_number if track_number else None,
        duration=duration if duration > 0 else None,
    )


class LastFMClient:
    """Thin wrapper over pylast for login + update-now-playing + scrobbling.

    Works against any pylast network (Last.fm, Libre.fm), or any other
    Audioscrobbler 2.0 server when `uri` is set. Nothing talks to the network
    until login(); pylast exchanges username + password hash for a session key
    at that point.
    """

    def __init__(self, name: str, *, api_key: str, api_secret: str, network: str = "lastfm",
                 session_key: str | None = None, username: str | None = None,
                 password_md5: str | None = None, uri: str | None = None):
        if network not in NETWORKS:
            raise ValueError(f"Unknown scrobbling network {network!r}")
        if not session_key and not (username and password_md5):
            raise ValueError("Missing credentials: need session_key or username + password")
        self.name = name
        self.network_type = network
        self.api_key = api_key
        self.api_secret = api_secret
        self.session_key = session_key
        self.username = username
        self.password_md5 = password_md5
        self.ws_server = ws_server(uri) if uri else None
        self.network = None  # pylast network, set by login()

    def login(self):
        """Build the pylast network; raises LastFMAuthError/LastFMNetworkError."""
        factory = NETWORKS[self.network_type]
        try:
            if self.ws_server:
                self.network = self._custom_server(factory)
            elif self.session_key:
                log.info("[%s] Using session key auth", self.name)
                self.network = factory(
                    api_key=self.api_key,
                    api_secret=self.api_secret,
                    session_key=self.session_key,
                )
            else:
                log.info("[%s] Using username + MD5 password auth", self.name)
                self.network = factory(
                    api_key=self.api_key,
                    api_secret=self.api_secret,
                    username=self.username,
                    password_hash=self.password_md5,
                )
        except (pylast.PyLastError, OSError) as e:
            self.network = None
            raise _map_error(e) from e

    def _custom_server(self, factory):
        # pylast fixes the endpoint per network class and logs in from __init__,
        # so build it without credentials and log in once ws_server points elsewhere
        host, path = self.ws_server
        log.info("[%s] Using API endpoint %s%s", self.name, host, path)
        network = factory(api_key=self.api_key, api_secret=self.api_secret)
        network.ws_server = self.ws_server
        if self.session_key:
            network.session_key = self.session_key
            return network
        network.username = self.username
        network.password_hash = self.password_md5
        generator = pylast.SessionKeyGenerator(network)
        network.session_key = generator.get_session_key(self.username, self.password_md5)
        return network

    def logout(self):
        self.network = None

    def update_now_playing(self, *, title: str, artist: str, album: str, album_artist: str,
                           track_number: int | None, duration: int):
        self._call(
            "update_now_playing",
            **track_args(title=title, artist=artist, album=album, album_artist=album_artist,
                         track_number=track_number, duration=duration),
        )

    def scrobble(self, *, title: str, artist: str, album: str, album_artist: str,
                 track_number: int | None, duration: int, timestamp: int):
        """Submit a scrobble with a start timestamp (unix seconds)."""
        self._call(
            "scrobble",
            timestamp=timestamp,
            **track_args(title=title, artist=artist, album=album, album_artist=album_artist,
                         track_number=track_number, duration=duration),
        )

    def _call(self, method: str, **kwargs):
        if self.network is None:
            raise LastFMAuthError("not logged in")
        try:
            getattr(self.network, method)(**kwargs)
        except (pylast.PyLastError, OSError) as e:
            raise _map_error(e) from e
