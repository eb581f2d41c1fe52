"""
Configuration for the MPD → Last.fm bridge.

Scalars come from environment variables; scrobbling backends come from a TOML
file with one table per backend name:

    [lastfm]
    key = "..."
    secret = "..."
    username = "me"
    password = "..."        # or password_md5 = "...", or session_key = "..."

    [librefm]
    type = "librefm"
    ...

    [gnufm]
    uri = "https://gnufm.example/2.0/"   # any Audioscrobbler 2.0 server
    ...
"""

from __future__ import annotations
import os
import tomllib
from dataclasses import dataclass, field
from typing import Mapping

import pylast

from lastfm_client import NETWORKS, ws_server


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class BackendConfig:
    name: str
    api_key: str
    api_secret: str
    network: str = "lastfm"
    session_key: str | None = None
    username: str | None = None
    password_md5: str | None = None
    uri: str | None = None  # overrides the network's default API endpoint


@dataclass(frozen=True)
class Settings:
    mpd_host: str = "127.0.0.1"
    mpd_port: int = 6600
    mpd_password: str = ""
    mpd_timeout: int = 10

    poll_interval: int = 5
    ping_interval: int = 30
    health_interval: int = 1
    reconnect_backoff: int = 5

    submit_time: int = 240
    submit_percentage: int = 50
    submit_min_duration: int = 30
    title_hack: bool = False
    title_hack_field: str = "artist"
    send_duration: bool = True

    cache_path: str = "/data/scrobble_queue.json"
    backends_path: str = "/config/backends.toml"
    log_level: str = "INFO"
    backends: list[BackendConfig] = field(default_factory=list)


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def load_backends(path: str) -> list[BackendConfig]:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"cannot read backends config {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid backends config {path}: {e}") from e

    backends = []
    for name, table in data.items():
        if not isinstance(table, dict):
            raise ConfigError(f"[{name}] must be a table")
        network = table.get("type", "lastfm")
        if network not in NETWORKS:
            raise ConfigError(f"[{name}] unknown type {network!r}, expected one of {sorted(NETWORKS)}")
        if not table.get("key") or not table.get("secret"):
            raise ConfigError(f"[{name}] key and secret are required")

        password_md5 = table.get("password_md5")
        if not password_md5 and table.get("password"):
            password_md5 = pylast.md5(table["password"])
        session_key = table.get("session_key")
        if not (session_key or (table.get("username") and password_md5)):
            raise ConfigError(f"[{name}] provide session_key or username + password")
        uri = table.get("uri") or None
        if uri is not None:
            try:
                ws_server(uri)
            except (TypeError, ValueError):
                raise ConfigError(f"[{name}] invalid uri {uri!r}") from None

        backends.append(BackendConfig(
            name=name,
            api_key=table["key"],
            api_secret=table["secret"],
            network=network,
            session_key=session_key,
            username=table.get("username"),
            password_md5=password_md5,
            uri=uri,
        ))

    if not backends:
        raise ConfigError(f"no backends configured in {path}")
    return backends


def load_settings(env: Mapping[str, str] = os.environ) -> Settings:
    percentage = _int(env, "SUBMIT_PERCENTAGE", 50)
    if percentage > 100:
        raise ConfigError(f"SUBMIT_PERCENTAGE must be <= 100, got {percentage}")

    title_hack_field = env.get("TITLE_HACK_FIELD", "artist").strip().lower()
    if title_hack_field not in ("artist", "album"):
        raise ConfigError(f"TITLE_HACK_FIELD must be 'artist' or 'album', got {title_hack_field!r}")

    backends_path = env.get("BACKENDS_CONFIG", "/config/backends.toml")

    return Settings(
        mpd_host=env.get("MPD_HOST", "127.0.0.1"),
        mpd_port=_int(env, "MPD_PORT", 6600, minimum=1),
        mpd_password=env.get("MPD_PASSWORD", ""),
        mpd_timeout=_int(env, "MPD_TIMEOUT", 10, minimum=1),
        poll_interval=_int(env, "POLL_INTERVAL", 5, minimum=1),
        ping_interval=_int(env, "PING_INTERVAL", 30, minimum=1),
        health_interval=_int(env, "HEALTH_INTERVAL", 1, minimum=1),
        reconnect_backoff=_int(env, "RECONNECT_BACKOFF", 5),
        submit_time=_int(env, "SUBMIT_TIME", 240),
        submit_percentage=percentage,
        submit_min_duration=_int(env, "SUBMIT_MIN_DURATION", 30),
        title_hack=_bool(env, "TITLE_HACK", False),
        title_hack_field=title_hack_field,
        send_duration=_bool(env, "SEND_DURATION", True),
        cache_path=env.get("SCROBBLE_CACHE_PATH", "/data/scrobble_queue.json"),
        backends_path=backends_path,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        backends=load_backends(backends_path),
    )
