import logging
import signal
import threading

from config import ConfigError, Settings, load_settings
from dispatcher import Dispatcher
from lastfm_client import LastFMClient
from mpd_client import MPDConnection, PlayerError
from notifier import from_env as alerter_from_env
from pipeline import ScrobblePipeline
from scrobble_queue import QueueError, QueueStore
from state import PlaybackTracker
from supervisor import ConnectionSupervisor, PlayerLink
from watcher import PlaybackWatcher

log = logging.getLogger("mpd-lastfm")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,  # ensure our config is used even if libs pre-configure logging
    )


def build_pipelines(settings: Settings, store: QueueStore, alert) -> list[ScrobblePipeline]:
    pipelines = []
    for backend in settings.backends:
        api = LastFMClient(
            backend.name,
            api_key=backend.api_key,
            api_secret=backend.api_secret,
            network=backend.network,
            session_key=backend.session_key,
            username=backend.username,
            password_md5=backend.password_md5,
            uri=backend.uri,
        )
        pipelines.append(ScrobblePipeline(api, store.queue(backend.name), alert))
    return pipelines


def run(settings: Settings, stop: threading.Event) -> None:
    alert = alerter_from_env()

    try:
        store = QueueStore(settings.cache_path)
    except QueueError as e:
        raise SystemExit(f"Cannot open scrobble cache: {e}")

    link = PlayerLink(lambda: MPDConnection.dial(
        settings.mpd_host, settings.mpd_port, settings.mpd_password, settings.mpd_timeout))
    try:
        link.open()
    except PlayerError as e:
        store.close()
        raise SystemExit(f"Cannot connect to MPD: {e}")

    pipelines = build_pipelines(settings, store, alert)
    for pipeline in pipelines:
        pipeline.drain_backlog()

    tracker = PlaybackTracker(
        submit_time=settings.submit_time,
        submit_percentage=settings.submit_percentage,
        submit_min_duration=settings.submit_min_duration,
        title_hack=settings.title_hack,
        title_hack_field=settings.title_hack_field,
    )
    dispatcher = Dispatcher(pipelines, send_duration=settings.send_duration)
    watcher = PlaybackWatcher(link, tracker, dispatcher.publish, stop, settings.poll_interval)
    supervisor = ConnectionSupervisor(
        link, stop,
        ping_interval=settings.ping_interval,
        health_interval=settings.health_interval,
        backoff=settings.reconnect_backoff,
        alert=alert,
    )

    threads = {
        name: threading.Thread(target=target, name=name, daemon=True)
        for name, target in (("watcher", watcher.run),
                             ("dispatcher", dispatcher.run),
                             ("supervisor", supervisor.run))
    }
    for t in threads.values():
        t.start()

    log.info("Starting MPD → scrobbler bridge. Poll interval: %ss", settings.poll_interval)
    log.info("MPD: %s:%s | Backends: %s | Cache: %s",
             settings.mpd_host, settings.mpd_port,
             ", ".join(p.name for p in pipelines), settings.cache_path)
    alert("INFO", "Bridge started",
          f"Polling {settings.mpd_host}:{settings.mpd_port}; cache path {settings.cache_path}.")

    stop.wait()
    log.info("Shutting down…")

    # the watcher finishes its cycle and flushes; only then can the dispatcher be told to stop
    threads["watcher"].join()
    dispatcher.close()
    threads["dispatcher"].join()
    threads["supervisor"].join()
    link.close()
    store.close()


def main():
    stop = threading.Event()

    def on_signal(signum, _frame):
        log.info("caught %s: shutting down", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, on_signal)
    signal.signal(signal.SIGINT, on_signal)

    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging("INFO")
        raise SystemExit(f"Configuration error: {e}")

    setup_logging(settings.log_level)
    run(settings, stop)


if __name__ == "__main__":
    main()
