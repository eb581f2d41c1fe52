"""
Persistent, named scrobble queues.

- One JSON document on disk holds a FIFO list of pending scrobbles per backend name,
  so we don't lose plays when a backend is down or the bridge restarts.
- Every mutation is written atomically (tmp file + fsync + rename) before it returns.
- API is minimal: QueueStore.queue(name) -> ScrobbleQueue with enqueue(), peek(), dequeue(), size().
"""

from __future__ import annotations
import json
import logging
import os
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict

log = logging.getLogger("queue")


class QueueEmpty(Exception):
    """Raised by peek()/dequeue() when the named queue holds nothing."""


class QueueError(Exception):
    """Storage failure: the store could not be read or written."""


class MalformedRecord(QueueError):
    """The head of a queue holds something that does not decode to a QueueRecord."""

    def __init__(self, name: str, raw: Any):
        super().__init__(f"malformed record at head of {name!r}: {raw!r}")
        self.raw = raw


@dataclass(frozen=True)
class QueueRecord:
    title: str
    artist: str
    album: str
    album_artist: str
    track_number: int | None
    duration: int
    timestamp: int  # unix seconds, when listening started

    @classmethod
    def from_track(cls, track) -> "QueueRecord":
        return cls(
            title=track.title,
            artist=track.artist,
            album=track.album,
            album_artist=track.album_artist,
            track_number=track.track_number,
            duration=track.duration,
            timestamp=int(track.start.timestamp()),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueRecord":
        return cls(
            title=data.get("title", ""),
            artist=data.get("artist", ""),
            album=data.get("album", ""),
            album_artist=data.get("album_artist", ""),
            track_number=data.get("track_number"),
            duration=int(data.get("duration") or 0),
            timestamp=int(data["timestamp"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def started_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)


class QueueStore:
    """Process-wide store. Open once at startup, close once at shutdown."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._queues: Dict[str, Deque[Dict[str, Any]]] = {}
        self._closed = False
        self._load()

    # -------- persistence --------
    def _load(self) -> None:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            if not os.path.isfile(self.path):
                return
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise QueueError(f"cannot open scrobble store {self.path}: {e}") from e

        if not isinstance(data, dict) or not all(isinstance(v, list) for v in data.values()):
            raise QueueError(f"scrobble store {self.path} is not a mapping of queues")
        for name, items in data.items():
            self._queues[name] = deque(items)

    def _save(self) -> None:
        # Write atomically to avoid corruption
        tmp = f"{self.path}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({k: list(v) for k, v in self._queues.items()}, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise QueueError(f"cannot write scrobble store {self.path}: {e}") from e

    # -------- public API --------
    def queue(self, name: str) -> "ScrobbleQueue":
        with self._lock:
            self._queues.setdefault(name, deque())
        return ScrobbleQueue(self, name)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._queues)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pending = sum(len(q) for q in self._queues.values())
        log.info("Closed scrobble store %s (%s pending)", self.path, pending)

    def _check_open(self) -> None:
        if self._closed:
            raise QueueError("scrobble store is closed")

    def _append(self, name: str, item: Dict[str, Any]) -> None:
        with self._lock:
            self._check_open()
            q = self._queues[name]
            q.append(item)
            try:
                self._save()
            except QueueError:
                q.pop()
                raise

    def _head(self, name: str) -> Dict[str, Any]:
        with self._lock:
            self._check_open()
            q = self._queues[name]
            if not q:
                raise QueueEmpty(name)
            return q[0]

    def _popleft(self, name: str) -> Dict[str, Any]:
        with self._lock:
            self._check_open()
            q = self._queues[name]
            if not q:
                raise QueueEmpty(name)
            item = q.popleft()
            try:
                self._save()
            except QueueError:
                q.appendleft(item)
                raise
            return item

    def _size(self, name: str) -> int:
        with self._lock:
            return len(self._queues[name])


class ScrobbleQueue:
    """Handle on one backend's FIFO inside a QueueStore."""

    def __init__(self, store: QueueStore, name: str):
        self.store = store
        self.name = name

    def enqueue(self, record: QueueRecord) -> None:
        self.store._append(self.name, record.to_dict())

    def _decode(self, raw: Any) -> QueueRecord:
        try:
            return QueueRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError, OverflowError) as e:
            raise MalformedRecord(self.name, raw) from e

    def peek(self) -> QueueRecord:
        """Return the oldest record without removing it."""
        return self._decode(self.store._head(self.name))

    def dequeue(self) -> QueueRecord:
        """Remove and return the oldest record; raises QueueEmpty when there is none."""
        return self._decode(self.store._popleft(self.name))

    def discard(self) -> Any:
        """Drop the oldest entry without decoding it. Returns what was stored."""
        return self.store._popleft(self.name)

    def size(self) -> int:
        return self.store._size(self.name)
