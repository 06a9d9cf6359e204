# ─── Standard library imports ───
import fcntl
import json
import os
import tempfile
from contextlib import contextmanager, suppress
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Iterator, Protocol

# ─── Project imports ───
from .config import Config
from .errors import StoreUnavailable
from .logger import get_logger
from .models import DegradationState, Event, EventStream
from .time_service import TimeService


class StateStore(Protocol):
    """
    Persistence capability for the singleton state record and event streams.

    Writes are full-record upserts with last-writer-wins semantics. There is
    no version token: two concurrent get → mutate → put cycles can each
    overwrite the other's increment.
    """

    time: TimeService

    def get(self) -> DegradationState: ...
    def put(self, state: DegradationState) -> DegradationState: ...
    def append_event(self, event: Event) -> None: ...
    def query_recent(self, stream: EventStream, window_s: float) -> list[Event]: ...
    def purge_expired(self) -> int: ...


def _in_window(event: Event, start, end) -> bool:
    return start <= event.occurred_at <= end


class InMemoryStateStore:
    """
    Process-local store.

    Returns copies so callers never mutate the stored record without `put`.
    """

    def __init__(self, time_service: TimeService | None = None):
        self.time = time_service or TimeService()
        self._state: DegradationState | None = None
        self._events: dict[EventStream, list[Event]] = {s: [] for s in EventStream}

    def get(self) -> DegradationState:
        if self._state is None:
            return self.put(DegradationState.initial(self.time.now()))
        return replace(self._state)

    def put(self, state: DegradationState) -> DegradationState:
        self._state = replace(state, last_updated_at=self.time.now())
        return replace(self._state)

    def append_event(self, event: Event) -> None:
        self._events[event.stream].append(event)

    def query_recent(self, stream: EventStream, window_s: float) -> list[Event]:
        end = self.time.now()
        start = end - timedelta(seconds=window_s)
        return [e for e in self._events[stream] if _in_window(e, start, end)]

    def purge_expired(self) -> int:
        now = self.time.now()
        dropped = 0
        for stream, events in self._events.items():
            kept = [e for e in events if not e.is_expired(now)]
            dropped += len(events) - len(kept)
            self._events[stream] = kept
        return dropped


class JsonFileStateStore:
    """
    File-backed store.

    Layout (under `directory`):
        state.json          singleton record, replaced atomically
        failure-log.jsonl   one JSON event per line, append-only
        success-log.jsonl   one JSON event per line, append-only
        .*-log.lock         advisory locks shared by appends and purges

    Any I/O or decode fault surfaces as StoreUnavailable.
    """

    STATE_FILE = "state.json"

    def __init__(
        self,
        directory: Path | str | None = None,
        time_service: TimeService | None = None,
    ):
        self.logger = get_logger("state_store")
        self.time = time_service or TimeService()
        self.directory = Path(directory) if directory is not None else Config.STATE_DIR

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"cannot create store directory {self.directory}: {e}") from e

    # ─── Paths ───

    @property
    def state_path(self) -> Path:
        return self.directory / self.STATE_FILE

    def _stream_path(self, stream: EventStream) -> Path:
        return self.directory / f"{stream.partition}.jsonl"

    # ─── State record ───

    def get(self) -> DegradationState:
        try:
            raw = self.state_path.read_text()
        except FileNotFoundError:
            self.logger.info("No state record found; initializing default state")
            return self.put(DegradationState.initial(self.time.now()))
        except OSError as e:
            raise StoreUnavailable(f"state read failed: {e}") from e

        try:
            return DegradationState.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise StoreUnavailable(f"state record is corrupt: {e}") from e

    def put(self, state: DegradationState) -> DegradationState:
        stored = replace(state, last_updated_at=self.time.now())
        self._write_atomic(self.state_path, json.dumps(stored.to_dict(), indent=2))
        self.logger.debug(f"State updated → {stored.to_dict()}")
        return stored

    # ─── Event streams ───

    def append_event(self, event: Event) -> None:
        with self._stream_lock(event.stream):
            try:
                with self._stream_path(event.stream).open("a") as fh:
                    fh.write(json.dumps(event.to_dict()) + "\n")
            except OSError as e:
                raise StoreUnavailable(f"{event.stream} log append failed: {e}") from e

    def query_recent(self, stream: EventStream, window_s: float) -> list[Event]:
        end = self.time.now()
        start = end - timedelta(seconds=window_s)
        return [e for e in self._read_stream(stream) if _in_window(e, start, end)]

    def purge_expired(self) -> int:
        now = self.time.now()
        dropped = 0
        for stream in EventStream:
            # Read and rewrite under the lock appends take
            with self._stream_lock(stream):
                events = self._read_stream(stream)
                kept = [e for e in events if not e.is_expired(now)]
                if len(kept) == len(events):
                    continue
                dropped += len(events) - len(kept)
                self._write_atomic(
                    self._stream_path(stream),
                    "".join(json.dumps(e.to_dict()) + "\n" for e in kept),
                )
        return dropped

    @contextmanager
    def _stream_lock(self, stream: EventStream) -> Iterator[None]:
        """
        Exclusive advisory lock on one event stream.

        Blocks other processes and threads; not re-entrant.
        """
        path = self.directory / f".{stream.partition}.lock"
        try:
            fh = path.open("a")
        except OSError as e:
            raise StoreUnavailable(f"{stream} lock unavailable: {e}") from e

        with fh:
            try:
                fcntl.flock(fh, fcntl.LOCK_EX)
            except OSError as e:
                raise StoreUnavailable(f"{stream} lock unavailable: {e}") from e
            try:
                yield
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)

    def _read_stream(self, stream: EventStream) -> list[Event]:
        path = self._stream_path(stream)
        try:
            lines = path.read_text().splitlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreUnavailable(f"{stream} log read failed: {e}") from e

        events = []
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                events.append(Event.from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError) as e:
                # A torn trailing line from a crashed append is not fatal
                self.logger.warning(f"Skipping corrupt entry {path.name}:{lineno} ({e})")
        return events

    def _write_atomic(self, path: Path, text: str) -> None:
        try:
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{path.name}.")
        except OSError as e:
            raise StoreUnavailable(f"write to {path.name} failed: {e}") from e

        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(text)
            os.replace(tmp, path)
        except OSError as e:
            with suppress(OSError):
                os.unlink(tmp)
            raise StoreUnavailable(f"write to {path.name} failed: {e}") from e
