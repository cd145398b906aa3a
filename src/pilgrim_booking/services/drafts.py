from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from pilgrim_booking.services.documents import StagedDocument

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class DraftKey:
    user_id: str
    package_id: str
    # Set when an admin captures a booking for another user.
    on_behalf_of: str | None = None

    def file_stem(self) -> str:
        # Each id is percent-encoded, so "+" only ever appears as the separator.
        parts = [self.user_id, self.package_id]
        if self.on_behalf_of is not None:
            parts.append(self.on_behalf_of)
        return "+".join(quote(part, safe="") for part in parts)


class DraftSnapshot(BaseModel):
    """Everything needed to put a wizard back exactly where it was left."""

    step: str = "package"
    selected_date_id: str | None = None
    values: dict[str, Any] = Field(default_factory=dict)
    staged_documents: list[StagedDocument] = Field(default_factory=list)
    booking_id: str | None = None
    payment_id: str | None = None
    submitted: bool = False


class DraftStore(Protocol):
    def load(self, key: DraftKey) -> DraftSnapshot | None: ...

    def save(self, key: DraftKey, snapshot: DraftSnapshot) -> None: ...

    def clear(self, key: DraftKey) -> None: ...


class JsonFileDraftStore:
    """
    What it does:
    - Keeps one JSON file per (user, package) draft in a local directory.

    Why it matters:
    - Drafts are client-local work in progress; a reload or crash must not lose them,
      but they are never synced to the record store.

    Behavior:
    - save() writes a temp file then replaces, so a reader never sees half a draft.
    - load() treats an unreadable draft as absent and logs a warning.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: DraftKey) -> Path:
        return self.directory / f"{key.file_stem()}.json"

    def load(self, key: DraftKey) -> DraftSnapshot | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return DraftSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as e:
            logger.warning("Ignoring unreadable draft %s: %s", path, e)
            return None

    def save(self, key: DraftKey, snapshot: DraftSnapshot) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(snapshot.model_dump_json(), encoding="utf-8")
        tmp.replace(path)

    def clear(self, key: DraftKey) -> None:
        self._path(key).unlink(missing_ok=True)


def _daemon_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class DraftAutosaver:
    """
    What it does:
    - Debounces draft saves: each schedule() restarts the countdown.

    Behavior:
    - The save runs on a timer thread; schedule() never blocks the caller.
    - flush() saves immediately and drops any pending timer.
    - cancel() drops a pending save without saving.
    - Saves are serialized. A timer made stale by a later schedule(), flush() or
      cancel() never saves, even if its thread already started.
    """

    def __init__(
        self,
        save_fn: Callable[[], None],
        *,
        delay: float = 1.5,
        timer_factory: Callable[[float, Callable[[], None]], Any] = _daemon_timer,
    ) -> None:
        self._save_fn = save_fn
        self._delay = delay
        self._timer_factory = timer_factory
        self._timer = None
        self._generation = 0
        self._lock = threading.Lock()
        # Held for the whole save; re-entrant because flush() calls cancel().
        self._save_lock = threading.RLock()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = self._timer_factory(self._delay, partial(self._fire, self._generation))
            self._timer.start()

    def _fire(self, generation: int) -> None:
        with self._save_lock:
            with self._lock:
                if generation != self._generation:
                    return
                self._timer = None
            try:
                self._save_fn()
            except OSError:
                # Runs on a timer thread; the next change schedules another attempt.
                logger.exception("Draft autosave failed")

    def flush(self) -> None:
        with self._save_lock:
            self.cancel()
            self._save_fn()

    def cancel(self) -> None:
        with self._save_lock:
            with self._lock:
                self._generation += 1
                if self._timer is not None:
                    self._timer.cancel()
                    self._timer = None
