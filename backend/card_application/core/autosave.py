"""
Local Autosave Store — client-local mirror of the ApplicationDraft.

A single keyed record in a local SQLite database holds the whole draft as
JSON. Writes carry a monotonic sequence number; a write never replaces a
record stamped with a later sequence, so out-of-order delivery cannot roll
the draft back.
"""
import itertools
import json
import queue
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from card_application.config import get_settings
from card_application.database import engine_kwargs, ensure_sqlite_dir
from card_application.core.draft import ApplicationDraft, utcnow
from card_application.core.forms import ApplicationMode
from card_application.core.steps import FIRST_STEP
from card_application.utils.logger import get_logger

logger = get_logger(__name__)

LocalBase = declarative_base()


class LocalDraftRecord(LocalBase):
    __tablename__ = "local_drafts"

    storage_key = Column(String(64), primary_key=True)
    mode = Column(String(16))
    sequence = Column(Integer, default=0)
    payload = Column(Text)
    saved_at = Column(DateTime(timezone=True), default=utcnow)


class LocalAutosaveStore:
    """save / load / clear over one namespaced record."""

    def __init__(self, url: Optional[str] = None, storage_key: Optional[str] = None):
        settings = get_settings()
        url = url or settings.LOCAL_DRAFT_DB_URL
        self.storage_key = storage_key or settings.DRAFT_STORAGE_KEY
        ensure_sqlite_dir(url)
        self._engine = create_engine(url, **engine_kwargs(url))
        LocalBase.metadata.create_all(bind=self._engine)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        self._lock = threading.Lock()

        with self._session_factory() as db:
            existing = db.get(LocalDraftRecord, self.storage_key)
            last_sequence = existing.sequence if existing is not None else 0
        self._sequence = itertools.count(last_sequence + 1)

    def next_sequence(self) -> int:
        with self._lock:
            return next(self._sequence)

    def save(self, draft: ApplicationDraft, sequence: Optional[int] = None) -> bool:
        """Persist a draft. Returns False when a later save is already stored."""
        if sequence is None:
            sequence = self.next_sequence()
        return self.write_snapshot(draft.model_dump(mode="json", by_alias=True), sequence)

    def write_snapshot(self, payload: Dict[str, Any], sequence: int) -> bool:
        with self._lock, self._session_factory() as db:
            record = db.get(LocalDraftRecord, self.storage_key)
            if record is not None and record.sequence >= sequence:
                logger.debug(f"Skipped stale autosave #{sequence} (stored #{record.sequence})")
                return False
            if record is None:
                record = LocalDraftRecord(storage_key=self.storage_key)
                db.add(record)
            record.mode = payload.get("mode")
            record.sequence = sequence
            record.payload = json.dumps(payload)
            record.saved_at = utcnow()
            db.commit()
        return True

    def load(self, mode: ApplicationMode) -> Optional[ApplicationDraft]:
        """Stored draft for `mode`; absent, malformed and other-mode records read as None."""
        with self._lock, self._session_factory() as db:
            record = db.get(LocalDraftRecord, self.storage_key)
            raw = record.payload if record is not None else None
        if raw is None:
            return None

        try:
            draft = ApplicationDraft.model_validate(json.loads(raw))
        except ValueError as exc:
            logger.warning(f"Dropping malformed local draft '{self.storage_key}': {exc}")
            return None

        if draft.mode != ApplicationMode(mode):
            logger.info(f"Ignoring local draft for mode {draft.mode.value} (requested {ApplicationMode(mode).value})")
            return None
        return draft

    def clear(self) -> None:
        with self._lock, self._session_factory() as db:
            db.query(LocalDraftRecord).filter(LocalDraftRecord.storage_key == self.storage_key).delete()
            db.commit()

    def has_resumable_draft(self, mode: ApplicationMode) -> bool:
        """A matching draft exists and has moved past its starting step."""
        draft = self.load(mode)
        if draft is None:
            return False
        start = FIRST_STEP + 1 if draft.mode == ApplicationMode.ASSISTED else FIRST_STEP
        return draft.current_step > start

    def last_saved_at(self) -> Optional[datetime]:
        with self._lock, self._session_factory() as db:
            record = db.get(LocalDraftRecord, self.storage_key)
            return record.saved_at if record is not None else None

    def dispose(self) -> None:
        self._engine.dispose()


_STOP = object()


class AutosaveWriter:
    """
    Fire-and-forget, strictly ordered autosave.

    `schedule()` snapshots the draft and stamps it with the next sequence
    number on the caller's thread; one background thread writes snapshots
    in that order.
    """

    def __init__(self, store: LocalAutosaveStore):
        self.store = store
        self.last_error: Optional[Exception] = None
        self._queue: "queue.Queue" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="autosave-writer", daemon=True)
        self._thread.start()

    def attach(self, draft: ApplicationDraft) -> Callable[[], None]:
        """Autosave on every mutation of `draft`. Returns the unsubscribe function."""
        return draft.subscribe(self.schedule)

    def schedule(self, draft: ApplicationDraft) -> int:
        sequence = self.store.next_sequence()
        self._queue.put((sequence, draft.model_dump(mode="json", by_alias=True)))
        return sequence

    def flush(self) -> None:
        """Block until every scheduled snapshot has been written."""
        self._queue.join()

    def close(self) -> None:
        if not self._thread.is_alive():
            return
        self._queue.put(_STOP)
        self._thread.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                sequence, payload = item
                self.store.write_snapshot(payload, sequence)
                self.last_error = None
            except Exception as exc:
                # Keep the thread alive: flush() joins on every queued item
                self.last_error = exc
                logger.exception(f"Autosave #{item[0]} failed: {exc}")
            finally:
                self._queue.task_done()

    def __enter__(self) -> "AutosaveWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
