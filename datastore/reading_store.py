from __future__ import annotations

import contextlib
import json
import logging
import os
import time
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from app.schemas import StoredReadingRecord
from errors import StoreError
from models.records import ReadingKind, SensorReading
from settings import get_settings

logger = logging.getLogger(__name__)

RETENTION_SECONDS = 28 * 24 * 60 * 60
MARKERS_FILE_TAG = "markers"

_FileStamp = Optional[Tuple[int, int, int]]


class ReadingStore:
    """Kind-scoped reading history with optional JSON file persistence.

    With a persistence path such as ``readings.json`` every kind lives in its
    own sibling file (``readings.interval.json``, ``readings.adhoc.json``, ...)
    and markers in ``readings.markers.json``. Files are replaced atomically and
    reloaded whenever another process has replaced them, so the poll loop and
    the API can share one path: an ad-hoc report never rewrites the interval
    baseline or the daily report marker.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._records: Dict[ReadingKind, List[StoredReadingRecord]] = {
            kind: [] for kind in ReadingKind
        }
        self._markers: Dict[str, float] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        self._stamps: Dict[Path, _FileStamp] = {}
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                for kind in ReadingKind:
                    self._sync_kind(kind)
                self._sync_markers()
        else:
            logger.warning(
                "Reading store %r is in-memory only; baselines will not survive a restart",
                name,
            )

    def put(
        self,
        kind: ReadingKind,
        reading: SensorReading,
        now: Optional[float] = None,
        ttl: Optional[float] = None,
    ) -> StoredReadingRecord:
        kind = ReadingKind(kind)
        created_at = time.time() if now is None else now
        record = StoredReadingRecord.from_reading(
            kind,
            reading,
            created_at=created_at,
            expires_at=created_at + ttl if ttl is not None else None,
        )
        with self._lock:
            self._sync_kind(kind)
            records = self._records[kind]
            records.append(record)
            try:
                self._persist_kind(kind)
            except StoreError:
                records.pop()
                raise
        return record.model_copy()

    def get_latest(
        self,
        kind: ReadingKind,
        max_age: Optional[float] = None,
        now: Optional[float] = None,
    ) -> Optional[SensorReading]:
        current = time.time() if now is None else now
        kind = ReadingKind(kind)
        with self._lock:
            self._sync_kind(kind)
            candidates = [
                record
                for record in self._records[kind]
                if (record.expires_at is None or record.expires_at > current)
                and (max_age is None or current - record.created_at <= max_age)
            ]
        if not candidates:
            return None
        # Stable max keeps the last written record when created_at ties.
        latest = max(reversed(candidates), key=lambda record: record.created_at)
        return latest.to_reading()

    def expire_older_than(self, cutoff: float) -> int:
        removed = 0
        with self._lock:
            for kind in ReadingKind:
                self._sync_kind(kind)
                records = self._records[kind]
                kept = [record for record in records if record.created_at >= cutoff]
                if len(kept) == len(records):
                    continue
                self._records[kind] = kept
                try:
                    self._persist_kind(kind)
                except StoreError:
                    self._records[kind] = records
                    raise
                removed += len(records) - len(kept)
        return removed

    def get_marker(self, name: str) -> Optional[float]:
        with self._lock:
            self._sync_markers()
            return self._markers.get(name)

    def set_marker(self, name: str, value: float) -> None:
        with self._lock:
            self._sync_markers()
            previous = self._markers.get(name)
            self._markers[name] = value
            try:
                self._persist_markers()
            except StoreError:
                if previous is None:
                    self._markers.pop(name, None)
                else:
                    self._markers[name] = previous
                raise

    def _kind_path(self, kind: ReadingKind) -> Path:
        return self._sibling(kind.value)

    def _markers_path(self) -> Path:
        return self._sibling(MARKERS_FILE_TAG)

    def _sibling(self, tag: str) -> Path:
        base = self.persistence_path or Path(self.name)
        return base.with_name(f"{base.stem}.{tag}{base.suffix}")

    def _persist_kind(self, kind: ReadingKind) -> None:
        if not self.persistence_path:
            return
        self._write(
            self._kind_path(kind),
            {"records": [record.model_dump(mode="python") for record in self._records[kind]]},
        )

    def _persist_markers(self) -> None:
        if not self.persistence_path:
            return
        self._write(self._markers_path(), {"markers": dict(self._markers)})

    def _write(self, path: Path, payload: Dict[str, Any]) -> None:
        scratch = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            # Python's json keeps NaN readings intact across a reload.
            scratch.write_text(json.dumps(payload, sort_keys=True, separators=(",", ":")))
            os.replace(scratch, path)
            self._stamps[path] = _stamp(path)
        except (OSError, TypeError, ValueError) as exc:
            with contextlib.suppress(OSError):
                scratch.unlink()
            raise StoreError(f"failed to write reading store {self.name!r}: {exc}") from exc

    def _sync_kind(self, kind: ReadingKind) -> None:
        data = self._reload(self._kind_path(kind)) if self.persistence_path else None
        if data is None:
            return
        records: List[StoredReadingRecord] = []
        payloads = data.get("records")
        for payload in payloads if isinstance(payloads, list) else []:
            try:
                records.append(StoredReadingRecord.model_validate(payload))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed stored reading",
                    extra={"kind": kind.value, "reason": str(exc)},
                )
        self._records[kind] = [record for record in records if record.kind == kind]

    def _sync_markers(self) -> None:
        data = self._reload(self._markers_path()) if self.persistence_path else None
        if data is None:
            return
        markers = data.get("markers", {})
        self._markers = {
            name: float(value)
            for name, value in (markers.items() if isinstance(markers, dict) else [])
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        }

    def _reload(self, path: Path) -> Optional[Dict[str, Any]]:
        """Contents of ``path`` if it changed since last seen, else ``None``."""
        stamp = _stamp(path)
        if path in self._stamps and self._stamps[path] == stamp:
            return None
        self._stamps[path] = stamp
        if stamp is None:
            return {}
        try:
            data = json.loads(path.read_text() or "{}")
        except (OSError, ValueError) as exc:
            logger.error(
                "Reading store %r could not load %s, treating it as empty",
                self.name,
                path.name,
                extra={"reason": str(exc)},
            )
            return {}
        return data if isinstance(data, dict) else {}


def _stamp(path: Path) -> _FileStamp:
    # Atomic replacement gives every write a fresh inode.
    try:
        stat = path.stat()
    except OSError:
        return None
    return (stat.st_ino, stat.st_mtime_ns, stat.st_size)


@lru_cache
def build_default_store(
    name: str = "readings",
    path: Optional[str] = None,
) -> ReadingStore:
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return ReadingStore(name=name, persistence_path=persistence)
