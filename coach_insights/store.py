"""
Key-Value Persistence Substrate
===============================

Each logical collection (outcomes, reports, memory items, event log, ...) is
one key holding a JSON document. Writers go through `update()`, which runs the
read-modify-write for a key under that key's lock, so two commits racing on
the same collection cannot clobber each other within one process.
"""

from typing import Callable, Dict, Iterable, List, Optional, Tuple
from collections import defaultdict
from datetime import datetime
import json
import logging
import threading

from sqlalchemy.orm import Session, sessionmaker

from models import KeyValueEntry


class KeyValueStore:
    """Base store: subclasses implement _read/_write/_delete."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.RLock:
        with self._locks_guard:
            return self._locks[key]

    def get(self, key: str) -> Optional[str]:
        return self._read(key)

    def set(self, key: str, value: str):
        with self._lock_for(key):
            self._write({key: value})

    def multi_set(self, pairs: Iterable[Tuple[str, str]]):
        pairs = dict(pairs)
        locks = [self._lock_for(k) for k in sorted(pairs)]
        for lock in locks:
            lock.acquire()
        try:
            self._write(pairs)
        finally:
            for lock in reversed(locks):
                lock.release()

    def remove(self, key: str):
        with self._lock_for(key):
            self._delete(key)

    def update(self, key: str, mutator: Callable[[Optional[str]], Optional[str]]) -> Optional[str]:
        """
        Atomic read-modify-write of a single key.
        `mutator` receives the current raw value and returns the new one;
        returning None leaves the key untouched.
        """
        with self._lock_for(key):
            current = self._read(key)
            next_value = mutator(current)
            if next_value is not None:
                self._write({key: next_value})
            return next_value

    # Storage hooks

    def _read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, pairs: Dict[str, str]):
        raise NotImplementedError

    def _delete(self, key: str):
        raise NotImplementedError


class InMemoryStore(KeyValueStore):
    """Dict-backed store for tests and single-process clients."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        super().__init__()
        self._data: Dict[str, str] = dict(initial or {})

    def _read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def _write(self, pairs: Dict[str, str]):
        self._data.update(pairs)

    def _delete(self, key: str):
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


class SqlKeyValueStore(KeyValueStore):
    """SQLAlchemy-backed store; one row per key in `kv_entries`."""

    def __init__(self, session_factory: sessionmaker):
        super().__init__()
        self.session_factory = session_factory

    def _read(self, key: str) -> Optional[str]:
        db: Session = self.session_factory()
        try:
            entry = db.query(KeyValueEntry).filter(KeyValueEntry.key == key).first()
            return entry.value if entry else None
        finally:
            db.close()

    def _write(self, pairs: Dict[str, str]):
        db: Session = self.session_factory()
        try:
            for key, value in pairs.items():
                entry = db.query(KeyValueEntry).filter(KeyValueEntry.key == key).first()
                if entry:
                    entry.value = value
                    entry.updated_at = datetime.utcnow()
                else:
                    db.add(KeyValueEntry(key=key, value=value))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _delete(self, key: str):
        db: Session = self.session_factory()
        try:
            db.query(KeyValueEntry).filter(KeyValueEntry.key == key).delete()
            db.commit()
        finally:
            db.close()


def read_json_array(raw: Optional[str], key: str = "") -> List:
    """
    Decode a stored collection. Missing, malformed or non-list values
    read as empty so a corrupt key never breaks the caller.
    """
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logging.warning(f"Stored collection {key or '?'} is not valid JSON, reading as empty: {e}")
        return []
    if not isinstance(parsed, list):
        logging.warning(f"Stored collection {key or '?'} is not a list, reading as empty")
        return []
    return parsed


def dump_json_array(items: List) -> str:
    return json.dumps(items, ensure_ascii=False)
