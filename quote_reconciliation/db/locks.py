"""
Keyed advisory locks.

Process-local re-entrant locks keyed by tuples such as
("order-number", org_id, year) or ("item", item_id). Several keys are always
acquired in sorted order so two callers can never deadlock on each other.

These only serialize callers inside one process. Across processes the
order generator relies on row locks (SELECT ... FOR UPDATE) on the order
number counter and the items being ordered.

A key's entry lives only while some caller holds or waits on it.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Tuple

from quote_reconciliation.utils.logging import setup_logging


logger = setup_logging(__name__)


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


_registry_guard = threading.Lock()
_locks: Dict[Tuple, _KeyLock] = {}


def _checkout(key: Tuple) -> _KeyLock:
    with _registry_guard:
        entry = _locks.get(key)
        if entry is None:
            entry = _locks[key] = _KeyLock()
        entry.users += 1
        return entry


def _checkin(key: Tuple, entry: _KeyLock) -> None:
    with _registry_guard:
        entry.users -= 1
        if entry.users == 0 and _locks.get(key) is entry:
            del _locks[key]


def held_keys() -> int:
    """Number of keys currently held or waited on."""
    with _registry_guard:
        return len(_locks)


@contextmanager
def advisory_lock(*keys: Tuple[Hashable, ...]) -> Iterator[None]:
    """
    Hold every given key for the duration of the block.

    Usage:
        with advisory_lock(("session", session_id)):
            ...
    """
    ordered = sorted(set(keys), key=lambda k: tuple(str(part) for part in k))
    acquired = []
    try:
        for key in ordered:
            entry = _checkout(key)
            try:
                if not entry.lock.acquire(blocking=False):
                    logger.info(f"Waiting for advisory lock {key}")
                    entry.lock.acquire()
            except BaseException:
                _checkin(key, entry)
                raise
            acquired.append((key, entry))
        yield
    finally:
        for key, entry in reversed(acquired):
            entry.lock.release()
            _checkin(key, entry)
