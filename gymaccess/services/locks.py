"""
Per-member critical sections.

Session transitions for one member must not interleave: two grants arriving
together would both see "no open session" and open two. Inside one process a
lock per member serializes them; across processes the member row lock taken
with SELECT ... FOR UPDATE does the same on databases that support it.
"""
import threading
from contextlib import contextmanager

from flask import current_app

from gymaccess.errors import AccessSystemError

_registry_lock = threading.Lock()
_member_locks = {}


def _lock_for(member_pk):
    with _registry_lock:
        lock = _member_locks.get(member_pk)
        if lock is None:
            lock = _member_locks[member_pk] = threading.Lock()
        return lock


@contextmanager
def member_lock(member_pk, timeout=None):
    """
    Hold the member's lock for the duration of the block.

    Raises:
        AccessSystemError: the lock was not acquired within `timeout` seconds
    """
    if timeout is None:
        timeout = current_app.config.get('GATE_LOCK_TIMEOUT', 5)
    lock = _lock_for(member_pk)
    if not lock.acquire(timeout=timeout):
        raise AccessSystemError(f'Timed out waiting for member {member_pk} lock')
    try:
        yield
    finally:
        lock.release()
