"""
Run lock management for batch jobs.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from publio.persistence.models import RunLock, utcnow


class LockManager:
    """Manages RunLock rows for overlap protection.

    Changes are flushed, not committed: the caller's session scope commits.
    """

    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self._session = session
        self._clock = clock

    def acquire(self, lock_name: str, holder_id: str, ttl_minutes: int = 30) -> bool:
        """Acquire lock. Returns True if acquired, False if held by another."""
        now = self._clock()
        expires_at = now + timedelta(minutes=ttl_minutes)

        stmt = select(RunLock).where(RunLock.lock_name == lock_name)
        lock = self._session.execute(stmt).scalar_one_or_none()

        if lock:
            if lock.expires_at > now and lock.holder_id != holder_id:
                return False

            lock.holder_id = holder_id
            lock.acquired_at = now
            lock.expires_at = expires_at
            self._session.flush()
            return True

        try:
            with self._session.begin_nested():
                self._session.add(
                    RunLock(
                        lock_name=lock_name,
                        acquired_at=now,
                        expires_at=expires_at,
                        holder_id=holder_id,
                    )
                )
        except IntegrityError:
            # Another worker inserted the same lock first
            return False
        return True

    def release(self, lock_name: str, holder_id: str) -> bool:
        """Release lock. Returns True if released, False if not held by us."""
        stmt = select(RunLock).where(RunLock.lock_name == lock_name)
        lock = self._session.execute(stmt).scalar_one_or_none()

        if lock is None or lock.holder_id != holder_id:
            return False

        self._session.delete(lock)
        self._session.flush()
        return True

    def is_locked(self, lock_name: str) -> bool:
        """Check if lock is currently held (not expired)."""
        stmt = select(RunLock).where(RunLock.lock_name == lock_name)
        lock = self._session.execute(stmt).scalar_one_or_none()

        if lock is None:
            return False

        return lock.expires_at > self._clock()

    def cleanup_expired(self) -> int:
        """Remove all expired locks. Returns count removed."""
        stmt = delete(RunLock).where(RunLock.expires_at <= self._clock())
        result = self._session.execute(stmt)
        return int(result.rowcount or 0)
