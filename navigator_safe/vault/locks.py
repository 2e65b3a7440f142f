"""Per-user vault locks.

Rotation must observe a stable set of records, so every mutation of a
user's vault (create/update/delete/import, enrollment and rotation) runs
under that user's lock. Locks are shared by every ``SafeVault`` built for the
same user in this process; cross-process safety comes from the optimistic
``updated_at`` token on the registry record.
"""
import asyncio
import weakref


class UserLocks:
    """Registry handing out one ``asyncio.Lock`` per user id."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def get(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


user_locks = UserLocks()
