import asyncio
import weakref
from contextlib import asynccontextmanager


class GroupLocks:
    """One ``asyncio.Lock`` per group id.

    The ledger recompute reads a group's history and then replaces its balance
    rows, so two mutations of the same group must not interleave. Locks are
    held weakly and disappear once nobody holds or waits on them.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, group_id: int) -> asyncio.Lock:
        lock = self._locks.get(group_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[group_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, group_id: int):
        lock = self._lock_for(group_id)
        async with lock:
            yield

    def is_locked(self, group_id: int) -> bool:
        lock = self._locks.get(group_id)
        return lock is not None and lock.locked()


group_locks = GroupLocks()


@asynccontextmanager
async def ledger_mutation(session, group_id: int):
    """Serialize a group's ledger mutation and run it as one transaction.

    Commits when the block finishes and rolls back on any error, so a failed
    recompute never leaves part of a ledger behind.
    """
    async with group_locks.hold(group_id):
        try:
            yield
        except BaseException:
            await session.rollback()
            raise
        await session.commit()
