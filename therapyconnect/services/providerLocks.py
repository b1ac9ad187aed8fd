"""
Per-provider mutual exclusion.

Every operation that can change a provider's credentialing state runs inside
that provider's lock, so concurrent submissions for the same provider are
serialized while different providers proceed in parallel.  Across processes
the row lock taken on ``credential_profiles`` (``SELECT ... FOR UPDATE``)
provides the same guarantee.
"""

from __future__ import annotations

import asyncio
import uuid
import weakref


class ProviderLockRegistry:
    def __init__(self) -> None:
        # Locks disappear once no coroutine holds or awaits them
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, provider_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(provider_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[provider_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
