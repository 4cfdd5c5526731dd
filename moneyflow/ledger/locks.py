"""
In-Process Locks

Storage transactions make a batch all-or-nothing, but two coroutines
can still both read a wallet balance before either commits. These
locks serialise the read-modify-write windows that matter:

- Wallet locks: anything that moves a wallet's cached balance. Several
  wallets are always locked in sorted id order, so two transfers in
  opposite directions cannot deadlock. Transfers touching disjoint
  wallets proceed in parallel.
- User locks: one recurrence pass per user at a time.

Lock order across the ledger: user lock, then wallet locks, then the
storage write transaction.
"""

import asyncio
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable
from uuid import UUID


class KeyedLocks:
    """A lazily created asyncio.Lock per key."""

    def __init__(self):
        self._locks: dict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, *keys: UUID) -> AsyncIterator[None]:
        """Acquire the locks for all keys, deduplicated, in sorted order."""
        ordered = sorted(set(keys), key=str)
        async with AsyncExitStack() as stack:
            for key in ordered:
                await stack.enter_async_context(self._locks[key])
            yield


class LedgerLocks:
    """The lock registries one ledger instance shares between services."""

    def __init__(self):
        self.wallets = KeyedLocks()
        self.users = KeyedLocks()

    def wallets_held(self, wallet_ids: Iterable[UUID]):
        return self.wallets.hold(*wallet_ids)

    def user_held(self, user_id: UUID):
        return self.users.hold(user_id)
