import asyncio
import logging
from typing import Any, Protocol

from solders.keypair import Keypair

from frt_workload.models import PoolRecord, TokenMint

log = logging.getLogger("frt_workload.store")


class Store(Protocol):
    async def save_pool(self, rec: PoolRecord) -> None: ...
    async def get_pool(self, pool_id: str) -> PoolRecord | None: ...
    async def load_pools(self) -> list[PoolRecord]: ...
    async def delete_pool(self, pool_id: str) -> bool: ...
    async def save_token_mint(self, mint: TokenMint, authority: Keypair | None = None) -> None: ...
    async def load_token_mints(self) -> list[tuple[TokenMint, Keypair | None]]: ...
    async def save_core_wallet(self, wallet: Keypair) -> None: ...
    async def load_core_wallet(self) -> Keypair | None: ...
    async def save_active_pool_ids(self, pool_ids: list[str]) -> None: ...
    async def load_active_pool_ids(self) -> list[str]: ...
    async def save_thread(self, thread_id: str, pool_id: str, data: dict[str, Any]) -> None: ...
    async def load_threads(self, pool_id: str | None = None) -> list[dict[str, Any]]: ...
    async def delete_threads_for_pool(self, pool_id: str) -> int: ...


class InMemoryStore:
    """Dict-backed Store; state is lost on restart."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.pools: dict[str, dict] = {}
        self.mints: dict[str, tuple[dict, str | None]] = {}
        self.core_wallet: str | None = None
        self.active_pool_ids: list[str] = []
        self.threads: dict[str, dict[str, Any]] = {}

    async def save_pool(self, rec: PoolRecord) -> None:
        async with self._lock:
            self.pools[str(rec.pool_id)] = rec.to_dict()

    async def get_pool(self, pool_id: str) -> PoolRecord | None:
        async with self._lock:
            d = self.pools.get(pool_id)
        return PoolRecord.from_dict(d) if d else None

    async def load_pools(self) -> list[PoolRecord]:
        async with self._lock:
            rows = list(self.pools.values())
        return [PoolRecord.from_dict(d) for d in rows]

    async def delete_pool(self, pool_id: str) -> bool:
        async with self._lock:
            if pool_id in self.active_pool_ids:
                self.active_pool_ids.remove(pool_id)
            return self.pools.pop(pool_id, None) is not None

    async def save_token_mint(self, mint: TokenMint, authority: Keypair | None = None) -> None:
        async with self._lock:
            self.mints[str(mint.address)] = (mint.to_dict(), str(authority) if authority else None)

    async def load_token_mints(self) -> list[tuple[TokenMint, Keypair | None]]:
        async with self._lock:
            rows = list(self.mints.values())
        return [(TokenMint.from_dict(d), Keypair.from_base58_string(s) if s else None) for d, s in rows]

    async def save_core_wallet(self, wallet: Keypair) -> None:
        self.core_wallet = str(wallet)

    async def load_core_wallet(self) -> Keypair | None:
        return Keypair.from_base58_string(self.core_wallet) if self.core_wallet else None

    async def save_active_pool_ids(self, pool_ids: list[str]) -> None:
        async with self._lock:
            self.active_pool_ids = list(pool_ids)

    async def load_active_pool_ids(self) -> list[str]:
        async with self._lock:
            return list(self.active_pool_ids)

    async def save_thread(self, thread_id: str, pool_id: str, data: dict[str, Any]) -> None:
        async with self._lock:
            self.threads[thread_id] = {**data, "thread_id": thread_id, "pool_id": pool_id}

    async def load_threads(self, pool_id: str | None = None) -> list[dict[str, Any]]:
        async with self._lock:
            return [t for t in self.threads.values() if pool_id is None or t["pool_id"] == pool_id]

    async def delete_threads_for_pool(self, pool_id: str) -> int:
        async with self._lock:
            doomed = [tid for tid, t in self.threads.items() if t["pool_id"] == pool_id]
            for tid in doomed:
                del self.threads[tid]
        if doomed:
            log.info("Deleted %d thread(s) for pool %s", len(doomed), pool_id)
        return len(doomed)
