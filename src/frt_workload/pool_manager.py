"""Pool creation, lookup, validation and cleanup.

The chain is the source of truth. The in-memory cache and the Store are
advisory copies that get re-validated whenever a stale answer would send a
transaction at the wrong account. No network call is made while holding
one of the locks below.
"""
import logging
import uuid
from typing import Any, Awaitable, Callable

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from spl.token.constants import MINT_LEN, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    create_associated_token_account,
    get_associated_token_address,
    initialize_mint,
    mint_to,
)
from spl.token.models import InitializeMintParams, MintToParams

from frt_workload import constants as C
from frt_workload.config import PoolDefaults
from frt_workload.constants import Direction, OpKind, PoolOrigin
from frt_workload.errors import (
    ConstructionError,
    MintAuthorityError,
    OperationFailedError,
    PoolNotFoundError,
    RpcError,
    WorkloadError,
    describe_contract_error,
)
from frt_workload.models import OperationResult, PoolRecord, PoolSimulation, TokenMint
from frt_workload.pda import derive_pool_addresses, system_state_pda
from frt_workload.ratio import NormalizedPool, normalize, validate_pool_params
from frt_workload.rpc import Transport
from frt_workload.rwlock import AsyncRWLock
from frt_workload.store import Store
from frt_workload.submission import Submitter
from frt_workload.txn_factory.builder import TransactionBuilder

log = logging.getLogger("frt_workload.pools")


class PoolLifecycleManager:
    def __init__(
        self,
        rpc: Transport,
        builder: TransactionBuilder,
        submitter: Submitter,
        store: Store,
        core_wallet: Keypair,
        *,
        defaults: PoolDefaults | None = None,
    ):
        self.rpc = rpc
        self.builder = builder
        self.submitter = submitter
        self.store = store
        self.core_wallet = core_wallet
        self.defaults = defaults or PoolDefaults()
        self.program_id = builder.program_id

        self._pools: dict[str, PoolRecord] = {}
        self._pools_lock = AsyncRWLock()
        self._mints: dict[str, TokenMint] = {}
        self._mint_authorities: dict[str, Keypair] = {}
        self._mints_lock = AsyncRWLock()

    async def load_from_store(self) -> None:
        """Restore mint authorities so previously created test tokens stay mintable."""
        loaded = await self.store.load_token_mints()
        async with self._mints_lock.write():
            for mint, authority in loaded:
                self._mints[str(mint.address)] = mint
                if authority is not None:
                    self._mint_authorities[str(mint.address)] = authority
        log.info("Restored %d token mint(s) from store", len(loaded))

    def _fresh_build(self, op: OpKind, instructions: Callable[[], Awaitable[list]], payer: Keypair, **kw) -> Callable[[int], Awaitable[bytes]]:
        async def build(attempt: int) -> bytes:
            ixs = await instructions()
            blockhash = await self.rpc.get_latest_blockhash()
            return self.builder.build(op, ixs, payer, blockhash, **kw)
        return build

    # =========================================================================
    # Program bootstrap
    # =========================================================================

    async def ensure_program_initialized(self) -> OperationResult | None:
        """Submit InitializeProgram unless the system-state account already exists."""
        info = await self.rpc.get_account_info(system_state_pda(self.program_id))
        if info is not None and not info.is_empty:
            log.debug("System state already initialized")
            return None

        authority = self.core_wallet
        ix = self.builder.initialize_program(authority.pubkey())

        async def instructions():
            return [ix]

        log.info("Initializing program %s with authority %s", self.program_id, authority.pubkey())
        build = self._fresh_build(OpKind.INITIALIZE_PROGRAM, instructions, authority)
        return await self.submitter.execute(OpKind.INITIALIZE_PROGRAM, build)

    # =========================================================================
    # Token mints
    # =========================================================================

    async def create_token_mint(self, decimals: int) -> TokenMint:
        authority = self.core_wallet
        mint_kp = Keypair()
        rent = await self.rpc.get_minimum_balance_for_rent_exemption(MINT_LEN)

        async def instructions():
            return [
                create_account(CreateAccountParams(
                    from_pubkey=authority.pubkey(),
                    to_pubkey=mint_kp.pubkey(),
                    lamports=rent,
                    space=MINT_LEN,
                    owner=TOKEN_PROGRAM_ID,
                )),
                initialize_mint(InitializeMintParams(
                    decimals=decimals,
                    program_id=TOKEN_PROGRAM_ID,
                    mint=mint_kp.pubkey(),
                    mint_authority=authority.pubkey(),
                    freeze_authority=None,
                )),
            ]

        build = self._fresh_build(OpKind.CREATE_MINT, instructions, authority, signers=[mint_kp], budget=False)
        result = await self.submitter.execute(OpKind.CREATE_MINT, build, data={"decimals": decimals})
        if not result.ok:
            raise OperationFailedError(result)

        mint = TokenMint(
            address=mint_kp.pubkey(), decimals=decimals, authority=authority.pubkey(), creation_signature=result.signature
        )
        async with self._mints_lock.write():
            self._mints[str(mint.address)] = mint
            self._mint_authorities[str(mint.address)] = authority
        await self.store.save_token_mint(mint, authority)
        log.info("Created mint %s (%d decimals)", mint.address, decimals)
        return mint

    async def mint_authority(self, mint: Pubkey) -> Keypair:
        async with self._mints_lock.read():
            authority = self._mint_authorities.get(str(mint))
        if authority is None:
            raise MintAuthorityError(f"no mint authority recorded for {mint}")
        return authority

    async def mint_tokens(self, mint: Pubkey, owner: Pubkey, amount: int) -> OperationResult:
        """Mint ``amount`` base units of a test token into ``owner``'s ATA, creating it if needed."""
        if amount <= 0:
            raise ConstructionError(f"mint amount must be positive, got {amount}")
        authority = await self.mint_authority(mint)
        ata = get_associated_token_address(owner, mint)

        async def instructions():
            ixs = []
            if await self.rpc.get_account_info(ata) is None:
                ixs.append(create_associated_token_account(authority.pubkey(), owner, mint))
            ixs.append(mint_to(MintToParams(
                program_id=TOKEN_PROGRAM_ID,
                mint=mint,
                dest=ata,
                mint_authority=authority.pubkey(),
                amount=amount,
            )))
            return ixs

        build = self._fresh_build(OpKind.MINT_TO, instructions, authority, budget=False)
        data = {"mint": str(mint), "owner": str(owner), "amount": amount}
        return await self.submitter.execute(OpKind.MINT_TO, build, data=data)

    # =========================================================================
    # Pool creation
    # =========================================================================

    async def new_pool_config(
        self,
        decimals_a: int | None = None,
        decimals_b: int | None = None,
        ratio: int | None = None,
        direction: Direction | str | None = None,
        *,
        mints: tuple[Pubkey, Pubkey] | None = None,
    ) -> NormalizedPool:
        """Validate pool parameters, create two test mints unless ``mints`` is given, and normalize."""
        d = self.defaults
        decimals_a = d.decimals_a if decimals_a is None else decimals_a
        decimals_b = d.decimals_b if decimals_b is None else decimals_b
        ratio = d.ratio if ratio is None else ratio
        direction = validate_pool_params(decimals_a, decimals_b, ratio, d.direction if direction is None else direction)

        if mints is None:
            mint_a = await self.create_token_mint(decimals_a)
            mint_b = await self.create_token_mint(decimals_b)
            mints = (mint_a.address, mint_b.address)
        # Mint addresses are random, so canonical order is only known now.
        return normalize(mints[0], mints[1], decimals_a, decimals_b, ratio, direction)

    async def simulate_pool_creation(self, pool: NormalizedPool) -> PoolSimulation:
        """Simulate PoolInitialize for ``pool`` and map any failure to the contract's wording."""
        payer = self.core_wallet
        ix, addrs = self.builder.pool_initialize(payer.pubkey(), pool)
        try:
            blockhash = await self.rpc.get_latest_blockhash()
        except RpcError as e:
            # replaceRecentBlockhash makes any well-formed hash acceptable here
            log.debug("Blockhash unavailable for pool simulation (%s), using placeholder", e)
            blockhash = Hash.default()
        tx = self.builder.build(OpKind.POOL_INITIALIZE, [ix], payer, blockhash)
        sim = await self.rpc.simulate_transaction(tx, sig_verify=False, replace_recent_blockhash=True)

        code, message = describe_contract_error(sim.err, sim.logs)
        result = PoolSimulation(
            pool_id=addrs.pool_state,
            err=sim.err,
            error_code=code,
            error_message=message,
            logs=sim.logs,
            units_consumed=sim.units_consumed,
        )
        if result.ok:
            log.info("Pool %s simulation succeeded (%s CU)", addrs.pool_state, sim.units_consumed)
        else:
            log.warning("Pool %s simulation failed: %s (%s)", addrs.pool_state, sim.err, message or "no contract code")
        return result

    async def create_pool(
        self,
        decimals_a: int | None = None,
        decimals_b: int | None = None,
        ratio: int | None = None,
        direction: Direction | str | None = None,
    ) -> PoolRecord:
        """Create two fresh mints and a pool over them.

        Invalid parameters and failed mint creation raise. If the pool
        initialization itself fails, a simulated record over the same two
        mints (``origin=SIMULATED``, ``is_valid=False``) is returned so load
        generation can continue; it is cached like a real pool.
        """
        pool = await self.new_pool_config(decimals_a, decimals_b, ratio, direction)
        try:
            rec = await self._initialize_pool(pool)
        except ConstructionError:
            raise
        except WorkloadError as e:
            log.warning("Pool initialization failed (%s); falling back to a simulated pool", e)
            rec = self._simulated_pool(pool)

        await self._remember(rec)
        return rec

    async def _initialize_pool(self, pool: NormalizedPool) -> PoolRecord:
        try:
            await self.simulate_pool_creation(pool)
        except RpcError as e:
            log.warning("Pool pre-flight simulation unavailable: %s", e)

        payer = self.core_wallet
        ix, addrs = self.builder.pool_initialize(payer.pubkey(), pool)

        async def instructions():
            return [ix]

        data = {
            "pool_id": str(addrs.pool_state),
            "ratio_a_numerator": pool.ratio.ratio_a_numerator,
            "ratio_b_denominator": pool.ratio.ratio_b_denominator,
        }
        build = self._fresh_build(OpKind.POOL_INITIALIZE, instructions, payer)
        result = await self.submitter.execute(OpKind.POOL_INITIALIZE, build, data=data)
        if not result.ok:
            raise OperationFailedError(result)

        log.info(
            "Created pool %s: %s/%s %d:%d (inverted=%s)",
            addrs.pool_state, pool.token_a, pool.token_b,
            pool.ratio.ratio_a_numerator, pool.ratio.ratio_b_denominator, pool.inverted,
        )
        return PoolRecord(pair=pool.pair, ratio=pool.ratio, addresses=addrs, creation_signature=result.signature)

    def _simulated_pool(self, pool: NormalizedPool) -> PoolRecord:
        r = pool.ratio
        addrs = derive_pool_addresses(self.program_id, pool.token_a, pool.token_b, r.ratio_a_numerator, r.ratio_b_denominator)
        return PoolRecord(
            pair=pool.pair,
            ratio=r,
            addresses=addrs,
            creation_signature=f"{C.SIMULATED_SIGNATURE_PREFIX}{uuid.uuid4().hex}",
            origin=PoolOrigin.SIMULATED,
            is_valid=False,
        )

    async def _remember(self, rec: PoolRecord) -> None:
        async with self._pools_lock.write():
            self._pools[str(rec.pool_id)] = rec
        await self.store.save_pool(rec)

    async def _evict(self, pool_id: str) -> None:
        async with self._pools_lock.write():
            self._pools.pop(pool_id, None)
        await self.store.delete_pool(pool_id)
        await self.store.delete_threads_for_pool(pool_id)
        log.info("Evicted pool %s", pool_id)

    # =========================================================================
    # Lookup and validation
    # =========================================================================

    async def pool_exists_on_chain(self, pool_id: Pubkey) -> bool:
        """Conclusive on-chain existence check.

        Raises RpcError when the node cannot answer; that is never read as
        "does not exist".
        """
        info = await self.rpc.get_account_info(pool_id)
        if info is not None and not info.is_empty:
            return info.owner == str(self.program_id)
        # Direct lookup can miss a freshly created account on a lagging node.
        owned = await self.rpc.get_program_accounts(self.program_id)
        return str(pool_id) in owned

    async def cached_pool(self, pool_id: str) -> PoolRecord | None:
        async with self._pools_lock.read():
            return self._pools.get(pool_id)

    async def get_pool(self, pool_id: str, *, revalidate: bool = False) -> PoolRecord:
        """Cache, then store hydration re-validated on chain.

        Raises:
            PoolNotFoundError: not known locally, or conclusively gone on chain
                (in which case it is also evicted).
            RpcError: the chain could not be asked.
        """
        rec = await self.cached_pool(pool_id)
        if rec is not None and not revalidate:
            return rec
        if rec is None:
            rec = await self.store.get_pool(pool_id)
            if rec is None:
                raise PoolNotFoundError(f"pool {pool_id} is not known")
            log.debug("Hydrated pool %s from store", pool_id)

        if rec.is_simulated:
            async with self._pools_lock.write():
                self._pools.setdefault(pool_id, rec)
            return rec

        if not await self.pool_exists_on_chain(rec.pool_id):
            await self._evict(pool_id)
            raise PoolNotFoundError(f"pool {pool_id} no longer exists on chain")
        async with self._pools_lock.write():
            self._pools[pool_id] = rec
        return rec

    async def validate_pool(self, pool_id: str, *, revalidate: bool = False) -> bool:
        """Three-tier validity check: cache, store plus chain, then chain alone.

        The direct chain lookup only runs for pools unknown locally; a known
        pool that ``get_pool`` finds gone has already been answered for.
        """
        known = await self.cached_pool(pool_id) is not None or await self.store.get_pool(pool_id) is not None
        if not known:
            return await self.pool_exists_on_chain(Pubkey.from_string(pool_id))
        try:
            rec = await self.get_pool(pool_id, revalidate=revalidate)
        except PoolNotFoundError:
            return False
        return rec.is_valid

    async def list_pools(self) -> list[PoolRecord]:
        persisted = {str(r.pool_id): r for r in await self.store.load_pools()}
        async with self._pools_lock.read():
            persisted.update(self._pools)
        return list(persisted.values())

    async def cleanup_invalid_pools(self) -> list[str]:
        """Evict pools that are conclusively missing on chain. Returns their ids."""
        removed = []
        for rec in await self.list_pools():
            if rec.is_simulated:
                continue
            pool_id = str(rec.pool_id)
            try:
                exists = await self.pool_exists_on_chain(rec.pool_id)
            except RpcError as e:
                log.warning("Keeping pool %s: validation inconclusive (%s)", pool_id, e)
                continue
            if not exists:
                await self._evict(pool_id)
                removed.append(pool_id)
        if removed:
            log.info("Cleaned up %d invalid pool(s)", len(removed))
        return removed

    async def set_pool_flags(self, pool_id: str, *, paused: bool | None = None, swaps_paused: bool | None = None) -> PoolRecord:
        rec = await self.get_pool(pool_id)
        async with self._pools_lock.write():
            if paused is not None:
                rec.paused = paused
            if swaps_paused is not None:
                rec.swaps_paused = swaps_paused
        await self.store.save_pool(rec)
        return rec

    async def ensure_pools(self, target_count: int | None = None) -> list[PoolRecord]:
        """Keep ``target_count`` usable pools, reusing persisted ones where they still exist."""
        target = self.defaults.target_count if target_count is None else target_count
        live: list[PoolRecord] = []
        for pool_id in await self.store.load_active_pool_ids():
            if len(live) >= target:
                break
            try:
                live.append(await self.get_pool(pool_id, revalidate=True))
            except PoolNotFoundError:
                log.info("Active pool %s is gone, replacing it", pool_id)

        while len(live) < target:
            live.append(await self.create_pool())

        await self.store.save_active_pool_ids([str(r.pool_id) for r in live])
        return live

    def snapshot_stats(self) -> dict[str, Any]:
        pools = list(self._pools.values())
        return {
            "cached_pools": len(pools),
            "simulated_pools": sum(1 for p in pools if p.is_simulated),
            "known_mints": len(self._mints),
        }
