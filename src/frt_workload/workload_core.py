import asyncio
import logging
from typing import Any, Awaitable, Callable

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from frt_workload.config import EngineConfig
from frt_workload.constants import Direction, OpKind, TokenSide
from frt_workload.errors import ConstructionError, RpcError
from frt_workload.models import OperationResult, PoolRecord
from frt_workload.pool_manager import PoolLifecycleManager
from frt_workload.ratio import expected_swap_output
from frt_workload.rpc import Transport
from frt_workload.store import Store
from frt_workload.submission import Submitter
from frt_workload.txn_factory.builder import TransactionBuilder
from frt_workload.txn_factory.compute_units import ComputeUnitTable
from frt_workload.version import ContractVersion, check_contract_version

log = logging.getLogger("frt_workload.core")


class Workload:
    """Deposit/withdraw/swap traffic against known pools, plus wallet funding.

    Wallet keypairs are passed in per call and never mutated; callers own
    scheduling and repetition.
    """

    def __init__(
        self,
        cfg: EngineConfig,
        rpc: Transport,
        store: Store,
        core_wallet: Keypair,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.cfg = cfg
        self.rpc = rpc
        self.store = store
        self.core_wallet = core_wallet
        self._sleep = sleep
        self.builder = TransactionBuilder(cfg.program.id, ComputeUnitTable(cfg.compute_units))
        self.submitter = Submitter(rpc, cfg.submit, sleep=sleep)
        self.pools = PoolLifecycleManager(rpc, self.builder, self.submitter, store, core_wallet, defaults=cfg.pools)
        self.wallets: dict[str, Keypair] = {}

    # =========================================================================
    # Funding
    # =========================================================================

    async def _wait_for_balance(self, pubkey: Pubkey, at_least: int) -> int:
        balance = 0
        for _ in range(self.cfg.funding.balance_polls):
            try:
                balance = await self.rpc.get_balance(pubkey)
            except RpcError as e:
                log.debug("Balance poll for %s failed: %s", pubkey, e)
            if balance >= at_least:
                return balance
            await self._sleep(self.cfg.funding.balance_poll_delay)
        return balance

    async def fund_wallet(self, pubkey: Pubkey, min_lamports: int) -> int:
        """Airdrop until ``pubkey`` holds ``min_lamports``. Returns the final balance.

        Each airdrop is capped at the configured size, and the loop is capped at
        ``max_airdrop_attempts`` requests.
        """
        f = self.cfg.funding
        balance = await self.rpc.get_balance(pubkey)
        attempts = 0
        while balance < min_lamports and attempts < f.max_airdrop_attempts:
            attempts += 1
            request = min(f.airdrop_lamports, max(min_lamports - balance, 1))
            try:
                sig = await self.rpc.request_airdrop(pubkey, request)
                log.info("Airdrop %d/%d of %d lamports to %s: %s", attempts, f.max_airdrop_attempts, request, pubkey, sig)
            except RpcError as e:
                log.warning("Airdrop %d/%d to %s failed: %s", attempts, f.max_airdrop_attempts, pubkey, e)
                await self._sleep(f.balance_poll_delay)
                continue
            balance = await self._wait_for_balance(pubkey, balance + request)

        if balance < min_lamports:
            log.error("%s holds %d lamports after %d airdrops, wanted %d", pubkey, balance, attempts, min_lamports)
        return balance

    async def ensure_core_wallet_funded(self) -> int:
        return await self.fund_wallet(self.core_wallet.pubkey(), self.cfg.funding.core_wallet_min_lamports)

    async def create_wallet(self, lamports: int | None = None) -> Keypair:
        kp = Keypair()
        await self.fund_wallet(kp.pubkey(), lamports or self.cfg.funding.airdrop_lamports)
        self.wallets[str(kp.pubkey())] = kp
        return kp

    async def get_sol_balance(self, pubkey: Pubkey) -> int:
        return await self.rpc.get_balance(pubkey)

    async def get_token_balance(self, owner: Pubkey, mint: Pubkey) -> int:
        return await self.rpc.get_token_account_balance(get_associated_token_address(owner, mint))

    # =========================================================================
    # Pool operations
    # =========================================================================

    @staticmethod
    def _side_mint(pool: PoolRecord, side: TokenSide | str) -> Pubkey:
        return pool.token_a if TokenSide(side) is TokenSide.A else pool.token_b

    async def _pool_for_attempt(self, pool_id: str, attempt: int) -> PoolRecord:
        # Retries re-read the pool so they never reuse stale state.
        return await self.pools.get_pool(pool_id, revalidate=attempt > 1)

    async def deposit(self, wallet: Keypair, pool_id: str, side: TokenSide | str, amount: int) -> OperationResult:
        if amount <= 0:
            raise ConstructionError(f"deposit amount must be positive, got {amount}")
        pool = await self.pools.get_pool(pool_id)
        mint = self._side_mint(pool, side)

        async def build(attempt: int) -> bytes:
            p = pool if attempt == 1 else await self._pool_for_attempt(pool_id, attempt)
            ix = self.builder.deposit(wallet.pubkey(), p.token_a, p.token_b, p.addresses, mint, amount)
            blockhash = await self.rpc.get_latest_blockhash()
            return self.builder.build(OpKind.DEPOSIT, [ix], wallet, blockhash)

        data = {"pool_id": pool_id, "mint": str(mint), "amount": amount}
        return await self.submitter.execute(OpKind.DEPOSIT, build, data=data)

    async def withdraw(self, wallet: Keypair, pool_id: str, side: TokenSide | str, lp_amount: int) -> OperationResult:
        if lp_amount <= 0:
            raise ConstructionError(f"withdraw amount must be positive, got {lp_amount}")
        pool = await self.pools.get_pool(pool_id)
        mint = self._side_mint(pool, side)

        async def build(attempt: int) -> bytes:
            p = pool if attempt == 1 else await self._pool_for_attempt(pool_id, attempt)
            ix = self.builder.withdraw(wallet.pubkey(), p.token_a, p.token_b, p.addresses, mint, lp_amount)
            blockhash = await self.rpc.get_latest_blockhash()
            return self.builder.build(OpKind.WITHDRAW, [ix], wallet, blockhash)

        data = {"pool_id": pool_id, "mint": str(mint), "lp_amount": lp_amount}
        return await self.submitter.execute(OpKind.WITHDRAW, build, data=data)

    async def swap(
        self,
        wallet: Keypair,
        pool_id: str,
        direction: Direction | str,
        input_amount: int,
        minimum_output: int | None = None,
    ) -> OperationResult:
        """Swap at the pool's fixed ratio.

        ``minimum_output`` defaults to the exact expected output; asking for
        more than the ratio can pay is rejected before anything is sent.
        """
        direction = Direction(direction)
        pool = await self.pools.get_pool(pool_id)
        expected = expected_swap_output(pool.ratio, input_amount, direction)
        if expected == 0:
            raise ConstructionError(f"swap of {input_amount} yields nothing at ratio {pool.ratio}")
        min_out = expected if minimum_output is None else minimum_output
        if min_out > expected:
            raise ConstructionError(f"minimum output {min_out} exceeds expected output {expected}")

        async def build(attempt: int) -> bytes:
            p = pool if attempt == 1 else await self._pool_for_attempt(pool_id, attempt)
            ix = self.builder.swap(wallet.pubkey(), p.token_a, p.token_b, p.addresses, direction, input_amount, min_out)
            blockhash = await self.rpc.get_latest_blockhash()
            return self.builder.build(OpKind.SWAP, [ix], wallet, blockhash)

        data = {
            "pool_id": pool_id,
            "direction": direction.value,
            "input_amount": input_amount,
            "expected_output": expected,
            "minimum_output": min_out,
        }
        return await self.submitter.execute(OpKind.SWAP, build, data=data)

    # =========================================================================
    # Program-level
    # =========================================================================

    async def initialize_program(self) -> OperationResult | None:
        return await self.pools.ensure_program_initialized()

    async def contract_version(self) -> ContractVersion:
        p = self.cfg.program
        return await check_contract_version(
            self.rpc, self.builder, self.core_wallet, expected=p.expected_version, max_supported=p.max_supported_version
        )

    async def startup(self) -> None:
        await self.pools.load_from_store()
        await self.ensure_core_wallet_funded()
        if self.cfg.program.auto_initialize:
            result = await self.initialize_program()
            if result is not None and not result.ok:
                log.error("Program initialization failed: %s", result.error_message or result.reason)

    def snapshot_stats(self) -> dict[str, Any]:
        return {
            "core_wallet": str(self.core_wallet.pubkey()),
            "test_wallets": len(self.wallets),
            **self.pools.snapshot_stats(),
            **self.submitter.snapshot_stats(),
        }
