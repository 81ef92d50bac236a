import unittest

from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import Transaction
from spl.token.instructions import get_associated_token_address

from frt_workload.constants import OpKind, PoolOrigin
from frt_workload.errors import (
    MintAuthorityError,
    OperationFailedError,
    PoolNotFoundError,
    RatioError,
    RpcError,
    RpcResponseError,
    RpcTransportError,
)
from frt_workload.instructions import PoolInitialize, decode
from frt_workload.pda import system_state_pda
from frt_workload.pool_manager import PoolLifecycleManager
from frt_workload.rpc import AccountInfo, SimulationResult
from frt_workload.store import InMemoryStore
from frt_workload.submission import Submitter
from frt_workload.txn_factory.builder import TransactionBuilder
from tests.fakes import PROGRAM_ID, FakeRpc, make_config, make_pool, no_sleep


def make_manager(rpc: FakeRpc, store: InMemoryStore | None = None, **sections) -> PoolLifecycleManager:
    cfg = make_config(**sections)
    builder = TransactionBuilder(cfg.program.id)
    submitter = Submitter(rpc, cfg.submit, sleep=no_sleep)
    return PoolLifecycleManager(rpc, builder, submitter, store or InMemoryStore(), Keypair(), defaults=cfg.pools)


class TestCreatePool(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.rpc = FakeRpc()
        self.store = InMemoryStore()
        self.mgr = make_manager(self.rpc, self.store)

    async def test_creates_two_mints_then_pool(self):
        rec = await self.mgr.create_pool(9, 6, 1000)
        self.assertEqual(rec.origin, PoolOrigin.CHAIN)
        self.assertTrue(rec.is_valid)
        self.assertEqual(rec.creation_signature, "sig3")
        self.assertEqual(len(self.rpc.sent), 3)

        tx = Transaction.from_bytes(self.rpc.sent[-1])
        payload = decode(bytes(tx.message.instructions[-1].data))
        self.assertEqual(payload, PoolInitialize(rec.ratio.ratio_a_numerator, rec.ratio.ratio_b_denominator))
        self.assertLess(bytes(rec.token_a), bytes(rec.token_b))
        self.assertTrue(rec.ratio.a_anchored)

        self.assertIs(await self.mgr.cached_pool(str(rec.pool_id)), rec)
        self.assertIsNotNone(await self.store.get_pool(str(rec.pool_id)))
        self.assertEqual(len(await self.store.load_token_mints()), 2)

    async def test_defaults_fill_missing_params(self):
        rec = await self.mgr.create_pool()
        self.assertEqual({rec.ratio.decimals_a, rec.ratio.decimals_b}, {9, 6})

    async def test_falls_back_to_simulated_pool_over_created_mints(self):
        rejected = RpcResponseError("sendTransaction", -32002, "custom program error: 0x3eb", {"logs": ["Program failed"]})
        self.rpc.send_results = ["mint-a", "mint-b"] + [rejected] * 5
        with self.assertLogs("frt_workload.pools", level="WARNING"):
            rec = await self.mgr.create_pool(6, 6, 2)
        self.assertTrue(rec.is_simulated)
        self.assertFalse(rec.is_valid)
        self.assertTrue(rec.creation_signature.startswith("simulated_tx_"))
        self.assertEqual(len(self.rpc.sent), 7)

        created = {str(m.address) for m, _ in await self.store.load_token_mints()}
        self.assertEqual({str(rec.token_a), str(rec.token_b)}, created)
        # still usable as a handle without touching the chain
        self.assertIs(await self.mgr.get_pool(str(rec.pool_id), revalidate=True), rec)

    async def test_failed_mint_creation_raises(self):
        self.rpc.default_status = {"confirmationStatus": "confirmed", "err": {"InstructionError": [1, {"Custom": 0}]}}
        with self.assertRaises(OperationFailedError) as ctx:
            await self.mgr.create_pool()
        self.assertEqual(ctx.exception.result.op, OpKind.CREATE_MINT)
        self.assertEqual(len(self.rpc.sent), 1)
        self.assertEqual(await self.mgr.list_pools(), [])

    async def test_simulates_before_initializing(self):
        self.rpc.simulation = SimulationResult(err={"InstructionError": [0, {"Custom": 1003}]})
        with self.assertLogs("frt_workload.pools", level="WARNING"):
            rec = await self.mgr.create_pool(9, 6, 1000)
        self.assertEqual(len(self.rpc.simulated), 1)
        simulated = Transaction.from_bytes(self.rpc.simulated[0])
        self.assertEqual(
            decode(bytes(simulated.message.instructions[-1].data)),
            PoolInitialize(rec.ratio.ratio_a_numerator, rec.ratio.ratio_b_denominator),
        )
        # the simulation is advisory; the pool is still submitted
        self.assertFalse(rec.is_simulated)
        self.assertEqual(len(self.rpc.sent), 3)

    async def test_unavailable_simulation_does_not_block_creation(self):
        self.rpc.simulation = RpcTransportError("simulate timed out")
        rec = await self.mgr.create_pool(9, 6, 1000)
        self.assertEqual(rec.origin, PoolOrigin.CHAIN)

    async def test_invalid_params_are_rejected_before_any_rpc(self):
        for kwargs in ({"decimals_a": 10}, {"ratio": 0}, {"direction": "sideways"}):
            with self.subTest(**kwargs), self.assertRaises(RatioError):
                await self.mgr.create_pool(**kwargs)
        self.assertEqual(self.rpc.sent, [])
        self.assertEqual(self.rpc.blockhashes_served, 0)


class TestSimulatePoolCreation(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.rpc = FakeRpc()
        self.mgr = make_manager(self.rpc)

    async def given_pool(self):
        return await self.mgr.new_pool_config(9, 6, 1000, mints=(Keypair().pubkey(), Keypair().pubkey()))

    async def test_given_mints_need_no_transactions(self):
        pool = await self.given_pool()
        self.assertLess(bytes(pool.token_a), bytes(pool.token_b))
        self.assertEqual(self.rpc.sent, [])

    async def test_success(self):
        self.rpc.simulation = SimulationResult(logs=["Program log: ok"], units_consumed=42_000)
        pool = await self.given_pool()
        sim = await self.mgr.simulate_pool_creation(pool)
        self.assertTrue(sim.ok)
        self.assertIsNone(sim.error_code)
        self.assertEqual(sim.units_consumed, 42_000)
        self.assertEqual(self.rpc.sent, [])

    async def test_invalid_ratio_is_described(self):
        self.rpc.simulation = SimulationResult(err={"InstructionError": [0, {"Custom": 1003}]})
        pool = await self.given_pool()
        with self.assertLogs("frt_workload.pools", level="WARNING"):
            sim = await self.mgr.simulate_pool_creation(pool)
        self.assertFalse(sim.ok)
        self.assertEqual(sim.error_code, 1003)
        self.assertEqual(sim.error_message, "Invalid pool ratio - ensure one side equals 10^decimals")
        self.assertEqual(sim.to_dict()["pool_id"], str(sim.pool_id))

    async def test_placeholder_blockhash_when_node_has_none(self):
        self.rpc.blockhash_error = RpcTransportError("no blockhash")
        pool = await self.given_pool()
        sim = await self.mgr.simulate_pool_creation(pool)
        self.assertTrue(sim.ok)
        tx = Transaction.from_bytes(self.rpc.simulated[0])
        self.assertEqual(tx.message.recent_blockhash, Hash.default())

    async def test_simulation_rpc_failure_propagates(self):
        self.rpc.simulation = RpcTransportError("down")
        pool = await self.given_pool()
        with self.assertRaises(RpcError):
            await self.mgr.simulate_pool_creation(pool)


class TestLookup(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.rpc = FakeRpc()
        self.store = InMemoryStore()
        self.mgr = make_manager(self.rpc, self.store)
        self.pool = make_pool()
        self.pool_id = str(self.pool.pool_id)

    async def test_unknown_pool(self):
        with self.assertRaises(PoolNotFoundError):
            await self.mgr.get_pool(self.pool_id)

    async def test_store_hydration_checks_chain_then_caches(self):
        await self.store.save_pool(self.pool)
        self.rpc.add_program_account(self.pool.pool_id)
        rec = await self.mgr.get_pool(self.pool_id)
        self.assertEqual(rec.pool_id, self.pool.pool_id)

        self.rpc.account_error = RpcTransportError("unreachable")
        self.assertIs(await self.mgr.get_pool(self.pool_id), rec)

    async def test_program_accounts_fallback(self):
        await self.mgr._remember(self.pool)
        self.rpc.program_accounts = [self.pool_id]
        self.assertIs(await self.mgr.get_pool(self.pool_id, revalidate=True), self.pool)

    async def test_foreign_owner_is_not_a_pool(self):
        await self.mgr._remember(self.pool)
        self.rpc.accounts[self.pool_id] = AccountInfo(owner="11111111111111111111111111111111", lamports=1, data=b"\x01")
        with self.assertRaises(PoolNotFoundError):
            await self.mgr.get_pool(self.pool_id, revalidate=True)

    async def test_missing_pool_is_evicted_everywhere(self):
        await self.mgr._remember(self.pool)
        await self.store.save_active_pool_ids([self.pool_id])
        await self.store.save_thread("t1", self.pool_id, {"kind": "swap"})

        with self.assertRaises(PoolNotFoundError):
            await self.mgr.get_pool(self.pool_id, revalidate=True)
        self.assertIsNone(await self.mgr.cached_pool(self.pool_id))
        self.assertIsNone(await self.store.get_pool(self.pool_id))
        self.assertEqual(await self.store.load_active_pool_ids(), [])
        self.assertEqual(await self.store.load_threads(self.pool_id), [])

    async def test_transport_error_leaves_pool_untouched(self):
        await self.mgr._remember(self.pool)
        self.rpc.account_error = RpcTransportError("timeout")
        with self.assertRaises(RpcError):
            await self.mgr.get_pool(self.pool_id, revalidate=True)
        self.assertIs(await self.mgr.cached_pool(self.pool_id), self.pool)
        self.assertIsNotNone(await self.store.get_pool(self.pool_id))

    async def test_validate_pool_direct_chain_tier(self):
        self.rpc.add_program_account(self.pool.pool_id)
        self.assertTrue(await self.mgr.validate_pool(self.pool_id))
        self.rpc.accounts.clear()
        self.assertFalse(await self.mgr.validate_pool(self.pool_id))

    async def test_validate_known_pool_gone_asks_chain_once(self):
        await self.mgr._remember(self.pool)
        self.assertFalse(await self.mgr.validate_pool(self.pool_id, revalidate=True))
        self.assertEqual(self.rpc.program_account_scans, 1)
        self.assertIsNone(await self.mgr.cached_pool(self.pool_id))

    async def test_validate_cached_pool_without_revalidation_stays_local(self):
        await self.mgr._remember(self.pool)
        self.rpc.account_error = RpcTransportError("unreachable")
        self.assertTrue(await self.mgr.validate_pool(self.pool_id))
        self.assertEqual(self.rpc.program_account_scans, 0)

    async def test_validate_unknown_pool_uses_chain_alone(self):
        self.assertFalse(await self.mgr.validate_pool(self.pool_id))
        self.assertEqual(self.rpc.program_account_scans, 1)

    async def test_set_pool_flags_persists(self):
        await self.mgr._remember(self.pool)
        await self.mgr.set_pool_flags(self.pool_id, swaps_paused=True)
        stored = await self.store.get_pool(self.pool_id)
        self.assertTrue(stored.swaps_paused)
        self.assertFalse(stored.paused)


class TestCleanup(unittest.IsolatedAsyncioTestCase):
    async def test_removes_only_conclusively_missing_pools(self):
        rpc = FakeRpc()
        mgr = make_manager(rpc)
        live, gone = make_pool(), make_pool()
        rejected = RpcResponseError("sendTransaction", -32002, "rejected", {"logs": []})
        rpc.send_results = ["mint-a", "mint-b"] + [rejected] * 5
        simulated = await mgr.create_pool()
        self.assertTrue(simulated.is_simulated)
        for p in (live, gone):
            await mgr._remember(p)
        rpc.add_program_account(live.pool_id)

        removed = await mgr.cleanup_invalid_pools()
        self.assertEqual(removed, [str(gone.pool_id)])
        remaining = {str(p.pool_id) for p in await mgr.list_pools()}
        self.assertEqual(remaining, {str(live.pool_id), str(simulated.pool_id)})

    async def test_inconclusive_validation_keeps_pools(self):
        rpc = FakeRpc()
        mgr = make_manager(rpc)
        await mgr._remember(make_pool())
        rpc.account_error = RpcTransportError("down")
        self.assertEqual(await mgr.cleanup_invalid_pools(), [])
        self.assertEqual(len(await mgr.list_pools()), 1)


class TestEnsurePools(unittest.IsolatedAsyncioTestCase):
    async def test_reuses_live_pools_and_replaces_gone_ones(self):
        rpc = FakeRpc()
        store = InMemoryStore()
        mgr = make_manager(rpc, store)
        live, gone = make_pool(), make_pool()
        await store.save_pool(live)
        await store.save_pool(gone)
        await store.save_active_pool_ids([str(gone.pool_id), str(live.pool_id)])
        rpc.add_program_account(live.pool_id)

        pools = await mgr.ensure_pools(2)
        self.assertEqual(len(pools), 2)
        self.assertEqual(pools[0].pool_id, live.pool_id)
        self.assertEqual(await store.load_active_pool_ids(), [str(p.pool_id) for p in pools])
        self.assertIsNone(await store.get_pool(str(gone.pool_id)))


class TestMints(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.rpc = FakeRpc()
        self.store = InMemoryStore()
        self.mgr = make_manager(self.rpc, self.store)

    async def test_unknown_mint_authority(self):
        with self.assertRaises(MintAuthorityError):
            await self.mgr.mint_tokens(Keypair().pubkey(), Keypair().pubkey(), 5)

    async def test_mint_creates_missing_ata(self):
        mint = await self.mgr.create_token_mint(6)
        owner = Keypair().pubkey()
        result = await self.mgr.mint_tokens(mint.address, owner, 1_000)
        self.assertTrue(result.ok)
        self.assertEqual(len(Transaction.from_bytes(self.rpc.sent[-1]).message.instructions), 2)

        self.rpc.accounts[str(get_associated_token_address(owner, mint.address))] = AccountInfo(
            owner="TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA", lamports=1, data=b"\x00" * 165
        )
        await self.mgr.mint_tokens(mint.address, owner, 1_000)
        self.assertEqual(len(Transaction.from_bytes(self.rpc.sent[-1]).message.instructions), 1)

    async def test_authorities_survive_restart(self):
        mint = await self.mgr.create_token_mint(9)
        fresh = make_manager(self.rpc, self.store)
        await fresh.load_from_store()
        self.assertEqual(
            (await fresh.mint_authority(mint.address)).pubkey(),
            (await self.mgr.mint_authority(mint.address)).pubkey(),
        )


class TestProgramInit(unittest.IsolatedAsyncioTestCase):
    async def test_skips_when_system_state_exists(self):
        rpc = FakeRpc()
        rpc.add_program_account(system_state_pda(PROGRAM_ID))
        self.assertIsNone(await make_manager(rpc).ensure_program_initialized())
        self.assertEqual(rpc.sent, [])

    async def test_initializes_when_missing(self):
        rpc = FakeRpc()
        result = await make_manager(rpc).ensure_program_initialized()
        self.assertTrue(result.ok)
        tx = Transaction.from_bytes(rpc.sent[0])
        self.assertEqual(bytes(tx.message.instructions[-1].data), b"\x00")


if __name__ == "__main__":
    unittest.main()
