import unittest

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.instructions import get_associated_token_address

from frt_workload import constants as C
from frt_workload.constants import Direction, OpKind
from frt_workload.errors import ConstructionError
from frt_workload.instructions import Deposit, PoolInitialize, Swap, decode
from frt_workload.pda import main_treasury_pda, program_data_address, system_state_pda
from frt_workload.ratio import normalize
from frt_workload.txn_factory.builder import TransactionBuilder
from frt_workload.txn_factory.compute_units import ComputeUnitTable
from tests.fakes import PROGRAM_ID, make_pool

COMPUTE_BUDGET = Pubkey.from_string("ComputeBudget111111111111111111111111111111")


def keys(ix):
    return [m.pubkey for m in ix.accounts]


def writable(ix):
    return [m.is_writable for m in ix.accounts]


class TestAccountLists(unittest.TestCase):
    def setUp(self):
        self.builder = TransactionBuilder(PROGRAM_ID)
        self.user = Keypair().pubkey()
        self.pool = make_pool()

    def test_initialize_program(self):
        ix = self.builder.initialize_program(self.user)
        self.assertEqual(
            keys(ix),
            [
                self.user,
                C.SYSTEM_PROGRAM,
                C.RENT_SYSVAR,
                system_state_pda(PROGRAM_ID),
                main_treasury_pda(PROGRAM_ID),
                program_data_address(PROGRAM_ID),
            ],
        )
        self.assertTrue(ix.accounts[0].is_signer)
        self.assertEqual(bytes(ix.data), b"\x00")

    def test_pool_initialize(self):
        pool = normalize(Keypair().pubkey(), Keypair().pubkey(), 9, 6, 1000)
        ix, addrs = self.builder.pool_initialize(self.user, pool)
        self.assertEqual(
            keys(ix),
            [
                self.user,
                C.SYSTEM_PROGRAM,
                addrs.system_state,
                addrs.pool_state,
                C.TOKEN_PROGRAM,
                addrs.main_treasury,
                C.RENT_SYSVAR,
                pool.token_a,
                pool.token_b,
                addrs.token_a_vault,
                addrs.token_b_vault,
                addrs.lp_token_a_mint,
                addrs.lp_token_b_mint,
            ],
        )
        self.assertEqual(
            writable(ix),
            [True, False, False, True, False, True, False, False, False, True, True, True, True],
        )
        self.assertEqual(
            decode(bytes(ix.data)),
            PoolInitialize(pool.ratio.ratio_a_numerator, pool.ratio.ratio_b_denominator),
        )
        self.assertEqual(ix.program_id, PROGRAM_ID)

    def test_deposit_token_b(self):
        p = self.pool
        ix = self.builder.deposit(self.user, p.token_a, p.token_b, p.addresses, p.token_b, 42)
        a = p.addresses
        self.assertEqual(
            keys(ix),
            [
                self.user,
                C.SYSTEM_PROGRAM,
                C.TOKEN_PROGRAM,
                a.system_state,
                a.pool_state,
                p.token_b,
                a.token_b_vault,
                get_associated_token_address(self.user, p.token_b),
                a.lp_token_b_mint,
                get_associated_token_address(self.user, a.lp_token_b_mint),
                a.main_treasury,
                a.pool_treasury,
            ],
        )
        self.assertEqual(decode(bytes(ix.data)), Deposit(42))

    def test_withdraw_pool_state_writable(self):
        p = self.pool
        ix = self.builder.withdraw(self.user, p.token_a, p.token_b, p.addresses, p.token_a, 7)
        self.assertEqual(ix.accounts[4].pubkey, p.addresses.pool_state)
        self.assertTrue(ix.accounts[4].is_writable)
        self.assertEqual(ix.accounts[6].pubkey, p.addresses.token_a_vault)
        self.assertEqual(bytes(ix.data)[0], 7)

    def test_liquidity_rejects_foreign_mint(self):
        p = self.pool
        with self.assertRaises(ConstructionError):
            self.builder.deposit(self.user, p.token_a, p.token_b, p.addresses, Keypair().pubkey(), 1)

    def test_swap_b_to_a(self):
        p = self.pool
        a = p.addresses
        ix = self.builder.swap(self.user, p.token_a, p.token_b, a, Direction.B_TO_A, 100, 90)
        self.assertEqual(
            keys(ix),
            [
                self.user,
                C.SYSTEM_PROGRAM,
                C.TOKEN_PROGRAM,
                a.system_state,
                a.pool_state,
                get_associated_token_address(self.user, p.token_b),
                get_associated_token_address(self.user, p.token_a),
                a.token_b_vault,
                a.token_a_vault,
                a.main_treasury,
                a.pool_treasury,
            ],
        )
        self.assertEqual(decode(bytes(ix.data)), Swap(100, 90))

    def test_get_version_has_no_accounts(self):
        ix = self.builder.get_version()
        self.assertEqual(list(ix.accounts), [])
        self.assertEqual(bytes(ix.data), b"\x0e")


class TestBuild(unittest.TestCase):
    def setUp(self):
        self.builder = TransactionBuilder(PROGRAM_ID, ComputeUnitTable({"process_swap_execute": 111_111}))
        self.payer = Keypair()
        self.pool = make_pool()

    def _swap_tx(self, **kw):
        p = self.pool
        ix = self.builder.swap(self.payer.pubkey(), p.token_a, p.token_b, p.addresses, Direction.A_TO_B, 10, 1)
        raw = self.builder.build(OpKind.SWAP, [ix], self.payer, Hash.new_unique(), **kw)
        return Transaction.from_bytes(raw)

    def test_compute_budget_comes_first(self):
        tx = self._swap_tx()
        msg = tx.message
        first, second = msg.instructions
        self.assertEqual(msg.account_keys[first.program_id_index], COMPUTE_BUDGET)
        self.assertEqual(bytes(first.data), b"\x02" + (111_111).to_bytes(4, "little"))
        self.assertEqual(msg.account_keys[second.program_id_index], PROGRAM_ID)
        self.assertEqual(decode(bytes(second.data)), Swap(10, 1))

    def test_account_order_survives_compilation(self):
        tx = self._swap_tx()
        p = self.pool
        ix = tx.message.instructions[1]
        compiled = [tx.message.account_keys[i] for i in bytes(ix.accounts)]
        self.assertEqual(compiled[0], self.payer.pubkey())
        self.assertEqual(compiled[4], p.addresses.pool_state)
        self.assertEqual(compiled[7], p.addresses.token_a_vault)
        self.assertEqual(compiled[8], p.addresses.token_b_vault)

    def test_signed_by_payer(self):
        tx = self._swap_tx()
        self.assertEqual(tx.message.account_keys[0], self.payer.pubkey())
        tx.verify()

    def test_explicit_units(self):
        tx = self._swap_tx(compute_units=5)
        self.assertEqual(bytes(tx.message.instructions[0].data), b"\x02" + (5).to_bytes(4, "little"))

    def test_no_budget(self):
        tx = self._swap_tx(budget=False)
        self.assertEqual(len(tx.message.instructions), 1)


class TestComputeUnits(unittest.TestCase):
    def test_table(self):
        t = ComputeUnitTable()
        self.assertEqual(t.for_op(OpKind.DEPOSIT), 310_000)
        self.assertEqual(t.for_op(OpKind.WITHDRAW), 290_000)
        self.assertEqual(t.for_op(OpKind.SWAP), 250_000)
        self.assertEqual(t.for_op(OpKind.POOL_INITIALIZE), 150_000)
        self.assertEqual(t.for_op("Swap"), 250_000)

    def test_unknown_defaults_with_warning(self):
        with self.assertLogs("frt_workload.compute_units", level="WARNING"):
            self.assertEqual(ComputeUnitTable().for_key("process_nonsense"), 150_000)

    def test_overrides(self):
        self.assertEqual(ComputeUnitTable({"process_liquidity_deposit": 1}).for_op(OpKind.DEPOSIT), 1)

    def test_consolidation_and_donation(self):
        self.assertEqual(ComputeUnitTable.consolidation(1), 9_000)
        self.assertEqual(ComputeUnitTable.consolidation(100), 150_000)
        self.assertEqual(ComputeUnitTable.donation(C.LAMPORTS_PER_SOL), 25_000)
        self.assertEqual(ComputeUnitTable.donation(1_001 * C.LAMPORTS_PER_SOL), 120_000)


if __name__ == "__main__":
    unittest.main()
