"""Account lists and transaction assembly for each program operation.

Accounts are positional on the wire: the program reads account N by index,
so each list below is in the exact order the program expects.
"""
import logging
from typing import Sequence

from solders.compute_budget import set_compute_unit_limit
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.instructions import get_associated_token_address

from frt_workload import constants as C
from frt_workload.constants import Direction, OpKind
from frt_workload.errors import ConstructionError
from frt_workload.instructions import (
    Deposit,
    GetVersion,
    InitializeProgram,
    PoolInitialize,
    ProgramInstruction,
    Swap,
    Withdraw,
    encode,
)
from frt_workload.pda import PoolAddresses, derive_pool_addresses, main_treasury_pda, program_data_address, system_state_pda
from frt_workload.ratio import NormalizedPool
from frt_workload.txn_factory.compute_units import ComputeUnitTable

log = logging.getLogger("frt_workload.builder")


def _ro(pubkey: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey, is_signer=False, is_writable=False)


def _rw(pubkey: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey, is_signer=False, is_writable=True)


def _signer(pubkey: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey, is_signer=True, is_writable=True)


class TransactionBuilder:
    def __init__(self, program_id: Pubkey, compute_units: ComputeUnitTable | None = None):
        self.program_id = program_id
        self.compute_units = compute_units or ComputeUnitTable()

    def instruction(self, op: ProgramInstruction, accounts: Sequence[AccountMeta]) -> Instruction:
        return Instruction(program_id=self.program_id, data=encode(op), accounts=list(accounts))

    def initialize_program(self, authority: Pubkey) -> Instruction:
        accounts = [
            _signer(authority),
            _ro(C.SYSTEM_PROGRAM),
            _ro(C.RENT_SYSVAR),
            _rw(system_state_pda(self.program_id)),
            _rw(main_treasury_pda(self.program_id)),
            _ro(program_data_address(self.program_id)),
        ]
        return self.instruction(InitializeProgram(), accounts)

    def pool_initialize(self, payer: Pubkey, pool: NormalizedPool) -> tuple[Instruction, PoolAddresses]:
        ratio = pool.ratio
        addrs = derive_pool_addresses(
            self.program_id, pool.token_a, pool.token_b, ratio.ratio_a_numerator, ratio.ratio_b_denominator
        )
        accounts = [
            _signer(payer),
            _ro(C.SYSTEM_PROGRAM),
            _ro(addrs.system_state),
            _rw(addrs.pool_state),
            _ro(C.TOKEN_PROGRAM),
            _rw(addrs.main_treasury),
            _ro(C.RENT_SYSVAR),
            _ro(pool.token_a),
            _ro(pool.token_b),
            _rw(addrs.token_a_vault),
            _rw(addrs.token_b_vault),
            _rw(addrs.lp_token_a_mint),
            _rw(addrs.lp_token_b_mint),
        ]
        ix = self.instruction(PoolInitialize(ratio.ratio_a_numerator, ratio.ratio_b_denominator), accounts)
        return ix, addrs

    def _liquidity_accounts(
        self, user: Pubkey, token_a: Pubkey, token_b: Pubkey, addrs: PoolAddresses, mint: Pubkey
    ) -> list[AccountMeta]:
        if mint == token_a:
            vault, lp_mint = addrs.token_a_vault, addrs.lp_token_a_mint
        elif mint == token_b:
            vault, lp_mint = addrs.token_b_vault, addrs.lp_token_b_mint
        else:
            raise ConstructionError(f"mint {mint} is not part of pool {addrs.pool_state}")
        return [
            _signer(user),
            _ro(C.SYSTEM_PROGRAM),
            _ro(C.TOKEN_PROGRAM),
            _ro(addrs.system_state),
            _rw(addrs.pool_state),
            _ro(mint),
            _rw(vault),
            _rw(get_associated_token_address(user, mint)),
            _rw(lp_mint),
            _rw(get_associated_token_address(user, lp_mint)),
            _rw(addrs.main_treasury),
            _rw(addrs.pool_treasury),
        ]

    def deposit(
        self, user: Pubkey, token_a: Pubkey, token_b: Pubkey, addrs: PoolAddresses, deposit_mint: Pubkey, amount: int
    ) -> Instruction:
        accounts = self._liquidity_accounts(user, token_a, token_b, addrs, deposit_mint)
        return self.instruction(Deposit(amount), accounts)

    def withdraw(
        self, user: Pubkey, token_a: Pubkey, token_b: Pubkey, addrs: PoolAddresses, withdraw_mint: Pubkey, lp_amount: int
    ) -> Instruction:
        accounts = self._liquidity_accounts(user, token_a, token_b, addrs, withdraw_mint)
        return self.instruction(Withdraw(lp_amount), accounts)

    def swap(
        self,
        user: Pubkey,
        token_a: Pubkey,
        token_b: Pubkey,
        addrs: PoolAddresses,
        direction: Direction,
        input_amount: int,
        minimum_output: int,
    ) -> Instruction:
        if Direction(direction) is Direction.A_TO_B:
            in_mint, out_mint = token_a, token_b
            in_vault, out_vault = addrs.token_a_vault, addrs.token_b_vault
        else:
            in_mint, out_mint = token_b, token_a
            in_vault, out_vault = addrs.token_b_vault, addrs.token_a_vault
        accounts = [
            _signer(user),
            _ro(C.SYSTEM_PROGRAM),
            _ro(C.TOKEN_PROGRAM),
            _ro(addrs.system_state),
            _rw(addrs.pool_state),
            _rw(get_associated_token_address(user, in_mint)),
            _rw(get_associated_token_address(user, out_mint)),
            _rw(in_vault),
            _rw(out_vault),
            _rw(addrs.main_treasury),
            _rw(addrs.pool_treasury),
        ]
        return self.instruction(Swap(input_amount, minimum_output), accounts)

    def get_version(self) -> Instruction:
        return self.instruction(GetVersion(), [])

    def build(
        self,
        op: OpKind,
        instructions: Sequence[Instruction],
        payer: Keypair,
        recent_blockhash: Hash,
        *,
        signers: Sequence[Keypair] = (),
        compute_units: int | None = None,
        budget: bool = True,
    ) -> bytes:
        """Sign and serialize a transaction with the compute-budget instruction first.

        Args:
            op: Operation kind, used to look up the compute budget.
            instructions: Program (or token/system) instructions, in order.
            payer: Fee payer; always the first signer.
            recent_blockhash: Must be fresh for anything that will be sent.
            signers: Extra signers such as a new mint keypair.
            compute_units: Explicit limit; defaults to the table entry for ``op``.
            budget: False for plain system/token transactions that carry no
                program instruction.

        Returns:
            Wire bytes of the signed transaction.
        """
        ixs = list(instructions)
        units = 0
        if budget:
            units = compute_units if compute_units is not None else self.compute_units.for_op(op)
            ixs.insert(0, set_compute_unit_limit(units))
        message = Message.new_with_blockhash(ixs, payer.pubkey(), recent_blockhash)
        tx = Transaction([payer, *signers], message, recent_blockhash)
        log.debug("Built %s tx (%d ixs, %d CU) payer=%s", op, len(ixs), units, payer.pubkey())
        return bytes(tx)
