"""Program-derived address derivation.

Every address here must match the on-chain program's own derivation byte for
byte; pool accounts are keyed by the canonical (tokenA, tokenB, ratio) tuple.
"""
import logging
from dataclasses import dataclass
from typing import Sequence

from solders.pubkey import Pubkey

from frt_workload import constants as C
from frt_workload.errors import PdaDerivationError

log = logging.getLogger("frt_workload.pda")

MAX_SEED_LEN = 32
# One of the runtime's 16 seed slots is taken by the bump.
MAX_SEEDS = 15


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> tuple[Pubkey, int]:
    """Return (address, bump) for ``seeds`` under ``program_id``."""
    seeds = [bytes(s) for s in seeds]
    # solders panics rather than raising on invalid seeds, so reject them here
    if len(seeds) > MAX_SEEDS:
        raise PdaDerivationError(f"too many seeds: {len(seeds)} > {MAX_SEEDS}")
    if any(len(s) > MAX_SEED_LEN for s in seeds):
        raise PdaDerivationError(f"seed longer than {MAX_SEED_LEN} bytes: {[len(s) for s in seeds]}")
    try:
        return Pubkey.find_program_address(seeds, program_id)
    except ValueError as e:
        raise PdaDerivationError(f"cannot derive address for seeds {[s.hex() for s in seeds]}: {e}") from e


def derive(seeds: Sequence[bytes], program_id: Pubkey) -> Pubkey:
    return find_program_address(seeds, program_id)[0]


def u64_le(value: int) -> bytes:
    return value.to_bytes(8, "little")


def system_state_pda(program_id: Pubkey) -> Pubkey:
    return derive([C.SYSTEM_STATE_SEED], program_id)


def main_treasury_pda(program_id: Pubkey) -> Pubkey:
    return derive([C.MAIN_TREASURY_SEED], program_id)


def pool_state_pda(
    program_id: Pubkey, token_a: Pubkey, token_b: Pubkey, ratio_a_numerator: int, ratio_b_denominator: int
) -> Pubkey:
    """The pool address. Distinct ratios over the same pair are distinct pools."""
    seeds = [C.POOL_STATE_SEED, bytes(token_a), bytes(token_b), u64_le(ratio_a_numerator), u64_le(ratio_b_denominator)]
    return derive(seeds, program_id)


def program_data_address(program_id: Pubkey) -> Pubkey:
    return derive([bytes(program_id)], C.BPF_LOADER_UPGRADEABLE)


@dataclass(frozen=True, slots=True)
class PoolAddresses:
    pool_state: Pubkey
    token_a_vault: Pubkey
    token_b_vault: Pubkey
    lp_token_a_mint: Pubkey
    lp_token_b_mint: Pubkey
    main_treasury: Pubkey
    pool_treasury: Pubkey
    system_state: Pubkey


def derive_pool_addresses(
    program_id: Pubkey, token_a: Pubkey, token_b: Pubkey, ratio_a_numerator: int, ratio_b_denominator: int
) -> PoolAddresses:
    """Derive every PDA a pool owns from its canonical (tokenA, tokenB, ratio) tuple.

    ``token_a``/``token_b`` must already be in canonical byte order; passing them
    reversed yields a different (and on-chain nonexistent) pool.
    """
    pool = pool_state_pda(program_id, token_a, token_b, ratio_a_numerator, ratio_b_denominator)
    pool_seed = bytes(pool)
    addrs = PoolAddresses(
        pool_state=pool,
        token_a_vault=derive([C.TOKEN_A_VAULT_SEED, pool_seed], program_id),
        token_b_vault=derive([C.TOKEN_B_VAULT_SEED, pool_seed], program_id),
        lp_token_a_mint=derive([C.LP_TOKEN_A_MINT_SEED, pool_seed], program_id),
        lp_token_b_mint=derive([C.LP_TOKEN_B_MINT_SEED, pool_seed], program_id),
        main_treasury=main_treasury_pda(program_id),
        pool_treasury=derive([C.POOL_TREASURY_SEED, pool_seed], program_id),
        system_state=system_state_pda(program_id),
    )
    log.debug("Derived pool %s for %s/%s ratio %d:%d", pool, token_a, token_b, ratio_a_numerator, ratio_b_denominator)
    return addrs
