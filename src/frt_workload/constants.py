from typing import Final
from enum import StrEnum

from solders.pubkey import Pubkey

SYSTEM_PROGRAM: Final = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM: Final = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
RENT_SYSVAR: Final = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
BPF_LOADER_UPGRADEABLE: Final = Pubkey.from_string("BPFLoaderUpgradeab1e11111111111111111111111")

# PDA seed prefixes, shared with the on-chain program
SYSTEM_STATE_SEED: Final = b"system_state"
POOL_STATE_SEED: Final = b"pool_state"
TOKEN_A_VAULT_SEED: Final = b"token_a_vault"
TOKEN_B_VAULT_SEED: Final = b"token_b_vault"
LP_TOKEN_A_MINT_SEED: Final = b"lp_token_a_mint"
LP_TOKEN_B_MINT_SEED: Final = b"lp_token_b_mint"
MAIN_TREASURY_SEED: Final = b"main_treasury"
POOL_TREASURY_SEED: Final = b"pool_treasury"


class OpKind(StrEnum):
    INITIALIZE_PROGRAM = "InitializeProgram"
    POOL_INITIALIZE    = "PoolInitialize"
    DEPOSIT            = "Deposit"
    WITHDRAW           = "Withdraw"
    SWAP               = "Swap"
    GET_VERSION        = "GetVersion"
    CREATE_MINT        = "CreateMint"
    MINT_TO            = "MintTo"


class Direction(StrEnum):
    A_TO_B = "a_to_b"
    B_TO_A = "b_to_a"


class TokenSide(StrEnum):
    A = "A"
    B = "B"


class ConfirmationStatus(StrEnum):
    NONE      = "none"
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


class AttemptOutcome(StrEnum):
    ACCEPTED  = "ACCEPTED"
    REJECTED  = "REJECTED"
    EXCEPTION = "EXCEPTION"


class FailureKind(StrEnum):
    SEND_EXHAUSTED       = "SEND_EXHAUSTED"
    EXECUTION_FAILED     = "EXECUTION_FAILED"
    CONFIRMATION_TIMEOUT = "CONFIRMATION_TIMEOUT"


class PoolOrigin(StrEnum):
    CHAIN     = "CHAIN"
    SIMULATED = "SIMULATED"


LANDED_STATUSES: Final = frozenset({ConfirmationStatus.CONFIRMED, ConfirmationStatus.FINALIZED})

LAMPORTS_PER_SOL: Final = 1_000_000_000
U64_MAX: Final = 2**64 - 1
MAX_DECIMALS: Final = 9
# Display-rate bounds outside of which a ratio is logged as suspicious
MAX_SANE_RATE: Final = 1e6
MIN_SANE_RATE: Final = 1e-6

RPC_TIMEOUT = 10.0
SIMULATED_SIGNATURE_PREFIX = "simulated_tx_"

__all__ = [
    "AttemptOutcome",
    "BPF_LOADER_UPGRADEABLE",
    "ConfirmationStatus",
    "Direction",
    "FailureKind",
    "LAMPORTS_PER_SOL",
    "LANDED_STATUSES",
    "LP_TOKEN_A_MINT_SEED",
    "LP_TOKEN_B_MINT_SEED",
    "MAIN_TREASURY_SEED",
    "MAX_DECIMALS",
    "MAX_SANE_RATE",
    "MIN_SANE_RATE",
    "OpKind",
    "POOL_STATE_SEED",
    "POOL_TREASURY_SEED",
    "PoolOrigin",
    "RENT_SYSVAR",
    "RPC_TIMEOUT",
    "SIMULATED_SIGNATURE_PREFIX",
    "SYSTEM_PROGRAM",
    "SYSTEM_STATE_SEED",
    "TOKEN_A_VAULT_SEED",
    "TOKEN_B_VAULT_SEED",
    "TOKEN_PROGRAM",
    "TokenSide",
    "U64_MAX",
]
