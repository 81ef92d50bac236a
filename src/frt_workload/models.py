import time
from dataclasses import dataclass, field
from typing import Any

from solders.pubkey import Pubkey

from frt_workload.constants import (
    AttemptOutcome,
    ConfirmationStatus,
    FailureKind,
    LANDED_STATUSES,
    OpKind,
    PoolOrigin,
)
from frt_workload.pda import PoolAddresses
from frt_workload.ratio import OrderedTokenPair, RatioSpec


@dataclass(slots=True)
class TokenMint:
    address: Pubkey
    decimals: int
    authority: Pubkey
    creation_signature: str | None = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": str(self.address),
            "decimals": self.decimals,
            "authority": str(self.authority),
            "creation_signature": self.creation_signature,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "TokenMint":
        return cls(
            address=Pubkey.from_string(d["address"]),
            decimals=int(d["decimals"]),
            authority=Pubkey.from_string(d["authority"]),
            creation_signature=d.get("creation_signature"),
            created_at=d.get("created_at", time.time()),
        )


@dataclass(slots=True)
class PoolRecord:
    pair: OrderedTokenPair
    ratio: RatioSpec
    addresses: PoolAddresses
    creation_signature: str
    origin: PoolOrigin = PoolOrigin.CHAIN
    is_valid: bool = True
    paused: bool = False
    swaps_paused: bool = False
    created_at: float = field(default_factory=time.time)

    @property
    def pool_id(self) -> Pubkey:
        return self.addresses.pool_state

    @property
    def token_a(self) -> Pubkey:
        return self.pair.token_a

    @property
    def token_b(self) -> Pubkey:
        return self.pair.token_b

    @property
    def is_simulated(self) -> bool:
        return self.origin is PoolOrigin.SIMULATED

    def to_dict(self) -> dict[str, Any]:
        a = self.addresses
        return {
            "pool_id": str(self.pool_id),
            "token_a_mint": str(self.token_a),
            "token_b_mint": str(self.token_b),
            "token_a_decimals": self.ratio.decimals_a,
            "token_b_decimals": self.ratio.decimals_b,
            "ratio_a_numerator": self.ratio.ratio_a_numerator,
            "ratio_b_denominator": self.ratio.ratio_b_denominator,
            "token_a_vault": str(a.token_a_vault),
            "token_b_vault": str(a.token_b_vault),
            "lp_token_a_mint": str(a.lp_token_a_mint),
            "lp_token_b_mint": str(a.lp_token_b_mint),
            "main_treasury": str(a.main_treasury),
            "pool_treasury": str(a.pool_treasury),
            "system_state": str(a.system_state),
            "creation_signature": self.creation_signature,
            "origin": self.origin.value,
            "is_valid": self.is_valid,
            "paused": self.paused,
            "swaps_paused": self.swaps_paused,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PoolRecord":
        pk = Pubkey.from_string
        return cls(
            pair=OrderedTokenPair(pk(d["token_a_mint"]), pk(d["token_b_mint"])),
            ratio=RatioSpec(
                ratio_a_numerator=int(d["ratio_a_numerator"]),
                ratio_b_denominator=int(d["ratio_b_denominator"]),
                decimals_a=int(d["token_a_decimals"]),
                decimals_b=int(d["token_b_decimals"]),
            ),
            addresses=PoolAddresses(
                pool_state=pk(d["pool_id"]),
                token_a_vault=pk(d["token_a_vault"]),
                token_b_vault=pk(d["token_b_vault"]),
                lp_token_a_mint=pk(d["lp_token_a_mint"]),
                lp_token_b_mint=pk(d["lp_token_b_mint"]),
                main_treasury=pk(d["main_treasury"]),
                pool_treasury=pk(d["pool_treasury"]),
                system_state=pk(d["system_state"]),
            ),
            creation_signature=d["creation_signature"],
            origin=PoolOrigin(d.get("origin", PoolOrigin.CHAIN)),
            is_valid=bool(d.get("is_valid", True)),
            paused=bool(d.get("paused", False)),
            swaps_paused=bool(d.get("swaps_paused", False)),
            created_at=d.get("created_at", time.time()),
        )


@dataclass(slots=True)
class SubmissionAttempt:
    attempt: int
    tx_bytes: bytes
    outcome: AttemptOutcome
    signature: str | None = None
    reason: str | None = None
    logs: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ConfirmationRecord:
    signature: str
    status: ConfirmationStatus = ConfirmationStatus.NONE
    err: Any = None
    polls: int = 0
    slot: int | None = None

    @property
    def landed(self) -> bool:
        return self.status in LANDED_STATUSES

    @property
    def succeeded(self) -> bool:
        """Landed and executed without error. Landing alone is not success."""
        return self.landed and self.err is None


@dataclass(slots=True)
class OperationResult:
    op: OpKind
    ok: bool
    signature: str | None = None
    attempts: int = 0
    status: ConfirmationStatus = ConfirmationStatus.NONE
    failure: FailureKind | None = None
    reason: str | None = None
    error_code: int | None = None
    error_message: str | None = None
    logs: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "op": self.op.value,
            "ok": self.ok,
            "signature": self.signature,
            "attempts": self.attempts,
            "status": self.status.value,
            "failure": self.failure.value if self.failure else None,
            "reason": self.reason,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "logs": self.logs,
            "data": self.data,
        }


@dataclass(slots=True)
class PoolSimulation:
    """Outcome of simulating PoolInitialize without sending it."""
    pool_id: Pubkey
    err: Any = None
    error_code: int | None = None
    error_message: str | None = None
    logs: list[str] = field(default_factory=list)
    units_consumed: int | None = None

    @property
    def ok(self) -> bool:
        return self.err is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool_id": str(self.pool_id),
            "ok": self.ok,
            "err": self.err,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "logs": self.logs,
            "units_consumed": self.units_consumed,
        }
