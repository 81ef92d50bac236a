import logging
from typing import Final, Mapping

from frt_workload.constants import LAMPORTS_PER_SOL, OpKind

log = logging.getLogger("frt_workload.compute_units")

DEFAULT_UNITS: Final = 150_000

# Measured budgets per program entrypoint.
BASE_UNITS: Final[dict[str, int]] = {
    "process_system_initialize": 150_000,
    "process_system_get_version": 150_000,
    "process_pool_initialize": 150_000,
    "process_liquidity_deposit": 310_000,
    "process_liquidity_withdraw": 290_000,
    "process_swap_execute": 250_000,
    "process_treasury_withdraw_fees": 150_000,
    "process_treasury_get_info": 150_000,
    "process_system_pause": 150_000,
    "process_system_unpause": 150_000,
    "process_pool_pause": 150_000,
    "process_pool_unpause": 150_000,
    "process_pool_update_fees": 150_000,
}

OP_KEYS: Final[dict[OpKind, str]] = {
    OpKind.INITIALIZE_PROGRAM: "process_system_initialize",
    OpKind.POOL_INITIALIZE: "process_pool_initialize",
    OpKind.DEPOSIT: "process_liquidity_deposit",
    OpKind.WITHDRAW: "process_liquidity_withdraw",
    OpKind.SWAP: "process_swap_execute",
    OpKind.GET_VERSION: "process_system_get_version",
}

CONSOLIDATION_BASE: Final = 4_000
CONSOLIDATION_PER_POOL: Final = 5_000
CONSOLIDATION_MAX: Final = 150_000
SMALL_DONATION_UNITS: Final = 25_000
LARGE_DONATION_UNITS: Final = 120_000
LARGE_DONATION_THRESHOLD: Final = 1_000 * LAMPORTS_PER_SOL


class ComputeUnitTable:
    """Compute-unit limits keyed by entrypoint name, with config overrides."""

    def __init__(self, overrides: Mapping[str, int] | None = None):
        self._units = {**BASE_UNITS, **(overrides or {})}

    def for_key(self, key: str) -> int:
        units = self._units.get(key)
        if units is None:
            log.warning("No compute budget for %r, using default %d", key, DEFAULT_UNITS)
            return DEFAULT_UNITS
        return units

    def for_op(self, op: OpKind | str) -> int:
        # OpKind is a StrEnum, so plain operation names hash to the same keys
        return self.for_key(OP_KEYS.get(op, str(op)))

    @staticmethod
    def consolidation(pool_count: int) -> int:
        return min(CONSOLIDATION_BASE + CONSOLIDATION_PER_POOL * pool_count, CONSOLIDATION_MAX)

    @staticmethod
    def donation(lamports: int) -> int:
        return SMALL_DONATION_UNITS if lamports <= LARGE_DONATION_THRESHOLD else LARGE_DONATION_UNITS
