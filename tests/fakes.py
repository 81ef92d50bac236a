"""In-process stand-ins for the node so engine tests never touch the network."""
from typing import Any

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from frt_workload.config import EngineConfig, config_from_dict
from frt_workload.pda import derive_pool_addresses
from frt_workload.models import PoolRecord
from frt_workload.ratio import normalize
from frt_workload.rpc import AccountInfo, SimulationResult

PROGRAM_ID = Pubkey.from_string("4aeVqtWhrUh6wpX8acNj2hpWXKEQwxjA3PYb2sHhNyCn")
CONFIRMED = {"confirmationStatus": "confirmed", "err": None, "slot": 1}


class FakeRpc:
    """Scriptable Transport.

    ``send_results`` is consumed one entry per send: an exception instance is
    raised, anything else is returned as the signature. When it runs out,
    sends succeed with generated signatures.
    """

    def __init__(self) -> None:
        self.send_results: list[Any] = []
        self.sent: list[bytes] = []
        self.statuses: dict[str, list[dict | None]] = {}
        self.default_status: dict | None = CONFIRMED
        self.status_polls = 0
        self.simulation: SimulationResult | Exception = SimulationResult()
        self.simulated: list[bytes] = []
        self.accounts: dict[str, AccountInfo] = {}
        self.account_error: Exception | None = None
        self.program_accounts: list[str] = []
        self.program_accounts_error: Exception | None = None
        self.program_account_scans = 0
        self.balances: dict[str, int] = {}
        self.airdrop_error: Exception | None = None
        self.airdrops: list[tuple[str, int]] = []
        self.blockhash_error: Exception | None = None
        self.blockhashes_served = 0
        self.transaction_logs: dict[str, list[str]] = {}

    async def get_latest_blockhash(self) -> Hash:
        if self.blockhash_error is not None:
            raise self.blockhash_error
        self.blockhashes_served += 1
        return Hash.new_unique()

    async def send_transaction(self, tx: bytes, *, skip_preflight: bool = False) -> str:
        self.sent.append(tx)
        if self.send_results:
            outcome = self.send_results.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return f"sig{len(self.sent)}"

    async def simulate_transaction(self, tx: bytes, *, sig_verify: bool = False, replace_recent_blockhash: bool = True):
        self.simulated.append(tx)
        if isinstance(self.simulation, Exception):
            raise self.simulation
        return self.simulation

    async def get_account_info(self, pubkey: Pubkey) -> AccountInfo | None:
        if self.account_error is not None:
            raise self.account_error
        return self.accounts.get(str(pubkey))

    async def get_balance(self, pubkey: Pubkey) -> int:
        return self.balances.get(str(pubkey), 0)

    async def get_token_account_balance(self, pubkey: Pubkey) -> int:
        return self.balances.get(str(pubkey), 0)

    async def get_signature_statuses(self, signatures: list[str]) -> list[dict | None]:
        self.status_polls += 1
        out = []
        for sig in signatures:
            queued = self.statuses.get(sig)
            out.append(queued.pop(0) if queued else self.default_status)
        return out

    async def get_program_accounts(self, program_id: Pubkey) -> list[str]:
        self.program_account_scans += 1
        if self.program_accounts_error is not None:
            raise self.program_accounts_error
        return list(self.program_accounts)

    async def request_airdrop(self, pubkey: Pubkey, lamports: int) -> str:
        if self.airdrop_error is not None:
            raise self.airdrop_error
        self.airdrops.append((str(pubkey), lamports))
        self.balances[str(pubkey)] = self.balances.get(str(pubkey), 0) + lamports
        return f"airdrop{len(self.airdrops)}"

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return 1_461_600

    async def get_transaction_logs(self, signature: str) -> list[str]:
        return self.transaction_logs.get(signature, [])

    def add_program_account(self, pubkey: Pubkey, data: bytes = b"\x01") -> None:
        self.accounts[str(pubkey)] = AccountInfo(owner=str(PROGRAM_ID), lamports=1_000_000, data=data)


async def no_sleep(_delay: float) -> None:
    return None


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_config(**sections) -> EngineConfig:
    raw = {
        "program": {"id": str(PROGRAM_ID)},
        "submit": {"max_attempts": 5, "retry_delay": 1.0, "final_retry_delay": 10.0, "confirm_polls": 3, "confirm_delay": 0.5},
        "funding": {"max_airdrop_attempts": 3, "balance_polls": 2, "balance_poll_delay": 0.1},
    }
    for name, values in sections.items():
        raw.setdefault(name, {}).update(values)
    return config_from_dict(raw, env={})


def make_pool(ratio: int = 1000, decimals_a: int = 9, decimals_b: int = 6) -> PoolRecord:
    pool = normalize(Keypair().pubkey(), Keypair().pubkey(), decimals_a, decimals_b, ratio)
    r = pool.ratio
    addrs = derive_pool_addresses(PROGRAM_ID, pool.token_a, pool.token_b, r.ratio_a_numerator, r.ratio_b_denominator)
    return PoolRecord(pair=pool.pair, ratio=r, addresses=addrs, creation_signature="sig-create")
