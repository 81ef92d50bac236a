import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from solders.pubkey import Pubkey

from frt_workload.constants import LAMPORTS_PER_SOL, Direction

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"


@dataclass(frozen=True, slots=True)
class RpcConfig:
    url: str = "http://127.0.0.1:8899"
    commitment: str = "confirmed"
    timeout: float = 10.0
    probe_retries: int = 30
    probe_delay: float = 2.0


@dataclass(frozen=True, slots=True)
class ProgramConfig:
    id: Pubkey
    expected_version: str = "v0.15.1054"
    max_supported_version: str = "0.19.9999"
    auto_initialize: bool = True


@dataclass(frozen=True, slots=True)
class SubmitConfig:
    max_attempts: int = 5
    retry_delay: float = 1.0
    final_retry_delay: float = 10.0
    confirm_polls: int = 30
    confirm_delay: float = 1.0
    skip_preflight: bool = False
    commitment: str = "confirmed"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.confirm_polls < 1:
            raise ValueError(f"confirm_polls must be >= 1, got {self.confirm_polls}")


@dataclass(frozen=True, slots=True)
class PoolDefaults:
    decimals_a: int = 9
    decimals_b: int = 6
    ratio: int = 1000
    direction: Direction = Direction.A_TO_B
    target_count: int = 3


@dataclass(frozen=True, slots=True)
class FundingConfig:
    airdrop_sol: int = 10
    max_airdrop_attempts: int = 15
    core_wallet_min_sol: float = 1.2
    balance_polls: int = 10
    balance_poll_delay: float = 1.0

    @property
    def airdrop_lamports(self) -> int:
        return self.airdrop_sol * LAMPORTS_PER_SOL

    @property
    def core_wallet_min_lamports(self) -> int:
        return int(self.core_wallet_min_sol * LAMPORTS_PER_SOL)


@dataclass(frozen=True, slots=True)
class EngineConfig:
    rpc: RpcConfig
    program: ProgramConfig
    submit: SubmitConfig
    pools: PoolDefaults = field(default_factory=PoolDefaults)
    funding: FundingConfig = field(default_factory=FundingConfig)
    db_path: str = "frt_workload.db"
    compute_units: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))


def config_from_dict(raw: dict[str, Any], env: Mapping[str, str] | None = None) -> EngineConfig:
    """Build an immutable EngineConfig from parsed TOML, applying env overrides."""
    env = os.environ if env is None else env
    rpc = dict(raw.get("rpc", {}))
    program = dict(raw.get("program", {}))
    storage = raw.get("storage", {})

    if url := env.get("RPC_URL"):
        rpc["url"] = url
    if program_id := env.get("FRT_PROGRAM_ID"):
        program["id"] = program_id
    if "id" not in program:
        raise ValueError("program.id is required")
    program["id"] = Pubkey.from_string(program["id"])

    pools = dict(raw.get("pools", {}))
    if "direction" in pools:
        pools["direction"] = Direction(pools["direction"])

    rpc_cfg = RpcConfig(**rpc)
    return EngineConfig(
        rpc=rpc_cfg,
        program=ProgramConfig(**program),
        submit=SubmitConfig(commitment=rpc_cfg.commitment, **raw.get("submit", {})),
        pools=PoolDefaults(**pools),
        funding=FundingConfig(**raw.get("funding", {})),
        db_path=env.get("FRT_DB_PATH", storage.get("db_path", "frt_workload.db")),
        compute_units=MappingProxyType({k: int(v) for k, v in raw.get("compute_units", {}).items()}),
    )


def load_config(path: str | Path | None = None) -> EngineConfig:
    return config_from_dict(tomllib.loads(Path(path or config_file).read_text()))
