import logging
import re
from dataclasses import dataclass, field

from solders.hash import Hash
from solders.keypair import Keypair

from frt_workload.constants import OpKind
from frt_workload.errors import RpcError, describe_contract_error
from frt_workload.rpc import Transport
from frt_workload.txn_factory.builder import TransactionBuilder

log = logging.getLogger("frt_workload.version")

VERSION_RE = re.compile(r"Contract Version:\s*([0-9v.]+)")
# Simulating with an unfunded probe payer fails before the program runs.
UNFUNDED_PAYER_ERRORS = frozenset({"AccountNotFound"})


@dataclass(slots=True)
class ContractVersion:
    version: str | None
    expected: str
    max_supported: str
    logs: list[str] = field(default_factory=list)

    @property
    def matches_expected(self) -> bool:
        return self.version is not None and version_tuple(self.version) == version_tuple(self.expected)

    @property
    def supported(self) -> bool:
        return self.version is not None and version_tuple(self.version) <= version_tuple(self.max_supported)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "expected": self.expected,
            "max_supported": self.max_supported,
            "matches_expected": self.matches_expected,
            "supported": self.supported,
        }


def parse_version(logs: list[str]) -> str | None:
    for line in logs:
        if m := VERSION_RE.search(line):
            return m.group(1)
    return None


def version_tuple(v: str) -> tuple[int, ...]:
    return tuple(int(p) for p in v.strip().lstrip("vV").split(".") if p)


async def check_contract_version(
    rpc: Transport, builder: TransactionBuilder, payer: Keypair, *, expected: str, max_supported: str
) -> ContractVersion:
    """Simulate GetVersion and read the version from the program's log output."""
    try:
        blockhash = await rpc.get_latest_blockhash()
    except RpcError as e:
        # The simulation substitutes its own blockhash, so any well-formed hash will do.
        log.debug("Blockhash unavailable for version probe (%s), using placeholder", e)
        blockhash = Hash.default()

    tx = builder.build(OpKind.GET_VERSION, [builder.get_version()], payer, blockhash)
    sim = await rpc.simulate_transaction(tx, sig_verify=False, replace_recent_blockhash=True)

    if isinstance(sim.err, str) and sim.err in UNFUNDED_PAYER_ERRORS:
        log.info("Version probe payer %s is unfunded; no program output", payer.pubkey())
    elif sim.err is not None:
        _, message = describe_contract_error(sim.err, sim.logs)
        log.warning("GetVersion simulation failed: %s (%s)", sim.err, message or "no contract code")

    result = ContractVersion(parse_version(sim.logs), expected, max_supported, sim.logs)
    if result.version is None:
        log.warning("Contract version not found in %d log line(s)", len(sim.logs))
    elif not result.supported:
        log.warning("Contract version %s is newer than supported %s", result.version, max_supported)
    elif not result.matches_expected:
        log.info("Contract version %s differs from expected %s", result.version, expected)
    return result
