"""JSON-RPC transport to a Solana node.

``SolanaRpc`` speaks the node's JSON-RPC over httpx. Anything the engine
needs from the node goes through the ``Transport`` protocol so tests can
swap in an in-process stub.
"""
import base64
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey

from frt_workload import constants as C
from frt_workload.errors import RpcResponseError, RpcTransportError

log = logging.getLogger("frt_workload.rpc")


@dataclass(slots=True)
class SimulationResult:
    err: Any = None
    logs: list[str] = field(default_factory=list)
    units_consumed: int | None = None


@dataclass(slots=True)
class AccountInfo:
    owner: str
    lamports: int
    data: bytes
    executable: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.data


class Transport(Protocol):
    async def get_latest_blockhash(self) -> Hash: ...
    async def send_transaction(self, tx: bytes, *, skip_preflight: bool = False) -> str: ...
    async def simulate_transaction(
        self, tx: bytes, *, sig_verify: bool = False, replace_recent_blockhash: bool = True
    ) -> SimulationResult: ...
    async def get_account_info(self, pubkey: Pubkey) -> AccountInfo | None: ...
    async def get_balance(self, pubkey: Pubkey) -> int: ...
    async def get_token_account_balance(self, pubkey: Pubkey) -> int: ...
    async def get_signature_statuses(self, signatures: list[str]) -> list[dict | None]: ...
    async def get_program_accounts(self, program_id: Pubkey) -> list[str]: ...
    async def request_airdrop(self, pubkey: Pubkey, lamports: int) -> str: ...
    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int: ...
    async def get_transaction_logs(self, signature: str) -> list[str]: ...


class SolanaRpc:
    def __init__(
        self,
        url: str,
        *,
        commitment: str = "confirmed",
        timeout: float = C.RPC_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.commitment = commitment
        self._http = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, params: list | None = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            r = await self._http.post(self.url, json=payload)
            r.raise_for_status()
            body = r.json()
        except httpx.HTTPError as e:
            raise RpcTransportError(f"{method}: {e.__class__.__name__} - {e}") from e
        except ValueError as e:
            raise RpcTransportError(f"{method}: malformed response body") from e

        if not isinstance(body, dict):
            raise RpcTransportError(f"{method}: malformed response body ({type(body).__name__})")
        if (error := body.get("error")) is not None:
            if not isinstance(error, dict):
                raise RpcResponseError(method, None, str(error), None)
            raise RpcResponseError(method, error.get("code"), error.get("message", ""), error.get("data"))
        return body.get("result")

    async def get_health(self) -> str:
        return await self._call("getHealth")

    async def get_latest_blockhash(self) -> Hash:
        result = await self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            return Hash.from_string(result["value"]["blockhash"])
        except (TypeError, KeyError, ValueError) as e:
            raise RpcTransportError(f"getLatestBlockhash: malformed result {result!r}") from e

    async def send_transaction(self, tx: bytes, *, skip_preflight: bool = False) -> str:
        opts = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": self.commitment,
        }
        return await self._call("sendTransaction", [base64.b64encode(tx).decode(), opts])

    async def simulate_transaction(
        self, tx: bytes, *, sig_verify: bool = False, replace_recent_blockhash: bool = True
    ) -> SimulationResult:
        # The node refuses sigVerify together with replaceRecentBlockhash.
        opts = {
            "encoding": "base64",
            "sigVerify": sig_verify,
            "replaceRecentBlockhash": replace_recent_blockhash and not sig_verify,
            "commitment": self.commitment,
        }
        result = await self._call("simulateTransaction", [base64.b64encode(tx).decode(), opts])
        value = result["value"]
        return SimulationResult(
            err=value.get("err"),
            logs=list(value.get("logs") or []),
            units_consumed=value.get("unitsConsumed"),
        )

    async def get_account_info(self, pubkey: Pubkey) -> AccountInfo | None:
        result = await self._call(
            "getAccountInfo", [str(pubkey), {"encoding": "base64", "commitment": self.commitment}]
        )
        value = result["value"]
        if value is None:
            return None
        data_field = value.get("data") or ["", "base64"]
        return AccountInfo(
            owner=value["owner"],
            lamports=value["lamports"],
            data=base64.b64decode(data_field[0]) if data_field[0] else b"",
            executable=value.get("executable", False),
        )

    async def get_balance(self, pubkey: Pubkey) -> int:
        result = await self._call("getBalance", [str(pubkey), {"commitment": self.commitment}])
        return int(result["value"])

    async def get_token_account_balance(self, pubkey: Pubkey) -> int:
        result = await self._call("getTokenAccountBalance", [str(pubkey), {"commitment": self.commitment}])
        return int(result["value"]["amount"])

    async def get_signature_statuses(self, signatures: list[str]) -> list[dict | None]:
        result = await self._call("getSignatureStatuses", [signatures, {"searchTransactionHistory": True}])
        return list(result["value"])

    async def get_program_accounts(self, program_id: Pubkey) -> list[str]:
        opts = {
            "encoding": "base64",
            "commitment": self.commitment,
            "dataSlice": {"offset": 0, "length": 0},
        }
        result = await self._call("getProgramAccounts", [str(program_id), opts])
        return [item["pubkey"] for item in result]

    async def request_airdrop(self, pubkey: Pubkey, lamports: int) -> str:
        return await self._call("requestAirdrop", [str(pubkey), lamports, {"commitment": self.commitment}])

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return int(await self._call("getMinimumBalanceForRentExemption", [size]))

    async def get_transaction_logs(self, signature: str) -> list[str]:
        opts = {"encoding": "json", "commitment": self.commitment, "maxSupportedTransactionVersion": 0}
        result = await self._call("getTransaction", [signature, opts])
        if not result:
            return []
        return list((result.get("meta") or {}).get("logMessages") or [])
