"""Exception hierarchy and the contract's error vocabulary.

Construction errors are raised before anything touches the network and are
never retried. Transport errors are retryable. On-chain failures are mapped
through ``CONTRACT_ERRORS`` so diagnostics use the program's own wording.
"""
import re
from typing import Any, Final


class WorkloadError(Exception):
    """Base class for everything raised by the engine."""


class ConstructionError(WorkloadError):
    """Invalid input detected while building an instruction or transaction."""


class RatioError(ConstructionError):
    pass


class PdaDerivationError(ConstructionError):
    pass


class InstructionEncodingError(ConstructionError):
    pass


class RpcError(WorkloadError):
    pass


class RpcTransportError(RpcError):
    """Connection-level failure: the node could not be reached or timed out."""


class RpcResponseError(RpcError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str, data: Any = None):
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{method}: [{code}] {message}")

    @property
    def logs(self) -> list[str]:
        if isinstance(self.data, dict):
            return list(self.data.get("logs") or [])
        return []

    @property
    def err(self) -> Any:
        if isinstance(self.data, dict):
            return self.data.get("err")
        return None


class SubmissionExhaustedError(WorkloadError):
    def __init__(self, op: str, attempts: int, last_reason: str | None, history: list | None = None):
        self.op = op
        self.attempts = attempts
        self.last_reason = last_reason
        self.history = history or []
        super().__init__(f"{op} failed after {attempts} attempts: {last_reason}")


class PoolNotFoundError(WorkloadError):
    pass


class MintAuthorityError(WorkloadError):
    pass


CONTRACT_ERRORS: Final[dict[int, str]] = {
    # System / configuration
    1001: "Unauthorized access",
    1002: "Invalid token mints - ensure correct ordering (smaller pubkey = Token A)",
    1003: "Invalid pool ratio - ensure one side equals 10^decimals",
    1004: "System is paused - no operations allowed",
    1005: "Pool is paused - no liquidity operations allowed",
    1006: "Already paused",
    1007: "Not paused",
    1008: "Invalid owner",
    1009: "Invalid system account",
    1010: "Invalid token decimals",
    # Pool state
    1011: "Pool already exists for this token pair",
    1012: "Pool not found",
    1013: "Invalid pool state",
    1014: "Invalid token account",
    1015: "Insufficient funds for operation",
    # Fees
    1016: "Invalid fee rate",
    1017: "Fee exceeds maximum allowed",
    1018: "Invalid treasury account",
    # Liquidity
    1019: "Invalid amount - must be greater than 0",
    1020: "Insufficient liquidity in pool",
    1021: "Invalid LP token type for this operation",
    1022: "Insufficient LP tokens for withdrawal",
    1023: "Deposit amount too small",
    1024: "Withdrawal amount too small",
    # Swaps
    1025: "Swap amount too small",
    1026: "Slippage tolerance exceeded",
    1027: "Invalid swap direction",
    1028: "Invalid input amount",
    1029: "Invalid minimum output amount",
    1030: "Pool swaps are paused",
    # Accounts / PDAs
    1031: "Invalid account owner",
    1032: "Invalid mint authority",
    1033: "Invalid PDA derivation",
    1034: "Account already initialized",
    1035: "Account not initialized",
    1036: "Invalid signer",
    # Program level
    1037: "Invalid instruction",
    1038: "Missing required signature",
    1039: "Invalid program ID",
    1040: "Invalid account data",
    1041: "Account borrow failed",
    1042: "Instruction pack error",
}

_CUSTOM_RE = re.compile(r"Custom\((\d+)\)")
_HEX_WITH_DEC_RE = re.compile(r"0x[0-9a-fA-F]+\s*\((\d+)\)")
_CUSTOM_HEX_RE = re.compile(r"custom program error:\s*0x([0-9a-fA-F]+)")


def contract_error_message(code: int) -> str:
    return CONTRACT_ERRORS.get(code, f"Unknown error code: {code}")


def parse_contract_error_code(err: Any) -> int | None:
    """Extract a custom program error code from an RPC ``err`` value or log text.

    Args:
        err: Either the structured ``err`` object from a signature status or
            simulation (``{"InstructionError": [0, {"Custom": 1003}]}``), or a
            string such as an exception message or a program log line.

    Returns:
        The integer error code, or None when no custom code is present.
    """
    if err is None:
        return None
    if isinstance(err, dict):
        ix_err = err.get("InstructionError")
        if isinstance(ix_err, list) and len(ix_err) == 2:
            detail = ix_err[1]
            if isinstance(detail, dict) and isinstance(detail.get("Custom"), int):
                return detail["Custom"]
        return None
    text = err if isinstance(err, str) else str(err)
    if m := _CUSTOM_RE.search(text):
        return int(m.group(1))
    if m := _HEX_WITH_DEC_RE.search(text):
        return int(m.group(1))
    if m := _CUSTOM_HEX_RE.search(text):
        return int(m.group(1), 16)
    return None


def describe_contract_error(err: Any, logs: list[str] | None = None) -> tuple[int | None, str | None]:
    """Map an execution failure to (code, message), searching logs as a fallback."""
    code = parse_contract_error_code(err)
    if code is None:
        for line in logs or []:
            code = parse_contract_error_code(line)
            if code is not None:
                break
    if code is None:
        return None, None
    return code, contract_error_message(code)


class OperationFailedError(WorkloadError):
    """An operation that callers need to succeed (e.g. mint creation) did not."""

    def __init__(self, result):
        self.result = result
        super().__init__(f"{result.op} failed ({result.failure}): {result.error_message or result.reason}")
