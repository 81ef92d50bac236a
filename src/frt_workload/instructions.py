"""Binary instruction payloads for the fixed-ratio trading program.

Wire format: one discriminator byte, then little-endian u64 fields in
declaration order. No padding, no variable-length fields.
"""
import struct
from dataclasses import dataclass, fields
from typing import ClassVar

from frt_workload import constants as C
from frt_workload.constants import OpKind
from frt_workload.errors import InstructionEncodingError


@dataclass(frozen=True, slots=True)
class InitializeProgram:
    DISCRIMINATOR: ClassVar[int] = 0
    KIND: ClassVar[OpKind] = OpKind.INITIALIZE_PROGRAM


@dataclass(frozen=True, slots=True)
class PoolInitialize:
    DISCRIMINATOR: ClassVar[int] = 1
    KIND: ClassVar[OpKind] = OpKind.POOL_INITIALIZE
    ratio_a_numerator: int
    ratio_b_denominator: int


@dataclass(frozen=True, slots=True)
class Deposit:
    DISCRIMINATOR: ClassVar[int] = 6
    KIND: ClassVar[OpKind] = OpKind.DEPOSIT
    amount: int


@dataclass(frozen=True, slots=True)
class Withdraw:
    DISCRIMINATOR: ClassVar[int] = 7
    KIND: ClassVar[OpKind] = OpKind.WITHDRAW
    amount: int


@dataclass(frozen=True, slots=True)
class Swap:
    DISCRIMINATOR: ClassVar[int] = 8
    KIND: ClassVar[OpKind] = OpKind.SWAP
    input_amount: int
    minimum_output: int


@dataclass(frozen=True, slots=True)
class GetVersion:
    DISCRIMINATOR: ClassVar[int] = 14
    KIND: ClassVar[OpKind] = OpKind.GET_VERSION


ProgramInstruction = InitializeProgram | PoolInitialize | Deposit | Withdraw | Swap | GetVersion

_BY_DISCRIMINATOR: dict[int, type] = {
    cls.DISCRIMINATOR: cls for cls in (InitializeProgram, PoolInitialize, Deposit, Withdraw, Swap, GetVersion)
}


def _u64(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= C.U64_MAX:
        raise InstructionEncodingError(f"{name} is not a u64: {value!r}")
    return value


def encode(op: ProgramInstruction) -> bytes:
    match op:
        case InitializeProgram() | GetVersion():
            return struct.pack("<B", op.DISCRIMINATOR)
        case PoolInitialize(ratio_a_numerator=num, ratio_b_denominator=den):
            return struct.pack("<BQQ", op.DISCRIMINATOR, _u64("ratio_a_numerator", num), _u64("ratio_b_denominator", den))
        case Deposit(amount=amount) | Withdraw(amount=amount):
            return struct.pack("<BQ", op.DISCRIMINATOR, _u64("amount", amount))
        case Swap(input_amount=amount_in, minimum_output=min_out):
            return struct.pack("<BQQ", op.DISCRIMINATOR, _u64("input_amount", amount_in), _u64("minimum_output", min_out))
        case _:
            raise InstructionEncodingError(f"not a program instruction: {op!r}")


def decode(data: bytes) -> ProgramInstruction:
    if not data:
        raise InstructionEncodingError("empty instruction data")
    cls = _BY_DISCRIMINATOR.get(data[0])
    if cls is None:
        raise InstructionEncodingError(f"unknown discriminator {data[0]}")
    n = len(fields(cls))
    expected = 1 + 8 * n
    if len(data) != expected:
        raise InstructionEncodingError(f"{cls.__name__} expects {expected} bytes, got {len(data)}")
    values = struct.unpack_from("<" + "Q" * n, data, 1)
    return cls(*values)
