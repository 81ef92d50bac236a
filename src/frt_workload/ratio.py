"""Canonical token ordering and basis-point ratio construction.

The on-chain program only accepts pools whose token A has the smaller raw
address and whose ratio is "anchored to 1": one side equals exactly
10**decimals of its token. Everything here is pure and raises
``RatioError`` before any transaction is built.
"""
import logging
from dataclasses import dataclass

from solders.pubkey import Pubkey

from frt_workload import constants as C
from frt_workload.constants import Direction
from frt_workload.errors import RatioError

log = logging.getLogger("frt_workload.ratio")


@dataclass(frozen=True, slots=True)
class OrderedTokenPair:
    token_a: Pubkey
    token_b: Pubkey

    def __post_init__(self):
        if bytes(self.token_a) > bytes(self.token_b):
            raise RatioError(f"tokens not in canonical order: {self.token_a} > {self.token_b}")
        if self.token_a == self.token_b:
            raise RatioError(f"pool needs two distinct mints, got {self.token_a} twice")


@dataclass(frozen=True, slots=True)
class RatioSpec:
    """Basis-point ratio between canonical token A and token B."""
    ratio_a_numerator: int
    ratio_b_denominator: int
    decimals_a: int
    decimals_b: int

    def __post_init__(self):
        for name in ("ratio_a_numerator", "ratio_b_denominator"):
            value = getattr(self, name)
            if not 0 < value <= C.U64_MAX:
                raise RatioError(f"{name} out of u64 range: {value}")
        if not (self.a_anchored or self.b_anchored):
            raise RatioError(
                f"ratio {self.ratio_a_numerator}:{self.ratio_b_denominator} is not anchored to 1 "
                f"for decimals {self.decimals_a}/{self.decimals_b}"
            )

    @property
    def a_anchored(self) -> bool:
        return self.ratio_a_numerator == 10**self.decimals_a

    @property
    def b_anchored(self) -> bool:
        return self.ratio_b_denominator == 10**self.decimals_b

    @property
    def display_rate(self) -> float:
        """How many whole B tokens one whole A token is worth."""
        return (self.ratio_b_denominator / 10**self.decimals_b) / (self.ratio_a_numerator / 10**self.decimals_a)


@dataclass(frozen=True, slots=True)
class NormalizedPool:
    pair: OrderedTokenPair
    ratio: RatioSpec
    # True when the anchored (1.0) side is not the token the caller asked to anchor.
    inverted: bool

    @property
    def token_a(self) -> Pubkey:
        return self.pair.token_a

    @property
    def token_b(self) -> Pubkey:
        return self.pair.token_b


def ordered_tokens(mint_a: Pubkey, mint_b: Pubkey) -> OrderedTokenPair:
    if bytes(mint_a) <= bytes(mint_b):
        return OrderedTokenPair(mint_a, mint_b)
    return OrderedTokenPair(mint_b, mint_a)


def validate_pool_params(
    decimals_a: int, decimals_b: int, ratio_whole_number: int, direction: Direction | str
) -> Direction:
    """Reject pool parameters up front, before any mint is created."""
    try:
        direction = Direction(direction)
    except ValueError:
        raise RatioError(f"unknown direction {direction!r}") from None
    if isinstance(ratio_whole_number, bool) or not isinstance(ratio_whole_number, int) or ratio_whole_number < 1:
        raise RatioError(f"ratio must be a whole number >= 1, got {ratio_whole_number!r}")
    for d in (decimals_a, decimals_b):
        if not 0 <= d <= C.MAX_DECIMALS:
            raise RatioError(f"token decimals must be within 0..{C.MAX_DECIMALS}, got {d}")
    return direction


def normalize(
    token_a_mint: Pubkey,
    token_b_mint: Pubkey,
    decimals_a: int,
    decimals_b: int,
    ratio_whole_number: int,
    direction: Direction | str = Direction.A_TO_B,
) -> NormalizedPool:
    """Canonicalize a pair and build its anchored basis-point ratio.

    Canonical token A is always anchored to exactly one display unit and
    canonical token B is scaled by ``ratio_whole_number``. The requested
    direction and any reordering are folded into ``NormalizedPool.inverted``
    instead of choosing a different anchor.

    Args:
        token_a_mint: The caller's "A" mint.
        token_b_mint: The caller's "B" mint.
        decimals_a: Decimals of ``token_a_mint``.
        decimals_b: Decimals of ``token_b_mint``.
        ratio_whole_number: Whole B units per whole A unit, >= 1.
        direction: Which of the caller's tokens should read as the 1.0 side.

    Returns:
        NormalizedPool with the canonical pair, the ratio and the inversion flag.
    """
    direction = validate_pool_params(decimals_a, decimals_b, ratio_whole_number, direction)

    pair = ordered_tokens(token_a_mint, token_b_mint)
    swapped = pair.token_a != token_a_mint
    inverted = not swapped if direction is Direction.B_TO_A else swapped

    canon_dec_a, canon_dec_b = (decimals_b, decimals_a) if swapped else (decimals_a, decimals_b)
    ratio_spec = RatioSpec(
        ratio_a_numerator=10**canon_dec_a,
        ratio_b_denominator=ratio_whole_number * 10**canon_dec_b,
        decimals_a=canon_dec_a,
        decimals_b=canon_dec_b,
    )
    rate = ratio_spec.display_rate
    if rate > C.MAX_SANE_RATE or rate < C.MIN_SANE_RATE:
        log.warning("Pool %s/%s display rate %g is outside the usual range", pair.token_a, pair.token_b, rate)

    log.debug(
        "Normalized %s/%s ratio=%d dir=%s -> %d:%d inverted=%s",
        token_a_mint, token_b_mint, ratio_whole_number, direction,
        ratio_spec.ratio_a_numerator, ratio_spec.ratio_b_denominator, inverted,
    )
    return NormalizedPool(pair=pair, ratio=ratio_spec, inverted=inverted)


def expected_swap_output(ratio: RatioSpec, input_amount: int, direction: Direction | str) -> int:
    """Output in basis points for a swap at the pool's fixed ratio, truncating."""
    if input_amount <= 0:
        raise RatioError(f"swap input must be positive, got {input_amount}")
    if Direction(direction) is Direction.A_TO_B:
        return input_amount * ratio.ratio_b_denominator // ratio.ratio_a_numerator
    return input_amount * ratio.ratio_a_numerator // ratio.ratio_b_denominator
