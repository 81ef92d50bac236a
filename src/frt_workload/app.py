import asyncio
import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, PositiveInt
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from frt_workload.config import load_config
from frt_workload.constants import Direction, LAMPORTS_PER_SOL, TokenSide
from frt_workload.errors import (
    ConstructionError,
    MintAuthorityError,
    OperationFailedError,
    PoolNotFoundError,
    RpcError,
)
from frt_workload.logging_config import setup_logging
from frt_workload.rpc import SolanaRpc
from frt_workload.sqlite_store import SQLiteStore
from frt_workload.workload_core import Workload

setup_logging()
log = logging.getLogger("frt_workload.app")

PROBE_TIMEOUT = 3.0


async def _probe_rpc(url: str, max_retries: int = 30, retry_delay: float = 2.0) -> None:
    """Probe the node's JSON-RPC endpoint with getHealth until it answers.

    Args:
        url: RPC endpoint URL
        max_retries: Maximum number of attempts (default: 30 = 1 minute with 2s delay)
        retry_delay: Seconds to wait between attempts
    """
    payload = {"jsonrpc": "2.0", "id": 1, "method": "getHealth"}

    for attempt in range(1, max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=PROBE_TIMEOUT) as http:
                r = await http.post(url, json=payload)
                r.raise_for_status()
                log.info(f"RPC endpoint responding (attempt {attempt}/{max_retries})")
                return
        except httpx.HTTPError as e:
            if attempt < max_retries:
                log.info(f"RPC not ready yet (attempt {attempt}/{max_retries}): {e.__class__.__name__} - retrying in {retry_delay}s...")
                await asyncio.sleep(retry_delay)
            else:
                log.error(f"RPC failed after {max_retries} attempts")
                raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg = load_config(os.getenv("FRT_CONFIG"))
    log.info("Probing RPC endpoint %s...", cfg.rpc.url)
    await _probe_rpc(cfg.rpc.url, cfg.rpc.probe_retries, cfg.rpc.probe_delay)

    rpc = SolanaRpc(cfg.rpc.url, commitment=cfg.rpc.commitment, timeout=cfg.rpc.timeout)
    store = SQLiteStore(db_path=cfg.db_path)

    core_wallet = await store.load_core_wallet()
    if core_wallet is None:
        core_wallet = Keypair()
        await store.save_core_wallet(core_wallet)
        log.info("Created core wallet %s", core_wallet.pubkey())
    else:
        log.info("Loaded core wallet %s", core_wallet.pubkey())

    w = Workload(cfg, rpc, store, core_wallet)
    await w.startup()
    app.state.workload = w
    log.info("Workload ready against program %s", cfg.program.id)
    try:
        yield
    finally:
        log.info("Shutting down...")
        await rpc.aclose()
    log.info("Shutdown complete")


app = FastAPI(
    title="Fixed Ratio Trading Workload",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Pools", "description": "Create, validate and clean up pools"},
        {"name": "Wallets", "description": "Test wallets and test tokens"},
        {"name": "Operations", "description": "Deposit, withdraw and swap"},
        {"name": "Contract", "description": "Program bootstrap and version"},
        {"name": "State", "description": "Engine statistics"},
    ],
)

r_pools = APIRouter(prefix="/pools", tags=["Pools"])
r_wallets = APIRouter(prefix="/wallets", tags=["Wallets"])
r_ops = APIRouter(prefix="/ops", tags=["Operations"])
r_contract = APIRouter(prefix="/contract", tags=["Contract"])
r_state = APIRouter(prefix="/state", tags=["State"])


@app.exception_handler(ConstructionError)
async def _construction_error(request: Request, exc: ConstructionError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PoolNotFoundError)
@app.exception_handler(MintAuthorityError)
async def _not_found(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(RpcError)
async def _rpc_error(request: Request, exc: RpcError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(OperationFailedError)
async def _operation_failed(request: Request, exc: OperationFailedError):
    return JSONResponse(status_code=502, content={"detail": str(exc), "result": exc.result.to_dict()})


class CreatePoolReq(BaseModel):
    decimals_a: int | None = Field(default=None, ge=0, le=9)
    decimals_b: int | None = Field(default=None, ge=0, le=9)
    ratio: PositiveInt | None = None
    direction: Direction | None = None


class SimulatePoolReq(CreatePoolReq):
    # Both or neither; without them two fresh mints are created first.
    token_a_mint: str | None = None
    token_b_mint: str | None = None


class PoolFlagsReq(BaseModel):
    paused: bool | None = None
    swaps_paused: bool | None = None


class CreateWalletReq(BaseModel):
    sol: PositiveInt = 10


class MintReq(BaseModel):
    mint: str
    owner: str
    amount: PositiveInt


class LiquidityReq(BaseModel):
    wallet: str
    pool_id: str
    side: TokenSide
    amount: PositiveInt


class SwapReq(BaseModel):
    wallet: str
    pool_id: str
    direction: Direction
    input_amount: PositiveInt
    minimum_output: int | None = Field(default=None, ge=0)


def _wallet(w: Workload, address: str) -> Keypair:
    kp = w.wallets.get(address)
    if kp is None:
        raise HTTPException(status_code=404, detail=f"Wallet not found: {address}")
    return kp


def _pubkey(s: str) -> Pubkey:
    try:
        return Pubkey.from_string(s)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Not a valid address: {s}")


@app.get("/health")
def health():
    return {"status": "ok"}


@r_pools.post("")
async def create_pool(req: CreatePoolReq):
    w: Workload = app.state.workload
    rec = await w.pools.create_pool(req.decimals_a, req.decimals_b, req.ratio, req.direction)
    return rec.to_dict()


@r_pools.post("/simulate")
async def simulate_pool(req: SimulatePoolReq):
    w: Workload = app.state.workload
    mints = None
    if req.token_a_mint is not None or req.token_b_mint is not None:
        if req.token_a_mint is None or req.token_b_mint is None:
            raise HTTPException(status_code=400, detail="token_a_mint and token_b_mint must be given together")
        mints = (_pubkey(req.token_a_mint), _pubkey(req.token_b_mint))
    pool = await w.pools.new_pool_config(req.decimals_a, req.decimals_b, req.ratio, req.direction, mints=mints)
    return (await w.pools.simulate_pool_creation(pool)).to_dict()


@r_pools.get("")
async def list_pools():
    w: Workload = app.state.workload
    return [r.to_dict() for r in await w.pools.list_pools()]


@r_pools.post("/ensure/{count}")
async def ensure_pools(count: int):
    w: Workload = app.state.workload
    return [r.to_dict() for r in await w.pools.ensure_pools(count)]


@r_pools.post("/cleanup")
async def cleanup_pools():
    w: Workload = app.state.workload
    return {"removed": await w.pools.cleanup_invalid_pools()}


@r_pools.get("/{pool_id}")
async def get_pool(pool_id: str):
    w: Workload = app.state.workload
    return (await w.pools.get_pool(pool_id)).to_dict()


@r_pools.get("/{pool_id}/validate")
async def validate_pool(pool_id: str):
    w: Workload = app.state.workload
    _pubkey(pool_id)
    return {"pool_id": pool_id, "valid": await w.pools.validate_pool(pool_id, revalidate=True)}


@r_pools.post("/{pool_id}/flags")
async def set_pool_flags(pool_id: str, req: PoolFlagsReq):
    w: Workload = app.state.workload
    rec = await w.pools.set_pool_flags(pool_id, paused=req.paused, swaps_paused=req.swaps_paused)
    return rec.to_dict()


@r_wallets.post("")
async def create_wallet(req: CreateWalletReq):
    w: Workload = app.state.workload
    kp = await w.create_wallet(req.sol * LAMPORTS_PER_SOL)
    return {"address": str(kp.pubkey()), "lamports": await w.get_sol_balance(kp.pubkey())}


@r_wallets.post("/mint")
async def mint_tokens(req: MintReq):
    w: Workload = app.state.workload
    result = await w.pools.mint_tokens(_pubkey(req.mint), _pubkey(req.owner), req.amount)
    return result.to_dict()


@r_wallets.get("/{address}/balance")
async def wallet_balance(address: str, mint: str | None = None):
    w: Workload = app.state.workload
    owner = _pubkey(address)
    if mint is None:
        return {"address": address, "lamports": await w.get_sol_balance(owner)}
    return {"address": address, "mint": mint, "amount": await w.get_token_balance(owner, _pubkey(mint))}


@r_ops.post("/deposit")
async def deposit(req: LiquidityReq):
    w: Workload = app.state.workload
    result = await w.deposit(_wallet(w, req.wallet), req.pool_id, req.side, req.amount)
    return result.to_dict()


@r_ops.post("/withdraw")
async def withdraw(req: LiquidityReq):
    w: Workload = app.state.workload
    result = await w.withdraw(_wallet(w, req.wallet), req.pool_id, req.side, req.amount)
    return result.to_dict()


@r_ops.post("/swap")
async def swap(req: SwapReq):
    w: Workload = app.state.workload
    result = await w.swap(_wallet(w, req.wallet), req.pool_id, req.direction, req.input_amount, req.minimum_output)
    return result.to_dict()


@r_contract.get("/version")
async def contract_version():
    w: Workload = app.state.workload
    return (await w.contract_version()).to_dict()


@r_contract.post("/initialize")
async def initialize_program():
    w: Workload = app.state.workload
    result = await w.initialize_program()
    if result is None:
        return {"initialized": True, "submitted": False}
    return {"initialized": result.ok, "submitted": True, "result": result.to_dict()}


@r_state.get("/summary")
async def state_summary():
    w: Workload = app.state.workload
    return w.snapshot_stats()


app.include_router(r_pools)
app.include_router(r_wallets)
app.include_router(r_ops)
app.include_router(r_contract)
app.include_router(r_state)
