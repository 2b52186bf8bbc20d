import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

import httpx
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, PositiveInt
from xrpl.asyncio.clients import AsyncJsonRpcClient

from txflow.config import cfg
from txflow.errors import AffordabilityError, NetworkError, SigningError, StatusUnknownError, ValidationError
from txflow.logging_config import setup_logging
from txflow.models import OutcomeEnvelope
from txflow.operations import draft_from_dict
from txflow.pipeline import TransactionPipeline
from txflow.signing import InMemoryKeyProvider, RegularKeyRef, SignerSlot, SigningConfig

setup_logging()
log = logging.getLogger("txflow.app")

RPC = cfg["rippled"]["url"]
TIMEOUT = float(cfg["timeout"]["rpc"])
STARTUP_TIMEOUT = float(cfg["timeout"]["startup"])


async def _probe_rippled(url: str, max_retries: int = 30, retry_delay: float = 2.0) -> None:
    """Probe the rippled RPC endpoint until it answers server_info."""
    payload = {"method": "server_info", "params": [{}]}

    for attempt in range(1, max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=TIMEOUT) as http:
                r = await http.post(url, json=payload)
                r.raise_for_status()
                log.info("RPC endpoint responding (attempt %s/%s)", attempt, max_retries)
                return
        except httpx.HTTPError as e:
            if attempt < max_retries:
                log.info("RPC not ready yet (attempt %s/%s): %s - retrying in %ss...", attempt, max_retries, e.__class__.__name__, retry_delay)
                await asyncio.sleep(retry_delay)
            else:
                log.error("RPC failed after %s attempts", max_retries)
                raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with asyncio.timeout(STARTUP_TIMEOUT):
        log.info("Probing RPC endpoint %s...", RPC)
        await _probe_rippled(RPC)

    client = AsyncJsonRpcClient(RPC)
    keys = InMemoryKeyProvider.from_seeds(cfg["keys"])
    app.state.pipeline = TransactionPipeline.from_config(client, keys, cfg)
    log.info("Pipeline ready against %s with %s key(s) loaded", RPC, len(cfg["keys"]))
    try:
        yield
    finally:
        log.info("Shutting down...")


app = FastAPI(
    title="XRPL Transaction Flow",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Operations", "description": "Build, sign, simulate and submit operations"},
        {"name": "State", "description": "Ledger and pipeline state"},
    ],
)

r_ops = APIRouter(prefix="/operations", tags=["Operations"])
r_state = APIRouter(prefix="/state", tags=["State"])


class SignerReq(BaseModel):
    account: str
    weight: PositiveInt
    key_handle: str


class SigningConfigReq(BaseModel):
    master_handle: str | None = None
    regular_key: str | None = None
    regular_key_handle: str | None = None
    quorum: PositiveInt | None = None
    signers: list[SignerReq] = []

    def to_config(self) -> SigningConfig:
        regular = None
        if self.regular_key:
            regular = RegularKeyRef(address=self.regular_key, key_handle=self.regular_key_handle or self.regular_key)
        return SigningConfig(
            master_handle=self.master_handle,
            regular_key=regular,
            signer_quorum=self.quorum,
            signers=tuple(SignerSlot(s.account, s.weight, s.key_handle) for s in self.signers),
        )


class OperationReq(BaseModel):
    kind: str
    account: str
    fields: dict[str, Any] = {}
    simulate: bool = False
    signing_config: SigningConfigReq | None = None


def _pipeline(request: Request) -> TransactionPipeline:
    return request.app.state.pipeline


def _event_json(event_type: str, payload: Any) -> dict:
    if isinstance(payload, OutcomeEnvelope):
        payload = payload.to_dict()
    return {"type": event_type, "payload": payload}


# Errors map to statuses so callers can tell "not sent" from "sent, fate unknown"
@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"error": "validation", "errors": exc.errors})


@app.exception_handler(AffordabilityError)
async def _affordability_error(request: Request, exc: AffordabilityError):
    return JSONResponse(
        status_code=402,
        content={"error": "affordability", "detail": str(exc), "required": str(exc.required), "available": str(exc.available)},
    )


@app.exception_handler(SigningError)
async def _signing_error(request: Request, exc: SigningError):
    return JSONResponse(status_code=409, content={"error": "signing", "detail": str(exc)})


@app.exception_handler(NetworkError)
async def _network_error(request: Request, exc: NetworkError):
    return JSONResponse(status_code=502, content={"error": "network", "detail": str(exc), "retryable": exc.retryable})


@app.exception_handler(StatusUnknownError)
async def _status_unknown(request: Request, exc: StatusUnknownError):
    return JSONResponse(
        status_code=504,
        content={
            "error": "status_unknown",
            "detail": str(exc),
            "tx_hash": exc.tx_hash,
            "last_ledger_sequence": exc.last_ledger_sequence,
        },
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@r_ops.post("")
async def run_operation(req: OperationReq, request: Request):
    """Run one operation through the pipeline and return its classified outcome."""
    draft = draft_from_dict(req.kind, {"account": req.account, **req.fields})
    signing_config = req.signing_config.to_config() if req.signing_config else None
    progress: list[str] = []
    outcome = await _pipeline(request).run(
        draft, simulate=req.simulate, signing_config=signing_config, progress=progress.append
    )
    return {**outcome.to_dict(), "progress": progress}


@r_ops.get("/{tx_hash}")
async def operation_status(tx_hash: str, request: Request):
    """Look a submitted operation up by hash. Never resubmits."""
    pipeline = _pipeline(request)
    outcome = await pipeline.check_status(tx_hash)
    record = pipeline.record_for(tx_hash)
    run = {"state": str(record.state), "error": record.error} if record else None
    if outcome is None:
        return JSONResponse(status_code=202, content={"tx_hash": tx_hash, "status": "pending", "run": run})
    return {**outcome.to_dict(), "run": run}


@r_state.get("/fees")
async def state_fees(request: Request):
    """Current fee escalation state from rippled."""
    fee_info = await _pipeline(request).fetcher.fee_info()
    return {
        **asdict(fee_info),
        "queue_utilization": f"{fee_info.current_queue_size}/{fee_info.max_queue_size}",
        "ledger_utilization": f"{fee_info.current_ledger_size}/{fee_info.expected_ledger_size}",
    }


@r_state.get("/context/{account}")
async def state_context(account: str, request: Request):
    ctx = await _pipeline(request).fetcher.fetch(account, want_tickets=True)
    snapshot = ctx.account
    return {
        "account": snapshot.address,
        "balance": str(snapshot.balance),
        "sequence": snapshot.sequence,
        "flags": snapshot.flags,
        "owner_count": snapshot.owner_count,
        "master_disabled": snapshot.master_disabled,
        "regular_key": snapshot.regular_key,
        "signer_list": asdict(snapshot.signer_list) if snapshot.signer_list else None,
        "tickets": sorted(ctx.tickets or ()),
        "fee": str(ctx.fee),
        "validated_ledger": ctx.expiration_horizon,
        "reserve": str(ctx.required_reserve()),
    }


@r_state.get("/runs")
async def state_runs(request: Request):
    return [
        {
            "account": r.account,
            "kind": r.kind,
            "simulate": r.simulate,
            "state": str(r.state),
            "tx_hash": r.tx_hash,
            "engine_result": r.outcome.engine_result if r.outcome else None,
            "error": r.error,
        }
        for r in _pipeline(request).runs
    ]


@r_state.get("/events")
async def state_events(request: Request):
    """Drain queued progress and outcome events."""
    return [_event_json(t, p) for t, p in _pipeline(request).events.drain()]


@r_state.get("/tx/{tx_hash}")
async def state_tx(tx_hash: str, request: Request):
    record = _pipeline(request).record_for(tx_hash)
    if record is None:
        raise HTTPException(404, "tx not tracked")
    return {
        "account": record.account,
        "kind": record.kind,
        "state": str(record.state),
        "history": [str(s) for s in record.history],
        "last_ledger_sequence": record.last_ledger_sequence,
        "outcome": record.outcome.to_dict() if record.outcome else None,
        "error": record.error,
    }


app.include_router(r_ops)
app.include_router(r_state)
