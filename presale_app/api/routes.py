import asyncio
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from presale_app.schemas import (
    BurnRequest,
    DepositRequest,
    LockRequest,
    OwnershipRequest,
    PriceRequest,
    PurchaseRequest,
    StageRequest,
    StatusUpdateRequest,
    TransferRequest,
)
from presale_app.services.errors import PriceFeedReadOnly, Unauthorized
from presale_app.services.oracle import StaticPriceFeed
from presale_app.services.reporting import compute_distribution_report, compute_stage_report
from presale_app.services.units import format_ether, format_units, normalize_address


router = APIRouter()


def _deployment(request: Request):
    return request.app.state.deployment


def _caller(request: Request) -> str:
    caller = getattr(request.state, "caller", None)
    if caller is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return caller


async def _call(request: Request, fn, *args):
    """Run a state-changing call in the executor, one call at a time."""
    loop = asyncio.get_running_loop()
    async with request.app.state.engine_lock:
        return await loop.run_in_executor(None, fn, *args)


def _status_payload(engine) -> dict:
    status = engine.get_status()
    return {
        "is_active": status.is_active,
        "is_claiming_enabled": status.is_claiming_enabled,
        "is_presale_ended": status.is_presale_ended,
        "current_stage_id": engine.current_stage_id,
        "presale_end_timestamp": engine.presale_end_timestamp,
        "claim_available_at": engine.claim_available_at(),
        "claiming_override": engine.claiming_override,
        "inventory": engine.token_balance(),
        "outstanding_entitlements": engine.outstanding_entitlements(),
        "native_balance": engine.native_balance(),
    }


def _price_payload(reading) -> dict:
    return {
        "rate": reading.rate,
        "decimals": reading.decimals,
        "updated_at": reading.updated_at,
        "formatted": format_units(reading.rate, reading.decimals),
    }


@router.get("/health")
async def health():
    return {"status": "ok"}


# ── Presale lifecycle ──
@router.get("/status")
async def api_status(request: Request):
    return _status_payload(_deployment(request).engine)


@router.post("/status")
async def api_update_status(data: StatusUpdateRequest, request: Request):
    engine = _deployment(request).engine
    await _call(request, engine.update_presale_status, _caller(request), data.ended, data.claiming_enabled)
    return _status_payload(engine)


@router.post("/end")
async def api_end(request: Request):
    engine = _deployment(request).engine
    ts = await _call(request, engine.end_presale, _caller(request))
    return {"presale_end_timestamp": ts, "claim_available_at": engine.claim_available_at()}


@router.get("/stages")
async def api_stages(request: Request):
    engine = _deployment(request).engine
    return {"current_stage_id": engine.current_stage_id, "stages": engine.stages()}


@router.post("/stages")
async def api_create_stage(data: StageRequest, request: Request):
    engine = _deployment(request).engine
    return await _call(request, engine.create_next_stage, _caller(request), data.price)


# ── Price reference ──
@router.get("/price")
async def api_price(request: Request):
    reader = _deployment(request).price_reader
    reading = await _call(request, reader.latest_reading)
    return _price_payload(reading)


@router.post("/price")
async def api_update_price(data: PriceRequest, request: Request):
    """Operator publishes a fresh rate to the in-process feed."""
    d = _deployment(request)
    if not d.engine.is_owner(_caller(request)):
        raise Unauthorized("only the operator can set the price")
    feed = d.price_reader
    if not isinstance(feed, StaticPriceFeed):
        raise PriceFeedReadOnly("the price feed is read from an external source")
    await _call(request, feed.update_rate, data.rate)
    return _price_payload(feed.latest_reading())


# ── Buyers ──
@router.get("/quote")
async def api_quote(request: Request, token_amount: int = Query(..., gt=0)):
    return await _call(request, _deployment(request).engine.quote, token_amount)


@router.post("/purchase")
async def api_purchase(data: PurchaseRequest, request: Request):
    engine = _deployment(request).engine
    return await _call(request, engine.purchase, _caller(request), data.token_amount, data.value)


@router.post("/claim")
async def api_claim(request: Request):
    caller = _caller(request)
    amount = await _call(request, _deployment(request).engine.claim, caller)
    return {"buyer": caller, "token_amount": amount}


@router.post("/receive")
async def api_receive(data: DepositRequest, request: Request):
    await _call(request, _deployment(request).engine.receive, _caller(request), data.value)


@router.get("/entitlements/{address}")
async def api_entitlement(address: str, request: Request):
    ent = _deployment(request).engine.entitlement(normalize_address(address))
    if ent is None:
        raise HTTPException(status_code=404, detail="No entitlement for this address")
    return ent


# ── Operator withdrawals ──
@router.post("/withdraw/payment")
async def api_withdraw_payment(request: Request):
    amount = await _call(request, _deployment(request).engine.withdraw_payment, _caller(request))
    return {"amount": amount}


@router.post("/withdraw/unsold")
async def api_withdraw_unsold(request: Request):
    amount = await _call(request, _deployment(request).engine.withdraw_unsold_inventory, _caller(request))
    return {"amount": amount}


@router.post("/ownership")
async def api_transfer_ownership(data: OwnershipRequest, request: Request):
    d = _deployment(request)
    target = d.engine if data.component == "engine" else d.ledger
    await _call(request, target.transfer_ownership, _caller(request), data.new_owner)
    return {"component": data.component, "owner": target.owner}


# ── Native currency custody ──
@router.get("/wallet/{address}")
async def api_wallet(address: str, request: Request):
    address = normalize_address(address)
    balance = _deployment(request).bank.balance_of(address)
    return {"address": address, "balance": balance, "formatted": format_ether(balance)}


@router.post("/wallet/credit")
async def api_wallet_credit(data: TransferRequest, request: Request):
    """Operator records native funds that arrived for an account."""
    d = _deployment(request)
    if not d.engine.is_owner(_caller(request)):
        raise Unauthorized("only the operator can credit native funds")
    balance = await _call(request, d.bank.credit, data.to, data.amount)
    return {"address": data.to, "balance": balance}


# ── Asset ledger ──
@router.get("/ledger")
async def api_ledger(request: Request):
    ledger = _deployment(request).ledger
    return {
        "name": ledger.name,
        "symbol": ledger.symbol,
        "decimals": ledger.decimals,
        "owner": ledger.owner,
        "total_supply": ledger.total_supply,
        "transfer_locked": ledger.transfer_locked,
        "reserves": ledger.reserve_balances(),
    }


@router.get("/ledger/balances/{address}")
async def api_ledger_balance(address: str, request: Request):
    address = normalize_address(address)
    balance = _deployment(request).ledger.balance_of(address)
    return {"address": address, "balance": balance, "formatted": format_ether(balance)}


@router.post("/ledger/transfer")
async def api_ledger_transfer(data: TransferRequest, request: Request):
    await _call(request, _deployment(request).ledger.transfer, _caller(request), data.to, data.amount)
    return {"ok": True}


@router.post("/ledger/burn")
async def api_ledger_burn(data: BurnRequest, request: Request):
    ledger = _deployment(request).ledger
    await _call(request, ledger.burn, _caller(request), data.amount)
    return {"total_supply": ledger.total_supply}


@router.post("/ledger/lock")
async def api_ledger_lock(data: LockRequest, request: Request):
    ledger = _deployment(request).ledger
    await _call(request, ledger.set_transfer_lock, _caller(request), data.locked)
    return {"transfer_locked": ledger.transfer_locked}


# ── Reports / audit trail ──
@router.get("/reports/stages")
async def api_stage_report(request: Request):
    return compute_stage_report(_deployment(request).engine)


@router.get("/reports/distribution")
async def api_distribution_report(request: Request):
    return compute_distribution_report(_deployment(request).ledger)


@router.get("/events")
async def api_events(request: Request, name: Optional[str] = None, limit: int = Query(100, ge=1, le=1000)):
    events = _deployment(request).events.filter(name)
    return {"events": [e.to_dict() for e in events[-limit:]]}
