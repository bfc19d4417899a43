import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from presale_app import auth
from presale_app.api.routes import router as api_router
from presale_app.auth import (
    COOKIE_NAME,
    create_session,
    delete_session,
    register_account,
    session_address,
    verify_credentials,
)
from presale_app.config import Settings, get_settings
from presale_app.logging_config import configure_logging
from presale_app.schemas import AccountRequest
from presale_app.services.errors import PresaleError
from presale_app.services.events import EventLog
from presale_app.services.ledger import AssetLedger
from presale_app.services.oracle import HttpPriceFeed, PriceReader, StaticPriceFeed
from presale_app.services.presale import PresaleEngine
from presale_app.services.runtime import Clock, NativeBank, SystemClock
from presale_app.services.units import WAD, parse_units
from presale_app.utils.json_safety import SafeJSONResponse

logger = structlog.get_logger()

# ── Routes that don't require a session ──
_PUBLIC_PATHS = {"/auth/login", "/auth/register", "/api/health"}


@dataclass
class Deployment:
    """Everything one running presale consists of."""

    clock: Clock
    bank: NativeBank
    events: EventLog
    price_reader: PriceReader
    engine: PresaleEngine
    ledger: AssetLedger

    def close(self) -> None:
        if isinstance(self.price_reader, HttpPriceFeed):
            self.price_reader.close()
            logger.info("price_feed_closed", url=self.price_reader.url)


def build_price_reader(settings: Settings, clock: Clock) -> PriceReader:
    if settings.PRICE_FEED == "http":
        return HttpPriceFeed(
            settings.PRICE_FEED_URL,
            decimals=settings.ORACLE_DECIMALS,
            timeout=settings.PRICE_FEED_TIMEOUT,
        )
    rate = parse_units(settings.STATIC_RATE, settings.ORACLE_DECIMALS)
    return StaticPriceFeed(rate, decimals=settings.ORACLE_DECIMALS, clock=clock)


def deploy(
    settings: Settings,
    clock: Optional[Clock] = None,
    price_reader: Optional[PriceReader] = None,
) -> Deployment:
    """Engine first, then the ledger minting its presale reserve to the engine."""
    clock = clock or SystemClock()
    bank = NativeBank()
    events = EventLog(clock)
    price_reader = price_reader or build_price_reader(settings, clock)
    operator = settings.OPERATOR_ADDRESS

    engine = PresaleEngine(
        settings.ENGINE_ADDRESS,
        operator,
        price_reader,
        bank=bank,
        clock=clock,
        events=events,
        claim_delay=settings.CLAIM_DELAY_SECONDS,
        max_price_age=settings.MAX_PRICE_AGE_SECONDS,
    )
    ledger = AssetLedger(
        operator,
        engine.address,
        settings.MARKETING_ADDRESS,
        settings.EXCHANGE_ADDRESS,
        settings.REWARDS_ADDRESS,
        settings.TEAM_ADDRESS,
        settings.BURN_ADDRESS,
        events=events,
        name=settings.TOKEN_NAME,
        symbol=settings.TOKEN_SYMBOL,
        total_supply=settings.TOKEN_SUPPLY * WAD,
    )
    engine.set_token(operator, ledger)
    # engine delivers claims while ordinary transfers are frozen
    ledger.set_lock_exemption(operator, engine.address, True)

    logger.info(
        "presale_deployed",
        engine=engine.address,
        token=ledger.symbol,
        inventory=engine.token_balance(),
        price_feed=settings.PRICE_FEED,
    )
    return Deployment(
        clock=clock,
        bank=bank,
        events=events,
        price_reader=price_reader,
        engine=engine,
        ledger=ledger,
    )


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    price_reader: Optional[PriceReader] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL, json=settings.LOG_FORMAT == "json")

    auth.reset()
    auth.configure(settings.SESSION_TTL_SECONDS, settings.PASSWORD_ITERATIONS)
    register_account(settings.OPERATOR_ADDRESS, settings.OPERATOR_PASSWORD)

    deployment = deploy(settings, clock=clock, price_reader=price_reader)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        deployment.close()

    app = FastAPI(
        title="Presale Settlement Engine",
        default_response_class=SafeJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.deployment = deployment
    app.state.engine_lock = asyncio.Lock()

    # ── Auth middleware: reads are public, every mutation needs a caller ──
    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        path = request.url.path
        request.state.caller = session_address(request.cookies.get(COOKIE_NAME))

        if path in _PUBLIC_PATHS or request.method in ("GET", "HEAD", "OPTIONS"):
            return await call_next(request)

        if request.state.caller is None:
            return JSONResponse({"detail": "Not authenticated"}, status_code=401)

        return await call_next(request)

    @app.exception_handler(PresaleError)
    async def presale_error_handler(request: Request, exc: PresaleError):
        logger.warning(
            "presale_call_failed",
            path=request.url.path,
            caller=getattr(request.state, "caller", None),
            code=exc.code,
            detail=exc.message,
        )
        return SafeJSONResponse(exc.to_dict(), status_code=exc.status_code)

    # ── CORS (kept for local dev convenience) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[f"http://{settings.HOST}:{settings.PORT}", f"http://localhost:{settings.PORT}"],
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    # ── Auth routes ──
    @app.post("/auth/register")
    async def auth_register(data: AccountRequest):
        if not register_account(data.address, data.password):
            return JSONResponse({"detail": "Address already registered."}, status_code=409)
        return {"ok": True, "address": data.address}

    @app.post("/auth/login")
    async def auth_login(data: AccountRequest):
        address = verify_credentials(data.address, data.password)
        if address is None:
            return JSONResponse(
                {"detail": "Invalid address or password."},
                status_code=401,
            )
        token = create_session(address)
        resp = JSONResponse({"ok": True, "address": address})
        resp.set_cookie(
            key=COOKIE_NAME,
            value=token,
            httponly=True,          # not accessible from JavaScript
            samesite="lax",         # CSRF protection
            secure=False,           # set True when behind HTTPS in production
            max_age=settings.SESSION_TTL_SECONDS,
            path="/",
        )
        return resp

    @app.post("/auth/logout")
    async def auth_logout(request: Request):
        token = request.cookies.get(COOKIE_NAME)
        if token:
            delete_session(token)
        resp = JSONResponse({"ok": True})
        resp.delete_cookie(key=COOKIE_NAME, path="/")
        return resp

    # ── API routes ──
    app.include_router(api_router, prefix="/api")

    return app


def run():
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT)
