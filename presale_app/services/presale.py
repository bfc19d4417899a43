"""
Presale settlement engine.

Lifecycle (owner-driven; purchases never change it):

    NotStarted (stage 0)
        -> StageActive(n)           create_next_stage
        -> StageActive(n + 1)       create_next_stage (stage n deactivated)
        -> Ended, pending delay     end_presale / update_presale_status(ended=True)
        -> Ended, claimable         now >= end + claim_delay, or operator override

Claiming is enabled iff `claiming_override` is set OR the presale ended and
`claim_delay` seconds have passed since `presale_end_timestamp`. The same
predicate backs `get_status()` and `claim()`.

Value ordering: entitlement/claimed flags are written before any native
refund or ledger transfer leaves the engine, so a receiver that calls back
in observes the updated state.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Set

import structlog

from presale_app.services.errors import (
    AlreadyClaimed,
    AlreadyEnded,
    ClaimingNotEnabled,
    InsufficientInventory,
    InsufficientPayment,
    InvalidAmount,
    InvalidPrice,
    InvalidPurchaseAmount,
    NoActiveStage,
    NoEntitlement,
    PresaleNotActive,
    PresaleNotEnded,
    TokenNotConfigured,
    ZeroAddress,
)
from presale_app.services.events import EventLog
from presale_app.services.ledger import AssetLedger
from presale_app.services.oracle import DEFAULT_MAX_PRICE_AGE, PriceReader, validate_reading
from presale_app.services.runtime import Clock, NativeBank, Ownable, SystemClock, atomic
from presale_app.services.units import WAD, ZERO_ADDRESS, ceil_div, normalize_address

logger = structlog.get_logger()

CLAIM_DELAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class Stage:
    id: int
    price: int          # quote currency per token, 18 decimals
    active: bool = True


@dataclass
class Entitlement:
    token_amount: int = 0
    paid_amount: int = 0
    claimed: bool = False
    stage_id: int = 0


@dataclass
class StageSales:
    tokens_sold: int = 0
    quote_raised: int = 0
    native_raised: int = 0
    buyers: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class PresaleStatus:
    is_active: bool
    is_claiming_enabled: bool
    is_presale_ended: bool


@dataclass(frozen=True)
class Quote:
    token_amount: int
    quote_cost: int
    required_native: int
    rate: int
    decimals: int
    stage_id: int


@dataclass(frozen=True)
class PurchaseReceipt:
    buyer: str
    token_amount: int
    native_paid: int
    quote_cost: int
    stage_id: int
    refund: int


class PresaleEngine(Ownable):
    _state_fields = (
        "_owner",
        "_stages",
        "_current_stage_id",
        "_entitlements",
        "_sales",
        "_outstanding",
        "_ended",
        "_end_timestamp",
        "_claiming_override",
    )

    def __init__(
        self,
        address: str,
        owner: str,
        price_reader: PriceReader,
        *,
        bank: Optional[NativeBank] = None,
        clock: Optional[Clock] = None,
        events: Optional[EventLog] = None,
        claim_delay: int = CLAIM_DELAY_SECONDS,
        max_price_age: int = DEFAULT_MAX_PRICE_AGE,
    ):
        self.address = normalize_address(address)
        if self.address == ZERO_ADDRESS:
            raise ZeroAddress("engine address cannot be the null address")
        self._init_owner(owner)
        self.price_reader = price_reader
        self.bank = bank if bank is not None else NativeBank()
        self.clock = clock if clock is not None else SystemClock()
        self.events = events if events is not None else EventLog(self.clock)
        self.claim_delay = int(claim_delay)
        self.max_price_age = int(max_price_age)

        self._token: Optional[AssetLedger] = None
        self._stages: Dict[int, Stage] = {}
        self._current_stage_id = 0
        self._entitlements: Dict[str, Entitlement] = {}
        self._sales: Dict[int, StageSales] = {}
        self._outstanding = 0
        self._ended = False
        self._end_timestamp = 0
        self._claiming_override = False

    # ── Views ──
    @property
    def token(self) -> Optional[AssetLedger]:
        return self._token

    @property
    def current_stage_id(self) -> int:
        return self._current_stage_id

    @property
    def presale_ended(self) -> bool:
        return self._ended

    @property
    def presale_end_timestamp(self) -> int:
        return self._end_timestamp

    @property
    def claiming_override(self) -> bool:
        return self._claiming_override

    def stage(self, stage_id: int) -> Optional[Stage]:
        return self._stages.get(stage_id)

    def stages(self) -> List[Stage]:
        return [self._stages[i] for i in sorted(self._stages)]

    def stage_sales(self, stage_id: int) -> StageSales:
        return self._sales.get(stage_id, StageSales())

    def entitlement(self, address: str) -> Optional[Entitlement]:
        ent = self._entitlements.get(normalize_address(address))
        return replace(ent) if ent is not None else None

    def entitlements(self) -> Dict[str, Entitlement]:
        return {a: replace(e) for a, e in self._entitlements.items()}

    def outstanding_entitlements(self) -> int:
        """Tokens sold but not yet claimed."""
        return self._outstanding

    def token_balance(self) -> int:
        return self._token.balance_of(self.address) if self._token is not None else 0

    def native_balance(self) -> int:
        return self.bank.balance_of(self.address)

    def claim_available_at(self) -> Optional[int]:
        if not self._ended:
            return None
        return self._end_timestamp + self.claim_delay

    def is_claiming_enabled(self) -> bool:
        if self._claiming_override:
            return True
        return self._ended and self.clock.now() >= self._end_timestamp + self.claim_delay

    def get_status(self) -> PresaleStatus:
        current = self._stages.get(self._current_stage_id)
        return PresaleStatus(
            is_active=bool(current is not None and current.active and not self._ended),
            is_claiming_enabled=self.is_claiming_enabled(),
            is_presale_ended=self._ended,
        )

    # ── Owner: wiring and stages ──
    def set_token(self, caller: str, ledger: AssetLedger) -> None:
        self._require_owner(caller)
        if ledger is None:
            raise ZeroAddress("token ledger is required")
        self._token = ledger
        self.events.emit("TokenConfigured", token=ledger.symbol)
        logger.info("presale_token_configured", symbol=ledger.symbol, balance=self.token_balance())

    def create_next_stage(self, caller: str, price: int) -> Stage:
        self._require_owner(caller)
        if self._ended:
            raise PresaleNotActive("presale has ended; no further stages")
        if price <= 0:
            raise InvalidPrice("stage price must be > 0")

        with atomic(self, self.events):
            previous = self._stages.get(self._current_stage_id)
            if previous is not None and previous.active:
                self._stages[previous.id] = replace(previous, active=False)
            stage = Stage(id=self._current_stage_id + 1, price=int(price), active=True)
            self._stages[stage.id] = stage
            self._current_stage_id = stage.id
            self.events.emit("StageCreated", stage_id=stage.id, price=stage.price)

        logger.info("stage_created", stage_id=stage.id, price=stage.price)
        return stage

    # ── Buyers ──
    def quote(self, token_amount: int) -> Quote:
        stage = self._active_stage()
        if token_amount <= 0:
            raise InvalidAmount("token amount must be > 0")
        reading = validate_reading(self.price_reader.latest_reading(), self.clock.now(), self.max_price_age)

        quote_cost = ceil_div(token_amount * stage.price, WAD)
        # single rounding step, always up: the buyer is never undercharged
        required = ceil_div(
            token_amount * stage.price * 10 ** reading.decimals,
            WAD * reading.rate,
        )
        return Quote(
            token_amount=int(token_amount),
            quote_cost=quote_cost,
            required_native=required,
            rate=reading.rate,
            decimals=reading.decimals,
            stage_id=stage.id,
        )

    def purchase(self, caller: str, token_amount: int, value: int) -> PurchaseReceipt:
        caller = normalize_address(caller)
        if value < 0:
            raise InvalidAmount("attached value must be >= 0")
        q = self.quote(token_amount)
        ledger = self._require_token()
        if value < q.required_native:
            raise InsufficientPayment(f"sent {value}, required {q.required_native}")
        available = ledger.balance_of(self.address) - self._outstanding
        if token_amount > available:
            raise InsufficientInventory(f"requested {token_amount}, available {available}")

        existing = self._entitlements.get(caller)
        if existing is not None and existing.claimed:
            raise AlreadyClaimed(f"{caller} already claimed; entitlement is closed")

        refund = value - q.required_native
        with atomic(self, self.bank, self.events):
            self.bank.transfer(caller, self.address, value)

            ent = self._entitlements.setdefault(caller, Entitlement())
            ent.token_amount += q.token_amount
            ent.paid_amount += q.required_native
            ent.stage_id = q.stage_id
            self._outstanding += q.token_amount

            sales = self._sales.setdefault(q.stage_id, StageSales())
            sales.tokens_sold += q.token_amount
            sales.quote_raised += q.quote_cost
            sales.native_raised += q.required_native
            sales.buyers.add(caller)

            self.events.emit(
                "TokensPurchased",
                buyer=caller,
                token_amount=q.token_amount,
                native_paid=q.required_native,
                quote_cost=q.quote_cost,
                stage_id=q.stage_id,
            )

            if refund > 0:
                self.bank.transfer(self.address, caller, refund)

        logger.info(
            "tokens_purchased",
            buyer=caller,
            token_amount=q.token_amount,
            native_paid=q.required_native,
            refund=refund,
            stage_id=q.stage_id,
        )
        return PurchaseReceipt(
            buyer=caller,
            token_amount=q.token_amount,
            native_paid=q.required_native,
            quote_cost=q.quote_cost,
            stage_id=q.stage_id,
            refund=refund,
        )

    def receive(self, caller: str, value: int) -> None:
        """Bare deposits are not accepted; payment only arrives via purchase()."""
        logger.warning("bare_deposit_rejected", caller=caller, value=value)
        raise InvalidPurchaseAmount("direct payments are not accepted; use purchase")

    def claim(self, caller: str) -> int:
        caller = normalize_address(caller)
        if not self.is_claiming_enabled():
            raise ClaimingNotEnabled("claiming is not enabled yet")
        ent = self._entitlements.get(caller)
        if ent is None or ent.token_amount == 0:
            raise NoEntitlement(f"{caller} has no entitlement")
        if ent.claimed:
            raise AlreadyClaimed(f"{caller} already claimed")
        ledger = self._require_token()

        amount = ent.token_amount
        with atomic(self, ledger, self.events):
            ent.claimed = True
            self._outstanding -= amount
            ledger.transfer(self.address, caller, amount)
            self.events.emit("TokensClaimed", buyer=caller, token_amount=amount)

        logger.info("tokens_claimed", buyer=caller, token_amount=amount)
        return amount

    # ── Owner: lifecycle ──
    def end_presale(self, caller: str) -> int:
        self._require_owner(caller)
        if self._ended:
            raise AlreadyEnded("presale already ended")
        with atomic(self, self.events):
            self._mark_ended()
            self.events.emit("PresaleEnded", timestamp=self._end_timestamp)
        logger.info("presale_ended", timestamp=self._end_timestamp, claim_available_at=self.claim_available_at())
        return self._end_timestamp

    def update_presale_status(self, caller: str, ended: bool, claiming_enabled: bool) -> PresaleStatus:
        self._require_owner(caller)
        if self._ended and not ended:
            raise AlreadyEnded("an ended presale cannot be reopened")
        with atomic(self, self.events):
            if ended and not self._ended:
                self._mark_ended()
            self._claiming_override = bool(claiming_enabled)
            self.events.emit("PresaleStatusUpdated", ended=bool(ended), claiming_enabled=bool(claiming_enabled))
        logger.info("presale_status_updated", ended=self._ended, claiming_override=self._claiming_override)
        return self.get_status()

    # ── Owner: withdrawals ──
    def withdraw_payment(self, caller: str) -> int:
        owner = self._require_owner(caller)
        amount = self.bank.balance_of(self.address)
        if amount == 0:
            return 0
        with atomic(self.bank, self.events):
            self.bank.transfer(self.address, owner, amount)
            self.events.emit("NativeWithdrawn", to=owner, amount=amount)
        logger.info("payment_withdrawn", to=owner, amount=amount)
        return amount

    def withdraw_unsold_inventory(self, caller: str) -> int:
        owner = self._require_owner(caller)
        if not self._ended:
            raise PresaleNotEnded("presale has not ended")
        ledger = self._require_token()
        # sold-but-unclaimed tokens stay in custody
        amount = ledger.balance_of(self.address) - self._outstanding
        if amount <= 0:
            return 0
        with atomic(ledger, self.events):
            ledger.transfer(self.address, owner, amount)
            self.events.emit("UnsoldTokensWithdrawn", to=owner, amount=amount)
        logger.info("unsold_tokens_withdrawn", to=owner, amount=amount)
        return amount

    # ── Internals ──
    def _active_stage(self) -> Stage:
        stage = self._stages.get(self._current_stage_id)
        if self._ended or stage is None or not stage.active:
            raise NoActiveStage("no active presale stage")
        return stage

    def _require_token(self) -> AssetLedger:
        if self._token is None:
            raise TokenNotConfigured("presale token has not been configured")
        return self._token

    def _mark_ended(self) -> None:
        self._ended = True
        self._end_timestamp = self.clock.now()
        current = self._stages.get(self._current_stage_id)
        if current is not None and current.active:
            self._stages[current.id] = replace(current, active=False)
