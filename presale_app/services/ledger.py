from typing import Dict, Optional, Set, Tuple

import structlog

from presale_app.services.errors import (
    InsufficientBalance,
    InvalidAmount,
    TransferLocked,
    ZeroAddress,
)
from presale_app.services.events import EventLog
from presale_app.services.runtime import Ownable, atomic
from presale_app.services.units import DECIMALS, WAD, ZERO_ADDRESS, is_zero_address, normalize_address

logger = structlog.get_logger()

DEFAULT_TOTAL_SUPPLY = 1_000_000_000 * WAD

# Reserve split at construction (percent of total supply). The burn sink
# starts empty.
ALLOCATION_PCT: Tuple[Tuple[str, int], ...] = (
    ("presale", 55),
    ("marketing", 12),
    ("exchange", 10),
    ("rewards", 18),
    ("team", 5),
)


class AssetLedger(Ownable):
    """Fixed-supply balance ledger with a global transfer freeze and burn.

    Invariant: sum of all balances == total_supply; total_supply only
    decreases (burn) after construction.
    """

    _state_fields = ("_owner", "_balances", "_allowances", "_total_supply", "_transfer_locked", "_lock_exempt")

    def __init__(
        self,
        owner: str,
        presale: str,
        marketing: str,
        exchange: str,
        rewards: str,
        team: str,
        burn_sink: str,
        *,
        events: Optional[EventLog] = None,
        name: str = "BLEM",
        symbol: str = "BLEM",
        total_supply: int = DEFAULT_TOTAL_SUPPLY,
    ):
        recipients = {
            "presale": presale,
            "marketing": marketing,
            "exchange": exchange,
            "rewards": rewards,
            "team": team,
            "burn": burn_sink,
        }
        for label, addr in recipients.items():
            if addr is None or is_zero_address(addr):
                raise ZeroAddress(f"{label} address cannot be the null address")
        if total_supply <= 0:
            raise InvalidAmount("total supply must be > 0")

        self._init_owner(owner)
        self.events = events if events is not None else EventLog()
        self.name = name
        self.symbol = symbol
        self.decimals = DECIMALS
        self.initial_supply = int(total_supply)
        self.reserves: Dict[str, str] = {k: normalize_address(v) for k, v in recipients.items()}

        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._total_supply = 0
        self._transfer_locked = True
        self._lock_exempt: Set[str] = set()

        minted = 0
        for label, pct in ALLOCATION_PCT:
            amount = self.initial_supply * pct // 100
            if label == "team":
                # remainder of integer division lands here so the split is exact
                amount = self.initial_supply - minted
            self._mint(self.reserves[label], amount)
            minted += amount

        logger.info(
            "ledger_created",
            symbol=self.symbol,
            total_supply=self._total_supply,
            owner=self.owner,
        )

    # ── Views ──
    @property
    def total_supply(self) -> int:
        return self._total_supply

    @property
    def transfer_locked(self) -> bool:
        return self._transfer_locked

    @property
    def burned(self) -> int:
        return self.initial_supply - self._total_supply

    def balance_of(self, address: str) -> int:
        return self._balances.get(normalize_address(address), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((normalize_address(owner), normalize_address(spender)), 0)

    def is_lock_exempt(self, address: str) -> bool:
        address = normalize_address(address)
        return address == self.owner or address in self._lock_exempt

    def circulating_sum(self) -> int:
        return sum(self._balances.values())

    def holders(self) -> Dict[str, int]:
        return {a: b for a, b in self._balances.items() if b > 0}

    def reserve_balances(self) -> Dict[str, int]:
        return {label: self.balance_of(addr) for label, addr in self.reserves.items()}

    # ── Transfers ──
    def transfer(self, caller: str, to: str, amount: int) -> bool:
        caller = normalize_address(caller)
        with atomic(self, self.events):
            self._check_unlocked(caller)
            self._move(caller, to, amount)
        return True

    def approve(self, caller: str, spender: str, amount: int) -> bool:
        caller = normalize_address(caller)
        spender = normalize_address(spender)
        if is_zero_address(spender):
            raise ZeroAddress("spender cannot be the null address")
        if amount < 0:
            raise InvalidAmount("allowance must be >= 0")
        self._allowances[(caller, spender)] = int(amount)
        self.events.emit("Approval", owner=caller, spender=spender, amount=int(amount))
        return True

    def transfer_from(self, caller: str, sender: str, to: str, amount: int) -> bool:
        caller = normalize_address(caller)
        sender = normalize_address(sender)
        with atomic(self, self.events):
            self._check_unlocked(caller)
            allowed = self._allowances.get((sender, caller), 0)
            if allowed < amount:
                raise InsufficientBalance(f"allowance {allowed} below {amount}")
            self._allowances[(sender, caller)] = allowed - amount
            self._move(sender, to, amount)
        return True

    def burn(self, caller: str, amount: int) -> None:
        caller = normalize_address(caller)
        with atomic(self, self.events):
            self._check_unlocked(caller)
            if amount < 0:
                raise InvalidAmount("burn amount must be >= 0")
            balance = self._balances.get(caller, 0)
            if balance < amount:
                raise InsufficientBalance(f"{caller} holds {balance}, cannot burn {amount}")
            self._balances[caller] = balance - amount
            self._total_supply -= amount
            self.events.emit("Transfer", sender=caller, recipient=ZERO_ADDRESS, amount=int(amount))
        logger.info("tokens_burned", holder=caller, amount=amount, total_supply=self._total_supply)

    # ── Owner controls ──
    def set_transfer_lock(self, caller: str, locked: bool) -> None:
        self._require_owner(caller)
        self._transfer_locked = bool(locked)
        self.events.emit("TransferLockUpdated", locked=self._transfer_locked)

    def set_lock_exemption(self, caller: str, account: str, exempt: bool) -> None:
        self._require_owner(caller)
        account = normalize_address(account)
        if is_zero_address(account):
            raise ZeroAddress("cannot exempt the null address")
        if exempt:
            self._lock_exempt.add(account)
        else:
            self._lock_exempt.discard(account)
        self.events.emit("LockExemptionUpdated", account=account, exempt=bool(exempt))

    # ── Internals ──
    def _check_unlocked(self, caller: str) -> None:
        if self._transfer_locked and not self.is_lock_exempt(caller):
            raise TransferLocked(f"transfers are locked for {caller}")

    def _move(self, sender: str, to: str, amount: int) -> None:
        sender = normalize_address(sender)
        to = normalize_address(to)
        if is_zero_address(to):
            raise ZeroAddress("recipient cannot be the null address")
        if amount < 0:
            raise InvalidAmount("transfer amount must be >= 0")
        balance = self._balances.get(sender, 0)
        if balance < amount:
            raise InsufficientBalance(f"{sender} holds {balance}, cannot send {amount}")
        self._balances[sender] = balance - amount
        self._balances[to] = self._balances.get(to, 0) + amount
        self.events.emit("Transfer", sender=sender, recipient=to, amount=int(amount))

    def _mint(self, to: str, amount: int) -> None:
        self._balances[to] = self._balances.get(to, 0) + amount
        self._total_supply += amount
        self.events.emit("Transfer", sender=ZERO_ADDRESS, recipient=to, amount=int(amount))
