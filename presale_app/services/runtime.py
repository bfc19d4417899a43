"""
Execution environment for the ledger and the presale engine.

Provides the guarantees both components assume:
  - a monotonically non-decreasing clock,
  - custody of native currency with pluggable receivers,
  - atomic calls (a failing call restores every touched component),
  - a single-owner authorization capability.
"""

import copy
import time
from contextlib import contextmanager
from typing import Callable, Dict, Optional, Protocol, Set

import structlog

from presale_app.services.errors import (
    InsufficientFunds,
    InvalidAmount,
    NativeTransferFailed,
    Unauthorized,
    ZeroAddress,
)
from presale_app.services.units import ZERO_ADDRESS, normalize_address

logger = structlog.get_logger()


# ── Clock ──
class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Deterministic clock for tests and simulations."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self._now += int(seconds)
        return self._now

    def set(self, ts: int) -> int:
        if ts < self._now:
            raise ValueError("clock cannot move backwards")
        self._now = int(ts)
        return self._now


# ── Atomic calls ──
class Transactional:
    """Mixin: components list their mutable attributes in `_state_fields`."""

    _state_fields: tuple = ()

    def _snapshot(self):
        return {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields}

    def _restore(self, snapshot) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)


@contextmanager
def atomic(*components):
    """Run a block so that either all of its effects land or none do."""
    snapshots = [(c, c._snapshot()) for c in components if c is not None]
    try:
        yield
    except BaseException:
        for component, snap in reversed(snapshots):
            component._restore(snap)
        raise


# ── Ownership ──
class Ownable(Transactional):
    """Single replaceable owner, checked at the start of privileged calls."""

    def _init_owner(self, owner: str) -> None:
        owner = normalize_address(owner)
        if owner == ZERO_ADDRESS:
            raise ZeroAddress("owner cannot be the null address")
        self._owner = owner

    @property
    def owner(self) -> str:
        return self._owner

    def is_owner(self, address: str) -> bool:
        return normalize_address(address) == self._owner

    def _require_owner(self, caller: str) -> str:
        caller = normalize_address(caller)
        if caller != self._owner:
            logger.warning("unauthorized_call", caller=caller, component=type(self).__name__)
            raise Unauthorized(f"{caller} is not the owner")
        return caller

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self._require_owner(caller)
        new_owner = normalize_address(new_owner)
        if new_owner == ZERO_ADDRESS:
            raise ZeroAddress("new owner cannot be the null address")
        previous, self._owner = self._owner, new_owner
        self.events.emit("OwnershipTransferred", previous_owner=previous, new_owner=new_owner)


# ── Native currency custody ──
ReceiveHook = Callable[[str, int], None]


class NativeBank(Transactional):
    """Balances of the native payment currency, 18-decimal integers."""

    _state_fields = ("_balances",)

    def __init__(self):
        self._balances: Dict[str, int] = {}
        self._receivers: Dict[str, ReceiveHook] = {}
        self._rejecting: Set[str] = set()

    def balance_of(self, address: str) -> int:
        return self._balances.get(normalize_address(address), 0)

    def credit(self, address: str, amount: int) -> int:
        """Fund an account from outside the system."""
        if amount < 0:
            raise InvalidAmount("credit amount must be >= 0")
        address = normalize_address(address)
        self._balances[address] = self._balances.get(address, 0) + int(amount)
        return self._balances[address]

    def register_receiver(self, address: str, hook: Optional[ReceiveHook]) -> None:
        address = normalize_address(address)
        if hook is None:
            self._receivers.pop(address, None)
        else:
            self._receivers[address] = hook

    def reject_payments(self, address: str, reject: bool = True) -> None:
        address = normalize_address(address)
        if reject:
            self._rejecting.add(address)
        else:
            self._rejecting.discard(address)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        sender = normalize_address(sender)
        recipient = normalize_address(recipient)
        if amount < 0:
            raise InvalidAmount("transfer amount must be >= 0")
        with atomic(self):
            available = self._balances.get(sender, 0)
            if available < amount:
                raise InsufficientFunds(f"{sender} holds {available}, needs {amount}")
            self._balances[sender] = available - amount
            self._balances[recipient] = self._balances.get(recipient, 0) + amount
            self._notify(sender, recipient, amount)

    def _notify(self, sender: str, recipient: str, amount: int) -> None:
        if recipient in self._rejecting:
            raise NativeTransferFailed(f"{recipient} rejected {amount}")
        hook = self._receivers.get(recipient)
        if hook is None:
            return
        try:
            hook(sender, amount)
        except Exception as exc:
            logger.warning("native_receiver_failed", recipient=recipient, amount=amount, error=str(exc))
            raise NativeTransferFailed(f"{recipient} rejected {amount}: {exc}") from exc
