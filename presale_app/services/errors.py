"""
Failure kinds raised by the ledger and the presale engine.

Every error is categorical and non-retryable: the call that raised it left
no trace in ledger or engine state. The `code` string is stable and is what
the HTTP layer reports back to tooling.
"""


class PresaleError(Exception):
    code: str = "PresaleError"
    status_code: int = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


# ── Identity / authorization ──
class ZeroAddress(PresaleError):
    code = "ZeroAddress"


class InvalidAddress(PresaleError):
    code = "InvalidAddress"


class Unauthorized(PresaleError):
    code = "Unauthorized"
    status_code = 403


# ── Ledger ──
class TransferLocked(PresaleError):
    code = "TransferLocked"
    status_code = 409


class InsufficientBalance(PresaleError):
    code = "InsufficientBalance"


# ── Stages / purchase ──
class InvalidPrice(PresaleError):
    code = "InvalidPrice"


class NoActiveStage(PresaleError):
    code = "NoActiveStage"
    status_code = 409


class InvalidAmount(PresaleError):
    code = "InvalidAmount"


class InsufficientPayment(PresaleError):
    code = "InsufficientPayment"
    status_code = 402


class InsufficientInventory(PresaleError):
    code = "InsufficientInventory"
    status_code = 409


class InvalidPurchaseAmount(PresaleError):
    code = "InvalidPurchaseAmount"


class InvalidPriceData(PresaleError):
    code = "InvalidPriceData"
    status_code = 503


class PriceFeedReadOnly(PresaleError):
    code = "PriceFeedReadOnly"
    status_code = 409


class TokenNotConfigured(PresaleError):
    code = "TokenNotConfigured"
    status_code = 409


# ── Lifecycle ──
class AlreadyEnded(PresaleError):
    code = "AlreadyEnded"
    status_code = 409


class PresaleNotActive(PresaleError):
    code = "PresaleNotActive"
    status_code = 409


class PresaleNotEnded(PresaleError):
    code = "PresaleNotEnded"
    status_code = 409


class ClaimingNotEnabled(PresaleError):
    code = "ClaimingNotEnabled"
    status_code = 409


class AlreadyClaimed(PresaleError):
    code = "AlreadyClaimed"
    status_code = 409


class NoEntitlement(PresaleError):
    code = "NoEntitlement"
    status_code = 404


# ── Native currency custody ──
class InsufficientFunds(PresaleError):
    code = "InsufficientFunds"
    status_code = 402


class NativeTransferFailed(PresaleError):
    code = "NativeTransferFailed"
    status_code = 502
