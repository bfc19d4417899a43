from pydantic import BaseModel, field_validator

from presale_app.services.errors import InvalidAddress
from presale_app.services.units import normalize_address

# Amounts are integers in base units (18 decimals). Clients may send them as
# JSON numbers or decimal strings; responses render large values as strings.


def _checksum(v, field_name):
    try:
        return normalize_address(v)
    except InvalidAddress as exc:
        raise ValueError(f"{field_name} must be a 0x-prefixed 20-byte hex address") from exc


class AccountRequest(BaseModel):
    address: str
    password: str

    @field_validator("address")
    @classmethod
    def valid_address(cls, v, info):
        return _checksum(v, info.field_name)

    @field_validator("password")
    @classmethod
    def password_length(cls, v):
        if len(v) < 8:
            raise ValueError("password must be at least 8 characters")
        return v


class StageRequest(BaseModel):
    price: int

    @field_validator("price")
    @classmethod
    def price_positive(cls, v):
        if v <= 0:
            raise ValueError("price must be > 0")
        return v


class PriceRequest(BaseModel):
    rate: int   # quote units per native unit, scaled by the feed's decimals

    @field_validator("rate")
    @classmethod
    def rate_positive(cls, v):
        if v <= 0:
            raise ValueError("rate must be > 0")
        return v


class PurchaseRequest(BaseModel):
    token_amount: int
    value: int

    @field_validator("token_amount")
    @classmethod
    def amount_positive(cls, v):
        if v <= 0:
            raise ValueError("token_amount must be > 0")
        return v

    @field_validator("value")
    @classmethod
    def value_non_negative(cls, v):
        if v < 0:
            raise ValueError("value must be >= 0")
        return v


class DepositRequest(BaseModel):
    value: int

    @field_validator("value")
    @classmethod
    def value_non_negative(cls, v):
        if v < 0:
            raise ValueError("value must be >= 0")
        return v


class StatusUpdateRequest(BaseModel):
    ended: bool
    claiming_enabled: bool


class TransferRequest(BaseModel):
    to: str
    amount: int

    @field_validator("to")
    @classmethod
    def valid_recipient(cls, v, info):
        return _checksum(v, info.field_name)

    @field_validator("amount")
    @classmethod
    def amount_non_negative(cls, v):
        if v < 0:
            raise ValueError("amount must be >= 0")
        return v


class BurnRequest(BaseModel):
    amount: int

    @field_validator("amount")
    @classmethod
    def amount_non_negative(cls, v):
        if v < 0:
            raise ValueError("amount must be >= 0")
        return v


class LockRequest(BaseModel):
    locked: bool


class OwnershipRequest(BaseModel):
    new_owner: str
    component: str = "engine"   # engine | ledger

    @field_validator("new_owner")
    @classmethod
    def valid_owner(cls, v, info):
        # null address passes through so the core can report ZeroAddress
        return _checksum(v, info.field_name)

    @field_validator("component")
    @classmethod
    def valid_component(cls, v):
        vv = str(v).lower().strip()
        if vv not in {"engine", "ledger"}:
            raise ValueError("component must be one of: engine, ledger")
        return vv
