from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from presale_app.services.errors import InvalidAddress
from presale_app.services.units import normalize_address


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PRESALE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"    # console | json

    # Operator (owner of both the ledger and the engine)
    OPERATOR_ADDRESS: str = "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1"
    OPERATOR_PASSWORD: str = "change-me"

    # Engine custody address
    ENGINE_ADDRESS: str = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

    # Reserve wallets
    MARKETING_ADDRESS: str = "0xb995f76a7AA248127F44Aa34557843941B1EbdC8"
    EXCHANGE_ADDRESS: str = "0xa5b5465Da3AB69Ab1064b158e455f2188a246be0"
    REWARDS_ADDRESS: str = "0xF0640817930d964D7FfC8d483f444448625F8941"
    TEAM_ADDRESS: str = "0xa93860F8190b7d196f4Ead7aFc7B146Cf2CEbDB9"
    BURN_ADDRESS: str = "0x000000000000000000000000000000000000dEaD"

    # Token
    TOKEN_NAME: str = "BLEM"
    TOKEN_SYMBOL: str = "BLEM"
    TOKEN_SUPPLY: int = 1_000_000_000   # whole tokens; scaled to 18 decimals

    # Lifecycle
    CLAIM_DELAY_SECONDS: int = 86_400
    MAX_PRICE_AGE_SECONDS: int = 3_600

    # Price reference
    PRICE_FEED: str = "static"        # static | http
    PRICE_FEED_URL: str = ""
    PRICE_FEED_TIMEOUT: float = 5.0
    ORACLE_DECIMALS: int = 8
    STATIC_RATE: str = "2000"         # quote units per native unit

    # Sessions
    SESSION_TTL_SECONDS: int = 86_400
    PASSWORD_ITERATIONS: int = 600_000

    @field_validator(
        "OPERATOR_ADDRESS",
        "ENGINE_ADDRESS",
        "MARKETING_ADDRESS",
        "EXCHANGE_ADDRESS",
        "REWARDS_ADDRESS",
        "TEAM_ADDRESS",
        "BURN_ADDRESS",
    )
    @classmethod
    def checksum_address(cls, v, info):
        try:
            return normalize_address(v)
        except InvalidAddress as exc:
            raise ValueError(f"{info.field_name} is not a valid address") from exc

    @field_validator("PRICE_FEED")
    @classmethod
    def valid_price_feed(cls, v):
        vv = str(v).lower().strip()
        if vv not in {"static", "http"}:
            raise ValueError("PRICE_FEED must be one of: static, http")
        return vv

    @field_validator("LOG_FORMAT")
    @classmethod
    def valid_log_format(cls, v):
        vv = str(v).lower().strip()
        if vv not in {"console", "json"}:
            raise ValueError("LOG_FORMAT must be one of: console, json")
        return vv

    @field_validator("CLAIM_DELAY_SECONDS", "MAX_PRICE_AGE_SECONDS", "TOKEN_SUPPLY")
    @classmethod
    def positive_values(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
