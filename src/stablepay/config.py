# src/stablepay/config.py

from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# --- 1. Chain access ---
class RpcConfig(BaseModel):
    timeout: float = 10.0
    # network key -> RPC endpoint, overrides the built-in public endpoints
    urls: dict[str, str] = Field(default_factory=dict)


# --- 2. Invoice lifecycle ---
class PaymentConfig(BaseModel):
    timeout: int = Field(1800, description="seconds before a pending payment expires")
    reservation_ttl: int = Field(86400, description="seconds an amount stays reserved")
    amount_precision: int = Field(6, ge=2, le=18)
    webhook_match_mode: Literal["strict", "loose"] = "strict"
    scheduler_interval: float = 1.0

    @model_validator(mode="after")
    def _reservation_outlives_payment(self):
        # a pending payment must keep its amount reserved until it expires
        if self.reservation_ttl < self.timeout:
            raise ValueError("reservation_ttl must be >= payment timeout")
        return self


# --- 3. Explicit config object passed to create_gateway() ---
class GatewayConfig(BaseModel):
    wallet_address: str = ""
    webhook_secret: str = ""
    testnet: bool = True
    rpc: RpcConfig = Field(default_factory=RpcConfig)
    payment: PaymentConfig = Field(default_factory=PaymentConfig)


# --- 4. Environment / .env loading ---
class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter='__',
        extra='ignore'
    )

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    environment: str = Field("development", alias="ENVIRONMENT")

    wallet_address: str = Field("", alias="WALLET_ADDRESS")
    webhook_secret: str = Field("", alias="WEBHOOK_SECRET")

    payment_timeout: int = Field(1800, alias="PAYMENT_TIMEOUT")
    reservation_ttl: int = Field(86400, alias="RESERVATION_TTL")
    amount_precision: int = Field(6, alias="AMOUNT_PRECISION")
    webhook_match_mode: Literal["strict", "loose"] = Field("strict", alias="WEBHOOK_MATCH_MODE")
    scheduler_interval: float = Field(1.0, alias="SCHEDULER_INTERVAL")

    rpc_timeout: float = Field(10.0, alias="RPC_TIMEOUT")
    rpc_urls: dict[str, str] = Field(default_factory=dict, alias="RPC_URLS")

    # api key -> permissions, e.g. {"k1": ["admin", "payment:create"]}
    api_keys: dict[str, list[str]] = Field(default_factory=dict, alias="API_KEYS")

    @property
    def is_testnet(self) -> bool:
        return self.environment.lower() != "production"

    def gateway_config(self) -> GatewayConfig:
        return GatewayConfig(
            wallet_address=self.wallet_address,
            webhook_secret=self.webhook_secret,
            testnet=self.is_testnet,
            rpc=RpcConfig(timeout=self.rpc_timeout, urls=self.rpc_urls),
            payment=PaymentConfig(
                timeout=self.payment_timeout,
                reservation_ttl=self.reservation_ttl,
                amount_precision=self.amount_precision,
                webhook_match_mode=self.webhook_match_mode,
                scheduler_interval=self.scheduler_interval,
            ),
        )


_cached_settings: Optional[Settings] = None

def get_settings() -> Settings:
    """
    Returns the settings singleton, building it on first use so that
    importing the package never fails on missing environment.
    """
    global _cached_settings
    if _cached_settings is None:
        _cached_settings = Settings()
    return _cached_settings


def reset_settings() -> None:
    global _cached_settings
    _cached_settings = None
