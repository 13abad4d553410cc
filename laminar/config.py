import os

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class MarketConfig(BaseModel):
    """Static description of one order book the client may trade on."""

    base: str = Field(..., description="Move type tag of the base coin")
    quote: str = Field(..., description="Move type tag of the quote coin")
    book_owner: str = Field(..., description="Address of the account that owns the order book")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LAMINAR_",
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up the key exported by the Aptos CLI when ours is unset."""

        super().model_post_init(__context)

        if not self.private_key:
            fallback = os.getenv("APTOS_PRIVATE_KEY")
            if fallback:
                object.__setattr__(self, "private_key", fallback)

    # Node / deployment
    node_url: str = Field(default="http://127.0.0.1:8080", description="Aptos node REST URL")
    dex_address: str = Field(default="", description="Account that publishes the Laminar modules")
    chain_id: Optional[int] = Field(
        default=None,
        description="Chain id; fetched from the node index when unset",
    )

    # Signing account
    account_address: str = Field(default="", description="Address of the trading account")
    private_key: str = Field(
        default="",
        description="Hex encoded Ed25519 private key of the trading account",
    )

    # Gas and expiration
    max_gas_amount: int = Field(default=1_000_000, ge=1, description="Gas budget per transaction")
    gas_unit_price: int = Field(default=100, ge=0, description="Gas unit price in octas")
    expiration_window_seconds: int = Field(
        default=30,
        ge=1,
        description="Seconds from build time until a transaction expires",
    )

    estimate_gas: bool = Field(
        default=False,
        description="Simulate before submitting and size max_gas_amount from the result",
    )
    gas_estimate_multiplier: float = Field(
        default=1.5,
        ge=1.0,
        description="Headroom applied to simulated gas usage",
    )

    # Confirmation polling
    poll_interval_seconds: float = Field(default=0.5, gt=0, description="First poll delay")
    poll_backoff_factor: float = Field(default=1.5, ge=1.0, description="Poll delay multiplier")
    poll_max_interval_seconds: float = Field(default=5.0, gt=0, description="Poll delay cap")
    expiration_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Extra wait past expiration to absorb node clock skew",
    )

    # Node gateway retries
    request_timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")
    max_request_attempts: int = Field(default=5, ge=1, description="Attempts per gateway call")
    retry_initial_delay_seconds: float = Field(default=0.25, ge=0, description="First retry delay")
    retry_max_delay_seconds: float = Field(default=5.0, ge=0, description="Retry delay cap")

    # Sequencing policy
    max_resubmits: int = Field(
        default=1,
        ge=0,
        description="Resubmissions with a fresh sequence number after a resync",
    )
    rollback_unsubmitted: bool = Field(
        default=False,
        description="Reuse the highest sequence number when it never reached the node",
    )

    # Trading
    collateral_coin: str = Field(
        default="0x1::aptos_coin::AptosCoin",
        description="Coin type used by deposit/withdraw when none is given",
    )
    markets: Dict[int, MarketConfig] = Field(
        default_factory=dict,
        description="Known order books keyed by market id",
    )

    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def has_account(self) -> bool:
        return bool(self.account_address and self.private_key)


class AptosProfile(BaseModel):
    """One profile of an Aptos CLI ``config.yaml``."""

    account: str
    private_key: str
    rest_url: Optional[str] = None


def load_profile(path: str | Path, profile_name: str = "default") -> AptosProfile:
    """Read an account profile from an Aptos CLI config file.

    The file has the shape ``profiles: {<name>: {account, private_key, ...}}``.
    """
    with open(path, "r", encoding="utf-8") as fh:
        config = yaml.safe_load(fh) or {}

    profiles = config.get("profiles")
    if not isinstance(profiles, dict):
        raise ValueError(f"profiles section missing in config file {path}")
    if profile_name not in profiles:
        raise ValueError(f"profile {profile_name!r} is missing in config file {path}")
    return AptosProfile.model_validate(profiles[profile_name])


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    return settings
