"""
Configuration for the CastPay relay.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Relay configuration settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API Server
    host: str = Field(default="127.0.0.1", description="API host")
    port: int = Field(default=3001, description="API port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Authentication
    # When API_TOKEN is set, paymaster write endpoints require it via X-API-Key.
    api_token: Optional[str] = Field(
        default=None,
        description="API token for paymaster administration endpoints",
    )
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="CORS allowed origins",
    )

    # EVM
    rpc_url: str = Field(
        default="https://sepolia-rollup.arbitrum.io/rpc",
        description="EVM RPC URL (Arbitrum Sepolia)",
    )
    chain_id: int = Field(default=421614, description="EVM chain ID")
    relayer_private_key: Optional[str] = Field(
        default=None,
        description="Private key of the relay wallet that pays gas and calls transferFrom",
    )
    relayer_address: Optional[str] = Field(
        default=None,
        description="Public relay address, used when no private key is configured",
    )

    # Contracts
    token_address: str = Field(
        default="0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
        description="Stablecoin contract address (USDC on Arbitrum Sepolia)",
    )
    token_decimals: int = Field(default=6, description="Token decimal precision")
    paymaster_address: Optional[str] = Field(
        default=None,
        description="Paymaster contract address",
    )

    # Transfer execution
    sponsorship_enabled: bool = Field(
        default=True,
        description="Request paymaster gas sponsorship before each transfer",
    )
    gas_limit_multiplier: float = Field(
        default=1.2,
        gt=1.0,
        description="Multiplier applied to estimated gas to absorb estimation error",
    )
    rpc_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout for a single RPC call")
    receipt_timeout_seconds: float = Field(default=120.0, gt=0, description="Timeout waiting for a receipt")
    max_concurrent_transfers: int = Field(default=8, ge=1, description="Transfer worker count")
    max_queued_transfers: int = Field(default=1000, ge=1, description="Transfer queue capacity")
    strict_nonces: bool = Field(
        default=True,
        description="Reject transfer intents whose nonce is not the sender's next nonce",
    )

    # Transaction history
    transaction_retention_hours: float = Field(default=24.0, gt=0, description="Record retention window")
    sweep_interval_seconds: float = Field(default=3600.0, gt=0, description="Interval between record sweeps")

    # Username resolution
    neynar_api_key: Optional[str] = Field(default=None, description="Neynar API key")
    neynar_api_url: str = Field(
        default="https://api.neynar.com/v2/farcaster",
        description="Neynar API base URL",
    )
    username_cache_ttl_seconds: float = Field(default=300.0, description="Username cache TTL")
    http_timeout_seconds: float = Field(default=10.0, description="Timeout for off-chain API calls")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
