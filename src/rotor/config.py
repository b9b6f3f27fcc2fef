"""Relayer configuration loaded from ROTOR_* environment variables or a .env file."""

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from rotor.exceptions import ConfigurationError

MAINNET_PASSPHRASE = "Public Global Stellar Network ; September 2015"
NOT_CONFIGURED_MESSAGE = "Relayer is not configured: set ROTOR_CONTRACT_ID and ROTOR_RELAYER_SECRET"


class Settings(BaseSettings):
    """
    Relayer settings.

    Every field can be set through an environment variable named
    ``ROTOR_<FIELD>`` (e.g. ``ROTOR_CONTRACT_ID``).
    """

    model_config = SettingsConfigDict(
        env_prefix="ROTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    port: int = 3001
    log_level: str = "INFO"

    # Ledger
    ledger_backend: Literal["soroban", "memory"] = "soroban"
    stellar_rpc: str = "https://mainnet.sorobanrpc.com"
    network_passphrase: str = MAINNET_PASSPHRASE
    contract_id: str = ""
    token_contract_id: str = ""
    relayer_secret: SecretStr = SecretStr("")
    base_fee: int = 1_000_000
    tx_timeout_seconds: int = 180
    confirmation_timeout: float = Field(default=60.0, gt=0)
    poll_interval: float = Field(default=2.0, gt=0)

    # Proving
    proving_backend: Literal["nargo", "local"] = "nargo"
    circuit_dir: str = "circuits/withdraw"
    nargo_bin: str = "nargo"
    bb_bin: str = "bb"
    local_proving_seed: Optional[str] = None

    # Storage
    database_url: str = "sqlite:///rotor_relayer.db"

    amount_decimals: int = Field(default=7, ge=0)

    @property
    def is_configured(self) -> bool:
        """True when the relayer can submit to the ledger."""
        if self.ledger_backend == "memory":
            return True
        return bool(self.contract_id and self.relayer_secret.get_secret_value())

    def require_ledger_credentials(self) -> None:
        """
        Raises:
            ConfigurationError: If the contract id or relayer secret is missing
        """
        if not self.is_configured:
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear cached settings (for testing)."""
    get_settings.cache_clear()


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging for the relayer process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s  %(message)s",
        datefmt="%H:%M:%S",
    )
