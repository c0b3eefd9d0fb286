"""Wagerbot settings: secrets from the environment, tuning from YAML."""

import logging
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

YAML_SECTIONS = ("reconciler", "ledger", "betting", "telegram")


class ReconcilerConfig(BaseModel):
    """Bet resolution and settlement loop parameters."""

    interval_seconds: int = 60
    max_parallel_settlements: int = 4
    max_notify_attempts: int = 3
    resume_unfinished: bool = True


class LedgerSettings(BaseModel):
    """Ledger RPC tuning: timeouts, retries and gas limits."""

    request_timeout_seconds: float = 30.0
    receipt_timeout_seconds: float = 120.0
    receipt_poll_seconds: float = 2.0
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    chain_id: int | None = None  # Fetched from the node when unset

    create_bet_gas: int = 500_000
    resolve_gas: int = 5_000_000
    place_bet_gas: int = 5_000_000
    claim_gas: int = 5_000_000
    mint_gas: int = 5_000_000


class BettingConfig(BaseModel):
    """Market rules shown to users. Enforced by the contract, not here."""

    supported_tokens: list[str] = Field(default_factory=lambda: ["ETH", "BTC", "LINK"])
    min_stake_eth: float = 0.001
    bet_duration_minutes: int = 5


class TelegramConfig(BaseModel):
    """Whether and how settlement messages are sent."""

    send_settlement_alerts: bool = True
    parse_mode: str | None = None


class Settings(BaseSettings):
    """Credentials, endpoints and nested operational sections."""

    data_dir: Path = Path("data")

    # Persistence
    mongodb_uri: str = ""
    mongodb_database: str = "betting_bot"

    # Ledger
    rpc_url: str = ""
    contract_address: str = ""
    nft_contract_address: str = ""
    operator_private_key: str = ""

    # Telegram
    telegram_bot_token: str = ""

    logfire_token: str = ""

    # Nested configuration sections
    reconciler: ReconcilerConfig = Field(default_factory=ReconcilerConfig)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    betting: BettingConfig = Field(default_factory=BettingConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def absolute_data_dir(cls, v: Path) -> Path:
        return v.resolve()

    def missing_credentials(self, require_telegram: bool = True) -> list[str]:
        """Names of required settings that are unset."""
        required = {
            "MONGODB_URI": self.mongodb_uri,
            "RPC_URL": self.rpc_url,
            "CONTRACT_ADDRESS": self.contract_address,
            "NFT_CONTRACT_ADDRESS": self.nft_contract_address,
            "OPERATOR_PRIVATE_KEY": self.operator_private_key,
        }
        if require_telegram:
            required["TELEGRAM_BOT_TOKEN"] = self.telegram_bot_token
        return [name for name, value in required.items() if not value]

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.yaml"

    def load_yaml_config(self) -> None:
        """Overlay the operational sections from ``data_dir/config.yaml``.

        Only keys present in the file change; everything else keeps its
        environment or default value. Secrets are never read from YAML.
        """
        path = self.config_path
        if not path.exists():
            logger.warning(
                f"No config file at {path}, using defaults. "
                "Run 'python -m wagerbot init' to create one."
            )
            return

        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            logger.error(f"Invalid YAML in {path}: {e}")
            raise

        if not isinstance(document, dict):
            raise ValueError(f"{path} must contain a mapping of sections")

        unknown = set(document) - set(YAML_SECTIONS)
        if unknown:
            logger.warning(f"Ignoring unknown sections in {path}: {', '.join(sorted(unknown))}")

        for name in YAML_SECTIONS:
            overrides = document.get(name)
            if overrides is None:
                continue
            if not isinstance(overrides, dict):
                raise ValueError(f"Section '{name}' in {path} must be a mapping")
            current = getattr(self, name)
            setattr(self, name, current.model_validate({**current.model_dump(), **overrides}))

        logger.info(f"Loaded configuration overrides from {path}")


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings: environment first, then the YAML overlay."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
