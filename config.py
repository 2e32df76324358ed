# config.py
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
import os
from typing import Any, Dict, List

# Load .env file
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseSettings):
    # Redis settings
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost")
    REDIS_MAX_CONNECTIONS: int = int(os.getenv("REDIS_MAX_CONNECTIONS", "50"))
    REDIS_SOCKET_TIMEOUT: int = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))
    COIN: str = os.getenv("COIN", "graft")

    # Daemon settings
    DAEMON_HOST: str = os.getenv("DAEMON_HOST", "127.0.0.1")
    DAEMON_PORT: int = int(os.getenv("DAEMON_PORT", "18981"))
    DAEMON_TIMEOUT: int = int(os.getenv("DAEMON_TIMEOUT", "10"))

    # Aggregation settings
    UPDATE_INTERVAL: int = int(os.getenv("UPDATE_INTERVAL", "5"))  # seconds
    HASHRATE_WINDOW: int = int(os.getenv("HASHRATE_WINDOW", "600"))  # seconds
    BLOCKS_PAGE_SIZE: int = int(os.getenv("BLOCKS_PAGE_SIZE", "30"))
    PAYMENTS_PAGE_SIZE: int = int(os.getenv("PAYMENTS_PAGE_SIZE", "30"))
    LONGPOLL_DISCONNECT_POLL: float = float(os.getenv("LONGPOLL_DISCONNECT_POLL", "1.0"))

    # Round scoring (slush mining time-decay)
    SLUSH_MINING_ENABLED: bool = _env_bool("SLUSH_MINING_ENABLED")
    SLUSH_MINING_WEIGHT: int = int(os.getenv("SLUSH_MINING_WEIGHT", "300"))
    SLUSH_MINING_BLOCK_TIME: int = int(os.getenv("SLUSH_MINING_BLOCK_TIME", "60"))
    LAST_BLOCK_FOUND_FIELD: str = os.getenv("LAST_BLOCK_FOUND_FIELD", "lastBlockFound")

    # Static configuration echoed in the snapshot
    POOL_PORTS: List[Dict[str, Any]] = []
    CN_ALGORITHM: str = os.getenv("CN_ALGORITHM", "cryptonight")
    CN_VARIANT: int = int(os.getenv("CN_VARIANT", "0"))
    POOL_FEE: float = float(os.getenv("POOL_FEE", "1.8"))
    NETWORK_FEE: float = float(os.getenv("NETWORK_FEE", "0"))
    COIN_UNITS: int = int(os.getenv("COIN_UNITS", "10000000000"))
    COIN_DIFFICULTY_TARGET: int = int(os.getenv("COIN_DIFFICULTY_TARGET", "120"))
    SYMBOL: str = os.getenv("SYMBOL", "GRFT")
    UNLOCK_DEPTH: int = int(os.getenv("UNLOCK_DEPTH", "60"))
    DONATIONS: Dict[str, float] = {}
    VERSION: str = os.getenv("VERSION", "1.0.0")
    PAYMENTS_INTERVAL: int = int(os.getenv("PAYMENTS_INTERVAL", "7200"))
    MIN_PAYMENT: int = int(os.getenv("MIN_PAYMENT", "100000000000"))
    TRANSFER_FEE: int = int(os.getenv("TRANSFER_FEE", "100000000"))
    DENOMINATION_UNIT: int = int(os.getenv("DENOMINATION_UNIT", "100000000"))
    PRICE_SOURCE: str = os.getenv("PRICE_SOURCE", "cryptonator")
    PRICE_CURRENCY: str = os.getenv("PRICE_CURRENCY", "USD")
    PAYMENT_ID_SEPARATOR: str = os.getenv("PAYMENT_ID_SEPARATOR", ".")
    FIXED_DIFF_ENABLED: bool = _env_bool("FIXED_DIFF_ENABLED")
    FIXED_DIFF_SEPARATOR: str = os.getenv("FIXED_DIFF_SEPARATOR", ".")
    SEND_EMAILS: bool = _env_bool("SEND_EMAILS")

    # Charts
    POOL_CHARTS: List[str] = ["hashrate", "miners", "workers", "difficulty", "price", "profit"]
    USER_CHARTS: List[str] = ["hashrate"]

    # API settings
    API_KEY: str = os.getenv("API_KEY", "")
    DEBUG: bool = _env_bool("DEBUG", "true")
    ALLOWED_ORIGINS: str = ""  # Comma-separated list of allowed origins in production
    LISTING_CACHE_EXPIRE: int = int(os.getenv("LISTING_CACHE_EXPIRE", "30"))

    # Monitoring settings
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_CHAT_ID: str = os.getenv("TELEGRAM_CHAT_ID", "")

    # Notification settings
    NOTIFICATION_WINDOW: int = int(os.getenv("NOTIFICATION_WINDOW", "300"))  # 5 minutes
    MAX_SIMILAR_NOTIFICATIONS: int = int(os.getenv("MAX_SIMILAR_NOTIFICATIONS", "3"))

    # Health check settings
    HEALTH_CHECK_INTERVAL: int = int(os.getenv("HEALTH_CHECK_INTERVAL", "30"))  # seconds
    MAX_UNHEALTHY_COUNT: int = int(os.getenv("MAX_UNHEALTHY_COUNT", "3"))
    MAX_SNAPSHOT_AGE: int = int(os.getenv("MAX_SNAPSHOT_AGE", "60"))  # seconds

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("HASHRATE_WINDOW")
    @classmethod
    def window_must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("HASHRATE_WINDOW must be a positive number of seconds")
        return value

    @field_validator("UPDATE_INTERVAL")
    @classmethod
    def interval_must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("UPDATE_INTERVAL must be a positive number of seconds")
        return value

    @model_validator(mode="after")
    def decay_weight_must_be_positive(self):
        if self.SLUSH_MINING_ENABLED and self.SLUSH_MINING_WEIGHT <= 0:
            raise ValueError("SLUSH_MINING_WEIGHT must be positive when slush mining is enabled")
        return self

    def get_daemon_url(self) -> str:
        return f"http://{self.DAEMON_HOST}:{self.DAEMON_PORT}/json_rpc"

    def public_ports(self) -> List[Dict[str, Any]]:
        """Pool ports without the hidden ones"""
        return [port for port in self.POOL_PORTS if not port.get("hidden")]

    def config_echo(self) -> Dict[str, Any]:
        """Static configuration sent to clients with every snapshot"""
        return {
            "ports": self.public_ports(),
            "cnAlgorithm": self.CN_ALGORITHM,
            "cnVariant": self.CN_VARIANT,
            "hashrateWindow": self.HASHRATE_WINDOW,
            "fee": self.POOL_FEE,
            "networkFee": self.NETWORK_FEE,
            "coin": self.COIN,
            "coinUnits": self.COIN_UNITS,
            "coinDifficultyTarget": self.COIN_DIFFICULTY_TARGET,
            "symbol": self.SYMBOL,
            "depth": self.UNLOCK_DEPTH,
            "donation": self.DONATIONS,
            "version": self.VERSION,
            "paymentsInterval": self.PAYMENTS_INTERVAL,
            "minPaymentThreshold": self.MIN_PAYMENT,
            "transferFee": self.TRANSFER_FEE,
            "denominationUnit": self.DENOMINATION_UNIT,
            "blockTime": self.SLUSH_MINING_BLOCK_TIME,
            "slushMiningEnabled": self.SLUSH_MINING_ENABLED,
            "weight": self.SLUSH_MINING_WEIGHT,
            "priceSource": self.PRICE_SOURCE,
            "priceCurrency": self.PRICE_CURRENCY,
            "paymentIdSeparator": self.PAYMENT_ID_SEPARATOR,
            "fixedDiffEnabled": self.FIXED_DIFF_ENABLED,
            "fixedDiffSeparator": self.FIXED_DIFF_SEPARATOR,
            "sendEmails": self.SEND_EMAILS,
        }


# Create settings instance
settings = Settings()
