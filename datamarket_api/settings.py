"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API
    environment: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database (projections only, the ledger is the source of truth)
    database_url: str = "sqlite:///./datamarket.db"

    # Ledger
    ledger_provider: str = "web3"  # web3, memory
    ledger_rpc_url: str = "http://localhost:8545"
    ledger_timeout_seconds: float = 10.0
    ledger_receipt_timeout_seconds: float = 120.0
    ledger_gas: int = 400000
    ledger_gas_price: int = 0
    data_contract_address: Optional[str] = None
    balance_contract_address: Optional[str] = None
    access_contract_address: Optional[str] = None
    data_contract_abi_path: str = "./contracts/DataLedger.json"
    balance_contract_abi_path: str = "./contracts/Balance.json"
    access_contract_abi_path: str = "./contracts/AccessControl.json"

    # Keystore
    keystore_dir: str = "./node/keystore"

    # Off-chain content
    ipfs_gateway_url: str = "http://localhost:8080"
    storage_timeout_seconds: float = 10.0

    # Storage service request authentication
    storage_request_max_age_ms: int = 60000
    replay_protection_enabled: bool = True
    redis_url: str = "redis://localhost:6379/0"

    # MinIO / S3 (storage service measurement store)
    minio_endpoint: str = "localhost:9000"
    minio_access_key: Optional[str] = None  # Required in non-dev
    minio_secret_key: Optional[str] = None  # Required in non-dev
    minio_bucket: str = "datamarket-measurements"
    minio_use_ssl: bool = False

    # Sessions
    session_ttl_seconds: int = 1800
    session_sweep_interval_seconds: float = 60.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() in ("development", "test", "dev")

    def validate_production_settings(self):
        """Validate settings for production environment."""
        if self.is_development:
            return
        if self.ledger_provider.lower() == "memory":
            raise ValueError(
                "LEDGER_PROVIDER=memory is not allowed outside development. "
                "Use LEDGER_PROVIDER=web3."
            )
        if not self.minio_access_key or not self.minio_secret_key:
            raise ValueError(
                "MINIO_ACCESS_KEY and MINIO_SECRET_KEY are required in production. "
                "Do not use default credentials."
            )
        missing = [
            name
            for name in (
                "data_contract_address",
                "balance_contract_address",
                "access_contract_address",
            )
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(f"Contract addresses required in production: {', '.join(missing)}")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
