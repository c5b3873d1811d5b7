"""
Environment Configuration Service.

Provides environment-aware configuration for clearinghouse endpoints,
trading partner identifiers, transport timeouts and logging.

The configuration is built once by the caller (load_config or
load_config_from_file) and passed into the pipeline explicitly.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from x12_eligibility.core.enums import Clearinghouse


class Environment(str, Enum):
    """Application environments."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class ProviderConfig(BaseModel):
    """Information receiver (NM1*1P) sent in every inquiry."""

    npi: str = ""
    name: str = ""

    @field_validator("npi")
    @classmethod
    def validate_npi(cls, v: str) -> str:
        v = v.strip()
        if v and (len(v) != 10 or not v.isdigit()):
            raise ValueError("NPI must be 10 digits")
        return v


class ClearinghouseConfig(BaseModel):
    """One clearinghouse endpoint with its credentials and trading partner ids."""

    name: Clearinghouse = Clearinghouse.OFFICE_ALLY
    endpoint_url: str = "https://wsd.officeally.com/TransactionService/rtx.svc"
    username: str = ""
    password: SecretStr = SecretStr("")
    sender_id: str = ""
    receiver_id: str = "OFFALLY"
    sender_qualifier: str = "ZZ"
    receiver_qualifier: str = "01"
    usage_indicator: str = "P"  # P=Production, T=Test

    @field_validator("usage_indicator")
    @classmethod
    def validate_usage_indicator(cls, v: str) -> str:
        v = v.upper()
        if v not in ("P", "T"):
            raise ValueError("usage_indicator must be P or T")
        return v

    @field_validator("sender_qualifier", "receiver_qualifier")
    @classmethod
    def validate_qualifier(cls, v: str) -> str:
        if len(v) != 2:
            raise ValueError("ISA id qualifiers are two characters")
        return v

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password.get_secret_value())


class TransportConfig(BaseModel):
    """HTTP transport settings; timeouts apply per attempt."""

    timeout_seconds: float = Field(default=8.0, gt=0, le=60)
    connect_timeout_seconds: float = Field(default=5.0, gt=0, le=60)
    verify_tls: bool = True
    user_agent: str = "x12-eligibility/1.0"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    json_logs: bool = False
    log_file: Optional[str] = None


def default_clearinghouse(name: Clearinghouse, **overrides: Any) -> ClearinghouseConfig:
    """Build a ClearinghouseConfig pre-filled with the clearinghouse's public endpoint."""
    defaults: dict[Clearinghouse, dict[str, Any]] = {
        Clearinghouse.OFFICE_ALLY: {
            "endpoint_url": "https://wsd.officeally.com/TransactionService/rtx.svc",
            "receiver_id": "OFFALLY",
            "sender_qualifier": "ZZ",
            "receiver_qualifier": "01",
        },
        Clearinghouse.UHIN: {
            "endpoint_url": "https://ws.uhin.org/webservices/core/soaptype4.asmx",
            "receiver_id": "HT000004-001",
            "sender_qualifier": "ZZ",
            "receiver_qualifier": "ZZ",
        },
    }
    data = {"name": name, **defaults[name], **overrides}
    return ClearinghouseConfig(**data)


class AppConfig(BaseSettings):
    """Main application configuration."""

    environment: Environment = Environment.DEVELOPMENT
    app_name: str = "x12-eligibility"
    app_version: str = "1.0.0"

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    primary: ClearinghouseConfig = Field(default_factory=ClearinghouseConfig)
    secondary: Optional[ClearinghouseConfig] = None
    transport: TransportConfig = Field(default_factory=TransportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="ELIGIBILITY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        """Validate and normalize environment."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    def endpoints(self) -> list[ClearinghouseConfig]:
        """Endpoints in failover order: primary first, then the optional secondary."""
        endpoints = [self.primary]
        if self.secondary is not None:
            endpoints.append(self.secondary)
        return endpoints


def load_config(**overrides: Any) -> AppConfig:
    """Build a fresh configuration from the environment plus explicit overrides.

    Args:
        **overrides: Field values that take precedence over the environment

    Returns:
        Application configuration
    """
    return AppConfig(**overrides)


def load_config_from_file(path: str | Path) -> AppConfig:
    """Load configuration from YAML file.

    Args:
        path: Path to configuration file

    Returns:
        Application configuration
    """
    import yaml

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return AppConfig(**data)


def validate_production_config(config: AppConfig) -> list[str]:
    """Validate configuration for production deployment.

    Args:
        config: Configuration to validate

    Returns:
        List of validation errors
    """
    errors = []

    if not config.provider.npi:
        errors.append("Provider NPI is required")

    for endpoint in config.endpoints():
        label = endpoint.name.value
        if not endpoint.sender_id:
            errors.append(f"{label}: sender_id is required")
        if not endpoint.has_credentials:
            errors.append(f"{label}: username and password are required")
        if not endpoint.endpoint_url.startswith("https://"):
            errors.append(f"{label}: endpoint must use HTTPS")
        if config.is_production and endpoint.usage_indicator != "P":
            errors.append(f"{label}: usage indicator must be P in production")

    if config.secondary is not None and config.secondary.name == config.primary.name:
        if config.secondary.endpoint_url == config.primary.endpoint_url:
            errors.append("Secondary endpoint duplicates the primary endpoint")

    if config.is_production and not config.transport.verify_tls:
        errors.append("TLS verification must be enabled in production")

    return errors

