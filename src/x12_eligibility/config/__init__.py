"""
Configuration Module.
"""

from x12_eligibility.config.environment import (
    AppConfig,
    ClearinghouseConfig,
    Environment,
    LoggingConfig,
    ProviderConfig,
    TransportConfig,
    default_clearinghouse,
    load_config,
    load_config_from_file,
    validate_production_config,
)

__all__ = [
    "AppConfig",
    "ClearinghouseConfig",
    "Environment",
    "LoggingConfig",
    "ProviderConfig",
    "TransportConfig",
    "default_clearinghouse",
    "load_config",
    "load_config_from_file",
    "validate_production_config",
]
