"""Configuration management for the AWS provider."""

from .models import (
    WaitSettings,
    RetrySettings,
    ProviderSettings,
    S3StateBackendConfig,
    DynamoDbLockBackendConfig,
    ProviderConfig,
)
from .parser import (
    Config,
    ConfigValidationError,
    ResourceDefinition,
    load_resource_definitions,
)

__all__ = [
    "WaitSettings",
    "RetrySettings",
    "ProviderSettings",
    "S3StateBackendConfig",
    "DynamoDbLockBackendConfig",
    "ProviderConfig",
    "Config",
    "ConfigValidationError",
    "ResourceDefinition",
    "load_resource_definitions",
]
