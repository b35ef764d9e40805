"""YAML configuration parser for the provider."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .models import ProviderConfig

DEFAULT_CONFIG_PATH = "gyro-aws.yaml"

# Environment variables that override values from the file
ENV_OVERRIDES = {
    "GYRO_AWS_REGION": "region",
    "GYRO_AWS_PROFILE": "profile",
    "GYRO_AWS_LOG_LEVEL": "log_level",
}


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


def _pydantic_errors(error: ValidationError, prefix: List[Any]) -> List[Dict]:
    return [
        {"loc": prefix + list(detail["loc"]), "msg": detail["msg"]}
        for detail in error.errors()
    ]


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, "r") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Failed to parse YAML: {e}")


class Config:
    """Provider configuration loaded from a YAML file."""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        """Initialize configuration manager.

        Args:
            config_path: Path to the provider configuration file
        """
        self.config_path = Path(config_path)
        self.data: Dict = {}
        self.provider: ProviderConfig = ProviderConfig()

    def load(self) -> "Config":
        """Load and validate configuration from the YAML file.

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If configuration file doesn't exist
        """
        data = _read_yaml(self.config_path) or {}
        if not isinstance(data, dict):
            raise ConfigValidationError("Configuration file must contain a mapping")

        self.data = self._apply_env_overrides(data)

        validation_errors = self.validate()
        if validation_errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(validation_errors)} error(s)",
                validation_errors,
            )

        self.provider = ProviderConfig(**self.data)
        return self

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        try:
            ProviderConfig(**self.data)
        except ValidationError as e:
            return _pydantic_errors(e, [])
        return []

    @staticmethod
    def _apply_env_overrides(data: Dict) -> Dict:
        data = dict(data)
        for env_var, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                data[key] = value
        return data


class ResourceDefinition(BaseModel):
    """One resource entry of a desired-state file."""

    type: str = Field(..., min_length=1)
    fields: Dict[str, Any] = Field(default_factory=dict)


def load_resource_definitions(path: str) -> List[ResourceDefinition]:
    """Load a YAML list of ``{type, fields}`` resource entries.

    Args:
        path: Path to the desired-state file

    Returns:
        Parsed resource definitions

    Raises:
        ConfigValidationError: If the file is malformed
        FileNotFoundError: If the file doesn't exist
    """
    data = _read_yaml(Path(path)) or []
    if not isinstance(data, list):
        raise ConfigValidationError("Resource file must contain a list of resources")

    definitions = []
    errors = []
    for idx, entry in enumerate(data):
        if not isinstance(entry, dict):
            errors.append({"loc": [idx], "msg": "Resource entry must be a mapping"})
            continue
        try:
            definitions.append(ResourceDefinition(**entry))
        except ValidationError as e:
            errors.extend(_pydantic_errors(e, [idx]))

    if errors:
        raise ConfigValidationError(
            f"Resource file validation failed with {len(errors)} error(s)", errors
        )

    return definitions
