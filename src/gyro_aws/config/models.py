"""Pydantic models for provider configuration."""

from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class WaitSettings(BaseModel):
    """Default polling behaviour for resources that settle asynchronously."""

    interval: float = Field(5.0, gt=0, description="Seconds between state checks")
    timeout: float = Field(300.0, gt=0, description="Seconds before giving up")

    @model_validator(mode="after")
    def validate_wait(self):
        """Validate the interval fits within the timeout."""
        if self.interval > self.timeout:
            raise ValueError("wait interval cannot be longer than the wait timeout")
        return self


class RetrySettings(BaseModel):
    """botocore retry configuration applied to every client."""

    max_attempts: int = Field(20, ge=1, le=100)
    mode: str = Field("standard", pattern="^(legacy|standard|adaptive)$")


class ProviderSettings(BaseModel):
    """Settings handed to every resource adapter."""

    wait: WaitSettings = Field(default_factory=WaitSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)


class S3StateBackendConfig(BaseModel):
    """Location of state files in S3."""

    bucket: str = Field(..., min_length=3, max_length=63)
    prefix: Optional[str] = None
    suffix: str = Field(".gyro", min_length=1)

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: Optional[str]) -> Optional[str]:
        """Strip surrounding slashes so keys join cleanly."""
        if v is None:
            return v
        v = v.strip("/")
        return v or None


class DynamoDbLockBackendConfig(BaseModel):
    """DynamoDB table used to lock state."""

    table_name: str = Field(..., min_length=3, max_length=255)
    lock_key: str = Field("default", min_length=1)


class ProviderConfig(BaseModel):
    """Top-level provider configuration."""

    region: Optional[str] = Field(None, pattern="^[a-z]{2}(-gov)?-[a-z]+-[0-9]$")
    profile: Optional[str] = None
    log_level: str = Field("info", pattern="^(debug|info|warning|error)$")
    log_dir: Optional[str] = None
    wait: WaitSettings = Field(default_factory=WaitSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    state_backend: Optional[S3StateBackendConfig] = None
    lock_backend: Optional[DynamoDbLockBackendConfig] = None

    @property
    def settings(self) -> ProviderSettings:
        """Adapter settings derived from this configuration."""
        return ProviderSettings(wait=self.wait, retry=self.retry)
