"""
Shared configuration management for the Work Item Automation service.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="WORKITEMS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Azure DevOps
    devops_pat: Optional[str] = Field(default=None, description="Fallback personal access token")
    devops_api_version: str = Field(default="7.1")
    devops_timeout_seconds: float = Field(default=10.0)

    # Rules source, used when the request does not name one
    rules_url: Optional[str] = Field(default=None)
    rules_file: Optional[str] = Field(default=None)
    dsl_strict: bool = Field(default=True, description="Reject unrecognised condition/action text")

    # Webhook behaviour
    requirement_work_item_types: List[str] = Field(default_factory=lambda: ["User Story", "Bug"])
    dry_run: bool = Field(default=False, description="Log update operations instead of sending them")

    # Resilience
    retry_max_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=1.0)
    circuit_breaker_failure_threshold: int = Field(default=5)
    circuit_breaker_recovery_timeout: float = Field(default=60.0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
