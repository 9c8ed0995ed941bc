"""
Configuration management for the webhook receiver.

Handles loading, validation, and management of configuration
from files and environment variables.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_REGION = "ap-southeast-3"


class ConfigurationError(Exception):
    """Raised when a mandatory setting is absent."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.missing = missing or []


def _resolve_env(value: Any, env_var: str) -> Any:
    """Resolve a setting from the environment when unset or given as ${VAR}."""
    if value is None:
        return os.getenv(env_var)
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1])
    return value


def detect_environment(function_name: Optional[str] = None) -> str:
    """Derive the environment name from the deployed function name."""
    if function_name is None:
        function_name = os.getenv("AWS_LAMBDA_FUNCTION_NAME", "")
    if "dev" in function_name:
        return "dev"
    if "prod" in function_name:
        return "prod"
    return "unknown"


class AwsConfig(BaseModel):
    """Configuration for AWS collaborators."""

    region: Optional[str] = Field(default=None, validate_default=True, description="AWS region")
    endpoint_url: Optional[str] = Field(
        default=None, validate_default=True, description="Override endpoint for local stacks"
    )
    topic_arn: Optional[str] = Field(
        default=None, validate_default=True, description="Fan-out topic ARN"
    )
    mongodb_uri_parameter: Optional[str] = Field(
        default=None,
        validate_default=True,
        description="Parameter name holding the MongoDB connection string",
    )
    dlq_url: Optional[str] = Field(
        default=None, validate_default=True, description="Dead-letter queue URL"
    )
    original_topic_arn: Optional[str] = Field(
        default=None, validate_default=True, description="Topic the dead-letter queue serves"
    )
    critical_failure_topic_arn: Optional[str] = Field(
        default=None, validate_default=True, description="Escalation topic ARN"
    )

    @field_validator("region", mode="before")
    @classmethod
    def resolve_region(cls, v: Optional[str]) -> Optional[str]:
        """Resolve region from environment variable, falling back to the default."""
        return _resolve_env(v, "AWS_REGION") or DEFAULT_REGION

    @field_validator("endpoint_url", mode="before")
    @classmethod
    def resolve_endpoint_url(cls, v: Optional[str]) -> Optional[str]:
        return _resolve_env(v, "AWS_ENDPOINT_URL")

    @field_validator("topic_arn", mode="before")
    @classmethod
    def resolve_topic_arn(cls, v: Optional[str]) -> Optional[str]:
        return _resolve_env(v, "SNS_TOPIC_ARN")

    @field_validator("mongodb_uri_parameter", mode="before")
    @classmethod
    def resolve_mongodb_uri_parameter(cls, v: Optional[str]) -> Optional[str]:
        return _resolve_env(v, "MONGODB_URI_PARAMETER")

    @field_validator("dlq_url", mode="before")
    @classmethod
    def resolve_dlq_url(cls, v: Optional[str]) -> Optional[str]:
        return _resolve_env(v, "DLQ_URL")

    @field_validator("original_topic_arn", mode="before")
    @classmethod
    def resolve_original_topic_arn(cls, v: Optional[str]) -> Optional[str]:
        return _resolve_env(v, "ORIGINAL_TOPIC_ARN")

    @field_validator("critical_failure_topic_arn", mode="before")
    @classmethod
    def resolve_critical_failure_topic_arn(cls, v: Optional[str]) -> Optional[str]:
        return _resolve_env(v, "CRITICAL_FAILURE_TOPIC_ARN")


class WebhookConfig(BaseModel):
    """Configuration for webhook ingestion and dead-letter handling."""

    allowed_methods: List[str] = Field(
        default=["POST", "PUT", "PATCH", "DELETE"], description="Methods accepted for ingestion"
    )
    max_header_size: int = Field(
        default=50000, description="Nominal cap for the serialized headers attribute"
    )
    max_retries: int = Field(
        default=3, description="Receive count at which redelivery stops"
    )
    message_age_hours: float = Field(
        default=24, description="Dead-letter entries older than this are not redelivered"
    )
    archive_failures_to_store: bool = Field(
        default=False, description="Also write dead-letter failure records to the document store"
    )

    @field_validator("allowed_methods")
    @classmethod
    def normalize_methods(cls, v: List[str]) -> List[str]:
        return [method.upper() for method in v]


class CacheConfig(BaseModel):
    """Configuration for process-wide caching."""

    parameter_ttl_seconds: int = Field(default=300, description="Resolved parameter TTL")


class ServerConfig(BaseModel):
    """Configuration for the HTTP front door."""

    log_level: str = Field(default="INFO", description="Logging level")
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, description="Bind port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class Config(BaseModel):
    """Main configuration object."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0.0", description="Configuration version")
    service: str = Field(default="webhook-receiver", description="Service name")
    environment: Optional[str] = Field(
        default=None, validate_default=True, description="Deployment environment"
    )
    aws: AwsConfig = Field(default_factory=AwsConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @field_validator("environment", mode="before")
    @classmethod
    def resolve_environment(cls, v: Optional[str]) -> str:
        """Resolve environment from ENVIRONMENT or the deployed function name."""
        return _resolve_env(v, "ENVIRONMENT") or detect_environment()

    @property
    def database_name(self) -> str:
        """Database receiving webhook documents for this environment."""
        return f"{self.environment}-webhook"

    def is_fanout_configured(self) -> bool:
        return bool(self.aws.topic_arn)

    def is_dlq_configured(self) -> bool:
        return bool(self.aws.dlq_url)

    def is_escalation_configured(self) -> bool:
        return bool(self.aws.critical_failure_topic_arn)

    def validate_required(self) -> None:
        """
        Ensure mandatory settings are present.

        Raises:
            ConfigurationError: If any mandatory setting is missing
        """
        required = {
            "AWS_REGION": self.aws.region,
            "MONGODB_URI_PARAMETER": self.aws.mongodb_uri_parameter,
        }
        missing = [key for key, value in required.items() if not value]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}", missing=missing
            )


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment variables.

    Args:
        config_path: Path to configuration file. If None, looks for
                    WEBHOOK_RECEIVER_CONFIG_PATH environment variable.

    Returns:
        Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file specified but not found
        ValueError: If configuration is invalid
    """
    if config_path is None:
        env_path = os.getenv("WEBHOOK_RECEIVER_CONFIG_PATH")
        if env_path:
            config_path = Path(env_path)

    config_data: Dict[str, Any] = {}
    if config_path and config_path.exists():
        with open(config_path, "r") as f:
            config_data = json.load(f)
    elif config_path:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    env_overrides: Dict[str, Any] = {}

    log_level = os.getenv("LOG_LEVEL")
    if log_level:
        env_overrides.setdefault("server", {})["log_level"] = log_level

    if env_overrides:
        config_data = _deep_merge(config_data, env_overrides)

    return Config(**config_data)


def create_default_config(config_path: Path) -> None:
    """
    Create a default configuration file.

    Args:
        config_path: Path where to create the configuration file
    """
    default_config = {
        "version": "1.0.0",
        "service": "webhook-receiver",
        "environment": "${ENVIRONMENT}",
        "aws": {
            "region": "${AWS_REGION}",
            "topic_arn": "${SNS_TOPIC_ARN}",
            "mongodb_uri_parameter": "${MONGODB_URI_PARAMETER}",
            "dlq_url": "${DLQ_URL}",
            "original_topic_arn": "${ORIGINAL_TOPIC_ARN}",
            "critical_failure_topic_arn": "${CRITICAL_FAILURE_TOPIC_ARN}",
        },
        "webhook": {
            "allowed_methods": ["POST", "PUT", "PATCH", "DELETE"],
            "max_header_size": 50000,
            "max_retries": 3,
            "message_age_hours": 24,
            "archive_failures_to_store": False,
        },
        "cache": {"parameter_ttl_seconds": 300},
        "server": {"log_level": "INFO", "host": "0.0.0.0", "port": 8080},
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(default_config, f, indent=2)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result
