"""Controller configuration using pydantic-settings.

This module defines the ControllerSettings class that reads configuration
from the Lambda function's environment variables. Variable names match the
field names in upper case (e.g. GITHUB_OAUTH_TOKEN, CODEPIPELINE_TEMPLATE).

The GitHub OAuth token has no built-in default. When it is absent, the
controller can still tear pipelines down but refuses to create them and
reports a missing credential instead.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MissingCredentialError(Exception):
    """Raised when the source-control credential is not configured."""

    kind = "missing_credential"


class UnknownStatePolicy(str, Enum):
    """How the reconciler treats pull request states other than open/closed.

    Attributes:
        IGNORE: Leave the pipeline untouched and report success.
        REJECT: Leave the pipeline untouched and report an in-band error.
    """

    IGNORE = "ignore"
    REJECT = "reject"


class ControllerSettings(BaseSettings):
    """Controller configuration from environment variables.

    Required fields (must be set via environment variables):
    - codepipeline_template: Name of the pipeline cloned for each pull request
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Source Control Configuration
    # -------------------------------------------------------------------------
    # OAuth token written into the source action of every cloned pipeline
    github_oauth_token: Optional[SecretStr] = None

    # -------------------------------------------------------------------------
    # CodePipeline Configuration
    # -------------------------------------------------------------------------
    # Name of the template pipeline that per-pull-request pipelines copy
    codepipeline_template: str

    # Region for the CodePipeline client; boto3 falls back to its own chain
    aws_region: Optional[str] = None

    # -------------------------------------------------------------------------
    # Remote Call Policy
    # -------------------------------------------------------------------------
    # Attempts per remote call when CodePipeline reports a transient error
    max_retries: int = 3

    # First backoff delay in seconds, doubled after each failed attempt
    initial_backoff: float = 0.1

    # Upper bound for a single backoff delay in seconds
    max_backoff: float = 5.0

    connect_timeout: int = 5
    read_timeout: int = 10

    # -------------------------------------------------------------------------
    # Reconciliation Behaviour
    # -------------------------------------------------------------------------
    unknown_state_policy: UnknownStatePolicy = UnknownStatePolicy.IGNORE

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------
    log_level: str = "INFO"

    # Pushgateway URL; metrics are only pushed when this is set
    prometheus_gateway_url: Optional[str] = None

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_oauth_token", mode="before")
    @classmethod
    def blank_token_is_missing(cls, v: Any) -> Any:
        """Treat an empty GITHUB_OAUTH_TOKEN the same as an unset one."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("codepipeline_template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        """Validate that the template pipeline name is not empty."""
        if not v or not v.strip():
            raise ValueError("codepipeline_template cannot be empty")
        return v.strip()

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate that at least one attempt is made."""
        if v < 1:
            raise ValueError("max_retries must be at least 1")
        return v

    @field_validator("initial_backoff", "max_backoff")
    @classmethod
    def validate_backoff(cls, v: float) -> float:
        """Validate that backoff delays are positive."""
        if v <= 0:
            raise ValueError("backoff delays must be positive")
        return v

    @field_validator("connect_timeout", "read_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate that timeouts are positive."""
        if v < 1:
            raise ValueError("timeouts must be at least 1 second")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate the log level against the standard level names."""
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unsupported log_level: {v}")
        return level

    @model_validator(mode="after")
    def validate_backoff_bounds(self) -> "ControllerSettings":
        """Validate that the backoff cap is not below the first delay."""
        if self.max_backoff < self.initial_backoff:
            raise ValueError("max_backoff must be greater than or equal to initial_backoff")
        return self

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------
    def require_oauth_token(self) -> str:
        """Return the configured GitHub OAuth token.

        Returns:
            str: The plain token value.

        Raises:
            MissingCredentialError: If GITHUB_OAUTH_TOKEN is not set.
        """
        if self.github_oauth_token is None:
            raise MissingCredentialError("GITHUB_OAUTH_TOKEN is not set")
        return self.github_oauth_token.get_secret_value()

    def redacted_summary(self) -> Dict[str, Any]:
        """Return the settings as a dict with secrets redacted for logging."""
        token = None
        if self.github_oauth_token is not None:
            token = _redact_secret(self.github_oauth_token.get_secret_value())
        return {
            "github_oauth_token": token,
            "codepipeline_template": self.codepipeline_template,
            "aws_region": self.aws_region,
            "max_retries": self.max_retries,
            "initial_backoff": self.initial_backoff,
            "max_backoff": self.max_backoff,
            "connect_timeout": self.connect_timeout,
            "read_timeout": self.read_timeout,
            "unknown_state_policy": self.unknown_state_policy.value,
            "log_level": self.log_level,
            "prometheus_gateway_url": self.prometheus_gateway_url,
        }


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def get_settings() -> ControllerSettings:
    """Create and return a ControllerSettings instance.

    Returns:
        ControllerSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return ControllerSettings()
