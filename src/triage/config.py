"""Service configuration using pydantic-settings.

This module defines the TriageSettings class that reads configuration
from environment variables with the TRIAGE_ prefix. Only the webhook
secret is strictly required to start; integrations whose credentials are
missing are either disabled (database, vector search) or reported as a
server error when a request needs them (OpenAI key).
"""

from pathlib import Path
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TriageSettings(BaseSettings):
    """Triage service configuration from environment variables.

    All environment variables are prefixed with TRIAGE_ (e.g.,
    TRIAGE_GITHUB_WEBHOOK_SECRET).
    """

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # GitHub App Configuration
    # -------------------------------------------------------------------------
    # Secret shared with GitHub for x-hub-signature-256 validation
    github_webhook_secret: str

    # App id and PEM private key used to mint installation tokens
    github_app_id: str = ""
    github_private_key: str = ""

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # Service account used by the engineer agent for git operations
    github_access_token: str = ""
    github_email: str = "bot@example.com"
    github_username: str = "triage-bot"

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    # Missing key is reported per request rather than at startup
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None

    # Model used for label selection
    openai_model: str = "gpt-3.5-turbo"

    # Model used by the engineer agent
    engineer_model: str = "gpt-4-1106-preview"

    # -------------------------------------------------------------------------
    # Persistence Configuration
    # -------------------------------------------------------------------------
    # PostgreSQL connection string; in-memory storage is used when unset
    database_url: Optional[str] = None

    # Usage limit assigned to newly created customers
    default_usage_limit: int = 30

    # -------------------------------------------------------------------------
    # Billing Configuration
    # -------------------------------------------------------------------------
    stripe_secret_key: str = ""
    stripe_base_price_id: str = ""

    # -------------------------------------------------------------------------
    # Engineer Agent Configuration
    # -------------------------------------------------------------------------
    serpapi_api_key: str = ""

    vector_store_url: str = "http://qdrant:6333"
    vector_collection: str = "CodeSearch"
    embedding_url: str = "http://embedding-svc:8000"

    sandbox_base_path: str = "/tmp/triage-sandboxes"
    sandbox_template: str = "base"
    sandbox_command_timeout_seconds: int = 300

    # Comma-separated host variables visible to sandbox commands
    sandbox_env_passthrough: str = "PATH,LANG,LC_ALL,TZ"

    engineer_max_steps: int = 15

    # Bearer token for POST /engineer; the route refuses every request when unset
    engineer_api_token: str = ""

    # -------------------------------------------------------------------------
    # Timeouts
    # -------------------------------------------------------------------------
    # Deadline applied to each external call on the webhook path
    external_call_timeout_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, v: str) -> str:
        """Validate that webhook secret is not empty."""
        if not v or not v.strip():
            raise ValueError("github_webhook_secret cannot be empty")
        return v

    @field_validator("github_base_url", "vector_store_url", "embedding_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate that service URLs use http or https."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that database URL, when given, is a PostgreSQL URL."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with postgresql:// or postgres://"
            )
        return v

    @field_validator("sandbox_base_path")
    @classmethod
    def validate_sandbox_path(cls, v: str) -> str:
        """Validate that sandbox base path is an absolute path."""
        if not Path(v).is_absolute():
            raise ValueError("sandbox_base_path must be an absolute path")
        return v

    @field_validator("sandbox_env_passthrough")
    @classmethod
    def validate_env_passthrough(cls, v: str) -> str:
        """Validate that service settings are never passed into sandboxes."""
        for name in v.split(","):
            if name.strip().upper().startswith("TRIAGE_"):
                raise ValueError("sandbox_env_passthrough cannot include TRIAGE_ variables")
        return v

    @field_validator(
        "sandbox_command_timeout_seconds",
        "engineer_max_steps",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that counters and timeouts are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("external_call_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate that the external call deadline is positive."""
        if v <= 0:
            raise ValueError("external_call_timeout_seconds must be positive")
        return v

    @field_validator("default_usage_limit")
    @classmethod
    def validate_usage_limit(cls, v: int) -> int:
        """Validate that the default usage limit is not negative."""
        if v < 0:
            raise ValueError("default_usage_limit cannot be negative")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def sandbox_env_names(self) -> List[str]:
        """Allow-listed environment variable names, blanks dropped."""
        return [name.strip() for name in self.sandbox_env_passthrough.split(",") if name.strip()]

    @property
    def github_private_key_pem(self) -> str:
        """Private key with escaped newlines restored.

        Environment variables often carry PEM keys on a single line with
        literal ``\\n`` sequences.
        """
        return self.github_private_key.replace("\\n", "\n")


def get_settings() -> TriageSettings:
    """Create and return a TriageSettings instance.

    Returns:
        TriageSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return TriageSettings()
