"""Configuration and settings management using pydantic-settings."""
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="NODEFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    log_level: str = Field(default="INFO", description="Log level")

    # Azure OpenAI credentials keep their conventional unprefixed names
    azure_openai_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("AZURE_OPENAI_API_KEY", "NODEFLOW_AZURE_OPENAI_API_KEY"),
    )
    azure_openai_endpoint: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AZURE_OPENAI_ENDPOINT", "NODEFLOW_AZURE_OPENAI_ENDPOINT"),
    )
    azure_openai_deployment_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "AZURE_OPENAI_DEPLOYMENT_ID", "NODEFLOW_AZURE_OPENAI_DEPLOYMENT_ID"
        ),
    )
    azure_openai_api_version: str = Field(
        default="2024-08-01-preview",
        validation_alias=AliasChoices(
            "AZURE_OPENAI_API_VERSION", "NODEFLOW_AZURE_OPENAI_API_VERSION"
        ),
    )

    # HTTP gateway
    http_timeout_seconds: float = Field(default=30.0, description="Outbound HTTP timeout")
    user_agent: str = Field(default="nodeflow/1.0", description="User-Agent for proxied requests")

    # Sandboxed evaluation of transform code and conditions
    sandbox_timeout_seconds: float = Field(default=5.0, description="Wall-clock limit per evaluation")

    @property
    def azure_credentials_configured(self) -> bool:
        return bool(
            self.azure_openai_api_key
            and self.azure_openai_api_key.get_secret_value()
            and self.azure_openai_endpoint
            and self.azure_openai_deployment_id
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
