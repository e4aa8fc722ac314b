"""Settings configuration"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway settings sourced from the environment and ``.env``"""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="EBM Diagnosis Gateway", validation_alias="APP_NAME")
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    # API Keys
    openai_api_key: Optional[SecretStr] = Field(default=None, validation_alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[SecretStr] = Field(default=None, validation_alias="ANTHROPIC_API_KEY")
    google_api_key: Optional[SecretStr] = Field(
        default=None, validation_alias="GOOGLE_GENERATIVE_AI_API_KEY"
    )
    deepinfra_api_key: Optional[SecretStr] = Field(default=None, validation_alias="DEEPINFRA_API_KEY")
    e2e_api_key: Optional[SecretStr] = Field(default=None, validation_alias="E2E_NETWORKS_API_KEY")

    # Base URLs
    openai_base_url: Optional[str] = Field(default=None, validation_alias="OPENAI_BASE_URL")
    openai_organization: Optional[str] = Field(default=None, validation_alias="OPENAI_ORGANIZATION")
    anthropic_base_url: Optional[str] = Field(default=None, validation_alias="ANTHROPIC_BASE_URL")
    google_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        validation_alias="GOOGLE_BASE_URL",
    )
    deepinfra_base_url: str = Field(
        default="https://api.deepinfra.com/v1/openai", validation_alias="DEEPINFRA_BASE_URL"
    )
    e2e_base_url: str = Field(
        default="https://infer.e2enetworks.net/project/p-4979/genai",
        validation_alias="E2E_NETWORKS_BASE_URL",
    )

    # Model Defaults
    llm_primary_provider: str = Field(default="google", validation_alias="LLM_PRIMARY_PROVIDER")
    llm_primary_model: str = Field(default="gemini-2.5-flash", validation_alias="LLM_PRIMARY_MODEL")
    llm_fallback_provider: str = Field(default="deepinfra", validation_alias="LLM_FALLBACK_PROVIDER")
    llm_fallback_model: str = Field(
        default="meta-llama/Meta-Llama-3.1-70B-Instruct", validation_alias="LLM_FALLBACK_MODEL"
    )
    embedding_primary_provider: str = Field(
        default="openai", validation_alias="EMBEDDING_PRIMARY_PROVIDER"
    )
    embedding_primary_model: str = Field(
        default="text-embedding-3-large", validation_alias="EMBEDDING_PRIMARY_MODEL"
    )
    embedding_fallback_provider: str = Field(
        default="google", validation_alias="EMBEDDING_FALLBACK_PROVIDER"
    )
    embedding_fallback_model: str = Field(
        default="text-embedding-004", validation_alias="EMBEDDING_FALLBACK_MODEL"
    )

    # Fallback and retries
    enable_fallback: bool = Field(default=True, validation_alias="ENABLE_FALLBACK")
    primary_max_retries: int = Field(default=2, validation_alias="PRIMARY_MAX_RETRIES", ge=0)
    fallback_max_retries: int = Field(default=2, validation_alias="FALLBACK_MAX_RETRIES", ge=0)
    retry_min_wait: float = Field(default=0.5, validation_alias="RETRY_MIN_WAIT", ge=0)
    retry_max_wait: float = Field(default=8.0, validation_alias="RETRY_MAX_WAIT", ge=0)

    # Timeouts
    request_timeout: float = Field(default=60.0, validation_alias="REQUEST_TIMEOUT", gt=0)

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    @field_validator(
        "llm_primary_provider",
        "llm_fallback_provider",
        "embedding_primary_provider",
        "embedding_fallback_provider",
        mode="before",
    )
    @classmethod
    def normalize_provider(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError("LOG_FORMAT must be 'json' or 'console'")
        return v

    # Properties
    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def api_key_for(self, provider: str) -> Optional[str]:
        """Return the plain credential configured for ``provider``, if any."""
        secret = getattr(self, f"{provider}_api_key", None)
        if secret is None:
            return None
        value = secret.get_secret_value()
        return value or None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
