# imagegen/config.py
"""Application configuration using pydantic-settings.

Provides a centralized Settings class for all environment variables.
Durations are expressed in seconds.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are loaded from .env file and environment variables.
    Environment variables take precedence over .env file values.
    """

    # Upstream endpoints
    image_api_base_url: str = "https://image.pollinations.ai"
    text_api_base_url: str = "https://text.pollinations.ai"
    user_agent: str = "Pollinations-Image-Generator/1.0.0"

    # Result cache
    cache_max_size: int = 50
    cache_max_age: float = 60 * 60  # 1 hour

    # Model catalog
    catalog_timeout: float = 10.0
    catalog_consumer_ttl: float = 30 * 60  # 30 minutes
    catalog_aggregator_ttl: float = 60 * 60  # 1 hour
    catalog_max_retries: int = 3
    catalog_backoff_base: float = 1.0
    # Read the catalog from a running aggregator (e.g. http://host/api/models)
    # instead of calling the upstream catalog in-process
    catalog_source_url: str = ""

    # Generation
    generation_timeout: float = 10.0
    enhancement_timeout: float = 15.0
    history_size: int = 20

    # Observability
    logfire_token: str = ""
    log_level: str = "INFO"

    # API Security
    api_auth_key: str = ""  # Optional X-API-Key for the HTTP interface
    api_rate_limit: int = 60  # Requests per minute

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
        case_sensitive=False,  # Allow case-insensitive env var names
    )

    @property
    def models_url(self) -> str:
        """Remote model catalog URL derived from the image API base."""
        return f"{self.image_api_base_url.rstrip('/')}/models"


# Singleton instance - import this in your code
settings = Settings()
