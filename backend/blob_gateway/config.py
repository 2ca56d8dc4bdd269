"""
Application configuration using Pydantic Settings.
All environment variables are loaded here once, at process start.
"""
from functools import lru_cache

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORAGE_ID_PLACEHOLDER = "{STORAGE-ID}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Azure AD service principal
    azure_tenant_id: str
    azure_client_id: str
    azure_client_secret: SecretStr

    # Storage account
    azure_storage_id: str  # account name, substituted into the endpoint template
    azure_storage_endpoint: str = f"https://{STORAGE_ID_PLACEHOLDER}.blob.core.windows.net"
    azure_storage_container: str

    # Retry policy (exponential backoff)
    retry_total: int = 4  # retries after the first attempt, so 5 tries in total
    retry_initial_backoff: float = 4.0
    retry_increment_base: float = 4.0
    retry_max_backoff: float = 300.0  # seconds

    # Transfers
    upload_block_size: int = 2 * 1024 * 1024  # 2MB
    upload_max_concurrency: int = 5
    upload_tracker_max_entries: int = 1000
    download_max_retries: int = 5
    list_page_size: int = 1000
    list_timeout: int = 60  # seconds, server-side per call

    # Delegated access links
    delegation_key_validity_days: int = 5

    # Environment
    environment: str = "dev"
    log_level: str = "INFO"
    api_prefix: str = "/azure/v1"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("azure_storage_container")
    @classmethod
    def container_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("azure_storage_container must not be empty")
        return value.strip()

    @field_validator("azure_storage_endpoint")
    @classmethod
    def endpoint_has_placeholder(cls, value: str) -> str:
        if STORAGE_ID_PLACEHOLDER not in value:
            raise ValueError(
                f"azure_storage_endpoint must contain the {STORAGE_ID_PLACEHOLDER} placeholder"
            )
        return value.rstrip("/")

    @property
    def storage_endpoint(self) -> str:
        """Endpoint URL with the storage account id substituted."""
        return self.azure_storage_endpoint.replace(STORAGE_ID_PLACEHOLDER, self.azure_storage_id)


@lru_cache
def get_settings() -> Settings:
    """Read settings once per process."""
    return Settings()
