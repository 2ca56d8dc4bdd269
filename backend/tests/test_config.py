"""
Tests for application settings.
"""
import pytest
from pydantic import ValidationError

from blob_gateway.config import Settings
from tests.conftest import TEST_SECRET, make_settings


class TestSettings:
    """Tests for Settings loading and validation."""

    def test_defaults(self):
        settings = make_settings()

        assert settings.retry_total == 4
        assert settings.retry_initial_backoff == 4.0
        assert settings.retry_increment_base == 4.0
        assert settings.retry_max_backoff == 300.0
        assert settings.delegation_key_validity_days == 5
        assert settings.api_prefix == "/azure/v1"
        assert Settings.model_fields["upload_block_size"].default == 2 * 1024 * 1024

    def test_storage_endpoint_substitutes_account(self):
        settings = make_settings(azure_storage_id="acme")
        assert settings.storage_endpoint == "https://acme.blob.core.windows.net"

    def test_custom_endpoint_template(self):
        settings = make_settings(
            azure_storage_id="acme",
            azure_storage_endpoint="https://{STORAGE-ID}.blob.core.usgovcloudapi.net/",
        )
        assert settings.storage_endpoint == "https://acme.blob.core.usgovcloudapi.net"

    def test_endpoint_without_placeholder_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(azure_storage_endpoint="https://fixed.blob.core.windows.net")

    @pytest.mark.parametrize("container", ["", "   "])
    def test_empty_container_rejected(self, container):
        with pytest.raises(ValidationError):
            make_settings(azure_storage_container=container)

    def test_missing_credentials_rejected(self, monkeypatch):
        monkeypatch.delenv("AZURE_TENANT_ID", raising=False)
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,
                azure_client_id="id",
                azure_client_secret="secret",
                azure_storage_id="acme",
                azure_storage_container="reports",
            )

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("AZURE_TENANT_ID", "tenant")
        monkeypatch.setenv("AZURE_CLIENT_ID", "client")
        monkeypatch.setenv("AZURE_CLIENT_SECRET", "from-env")
        monkeypatch.setenv("AZURE_STORAGE_ID", "envaccount")
        monkeypatch.setenv("AZURE_STORAGE_CONTAINER", "envcontainer")
        monkeypatch.setenv("UPLOAD_MAX_CONCURRENCY", "8")

        settings = Settings(_env_file=None)

        assert settings.azure_storage_id == "envaccount"
        assert settings.upload_max_concurrency == 8
        assert settings.azure_client_secret.get_secret_value() == "from-env"

    def test_secret_hidden_from_repr(self):
        settings = make_settings()
        assert TEST_SECRET not in repr(settings)
        assert TEST_SECRET not in str(settings.model_dump())

    def test_settings_are_immutable(self):
        settings = make_settings()
        with pytest.raises(ValidationError):
            settings.azure_storage_container = "other"
