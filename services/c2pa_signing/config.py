"""
Configuration management for the C2PA signing service.

Non-secret configuration loaded from YAML file, secrets from environment variables.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = Path("/etc/c2pa-signing/config.yaml")


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path(os.environ.get("C2PA_SIGNING_CONFIG_FILE", DEFAULT_CONFIG_PATH))
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


class CertificateConfig(BaseModel):
    """Certificate authority issuance policy."""

    root_validity_days: int = Field(default=3650, gt=0, description="Root CA validity (10 years)")
    intermediate_validity_days: int = Field(
        default=1825, gt=0, description="Intermediate CA validity (5 years)"
    )
    end_entity_validity_days: int = Field(
        default=365, gt=0, description="End-entity certificate validity (1 year)"
    )
    temporary_validity_days: int = Field(
        default=1, gt=0, description="Temporary certificate validity (1 day)"
    )
    organization: str = Field(default="C2PA Signing Service")
    country: str = Field(default="US", min_length=2, max_length=2)


class SigningConfig(BaseModel):
    """Server-side default signer configuration."""

    algorithm: str = Field(default="es256", description="Algorithm advertised to remote clients")
    certificate_chain_path: Path | None = Field(
        default=None,
        description="PEM chain (leaf first). When unset the local CA issues the server credentials.",
    )
    private_key_path: Path | None = Field(default=None, description="PEM private key for the chain")
    timestamp_url: str = Field(
        default="",
        description="Timestamp authority URL. Empty disables timestamping.",
    )
    verify_after_sign: bool = Field(
        default=True,
        description="Re-read signed assets through the engine as a local sanity check",
    )


class RemoteConfig(BaseModel):
    """Outbound HTTP settings for remote configuration, enrollment and signing."""

    timeout_seconds: float = Field(default=30.0, gt=0)


class KeyStoreConfig(BaseModel):
    """Key custody backend for keystore and hardware signing modes."""

    backend: Literal["software", "pkcs11"] = Field(default="software")
    data_dir: Path | None = Field(
        default=None,
        description="Directory for software keystore keys. Keys stay in memory when unset.",
    )
    pkcs11_module: Path | None = Field(default=None, description="Path to the PKCS#11 module .so")
    token_label: str = Field(default="")
    user_pin: str | None = Field(default=None, description="Token PIN (from env)")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="C2PA_SIGNING_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="C2PA Signing API")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")

    # API
    api_prefix: str = Field(default="/api/v1")

    # Externally reachable base URL, advertised as the remote signing endpoint
    server_url: str = Field(
        default="",
        description="Base URL of this server, e.g. https://signer.example.com",
    )

    # Shared secret for Authorization: Bearer. Unset means the API is open.
    bearer_token: str | None = Field(
        default=None,
        description="Bearer secret. Set via C2PA_SIGNING_BEARER_TOKEN env var.",
    )

    max_request_size: int = Field(
        default=52428800,
        description="Maximum accepted asset size in bytes (50MB)",
    )

    # Certificate Authority data directory. Unset keeps the hierarchy in memory.
    ca_data_dir: Path | None = Field(
        default=None,
        description="Directory for root/intermediate certificate and key storage",
    )

    certificates: CertificateConfig = Field(default_factory=CertificateConfig)
    signing: SigningConfig = Field(default_factory=SigningConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    keystore: KeyStoreConfig = Field(default_factory=KeyStoreConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
