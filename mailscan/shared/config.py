"""Shared configuration management for the mail scanning service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["scan", "huggingface", "gemini"]


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_GEMINI_API_KEY=... or APP_PROVIDER_ORDER='["gemini", "scan"]'
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="mailscan",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Fallback chain
    provider_order: list[ProviderName] = Field(
        default=["scan", "huggingface", "gemini"],
        description="Canonical provider priority, first entry is the default starting provider",
    )
    max_fallback_hops: int = Field(
        default=2,
        ge=0,
        description="Fallback hops allowed after the first attempt of one extraction",
    )
    provider_retry_attempts: int = Field(
        default=1,
        ge=1,
        description="Attempts per provider call for transient errors (1 = no same-provider retry)",
    )
    request_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Transport timeout for a single provider HTTP call",
    )

    # Variant A: direct multimodal model (Gemini)
    gemini_api_key: str = Field(
        default="",
        description="Gemini API key (use env var APP_GEMINI_API_KEY)",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model used when no model hint is supplied",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini REST API base URL",
    )

    # Variant B: hosted inference router (Hugging Face, OpenAI-compatible)
    hf_api_key: str = Field(
        default="",
        description="Hugging Face token (use env var APP_HF_API_KEY)",
    )
    hf_model: str = Field(
        default="meta-llama/Llama-3.2-11B-Vision-Instruct",
        description="Vision model routed through the Hugging Face inference router",
    )
    hf_base_url: str = Field(
        default="https://router.huggingface.co/v1",
        description="OpenAI-compatible base URL of the inference router",
    )

    # Variant C: self-hosted OCR scan service
    scan_service_url: str = Field(
        default="",
        description="Full URL of the self-hosted /scan endpoint (multipart upload)",
    )
    tunnel_hosts: list[str] = Field(
        default=["ngrok-free.dev", "ngrok-free.app", "ngrok.app", "ngrok.io"],
        description="Host suffixes of dev tunnels that serve an interstitial warning page",
    )
    tunnel_bypass_header: dict[str, str] = Field(
        default={"ngrok-skip-browser-warning": "true"},
        description="Header attached to requests whose URL host matches tunnel_hosts",
    )

    # Observability
    raw_event_buffer_size: int = Field(
        default=100,
        ge=1,
        description="Raw provider responses kept for debugging panels",
    )

    # Storage configuration (S3-compatible object storage)
    storage_enabled: bool = Field(
        default=False,
        description="Persist completed scans to S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="mail-scans",
        description="Bucket holding one JSON object per completed scan",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )

    @field_validator("provider_order")
    @classmethod
    def _unique_provider_order(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("provider_order must name at least one provider")
        if len(set(value)) != len(value):
            raise ValueError(f"provider_order contains duplicates: {value}")
        return value


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
