#!/usr/bin/env python3
"""
Beacon Gateway Configuration

Centralized configuration management for the beacon collector HTTP service.
Supports environment-based configuration for different deployment environments.
"""

import os
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from collector.core.models.config import CollectorConfig


class SinkConfig(BaseModel):
    """Notification sink configuration."""

    model_config = ConfigDict(validate_assignment=True)

    webhook_url: Optional[str] = Field(default=None, description="Chat webhook URL (Discord-compatible)")
    request_timeout: float = Field(default=5.0, gt=0, description="Webhook request timeout in seconds")
    include_debug_payload: bool = Field(default=True, description="Send the trimmed headers/body payload after the summary")


class APIConfig(BaseModel):
    """API configuration."""

    model_config = ConfigDict(validate_assignment=True)

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, ge=1, le=65535, description="Server port")

    # API settings
    title: str = Field(default="Visitor Beacon Collector", description="API title")
    description: str = Field(
        default="Collects page-view beacons, collapses bursts and forwards scored visit summaries",
        description="API description"
    )
    version: str = Field(default="1.0.0", description="API version")

    # Behaviour
    destination_url: str = Field(default="https://buy-a-brainrot.vercel.app/", description="Redirect target for tracked links")
    flush_on_shutdown: bool = Field(default=False, description="Deliver pending bursts when the service stops")

    # CORS settings
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="CORS allowed origins")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(validate_assignment=True)

    level: str = Field(default="INFO", description="Log level")

    # Structured logging fields
    service_name: str = Field(default="beacon-collector", description="Service name")
    environment: str = Field(default="production", description="Environment")


class GatewayConfig(BaseModel):
    """Complete gateway service configuration."""

    model_config = ConfigDict(validate_assignment=True)

    # Component configurations
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    sink: SinkConfig = Field(default_factory=SinkConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Global settings
    environment: str = Field(default="production", description="Environment")

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Load configuration from environment variables."""
        config = cls(collector=CollectorConfig.from_env())

        # Sink configuration
        if os.getenv("DISCORD_WEBHOOK_URL"):
            config.sink.webhook_url = os.getenv("DISCORD_WEBHOOK_URL")
        if os.getenv("WEBHOOK_TIMEOUT"):
            config.sink.request_timeout = float(os.getenv("WEBHOOK_TIMEOUT"))
        if os.getenv("DEBUG_PAYLOAD"):
            config.sink.include_debug_payload = os.getenv("DEBUG_PAYLOAD").lower() == "true"

        # API configuration
        if os.getenv("API_HOST"):
            config.api.host = os.getenv("API_HOST")
        if os.getenv("API_PORT"):
            config.api.port = int(os.getenv("API_PORT"))
        if os.getenv("DEST_URL"):
            config.api.destination_url = os.getenv("DEST_URL")
        if os.getenv("FLUSH_ON_SHUTDOWN"):
            config.api.flush_on_shutdown = os.getenv("FLUSH_ON_SHUTDOWN").lower() == "true"
        if os.getenv("CORS_ORIGINS"):
            config.api.cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS").split(",") if o.strip()]

        # Logging configuration
        if os.getenv("LOG_LEVEL"):
            config.logging.level = os.getenv("LOG_LEVEL")
        if os.getenv("ENVIRONMENT"):
            config.environment = os.getenv("ENVIRONMENT")
            config.logging.environment = os.getenv("ENVIRONMENT")

        return config
