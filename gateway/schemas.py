#!/usr/bin/env python3
"""
Response Schemas for the Beacon Gateway

Pydantic models for the JSON endpoints. Beacon bodies themselves are not
modelled here: they are free-form and decoded leniently by the collector.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(str, Enum):
    """Service health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ErrorDetail(BaseModel):
    """Error detail information."""

    error_code: str = Field(description="Error code")
    error_message: str = Field(description="Human-readable error message")
    error_type: str = Field(description="Error type category")
    timestamp: datetime = Field(description="Error timestamp")
    request_id: Optional[str] = Field(default=None, description="Request identifier")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail = Field(description="Error details")

    model_config = ConfigDict(extra="forbid")


class HealthResponse(BaseModel):
    """Health check response."""

    status: HealthStatus = Field(description="Overall service health")
    timestamp: datetime = Field(description="Health check timestamp")
    version: str = Field(description="Service version")
    uptime_seconds: float = Field(description="Service uptime in seconds")
    sink_configured: bool = Field(description="Whether a webhook URL is configured")
    bursts: Dict[str, int] = Field(default_factory=dict, description="Bursts in the aggregation store by state")
    pending_timers: int = Field(default=0, description="Flush/eviction timers waiting to fire")


class SelfTestResponse(BaseModel):
    """Result of posting a self-test message to the webhook."""

    ok: bool = Field(description="Whether the webhook accepted the message")
    status: Optional[int] = Field(default=None, description="Webhook HTTP status")
    note: Optional[str] = Field(default=None, description="Operator hint")
    discord_response_snippet: Optional[str] = Field(default=None, description="First 200 chars of the webhook response")
    error: Optional[str] = Field(default=None, description="Error description when the test could not run")
