"""Provider, webhook and SMTP settings read from the environment"""

import os
from typing import Optional
from pydantic import BaseModel, Field


class ProviderSettings(BaseModel):
    """Legal-data provider endpoints and credentials"""
    base_url: str = "https://requests.prod.judit.io"
    tracking_base_url: str = "https://tracking.prod.judit.io"
    default_api_key: Optional[str] = None
    webhook_url: Optional[str] = None
    timeout_seconds: float = 30.0
    poll_timeout_seconds: float = 20.0
    poll_interval_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "ProviderSettings":
        return cls(
            base_url=os.getenv("PROVIDER_BASE_URL", "https://requests.prod.judit.io").rstrip("/"),
            tracking_base_url=os.getenv(
                "PROVIDER_TRACKING_BASE_URL", "https://tracking.prod.judit.io"
            ).rstrip("/"),
            default_api_key=os.getenv("PROVIDER_API_KEY") or None,
            webhook_url=os.getenv("PROVIDER_WEBHOOK_URL") or None,
            timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30")),
        )


class SmtpSettings(BaseModel):
    """Outbound email"""
    host: Optional[str] = None
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    sender: str = Field(default="no-reply@lexdesk.local")

    @classmethod
    def from_env(cls) -> "SmtpSettings":
        return cls(
            host=os.getenv("SMTP_HOST") or None,
            port=int(os.getenv("SMTP_PORT", "587")),
            user=os.getenv("SMTP_USER") or None,
            password=os.getenv("SMTP_PASSWORD") or None,
            sender=os.getenv("SMTP_FROM", "no-reply@lexdesk.local"),
        )
