"""Inbound provider webhook models"""

from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, ConfigDict
from enum import Enum


class WebhookEventType(str, Enum):
    """Provider callback event types"""
    RESPONSE_CREATED = "response_created"
    REQUEST_COMPLETED = "request_completed"
    TRACKING_UPDATED = "tracking_updated"


class ReferenceType(str, Enum):
    """What the callback's reference_id points at"""
    TRACKING = "tracking"
    REQUEST = "request"
    LAWSUIT = "lawsuit"


# Acknowledgment the provider sends once a request finishes; carries no data
HEARTBEAT_MESSAGE = "REQUEST_COMPLETED"
HEARTBEAT_CODE = 600


class WebhookPayload(BaseModel):
    """Callback body as delivered by the provider"""
    model_config = ConfigDict(extra="allow")

    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    tracking_id: Optional[str] = None
    event_type: Optional[str] = None
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    user_id: Optional[str] = Field(None, alias="userId")
    response_id: Optional[str] = None
    response_type: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: Optional[str] = None
    hour_range: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    search: Dict[str, Any] = Field(default_factory=dict)

    @property
    def response_data(self) -> Any:
        data = self.payload.get("response_data")
        if data is None:
            data = (self.model_extra or {}).get("response_data")
        return data if data is not None else {}

    @property
    def is_heartbeat(self) -> bool:
        data = self.payload.get("response_data")
        if not isinstance(data, dict):
            return False
        return data.get("message") == HEARTBEAT_MESSAGE and data.get("code") == HEARTBEAT_CODE

    @property
    def tracking_ref(self) -> Optional[str]:
        if self.reference_type == ReferenceType.REQUEST.value:
            return None
        if self.reference_type == ReferenceType.TRACKING.value and self.reference_id:
            return str(self.reference_id)
        value = self.tracking_id or (self.model_extra or {}).get("id")
        return str(value) if value else None

    @property
    def is_lawsuit_reference(self) -> bool:
        return self.reference_type == ReferenceType.LAWSUIT.value

    @property
    def request_ref(self) -> Optional[str]:
        if self.reference_type == ReferenceType.REQUEST.value and self.reference_id:
            return str(self.reference_id)
        return None

    @property
    def resolved_response_id(self) -> Optional[str]:
        value = self.payload.get("response_id") or self.response_id
        return str(value) if value else None

    @property
    def resolved_response_type(self) -> str:
        return str(self.payload.get("response_type") or self.response_type or "lawsuit")

    @property
    def notification_emails(self) -> list:
        emails = (self.model_extra or {}).get("notification_emails")
        if not isinstance(emails, list):
            return []
        return [e.strip() for e in emails if isinstance(e, str) and e.strip()]


class ReconcileResult(BaseModel):
    """Outcome of processing one callback"""
    received: bool = True
    heartbeat: bool = False
    tenant_id: Optional[str] = None
    tracking_id: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    owner_resolution: Optional[str] = None
    history_appended: bool = False
    duplicate: bool = False
    status: Optional[str] = None
    publication_id: Optional[str] = None
    notification_id: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
