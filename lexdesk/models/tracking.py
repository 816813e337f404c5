"""Tracking, history and one-off request models"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class TrackingStatus(str, Enum):
    """Lifecycle of a recurring provider subscription"""
    CREATED = "created"
    UPDATING = "updating"
    UPDATED = "updated"
    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


class OwnerResolution(str, Enum):
    """How the owning user of a tracking was determined"""
    OWNER = "owner"
    HINT = "hint"
    EMAIL = "email"
    REGISTRY = "registry"
    FALLBACK = "fallback"
    SYSTEM = "system"


# Search type whose key is a professional registry (bar) number
REGISTRY_SEARCH_TYPE = "oab"


class SearchDescriptor(BaseModel):
    """What the provider watches or queries"""
    search_type: str = ""
    search_key: str = ""
    response_type: Optional[str] = None
    search_params: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "SearchDescriptor":
        """Accept both {search: {...}} and a bare search mapping"""
        if not isinstance(payload, dict):
            return cls()
        search = payload.get("search") if isinstance(payload.get("search"), dict) else payload
        return cls(
            search_type=str(search.get("search_type") or ""),
            search_key=str(search.get("search_key") or "").strip(),
            response_type=search.get("response_type"),
            search_params=search.get("search_params"),
        )


class TrackingRegistration(BaseModel):
    """Parameters for registering a recurring tracking"""
    search: SearchDescriptor
    recurrence: int = Field(1, ge=1)
    notification_emails: List[str] = Field(default_factory=list)
    notification_filters: Dict[str, Any] = Field(default_factory=lambda: {"step_terms": []})
    with_attachments: bool = False
    plan_config_type: str = "simple_lawsuit_tracking"
    fixed_time: bool = False
    hour_range: int = 21
    tags: Dict[str, Any] = Field(default_factory=dict)
    callback_url: Optional[str] = None

    def provider_body(self) -> Dict[str, Any]:
        return {
            "recurrence": self.recurrence,
            "notification_emails": self.notification_emails,
            "notification_filters": self.notification_filters,
            "with_attachments": self.with_attachments,
            "plan_config_type": self.plan_config_type,
            "fixed_time": self.fixed_time,
            "hour_range": self.hour_range,
            "search": {
                "search_type": self.search.search_type,
                "search_key": self.search.search_key,
            },
            "tags": self.tags,
            "callback_url": self.callback_url,
        }


class Tracking(BaseModel):
    """Local row mirroring a provider tracking"""
    id: Optional[str] = None
    tracking_id: str
    user_id: str
    status: TrackingStatus = TrackingStatus.CREATED
    search: Dict[str, Any] = Field(default_factory=dict)
    notification_emails: List[str] = Field(default_factory=list)
    notification_filters: Dict[str, Any] = Field(default_factory=dict)
    recurrence: int = 1
    with_attachments: bool = False
    plan_config_type: Optional[str] = None
    fixed_time: bool = False
    hour_range: int = 21
    tags: Dict[str, Any] = Field(default_factory=dict)
    owner_resolution: OwnerResolution = OwnerResolution.OWNER
    last_webhook_received_at: Optional[datetime] = None

    @classmethod
    def from_provider(
        cls,
        data: Dict[str, Any],
        user_id: str,
        owner_resolution: OwnerResolution = OwnerResolution.OWNER,
    ) -> "Tracking":
        """Build a local row from a provider tracking object"""
        search = data.get("search") if isinstance(data.get("search"), dict) else {}
        status = data.get("status")
        if status not in {s.value for s in TrackingStatus}:
            status = TrackingStatus.CREATED.value
        return cls(
            tracking_id=str(data.get("tracking_id") or data.get("id") or ""),
            user_id=user_id,
            status=status,
            search=search,
            notification_emails=[e for e in data.get("notification_emails") or [] if isinstance(e, str)],
            notification_filters=data.get("notification_filters") or {},
            recurrence=int(data.get("recurrence") or 1),
            with_attachments=bool(data.get("with_attachments", False)),
            plan_config_type=data.get("plan_config_type"),
            fixed_time=bool(data.get("fixed_time", False)),
            hour_range=int(data.get("hour_range") or 21),
            tags=data.get("tags") if isinstance(data.get("tags"), dict) else {},
            owner_resolution=owner_resolution,
        )

    @property
    def descriptor(self) -> SearchDescriptor:
        return SearchDescriptor.from_payload({"search": self.search})

    def to_row(self) -> Dict[str, Any]:
        descriptor = self.descriptor
        row = self.model_dump(exclude={"id", "last_webhook_received_at"}, mode="json")
        row["search_type"] = descriptor.search_type
        row["search_key"] = descriptor.search_key
        if self.last_webhook_received_at:
            row["last_webhook_received_at"] = self.last_webhook_received_at
        return row


class HistoryEntry(BaseModel):
    """One provider response tied to a tracking"""
    tracking_id: str
    response_id: str
    response_type: str = ""
    response_data: Any = Field(default_factory=dict)
    created_at: Optional[str] = None

    @classmethod
    def from_provider(cls, tracking_id: str, item: Dict[str, Any]) -> Optional["HistoryEntry"]:
        """History item as returned by the provider's tracking history page"""
        response_id = item.get("response_id") or item.get("id")
        if not response_id:
            return None
        return cls(
            tracking_id=tracking_id,
            response_id=str(response_id),
            response_type=str(item.get("response_type") or ""),
            response_data=item.get("response_data", item),
            created_at=item.get("created_at"),
        )

    def to_row(self) -> Dict[str, Any]:
        row = {
            "tracking_id": self.tracking_id,
            "response_id": self.response_id,
            "response_type": self.response_type,
            # wrapped so a scalar or list payload still lands in the jsonb column
            "response_data": self.response_data if isinstance(self.response_data, (dict, list)) else {"value": self.response_data},
        }
        if self.created_at:
            row["created_at"] = self.created_at
        return row

