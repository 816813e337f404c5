"""Pydantic models for API requests"""

from typing import Optional, Dict, Any, List, Literal
from pydantic import BaseModel, Field

from lexdesk.models.tracking import SearchDescriptor, TrackingRegistration


class SearchBody(BaseModel):
    """What to look up at the provider"""
    search_type: str = Field(..., min_length=1, description="e.g. lawsuit_cnj, oab, cpf")
    search_key: str = Field(..., min_length=1)
    response_type: Optional[str] = None
    search_params: Optional[Dict[str, Any]] = None

    def descriptor(self) -> SearchDescriptor:
        return SearchDescriptor(
            search_type=self.search_type,
            search_key=self.search_key.strip(),
            response_type=self.response_type,
            search_params=self.search_params,
        )


class RequestCreateBody(BaseModel):
    """One-off provider request"""
    search: SearchBody
    wait: bool = Field(False, description="Poll until the request completes")


class TrackingCreateBody(BaseModel):
    """Recurring tracking registration"""
    search: SearchBody
    mode: Literal["ensure", "force"] = "ensure"
    recurrence: int = Field(1, ge=1)
    notification_emails: List[str] = Field(default_factory=list)
    notification_filters: Dict[str, Any] = Field(default_factory=lambda: {"step_terms": []})
    with_attachments: bool = False
    plan_config_type: str = "simple_lawsuit_tracking"
    fixed_time: bool = False
    hour_range: int = Field(21, ge=0, le=23)
    tags: Dict[str, Any] = Field(default_factory=dict)

    def registration(self) -> TrackingRegistration:
        return TrackingRegistration(
            search=self.search.descriptor(),
            **self.model_dump(exclude={"search", "mode"}),
        )


class RegistrySearchBody(BaseModel):
    """Lawsuits of a professional registry number"""
    registry_number: str = Field(..., min_length=1)
    region: str = Field(..., min_length=2, max_length=2)


class InvoiceBody(BaseModel):
    """Receivable issued to a client"""
    number: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    client_name: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    due_date: Optional[str] = None
    description: Optional[str] = None
    client_id: Optional[str] = None


class TenantCreateBody(BaseModel):
    """Tenant onboarding"""
    name: str = Field(..., min_length=1)
    plan_id: Optional[str] = None
