"""Tenant, plan and user models for schema-per-tenant isolation"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class Plan(BaseModel):
    """Billing and quota template"""
    id: str
    name: str = ""
    max_queries: Optional[int] = None
    additional_query_fee: float = 0.0
    max_receivables: Optional[int] = None
    additional_receivable_fee: float = 0.0


class Tenant(BaseModel):
    """Tenant model"""
    id: str
    name: str
    schema_name: str
    is_active: bool = True
    plan_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


class TenantUser(BaseModel):
    """Active member of a tenant"""
    id: str
    tenant_id: str
    email: str = ""
    name: str = ""
    is_active: bool = True
    created_at: Optional[datetime] = None


class TenantApiConfig(BaseModel):
    """Per-tenant provider credentials"""
    tenant_id: str
    api_key: Optional[str] = None
    is_active: bool = True


class SubscriptionPeriod(BaseModel):
    """Current period of the tenant's billing subscription, if any"""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[str] = None
