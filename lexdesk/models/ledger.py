"""Notification, transaction and publication models"""

from datetime import date
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):
    """In-app notification for a single user"""
    user_id: str
    actor_id: Optional[str] = "system"
    type: str = "system"
    title: str
    message: str
    payload: Optional[Dict[str, Any]] = None
    link: Optional[str] = None


class OverageKind(str, Enum):
    """Ledger category for over-limit charges"""
    QUERY = "overage_query"
    RECEIVABLE = "overage_receivable"


class TransactionCreate(BaseModel):
    """Financial ledger row"""
    type: str
    amount: float
    category_id: str
    category: str = ""
    description: str = ""
    date: str = Field(default_factory=lambda: date.today().isoformat())
    payment_method: Optional[str] = None
    status: str = "confirmed"
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class PublicationCreate(BaseModel):
    """Derived publication raised for a tracking event"""
    oab_number: str = ""
    process_number: str = ""
    publication_date: str = Field(default_factory=lambda: date.today().isoformat())
    content: str = ""
    source: str = "provider"
    external_id: str
    status: str = "nova"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class InvoiceCreate(BaseModel):
    """Receivable issued to a client"""
    number: str
    title: str
    client_name: str
    amount: float
    due_date: Optional[str] = None
    description: Optional[str] = None
    client_id: Optional[str] = None
