"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Literal, Optional
from datetime import datetime
from uuid import UUID

HandoffType = Literal["facility_to_driver", "driver_to_incinerator"]


# Handoff input
class HandoffContainerIn(BaseModel):
    container_id: UUID
    waste_class: Optional[str] = None
    declared_weight: Optional[float] = Field(default=None, ge=0)
    confirmed_weight: Optional[float] = Field(default=None, ge=0)
    bag_count: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class HandoffReceiverIn(BaseModel):
    user_id: Optional[UUID] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None


class HandoffCreate(BaseModel):
    type: HandoffType
    # UUID or session code
    session_id: Optional[str] = None
    containers: list[HandoffContainerIn] = Field(default_factory=list)
    container_ids: list[UUID] = Field(default_factory=list)
    facility_id: Optional[UUID] = None
    incineration_plant_id: Optional[UUID] = None
    receiver: Optional[HandoffReceiverIn] = None
    expires_at: Optional[datetime] = None


class HandoffDisputeRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    evidence: list[str] = Field(default_factory=list)


class HandoffResolveRequest(BaseModel):
    resolution: Optional[str] = None


# Handoff output
class HandoffPartyOut(BaseModel):
    user_id: Optional[UUID] = None
    role: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    confirmed_at: Optional[datetime] = None


class HandoffContainerOut(BaseModel):
    container_id: UUID
    bin_code: Optional[str] = None
    waste_type: Optional[str] = None
    waste_class: Optional[str] = None
    fill_level: Optional[int] = None
    declared_weight: Optional[float] = None
    confirmed_weight: Optional[float] = None
    bag_count: Optional[int] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class HandoffDisputeOut(BaseModel):
    raised_by_id: Optional[UUID] = None
    role: Optional[str] = None
    reason: Optional[str] = None
    description: Optional[str] = None
    evidence: list[str] = Field(default_factory=list)
    raised_at: Optional[datetime] = None
    resolved_by_id: Optional[UUID] = None
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None


class HandoffOut(BaseModel):
    id: UUID
    handoff_code: str
    chain_id: Optional[str] = None
    type: str
    sequence: int
    session_id: Optional[UUID] = None
    company_id: UUID
    facility_id: Optional[UUID] = None
    incineration_plant_id: Optional[UUID] = None
    sender: HandoffPartyOut
    receiver: HandoffPartyOut
    containers: list[HandoffContainerOut]
    total_containers: int
    total_declared_weight: float
    total_confirmed_weight: float
    status: str
    dispute: Optional[HandoffDisputeOut] = None
    token_expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class NotificationResultOut(BaseModel):
    channel: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class HandoffCreateResponse(BaseModel):
    handoff: HandoffOut
    # Only returned once, to the creator, for driver_to_incinerator handoffs.
    confirmation_token: Optional[str] = None
    confirmation_url: Optional[str] = None
    notifications: list[NotificationResultOut] = Field(default_factory=list)


class HandoffResendResponse(BaseModel):
    handoff: HandoffOut
    notifications: list[NotificationResultOut]


class HandoffPublicContainerOut(BaseModel):
    bin_code: Optional[str] = None
    waste_type: Optional[str] = None
    waste_class: Optional[str] = None
    declared_weight: Optional[float] = None
    bag_count: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class HandoffPublicOut(BaseModel):
    """Summary shown on the public confirmation page; no party contact details."""

    handoff_code: str
    type: str
    containers: list[HandoffPublicContainerOut]
    total_containers: int
    total_declared_weight: float
    status: str
    created_at: datetime
    token_expires_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class HandoffChainOut(BaseModel):
    session_id: UUID
    session_code: str
    chain_id: Optional[str] = None
    stage: str
    stage_updated_at: Optional[datetime] = None
    handoffs: list[HandoffOut]


class NotificationLogOut(BaseModel):
    id: UUID
    handoff_id: UUID
    recipient_user_id: Optional[UUID] = None
    recipient_phone: Optional[str] = None
    recipient_name: Optional[str] = None
    channel: str
    status: str
    provider_message_id: Optional[str] = None
    content: Optional[str] = None
    sent_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    retry_count: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Pagination
class PaginationResponse(BaseModel):
    total: int
    limit: int
    offset: int


class PaginatedHandoffs(BaseModel):
    data: list[HandoffOut]
    pagination: PaginationResponse


class PaginatedNotificationLogs(BaseModel):
    data: list[NotificationLogOut]
    pagination: PaginationResponse


# System
class HealthCheckResponse(BaseModel):
    status: str
    database: str
    redis: str
    version: str
