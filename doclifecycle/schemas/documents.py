from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DocumentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    owner_type: str
    owner_id: str
    document_type: str
    category: str
    status: str
    is_active: bool
    is_currently_valid: bool = False
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    superseded_by_id: UUID | None = None
    previous_version_id: UUID | None = None
    version_number: int
    replaced_at: datetime | None = None
    replacement_reason: str | None = None
    rejection_reason: str | None = None
    reviewed_at: datetime | None = None
    file_name: str
    mime_type: str | None = None
    file_size: int | None = None
    is_sensitive: bool = False
    created_at: datetime | None = None


class ApplicationUsageDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    application_id: str
    attached_at: datetime
    notes: str | None = None


class DocumentHistoryItem(DocumentDTO):
    applications: list[ApplicationUsageDTO] = Field(default_factory=list)


class DocumentHistoryResponse(BaseModel):
    document_type: str
    items: list[DocumentHistoryItem]
    total: int


class SupersessionChainItem(DocumentDTO):
    is_current: bool = False


class SupersessionChainResponse(BaseModel):
    document_id: UUID
    document_type: str
    items: list[SupersessionChainItem]
    total: int


class ValidAtResponse(BaseModel):
    at: datetime
    document_type: str | None = None
    items: list[DocumentDTO]
    total: int


class TimelineEventDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event: str
    occurred_at: datetime
    document_id: UUID
    document_type: str
    document_status: str
    details: dict[str, Any] = Field(default_factory=dict)


class TimelineResponse(BaseModel):
    document_type: str | None = None
    items: list[TimelineEventDTO]
    total: int
