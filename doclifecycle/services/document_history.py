"""Read-only history surface used by audit and compliance screens."""

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.models.document import Document, DocumentStatus, DocumentType
from doclifecycle.models.documentable_relation import DocumentableRelation, RelationContext
from doclifecycle.models.refs import EntityKind, EntityRef
from doclifecycle.models.types import ensure_utc
from doclifecycle.services import documents, supersession, validity
from doclifecycle.services.errors import DocumentNotFoundError

DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
DOCUMENT_APPROVED = "DOCUMENT_APPROVED"
DOCUMENT_REJECTED = "DOCUMENT_REJECTED"
DOCUMENT_SUPERSEDED = "DOCUMENT_SUPERSEDED"
DOCUMENT_USED_IN_APPLICATION = "DOCUMENT_USED_IN_APPLICATION"


@dataclass(slots=True)
class ApplicationUsage:
    application_id: str
    attached_at: datetime
    notes: str | None = None


@dataclass(slots=True)
class HistoryEntry:
    document: Document
    applications: list[ApplicationUsage] = field(default_factory=list)


@dataclass(slots=True)
class TimelineEvent:
    event: str
    occurred_at: datetime
    document_id: uuid.UUID
    document_type: str
    document_status: str
    details: dict[str, Any] = field(default_factory=dict)


async def _application_usage(
    db: AsyncSession, tenant_id: str, document_ids: list[uuid.UUID]
) -> dict[uuid.UUID, list[ApplicationUsage]]:
    usage: dict[uuid.UUID, list[ApplicationUsage]] = defaultdict(list)
    if not document_ids:
        return usage
    stmt = (
        select(DocumentableRelation)
        .where(
            DocumentableRelation.tenant_id == tenant_id,
            DocumentableRelation.document_id.in_(document_ids),
            DocumentableRelation.relatable_type == EntityKind.APPLICATION.value,
            DocumentableRelation.relation_context == RelationContext.USAGE.value,
            DocumentableRelation.deleted_at.is_(None),
        )
        .order_by(DocumentableRelation.created_at)
    )
    for relation in (await db.execute(stmt)).scalars().all():
        usage[relation.document_id].append(
            ApplicationUsage(
                application_id=relation.relatable_id,
                attached_at=ensure_utc(relation.created_at),
                notes=relation.notes,
            )
        )
    return usage


async def _owner_documents(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    document_type: DocumentType | str | None,
) -> list[Document]:
    stmt = select(Document).where(
        Document.tenant_id == tenant_id,
        Document.owner_type == owner.kind.value,
        Document.owner_id == owner.id,
        Document.deleted_at.is_(None),
    )
    if document_type is not None:
        stmt = stmt.where(Document.document_type == DocumentType(document_type).value)
    stmt = stmt.order_by(Document.created_at.desc(), Document.version_number.desc())
    return list((await db.execute(stmt)).scalars().all())


async def history_by_type(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    document_type: DocumentType | str,
) -> list[HistoryEntry]:
    """Every version of one document type, newest first, with the applications each fed."""
    rows = await _owner_documents(db, tenant_id, owner, document_type)
    usage = await _application_usage(db, tenant_id, [doc.id for doc in rows])
    return [HistoryEntry(document=doc, applications=usage.get(doc.id, [])) for doc in rows]


async def supersession_chain(
    db: AsyncSession,
    tenant_id: str,
    document_id: uuid.UUID,
    *,
    owner: EntityRef | None = None,
) -> tuple[Document, list[Document]]:
    document = await documents.get_document(db, tenant_id, document_id, include_deleted=True)
    if owner is not None and document.owner != owner:
        raise DocumentNotFoundError(
            "Document not found", details={"document_id": str(document_id)}
        )
    chain = await supersession.get_complete_history_chain(db, document)
    return document, chain


async def valid_at(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    at: datetime,
    document_type: DocumentType | str | None = None,
) -> list[Document]:
    return await validity.valid_at(db, tenant_id, at, owner=owner, document_type=document_type)


async def timeline(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    document_type: DocumentType | str | None = None,
) -> list[TimelineEvent]:
    """Uploads, reviews, replacements and application usage, most recent first."""
    rows = await _owner_documents(db, tenant_id, owner, document_type)
    usage = await _application_usage(db, tenant_id, [doc.id for doc in rows])

    events: list[TimelineEvent] = []
    for doc in rows:
        base = dict(
            document_id=doc.id,
            document_type=doc.document_type,
            document_status=doc.status,
        )
        events.append(
            TimelineEvent(
                event=DOCUMENT_UPLOADED,
                occurred_at=ensure_utc(doc.created_at),
                details={"version_number": doc.version_number, "is_active": doc.is_active},
                **base,
            )
        )
        if doc.reviewed_at is not None:
            # a superseded document keeps its review timestamp, so use the rejection reason
            approved = doc.status == DocumentStatus.APPROVED.value or (
                doc.is_superseded and not doc.rejection_reason
            )
            events.append(
                TimelineEvent(
                    event=DOCUMENT_APPROVED if approved else DOCUMENT_REJECTED,
                    occurred_at=ensure_utc(doc.reviewed_at),
                    details={
                        "reviewed_by": doc.reviewed_by,
                        "rejection_reason": doc.rejection_reason,
                    },
                    **base,
                )
            )
        if doc.superseded_by_id is not None and doc.replaced_at is not None:
            events.append(
                TimelineEvent(
                    event=DOCUMENT_SUPERSEDED,
                    occurred_at=ensure_utc(doc.replaced_at),
                    details={
                        "superseded_by_id": str(doc.superseded_by_id),
                        "replacement_reason": doc.replacement_reason,
                    },
                    **base,
                )
            )
        for use in usage.get(doc.id, []):
            events.append(
                TimelineEvent(
                    event=DOCUMENT_USED_IN_APPLICATION,
                    occurred_at=use.attached_at,
                    details={"application_id": use.application_id, "notes": use.notes},
                    **base,
                )
            )

    events.sort(key=lambda item: item.occurred_at, reverse=True)
    return events
