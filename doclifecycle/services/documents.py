"""Document store operations: registration, review, queries and deletion.

Every write that changes ``is_active``, ``valid_to`` or ``superseded_by_id``
goes through :mod:`activation` or :mod:`supersession`; this module composes
them and never flips those columns itself.
"""

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.core.logging import get_audit_logger
from doclifecycle.db.transaction import atomic
from doclifecycle.models.document import (
    SENSITIVE_TYPES,
    Document,
    DocumentCategory,
    DocumentStatus,
    DocumentType,
    ReplacementReason,
    category_for_type,
)
from doclifecycle.models.refs import EntityRef
from doclifecycle.models.types import ensure_utc, utcnow
from doclifecycle.services import activation, relations, supersession
from doclifecycle.services.entity_resolvers import EntityResolverRegistry
from doclifecycle.services.entity_resolvers import registry as default_registry
from doclifecycle.services.errors import (
    ApprovedDocumentImmutableError,
    DocumentNotFoundError,
    InvalidDocumentStateError,
)
from doclifecycle.services.storage.adapter import StorageAdapter
from doclifecycle.services.storage.service import FileDescriptor, get_storage_adapter

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


def _owner_filters(owner: EntityRef):
    return (Document.owner_type == owner.kind.value, Document.owner_id == owner.id)


def _type_values(types: Iterable[DocumentType | str]) -> list[str]:
    return [DocumentType(t).value for t in types]


async def create_document(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    document_type: DocumentType | str,
    file: FileDescriptor,
    *,
    valid_from: datetime | None = None,
    metadata: dict[str, Any] | None = None,
    notes: str | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Document:
    """Insert a PENDING, inactive document. It takes no slot until activated."""
    doc_type = DocumentType(document_type)
    document = Document(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        owner_type=owner.kind.value,
        owner_id=owner.id,
        document_type=doc_type.value,
        category=category_for_type(doc_type).value,
        file_name=file.file_name,
        file_path=file.file_path,
        storage_disk=file.storage_disk,
        mime_type=file.mime_type,
        file_size=file.file_size,
        checksum=file.checksum,
        status=DocumentStatus.PENDING.value,
        is_active=False,
        valid_from=ensure_utc(valid_from),
        valid_to=None,
        version_number=1,
        is_sensitive=doc_type in SENSITIVE_TYPES,
        document_metadata=dict(metadata) if metadata else None,
        notes=notes,
        created_by=actor,
        updated_by=actor,
    )
    async with atomic(db):
        db.add(document)
        await db.flush()
    if commit:
        await db.commit()
    return document


async def get_document(
    db: AsyncSession,
    tenant_id: str,
    document_id: uuid.UUID,
    *,
    include_deleted: bool = False,
) -> Document:
    stmt = select(Document).where(Document.id == document_id, Document.tenant_id == tenant_id)
    if not include_deleted:
        stmt = stmt.where(Document.deleted_at.is_(None))
    document = (await db.execute(stmt)).scalar_one_or_none()
    if document is None:
        raise DocumentNotFoundError(
            "Document not found", details={"document_id": str(document_id)}
        )
    return document


async def get_active_document(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    document_type: DocumentType | str,
) -> Document | None:
    stmt = select(Document).where(
        Document.tenant_id == tenant_id,
        *_owner_filters(owner),
        Document.document_type == DocumentType(document_type).value,
        Document.is_active.is_(True),
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_documents(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    *,
    document_type: DocumentType | str | None = None,
    category: DocumentCategory | str | None = None,
    current_only: bool = True,
    include_deleted: bool = False,
) -> list[Document]:
    stmt = select(Document).where(Document.tenant_id == tenant_id, *_owner_filters(owner))
    if document_type is not None:
        stmt = stmt.where(Document.document_type == DocumentType(document_type).value)
    if category is not None:
        stmt = stmt.where(Document.category == DocumentCategory(category).value)
    if current_only:
        stmt = stmt.where(Document.is_active.is_(True))
    if not include_deleted:
        stmt = stmt.where(Document.deleted_at.is_(None))
    stmt = stmt.order_by(Document.document_type, Document.version_number.desc())
    return list((await db.execute(stmt)).scalars().all())


async def register_upload(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    document_type: DocumentType | str,
    file: FileDescriptor,
    *,
    valid_from: datetime | None = None,
    metadata: dict[str, Any] | None = None,
    notes: str | None = None,
    reason: ReplacementReason | str | None = None,
    allow_replace_approved: bool = False,
    actor: str | None = None,
    resolvers: EntityResolverRegistry | None = None,
    commit: bool = True,
) -> Document:
    """Record an uploaded file as the new authoritative version.

    The first document of a type activates directly; any later one supersedes
    the active version. Uploading over a rejected document defaults the
    replacement reason to REJECTED. An OWNERSHIP relation is always attached.
    """
    doc_type = DocumentType(document_type)
    await (resolvers or default_registry).ensure_exists(db, tenant_id, owner)

    current = await get_active_document(db, tenant_id, owner, doc_type)
    if current is not None and current.is_approved and not allow_replace_approved:
        raise ApprovedDocumentImmutableError(
            "Document already verified; replacing it requires an explicit override",
            details={"document_id": str(current.id), "document_type": doc_type.value},
        )

    async with atomic(db):
        document = await create_document(
            db,
            tenant_id,
            owner,
            doc_type,
            file,
            valid_from=valid_from,
            metadata=metadata,
            notes=notes,
            actor=actor,
            commit=False,
        )
        if current is None:
            await activation.activate(db, document, actor=actor, commit=False)
        else:
            if reason is None:
                reason = ReplacementReason.REJECTED if current.is_rejected else ReplacementReason.UPDATED
            await supersession.supersede_with(
                db,
                current,
                document,
                reason=reason,
                allow_replace_approved=allow_replace_approved,
                actor=actor,
                commit=False,
            )
        await relations.ensure_ownership(db, document, actor=actor, commit=False)

    logger.info(
        "Registered document upload",
        extra={
            "context": {
                "document_id": str(document.id),
                "document_type": doc_type.value,
                "version_number": document.version_number,
            }
        },
    )
    if commit:
        await db.commit()
    return document


def _ensure_reviewable(document: Document) -> None:
    if document.is_superseded or document.is_deleted:
        raise InvalidDocumentStateError(
            "Superseded or deleted documents cannot be reviewed",
            details={"document_id": str(document.id), "status": document.status},
        )


async def _review(
    db: AsyncSession,
    document: Document,
    *,
    status: DocumentStatus,
    reviewer: str | None,
    rejection_reason: str | None = None,
    notes: str | None = None,
    metadata_update: dict[str, Any] | None = None,
    commit: bool,
) -> Document:
    _ensure_reviewable(document)
    async with atomic(db):
        document.status = status.value
        document.reviewed_at = utcnow()
        document.reviewed_by = reviewer
        document.rejection_reason = rejection_reason
        if notes is not None:
            document.notes = notes
        if metadata_update:
            # reassign so the JSON column is marked dirty
            document.document_metadata = {**(document.document_metadata or {}), **metadata_update}
        if reviewer:
            document.updated_by = reviewer
        await db.flush()
    audit_logger.info(
        f"document.{status.value.lower()}",
        extra={
            "context": {
                "document_id": str(document.id),
                "tenant_id": document.tenant_id,
                "reviewer": reviewer,
                "rejection_reason": rejection_reason,
            }
        },
    )
    if commit:
        await db.commit()
    return document


async def approve(
    db: AsyncSession,
    document: Document,
    *,
    reviewer: str,
    notes: str | None = None,
    commit: bool = True,
) -> Document:
    return await _review(
        db, document, status=DocumentStatus.APPROVED, reviewer=reviewer, notes=notes, commit=commit
    )


async def reject(
    db: AsyncSession,
    document: Document,
    *,
    reviewer: str,
    reason: str,
    commit: bool = True,
) -> Document:
    return await _review(
        db,
        document,
        status=DocumentStatus.REJECTED,
        reviewer=reviewer,
        rejection_reason=reason,
        commit=commit,
    )


async def auto_approve(
    db: AsyncSession,
    document: Document,
    *,
    source: str = "system",
    commit: bool = True,
) -> Document:
    """Approve without a human reviewer, e.g. after an external KYC check."""
    return await _review(
        db,
        document,
        status=DocumentStatus.APPROVED,
        reviewer=None,
        metadata_update={
            "auto_approved": True,
            "auto_approved_at": utcnow().isoformat(),
            "auto_approval_source": source,
        },
        commit=commit,
    )


async def pending_for_review(
    db: AsyncSession,
    tenant_id: str,
    *,
    category: DocumentCategory | str | None = None,
    limit: int = 50,
) -> list[Document]:
    stmt = select(Document).where(
        Document.tenant_id == tenant_id,
        Document.status == DocumentStatus.PENDING.value,
        Document.is_active.is_(True),
        Document.deleted_at.is_(None),
    )
    if category is not None:
        stmt = stmt.where(Document.category == DocumentCategory(category).value)
    stmt = stmt.order_by(Document.created_at, Document.id).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def rejected_for_reupload(
    db: AsyncSession, tenant_id: str, owner: EntityRef
) -> list[Document]:
    stmt = (
        select(Document)
        .where(
            Document.tenant_id == tenant_id,
            *_owner_filters(owner),
            Document.status == DocumentStatus.REJECTED.value,
            Document.is_active.is_(True),
            Document.deleted_at.is_(None),
        )
        .order_by(Document.document_type)
    )
    return list((await db.execute(stmt)).scalars().all())


async def _active_types(
    db: AsyncSession, tenant_id: str, owner: EntityRef, statuses: Iterable[DocumentStatus]
) -> set[str]:
    stmt = select(Document.document_type).where(
        Document.tenant_id == tenant_id,
        *_owner_filters(owner),
        Document.is_active.is_(True),
        Document.deleted_at.is_(None),
        Document.status.in_([s.value for s in statuses]),
    )
    return set((await db.execute(stmt)).scalars().all())


async def missing_required_types(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    required: Iterable[DocumentType | str],
) -> list[str]:
    """Required types with no active document awaiting review or approved."""
    present = await _active_types(
        db, tenant_id, owner, (DocumentStatus.PENDING, DocumentStatus.APPROVED)
    )
    return [t for t in _type_values(required) if t not in present]


async def all_required_approved(
    db: AsyncSession,
    tenant_id: str,
    owner: EntityRef,
    required: Iterable[DocumentType | str],
) -> bool:
    approved = await _active_types(db, tenant_id, owner, (DocumentStatus.APPROVED,))
    return all(t in approved for t in _type_values(required))


async def soft_delete(
    db: AsyncSession,
    document: Document,
    *,
    actor: str | None = None,
    commit: bool = True,
) -> Document:
    """Hide a document from default queries, keeping it for retention."""
    if document.is_deleted:
        return document
    async with atomic(db):
        if document.is_active:
            await activation.deactivate(db, document, actor=actor, commit=False)
        document.deleted_at = utcnow()
        document.deleted_by = actor
        await db.flush()
    audit_logger.info(
        "document.deleted",
        extra={
            "context": {
                "document_id": str(document.id),
                "tenant_id": document.tenant_id,
                "mode": "soft",
                "actor": actor,
            }
        },
    )
    if commit:
        await db.commit()
    return document


async def force_delete(
    db: AsyncSession,
    document: Document,
    *,
    storage: StorageAdapter | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> list[str]:
    """Permanently remove a single document version and its stored file.

    Relations go with the row through the cascading foreign key. Neighbouring
    versions keep their rows; their chain pointers to this document are
    cleared. The stored file is removed only when this call commits; a key
    that could not be removed is logged and left for cleanup. Returns the
    keys that were deleted.
    """
    document_id = document.id
    paths = [document.file_path] if document.file_path else []

    async with atomic(db):
        await db.execute(
            update(Document)
            .where(Document.superseded_by_id == document.id)
            .values(superseded_by_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            update(Document)
            .where(Document.previous_version_id == document.id)
            .values(previous_version_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            delete(Document)
            .where(Document.tenant_id == document.tenant_id, Document.id == document.id)
            .execution_options(synchronize_session="fetch")
        )

    audit_logger.info(
        "document.deleted",
        extra={
            "context": {
                "document_id": str(document.id),
                "tenant_id": document.tenant_id,
                "mode": "force",
                "actor": actor,
            }
        },
    )
    if not commit:
        return []
    await db.commit()

    storage = storage or get_storage_adapter()
    removed: list[str] = []
    for path in paths:
        try:
            storage.delete_object(path)
        except (OSError, ValueError):
            logger.warning(
                "Stored file could not be removed",
                exc_info=True,
                extra={"context": {"document_id": str(document_id), "file_path": path}},
            )
            continue
        removed.append(path)
    return removed
