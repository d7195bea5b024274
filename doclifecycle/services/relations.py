import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.core.logging import get_audit_logger
from doclifecycle.db.transaction import atomic
from doclifecycle.models.document import Document
from doclifecycle.models.documentable_relation import DocumentableRelation, RelationContext
from doclifecycle.models.refs import EntityRef
from doclifecycle.models.types import utcnow
from doclifecycle.services.errors import ConstraintViolation, OrphanReferenceError

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


def _document_id(document: Document | uuid.UUID) -> uuid.UUID:
    return document.id if isinstance(document, Document) else document


def _link_stmt(document_id: uuid.UUID, relatable: EntityRef, context: RelationContext):
    return select(DocumentableRelation).where(
        DocumentableRelation.document_id == document_id,
        DocumentableRelation.relatable_type == relatable.kind.value,
        DocumentableRelation.relatable_id == relatable.id,
        DocumentableRelation.relation_context == context.value,
    )


async def _find_link(
    db: AsyncSession, document_id: uuid.UUID, relatable: EntityRef, context: RelationContext
) -> DocumentableRelation | None:
    return (await db.execute(_link_stmt(document_id, relatable, context))).scalar_one_or_none()


async def _document_exists(db: AsyncSession, tenant_id: str, document_id: uuid.UUID) -> bool:
    stmt = select(Document.id).where(
        Document.id == document_id,
        Document.tenant_id == tenant_id,
        Document.deleted_at.is_(None),
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def attach(
    db: AsyncSession,
    tenant_id: str,
    document: Document | uuid.UUID,
    relatable: EntityRef,
    context: RelationContext | str,
    *,
    notes: str | None = None,
    actor: str | None = None,
    actor_type: str | None = None,
    commit: bool = True,
) -> DocumentableRelation:
    """Link a document to a business entity for a given purpose.

    Idempotent on (document, entity, context): an existing link is returned
    unchanged and a soft-deleted one is restored. When two writers insert the
    same link at once, the loser gets the winner's row back.
    """
    context = RelationContext(context)
    document_id = _document_id(document)
    if not await _document_exists(db, tenant_id, document_id):
        raise OrphanReferenceError(
            "Cannot relate a document that does not exist",
            details={"document_id": str(document_id)},
        )

    existing = await _find_link(db, document_id, relatable, context)
    if existing is not None:
        if existing.deleted_at is not None:
            async with atomic(db):
                existing.deleted_at = None
                if notes is not None:
                    existing.notes = notes
                await db.flush()
            logger.info(
                "Restored document relation",
                extra={"context": {"relation_id": str(existing.id), "document_id": str(document_id)}},
            )
            if commit:
                await db.commit()
        return existing

    relation = DocumentableRelation(
        tenant_id=tenant_id,
        document_id=document_id,
        relatable_type=relatable.kind.value,
        relatable_id=relatable.id,
        relation_context=context.value,
        notes=notes,
        created_by=actor,
        created_by_type=actor_type,
    )
    try:
        async with atomic(db):
            db.add(relation)
            await db.flush()
    except ConstraintViolation:
        # Another request created the same link first
        winner = await _find_link(db, document_id, relatable, context)
        if winner is None:
            raise
        return winner

    audit_logger.info(
        "document.related",
        extra={
            "context": {
                "document_id": str(document_id),
                "tenant_id": tenant_id,
                "relatable": str(relatable),
                "relation_context": context.value,
                "actor": actor,
            }
        },
    )
    if commit:
        await db.commit()
    return relation


async def detach(
    db: AsyncSession,
    tenant_id: str,
    document: Document | uuid.UUID,
    relatable: EntityRef,
    context: RelationContext | str,
    *,
    commit: bool = True,
) -> bool:
    context = RelationContext(context)
    document_id = _document_id(document)
    stmt = _link_stmt(document_id, relatable, context).where(
        DocumentableRelation.tenant_id == tenant_id,
        DocumentableRelation.deleted_at.is_(None),
    )
    relation = (await db.execute(stmt)).scalar_one_or_none()
    if relation is None:
        return False
    async with atomic(db):
        relation.deleted_at = utcnow()
        await db.flush()
    if commit:
        await db.commit()
    return True


async def relations_for_document(
    db: AsyncSession,
    tenant_id: str,
    document: Document | uuid.UUID,
    *,
    context: RelationContext | str | None = None,
    include_deleted: bool = False,
) -> list[DocumentableRelation]:
    stmt = select(DocumentableRelation).where(
        DocumentableRelation.tenant_id == tenant_id,
        DocumentableRelation.document_id == _document_id(document),
    )
    if context is not None:
        stmt = stmt.where(DocumentableRelation.relation_context == RelationContext(context).value)
    if not include_deleted:
        stmt = stmt.where(DocumentableRelation.deleted_at.is_(None))
    stmt = stmt.order_by(DocumentableRelation.created_at, DocumentableRelation.id)
    return list((await db.execute(stmt)).scalars().all())


async def relations_for_entity(
    db: AsyncSession,
    tenant_id: str,
    relatable: EntityRef,
    *,
    context: RelationContext | str | None = None,
) -> list[DocumentableRelation]:
    stmt = select(DocumentableRelation).where(
        DocumentableRelation.tenant_id == tenant_id,
        DocumentableRelation.relatable_type == relatable.kind.value,
        DocumentableRelation.relatable_id == relatable.id,
        DocumentableRelation.deleted_at.is_(None),
    )
    if context is not None:
        stmt = stmt.where(DocumentableRelation.relation_context == RelationContext(context).value)
    stmt = stmt.order_by(DocumentableRelation.created_at, DocumentableRelation.id)
    return list((await db.execute(stmt)).scalars().all())


async def documents_for_entity(
    db: AsyncSession,
    tenant_id: str,
    relatable: EntityRef,
    *,
    context: RelationContext | str | None = None,
) -> list[Document]:
    """Documents linked to ``relatable``, whatever their current lifecycle state."""
    stmt = (
        select(Document)
        .join(DocumentableRelation, DocumentableRelation.document_id == Document.id)
        .where(
            DocumentableRelation.tenant_id == tenant_id,
            DocumentableRelation.relatable_type == relatable.kind.value,
            DocumentableRelation.relatable_id == relatable.id,
            DocumentableRelation.deleted_at.is_(None),
        )
    )
    if context is not None:
        stmt = stmt.where(DocumentableRelation.relation_context == RelationContext(context).value)
    stmt = stmt.order_by(Document.document_type, Document.version_number)
    rows = (await db.execute(stmt)).scalars().all()
    # one row per link, so a document related in several contexts repeats
    unique: dict[uuid.UUID, Document] = {}
    for row in rows:
        unique.setdefault(row.id, row)
    return list(unique.values())


async def ensure_ownership(
    db: AsyncSession,
    document: Document,
    *,
    actor: str | None = None,
    commit: bool = True,
) -> DocumentableRelation:
    return await attach(
        db,
        document.tenant_id,
        document,
        document.owner,
        RelationContext.OWNERSHIP,
        actor=actor,
        commit=commit,
    )
