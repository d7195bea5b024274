"""Freeze the document set a business decision was based on.

A snapshot is nothing more than USAGE relations from the decision subject to
the documents that were active and valid when it was taken. Later
supersessions create new documents but never touch these relations, so the
decision keeps pointing at exactly what the reviewer saw.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.core.logging import get_audit_logger
from doclifecycle.core.settings import settings
from doclifecycle.db.transaction import atomic
from doclifecycle.models.document import Document, DocumentType
from doclifecycle.models.documentable_relation import RelationContext
from doclifecycle.models.refs import EntityRef
from doclifecycle.models.types import utcnow
from doclifecycle.services import relations
from doclifecycle.services.validity import is_currently_valid

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


class SnapshotContext(str, Enum):
    SUBMISSION = "SUBMISSION"
    APPROVAL = "APPROVAL"
    MANUAL_ATTACH = "MANUAL_ATTACH"


@dataclass(slots=True)
class SnapshotResult:
    decision: EntityRef
    owner: EntityRef
    documents: list[Document] = field(default_factory=list)
    attached: list[Document] = field(default_factory=list)
    missing_types: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing_types


def required_types(types: Iterable[DocumentType | str] | None = None) -> list[str]:
    source = settings.snapshot_required_document_types if types is None else types
    ordered: list[str] = []
    for item in source:
        value = DocumentType(item).value
        if value not in ordered:
            ordered.append(value)
    return ordered


async def _active_documents(
    db: AsyncSession, tenant_id: str, owner: EntityRef, types: list[str]
) -> list[Document]:
    stmt = (
        select(Document)
        .where(
            Document.tenant_id == tenant_id,
            Document.owner_type == owner.kind.value,
            Document.owner_id == owner.id,
            Document.document_type.in_(types),
            Document.is_active.is_(True),
            Document.deleted_at.is_(None),
        )
        .order_by(Document.document_type)
    )
    return list((await db.execute(stmt)).scalars().all())


async def create_snapshot(
    db: AsyncSession,
    tenant_id: str,
    decision: EntityRef,
    owner: EntityRef,
    *,
    types: Iterable[DocumentType | str] | None = None,
    context: SnapshotContext | str = SnapshotContext.SUBMISSION,
    actor: str | None = None,
    commit: bool = True,
) -> SnapshotResult:
    """Record which of ``owner``'s documents ``decision`` relied on.

    Types that already have a USAGE relation from the decision to one of
    ``owner``'s documents are left as they are, which makes repeated calls
    idempotent. Documents of other owners on the same decision are ignored.
    """
    context = SnapshotContext(context)
    wanted = required_types(types)
    result = SnapshotResult(decision=decision, owner=owner)
    if not wanted:
        return result

    now = utcnow()
    async with atomic(db):
        frozen = {
            doc.document_type: doc
            for doc in await snapshot_documents(db, tenant_id, decision, owner=owner)
            if doc.document_type in wanted
        }
        candidates = await _active_documents(db, tenant_id, owner, wanted)
        for document in candidates:
            if document.document_type in frozen:
                continue
            if not is_currently_valid(document, now):
                continue
            await relations.attach(
                db,
                tenant_id,
                document,
                owner,
                RelationContext.OWNERSHIP,
                actor=actor,
                commit=False,
            )
            await relations.attach(
                db,
                tenant_id,
                document,
                decision,
                RelationContext.USAGE,
                notes=f"Context: {context.value}",
                actor=actor,
                commit=False,
            )
            frozen[document.document_type] = document
            result.attached.append(document)

    result.documents = [frozen[t] for t in wanted if t in frozen]
    result.missing_types = [t for t in wanted if t not in frozen]
    audit_logger.info(
        "document.snapshot",
        extra={
            "context": {
                "tenant_id": tenant_id,
                "decision": str(decision),
                "owner": str(owner),
                "snapshot_context": context.value,
                "attached": [str(doc.id) for doc in result.attached],
                "missing_types": result.missing_types,
                "actor": actor,
            }
        },
    )
    if commit:
        await db.commit()
    return result


async def snapshot_documents(
    db: AsyncSession,
    tenant_id: str,
    decision: EntityRef,
    *,
    owner: EntityRef | None = None,
) -> list[Document]:
    documents = await relations.documents_for_entity(
        db, tenant_id, decision, context=RelationContext.USAGE
    )
    if owner is None:
        return documents
    return [
        doc
        for doc in documents
        if doc.owner_type == owner.kind.value and doc.owner_id == owner.id
    ]


async def missing_snapshot_types(
    db: AsyncSession,
    tenant_id: str,
    decision: EntityRef,
    types: Iterable[DocumentType | str] | None = None,
    *,
    owner: EntityRef | None = None,
) -> list[str]:
    documents = await snapshot_documents(db, tenant_id, decision, owner=owner)
    present = {doc.document_type for doc in documents}
    return [t for t in required_types(types) if t not in present]


async def has_all_required_documents(
    db: AsyncSession,
    tenant_id: str,
    decision: EntityRef,
    types: Iterable[DocumentType | str] | None = None,
    *,
    owner: EntityRef | None = None,
) -> bool:
    return not await missing_snapshot_types(db, tenant_id, decision, types, owner=owner)
