"""Supersession chain manager.

A document is replaced by pointing its ``superseded_by_id`` at the new
version. The chain is walked with recursive CTEs so that any traversal is a
single round trip regardless of how many versions exist.
"""

import logging
import uuid

from sqlalchemy import Integer, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from doclifecycle.core.logging import get_audit_logger
from doclifecycle.core.settings import settings
from doclifecycle.db.transaction import atomic
from doclifecycle.models.document import Document, DocumentStatus, ReplacementReason
from doclifecycle.models.types import utcnow
from doclifecycle.services import activation
from doclifecycle.services.errors import (
    ApprovedDocumentImmutableError,
    DataIntegrityWarning,
    DocumentNotFoundError,
    InvalidDocumentStateError,
    NotActiveError,
    TypeMismatchError,
)

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


def _validate(old: Document, new: Document, allow_replace_approved: bool) -> None:
    if not old.is_active:
        raise NotActiveError(
            "Only the active document can be superseded",
            details={"document_id": str(old.id), "status": old.status},
        )
    if not old.same_slot(new):
        raise TypeMismatchError(
            "Replacement must share tenant, owner and document type",
            details={
                "document_id": str(old.id),
                "expected": {
                    "owner": f"{old.owner_type}:{old.owner_id}",
                    "document_type": old.document_type,
                },
                "received": {
                    "owner": f"{new.owner_type}:{new.owner_id}",
                    "document_type": new.document_type,
                },
            },
        )
    if old.is_approved and not allow_replace_approved:
        raise ApprovedDocumentImmutableError(
            "Document already verified; replacing it requires an explicit override",
            details={"document_id": str(old.id)},
        )
    if new.id is not None and new.id == old.id:
        raise InvalidDocumentStateError(
            "A document cannot supersede itself",
            details={"document_id": str(old.id)},
        )
    if (
        new.is_active
        or new.is_superseded
        or new.is_deleted
        or new.superseded_by_id is not None
        or new.previous_version_id is not None
    ):
        raise InvalidDocumentStateError(
            "Replacement must be a fresh document",
            details={"document_id": str(new.id), "status": new.status},
        )


async def _lock_document(db: AsyncSession, document_id: uuid.UUID) -> Document | None:
    stmt = (
        select(Document)
        .where(Document.id == document_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def supersede_with(
    db: AsyncSession,
    old: Document,
    new: Document,
    *,
    reason: ReplacementReason | str = ReplacementReason.UPDATED,
    allow_replace_approved: bool = False,
    actor: str | None = None,
    commit: bool = True,
) -> Document:
    """Replace the active ``old`` document with ``new``.

    ``old`` is re-read under a row lock and validated again before any change
    so a concurrent replacement cannot slip through. Returns ``new``, now
    active and carrying the next version number.
    """
    reason_value = ReplacementReason(reason).value
    _validate(old, new, allow_replace_approved)

    async with atomic(db):
        await db.flush()
        locked = await _lock_document(db, old.id)
        if locked is None:
            raise DocumentNotFoundError(
                "Document not found", details={"document_id": str(old.id)}
            )
        _validate(locked, new, allow_replace_approved)

        now = utcnow()
        locked.superseded_by_id = new.id
        locked.status = DocumentStatus.SUPERSEDED.value
        locked.replacement_reason = reason_value
        locked.replaced_at = now
        locked.is_active = False
        locked.valid_to = locked.valid_to or now
        if actor:
            locked.updated_by = actor
        await db.flush()

        new.version_number = locked.version_number + 1
        new.previous_version_id = locked.id
        await activation.activate(db, new, actor=actor, commit=False)

    audit_logger.info(
        "document.superseded",
        extra={
            "context": {
                "document_id": str(locked.id),
                "superseded_by_id": str(new.id),
                "tenant_id": locked.tenant_id,
                "document_type": locked.document_type,
                "version_number": new.version_number,
                "reason": reason_value,
                "actor": actor,
            }
        },
    )
    if commit:
        await db.commit()
    return new


def _forward_cte(tenant_id: str, start_id: uuid.UUID, max_depth: int):
    start = (
        select(
            Document.id.label("id"),
            Document.superseded_by_id.label("next_id"),
            literal(0, type_=Integer).label("depth"),
        )
        .where(Document.id == start_id, Document.tenant_id == tenant_id)
        .cte("forward_chain", recursive=True)
    )
    step = aliased(Document)
    prior = start.alias("forward_prior")
    return start.union_all(
        select(step.id, step.superseded_by_id, prior.c.depth + 1)
        .join(prior, step.id == prior.c.next_id)
        .where(prior.c.depth < max_depth)
    )


def _reverse_cte(tenant_id: str, start_id: uuid.UUID, max_depth: int):
    start = (
        select(
            Document.id.label("id"),
            literal(0, type_=Integer).label("depth"),
        )
        .where(Document.id == start_id, Document.tenant_id == tenant_id)
        .cte("reverse_chain", recursive=True)
    )
    step = aliased(Document)
    prior = start.alias("reverse_prior")
    return start.union_all(
        select(step.id, prior.c.depth + 1)
        .join(prior, step.superseded_by_id == prior.c.id)
        .where(prior.c.depth < max_depth)
    )


def _dedupe(rows: list[Document], start: Document, direction: str) -> list[Document]:
    seen: set[uuid.UUID] = set()
    ordered: list[Document] = []
    for row in rows:
        if row.id in seen:
            continue
        seen.add(row.id)
        ordered.append(row)
    if len(ordered) != len(rows):
        warning = DataIntegrityWarning(
            "Supersession chain contains a cycle",
            document_id=start.id,
            tenant_id=start.tenant_id,
            direction=direction,
        )
        logger.warning(warning.message, extra={"context": warning.to_dict()})
    return ordered


async def get_supersession_chain(db: AsyncSession, document: Document) -> list[Document]:
    """``document`` followed by every successor, oldest to newest."""
    chain = _forward_cte(document.tenant_id, document.id, settings.max_chain_depth)
    stmt = (
        select(Document)
        .join(chain, Document.id == chain.c.id)
        .where(Document.tenant_id == document.tenant_id)
        .order_by(chain.c.depth)
    )
    rows = list((await db.execute(stmt)).scalars().all())
    return _dedupe(rows, document, "forward")


async def get_reverse_supersession_chain(db: AsyncSession, document: Document) -> list[Document]:
    """``document`` followed by every ancestor, newest to oldest."""
    chain = _reverse_cte(document.tenant_id, document.id, settings.max_chain_depth)
    stmt = (
        select(Document)
        .join(chain, Document.id == chain.c.id)
        .where(Document.tenant_id == document.tenant_id)
        .order_by(chain.c.depth)
    )
    rows = list((await db.execute(stmt)).scalars().all())
    return _dedupe(rows, document, "reverse")


async def get_complete_history_chain(db: AsyncSession, document: Document) -> list[Document]:
    """Every version linked to ``document`` in either direction, by version number."""
    forward = _forward_cte(document.tenant_id, document.id, settings.max_chain_depth)
    reverse = _reverse_cte(document.tenant_id, document.id, settings.max_chain_depth)
    stmt = (
        select(Document)
        .where(
            Document.tenant_id == document.tenant_id,
            or_(
                Document.id.in_(select(forward.c.id)),
                Document.id.in_(select(reverse.c.id)),
            ),
        )
        .order_by(Document.version_number, Document.created_at)
    )
    return list((await db.execute(stmt)).scalars().all())


async def get_latest_version(db: AsyncSession, document: Document) -> Document:
    chain = await get_supersession_chain(db, document)
    return chain[-1] if chain else document
