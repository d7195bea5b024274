import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.core.logging import get_audit_logger
from doclifecycle.db.transaction import atomic
from doclifecycle.models.document import Document
from doclifecycle.models.types import ensure_utc, utcnow
from doclifecycle.services.errors import InvalidDocumentStateError, NotActiveError

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


async def _deactivate_siblings(db: AsyncSession, document: Document, now: datetime) -> int:
    stmt = (
        update(Document)
        .where(
            Document.tenant_id == document.tenant_id,
            Document.owner_type == document.owner_type,
            Document.owner_id == document.owner_id,
            Document.document_type == document.document_type,
            Document.is_active.is_(True),
            Document.id != document.id,
        )
        .values(is_active=False, valid_to=now)
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    return result.rowcount or 0


async def activate(
    db: AsyncSession,
    document: Document,
    *,
    actor: str | None = None,
    commit: bool = True,
) -> Document:
    """Make ``document`` the single authoritative version for its slot.

    Every other active document with the same tenant, owner and type gets its
    validity window closed. Status and supersession pointers of those siblings
    are left alone. If a concurrent writer wins the race the partial unique
    index rejects the flush and :class:`ConstraintViolation` is raised.
    """
    if document.is_superseded:
        raise InvalidDocumentStateError(
            "Superseded documents cannot be activated",
            details={"document_id": str(document.id)},
        )
    if document.is_deleted:
        raise InvalidDocumentStateError(
            "Deleted documents cannot be activated",
            details={"document_id": str(document.id)},
        )

    now = utcnow()
    async with atomic(db):
        await db.flush()
        closed = await _deactivate_siblings(db, document, now)
        valid_from = ensure_utc(document.valid_from)
        if valid_from is None or valid_from > now:
            valid_from = now
        document.is_active = True
        document.valid_from = valid_from
        document.valid_to = None
        if actor:
            document.updated_by = actor
        await db.flush()

    audit_logger.info(
        "document.activated",
        extra={
            "context": {
                "document_id": str(document.id),
                "tenant_id": document.tenant_id,
                "owner": str(document.owner),
                "document_type": document.document_type,
                "deactivated_siblings": closed,
                "actor": actor,
            }
        },
    )
    if commit:
        await db.commit()
    return document


async def deactivate(
    db: AsyncSession,
    document: Document,
    *,
    at: datetime | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Document:
    """Close the validity window of an active document without replacing it."""
    if not document.is_active:
        raise NotActiveError(
            "Document is not active",
            details={"document_id": str(document.id)},
        )
    now = utcnow()
    valid_to = ensure_utc(at) or now
    # an inactive document must not look valid in the future
    if valid_to > now:
        valid_to = now
    valid_from = ensure_utc(document.valid_from)
    if valid_from is not None and valid_to < valid_from:
        valid_to = valid_from

    async with atomic(db):
        document.is_active = False
        document.valid_to = valid_to
        if actor:
            document.updated_by = actor
        await db.flush()

    audit_logger.info(
        "document.deactivated",
        extra={
            "context": {
                "document_id": str(document.id),
                "tenant_id": document.tenant_id,
                "valid_to": valid_to.isoformat(),
                "actor": actor,
            }
        },
    )
    if commit:
        await db.commit()
    return document
